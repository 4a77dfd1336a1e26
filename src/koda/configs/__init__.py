"""Application configuration models."""

from .config import AppConfig, get_app_config  # noqa: F401
from .topics import (  # noqa: F401
    GENERAL_NAMESPACE,
    TopicProfile,
    UnsupportedTopicError,
    resolve_topic,
)
