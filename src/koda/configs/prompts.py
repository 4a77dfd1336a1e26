"""Default user-facing texts that operators may override via config."""

DEFAULT_ACCEPTANCE_CRITERIA = """Questions should be related to one or more of the following topics:
1. Vaadin framework and its components
2. Java development, including core Java, Java EE, or Spring Framework
3. Web development with Java-based frameworks
4. Frontend technologies commonly used with Java backends, such as React.

Questions about unrelated programming languages, non-technical topics,
or topics clearly outside of Java web development are NOT acceptable."""

DEFAULT_GUARDRAIL_FAILURE_RESPONSE = (
    "I'm sorry, but your question doesn't appear to be related to Vaadin, "
    "Java development, or web development with Java frameworks. Could you "
    "please ask a question related to these topics?"
)

DEFAULT_MODERATION_FAILURE_RESPONSE = (
    "I'm sorry, but your message doesn't follow our content guidelines. "
    "Please rephrase your question and try again."
)
