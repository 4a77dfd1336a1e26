"""Entry point for running the CLI as a module."""

import argparse
import asyncio
import sys

from .koda_cli import main


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Interactive CLI for the Koda documentation assistant",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--topic",
        type=str,
        default="flow",
        help="Documentation topic, e.g. flow, hilla-react (default: flow)",
    )
    parser.add_argument(
        "--chat-id",
        type=str,
        default=None,
        help="Chat id to continue (default: a new random id)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    return parser.parse_args(argv)


def cli_entry() -> None:
    """CLI entry point."""
    args = parse_args()

    try:
        asyncio.run(main(topic=args.topic, chat_id=args.chat_id, debug=args.debug))
    except KeyboardInterrupt:
        sys.exit(0)


if __name__ == "__main__":
    cli_entry()
