"""Main CLI loop for interactive chat."""

import logging
import sys
import uuid
from typing import TextIO

from koda.configs import UnsupportedTopicError, get_app_config
from koda.configs.system import LoggingConfig
from koda.core.service.assistant import DocsAssistantService
from koda.core.service.budget import PromptBudgetExceeded
from koda.core.service.deps import get_docs_assistant_service
from koda.infra.logging import setup_logging

from .formatter import ResponseFormatter

logger = logging.getLogger(__name__)

EXIT_COMMANDS = ("exit", "quit", "q")
CLEAR_COMMAND = "/clear"
TOPIC_COMMAND = "/topic"


class KodaCLI:
    """Interactive CLI driving the assistant pipeline in-process."""

    def __init__(
        self,
        service: DocsAssistantService,
        topic: str,
        chat_id: str | None = None,
        input_stream: TextIO = sys.stdin,
        output_stream: TextIO = sys.stdout,
    ):
        self.service = service
        self.topic = topic
        self.chat_id = chat_id or uuid.uuid4().hex
        self.input_stream = input_stream
        self.output_stream = output_stream

    async def run(self) -> None:
        """Run the interactive CLI loop."""
        self._print_welcome()
        while True:
            try:
                query = self._get_user_input()
                if not query.strip():
                    continue

                command = query.strip()
                if command.lower() in EXIT_COMMANDS:
                    self._print("Goodbye!\n")
                    break
                if command == CLEAR_COMMAND:
                    await self.service.clear_history(self.chat_id)
                    self._print("History cleared.\n\n")
                    continue
                if command.startswith(TOPIC_COMMAND):
                    self._switch_topic(command[len(TOPIC_COMMAND) :].strip())
                    continue

                await self._process_query(query)

            except KeyboardInterrupt:
                self._print("\n\nInterrupted. Use 'exit' or 'quit' to exit.\n")
            except EOFError:
                self._print("\nGoodbye!\n")
                break

    async def _process_query(self, query: str) -> None:
        """Process a single user query."""
        formatter = ResponseFormatter(self.output_stream)
        try:
            async for event in self.service.stream_events(
                self.chat_id, query, self.topic
            ):
                formatter.handle_event(event)
            formatter.finish_response()
            self._print("\n")
        except PromptBudgetExceeded:
            self._print("\n❌ Your question is too long. Please shorten it.\n\n")
        except Exception as e:
            logger.exception("Error processing query")
            self._print(f"\n❌ Error: {str(e)}\n\n")

    def _switch_topic(self, value: str) -> None:
        supported = [p.value for p in self.service.supported_topics()]
        if value not in supported:
            self._print(f"Unknown topic {value!r}. Choose one of: {', '.join(supported)}\n\n")
            return
        self.topic = value
        self._print(f"Topic set to {value}.\n\n")

    def _get_user_input(self) -> str:
        """Get user input from the input stream."""
        self._print("> ")
        line = self.input_stream.readline()
        if not line:
            raise EOFError
        return line.rstrip("\n\r")

    def _print_welcome(self) -> None:
        self._print("Koda - Vaadin documentation assistant\n")
        self._print(f"Topic: {self.topic}  Chat: {self.chat_id}\n")
        self._print(
            f"Commands: {CLEAR_COMMAND}, {TOPIC_COMMAND} <name>, exit\n\n"
        )

    def _print(self, text: str) -> None:
        self.output_stream.write(text)
        self.output_stream.flush()


async def main(
    topic: str = "flow",
    chat_id: str | None = None,
    debug: bool = False,
) -> None:
    """Main entry point for the CLI."""
    config = get_app_config()
    setup_logging(
        LoggingConfig(level="DEBUG" if debug else "WARNING", json_output=False),
        stream=sys.stderr,
    )

    service = get_docs_assistant_service(config)
    supported = [p.value for p in service.supported_topics()]
    if topic not in supported:
        raise UnsupportedTopicError(topic, supported)

    cli = KodaCLI(service, topic=topic, chat_id=chat_id)
    await cli.run()
