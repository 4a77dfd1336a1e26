"""Response formatter for displaying assistant events."""

from typing import TextIO

from koda.core.service.models import ContentEvent, RejectedEvent, StreamEvent


class ResponseFormatter:
    """Writes streamed events to the terminal as they arrive."""

    def __init__(self, output: TextIO):
        self.output = output
        self.content_started = False

    def handle_event(self, event: StreamEvent) -> None:
        if isinstance(event, ContentEvent):
            if not self.content_started:
                self._print("\nKoda:\n")
                self.content_started = True
            self.output.write(event.content)
            self.output.flush()

        elif isinstance(event, RejectedEvent):
            self._print(f"\n⚠️  {event.message}\n")

    def finish_response(self) -> None:
        if self.content_started:
            self._print("\n")

    def _print(self, text: str) -> None:
        self.output.write(text)
        self.output.flush()
