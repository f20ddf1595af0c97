"""Notifier adapters."""

from rich.console import Console

from fieldops.domain.interfaces import NotifierInterface

_STYLES = {
    "info": "cyan",
    "success": "bold green",
    "warning": "yellow",
    "error": "bold red",
}


class ConsoleNotifier(NotifierInterface):
    """Prints toasts to the terminal."""

    def __init__(self, console: Console | None = None) -> None:
        self._console = console or Console(stderr=True)

    def notify(self, message: str, level: str = "info") -> None:
        style = _STYLES.get(level, "cyan")
        self._console.print(f"[{style}]{level.upper():<7}[/{style}] {message}", highlight=False)


class CollectingNotifier(NotifierInterface):
    """Records toasts in memory for testing."""

    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []

    def notify(self, message: str, level: str = "info") -> None:
        self.messages.append((level, message))

    @property
    def texts(self) -> list[str]:
        return [message for _, message in self.messages]
