from typing import List, Optional, Protocol, Tuple

from rich.console import Console


class Logger(Protocol):
    def log(self, message: str) -> None: ...

    def warn(self, message: str) -> None: ...

    def error(self, message: str) -> None: ...


class ConsoleLogger:
    """Writes diagnostics to stderr so stdout stays machine-readable."""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console(stderr=True)

    def log(self, message: str) -> None:
        self.console.print(message, style="dim", markup=False, highlight=False)

    def warn(self, message: str) -> None:
        self.console.print(message, style="yellow", markup=False, highlight=False)

    def error(self, message: str) -> None:
        self.console.print(message, style="bold red", markup=False, highlight=False)


class RecordingLogger:
    """Keeps every line in memory instead of printing it."""

    def __init__(self):
        self.records: List[Tuple[str, str]] = []

    def log(self, message: str) -> None:
        self.records.append(("log", message))

    def warn(self, message: str) -> None:
        self.records.append(("warn", message))

    def error(self, message: str) -> None:
        self.records.append(("error", message))

    def messages(self, level: Optional[str] = None) -> List[str]:
        return [msg for lvl, msg in self.records if level is None or lvl == level]
