"""
Rich-based logging for the netbrew command harness.

Console records go through a RichHandler. With ``--log-dir`` every record is
also appended to ``netbrew_<timestamp>.log`` in the glog line format used by
training tools (``I1019 14:03:07.123456 netbrew] message``) so that existing
log parsers keep working.
"""

import logging
from pathlib import Path
from datetime import datetime
from typing import Optional
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table


class GlogFormatter(logging.Formatter):
    """Formats records as ``<L><mmdd> <hh:mm:ss.uuuuuu> <name>] <message>``."""

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created)
        prefix = f"{record.levelname[0]}{stamp:%m%d %H:%M:%S.%f} {record.name}]"
        return f"{prefix} {record.getMessage()}"


class BrewLogger:
    """
    Logger with Rich console output and optional file logging.

    Wraps the stdlib ``netbrew`` logger, so records also reach any handler
    attached further up the hierarchy.
    """

    def __init__(
        self,
        name: str = "netbrew",
        log_dir: Optional[Path] = None,
        console: Optional[Console] = None,
        level: int = logging.INFO
    ):
        """
        Initialize the logger.

        Args:
            name: Logger name
            log_dir: Directory for the log file (None = console only)
            console: Rich console instance (None = stderr console)
            level: Console logging level (the log file gets everything)
        """
        self.name = name
        self.console = console or Console(stderr=True)
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.DEBUG)
        self.logger.handlers = []

        console_handler = RichHandler(
            console=self.console,
            rich_tracebacks=True,
            show_path=False,
            markup=False
        )
        console_handler.setLevel(level)
        self.logger.addHandler(console_handler)

        self.log_file: Optional[Path] = None
        if log_dir:
            self.log_file = self._add_file_handler(Path(log_dir))

    def _add_file_handler(self, log_dir: Path) -> Path:
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / f"{self.name}_{datetime.now():%Y%m%d_%H%M%S}.log"

        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(GlogFormatter())
        self.logger.addHandler(file_handler)

        self.debug(f"Log file created at: {log_file}")
        return log_file

    def debug(self, message: str) -> None:
        self.logger.debug(message)

    def info(self, message: str) -> None:
        self.logger.info(message)

    def warning(self, message: str) -> None:
        self.logger.warning(message)

    def error(self, message: str) -> None:
        self.logger.error(message)

    def critical(self, message: str) -> None:
        self.logger.critical(message)

    def section(self, title: str) -> None:
        """Print a console rule announcing the command being run."""
        self.console.rule(f"[bold cyan]{escape(title)}[/bold cyan]")
        self.logger.debug(f"=== {title} ===")

    def table(self, table: Table) -> None:
        """Render a Rich table on the console only."""
        self.console.print(table)


_global_logger: Optional[BrewLogger] = None


def get_logger() -> BrewLogger:
    """
    Get the process-wide logger, creating a console-only one on first use.

    Returns:
        BrewLogger instance
    """
    global _global_logger

    if _global_logger is None:
        _global_logger = BrewLogger()
    return _global_logger


def setup_logger(
    log_dir: Optional[Path] = None,
    console: Optional[Console] = None,
    level: int = logging.INFO
) -> BrewLogger:
    """
    Replace the process-wide logger.

    Args:
        log_dir: Directory for the log file
        console: Rich console instance
        level: Console logging level

    Returns:
        Configured BrewLogger
    """
    global _global_logger

    _global_logger = BrewLogger(log_dir=log_dir, console=console, level=level)
    return _global_logger
