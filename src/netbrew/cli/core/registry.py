"""
Command registry.

Maps command names to zero-argument handlers returning an integer status.
The registry is built explicitly at start-up (see
``netbrew.cli.commands.register_commands``) and only read afterwards.
"""

from typing import Callable, Dict, List, Optional

from .logger import BrewLogger, get_logger


Handler = Callable[[], int]

FALLBACK_COMMAND = "actions"


class CommandRegistry:
    """Name to handler mapping with a listing fallback for unknown names."""

    def __init__(self, logger: Optional[BrewLogger] = None):
        self._handlers: Dict[str, Handler] = {}
        self.logger = logger or get_logger()

    def register(self, name: str, handler: Handler) -> None:
        """
        Register a handler. A second registration of the same name replaces
        the first.
        """
        self._handlers[name] = handler

    def names(self) -> List[str]:
        return sorted(self._handlers)

    def get(self, name: str) -> Optional[Handler]:
        return self._handlers.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)

    def list_actions(self) -> int:
        """Log every registered command name."""
        self.logger.error("Available actions:")
        for name in self.names():
            self.logger.error(f"\t{name}")
        return 0

    def dispatch(self, name: str) -> int:
        """
        Run the handler registered under ``name``.

        Unknown names are not an error: the known commands are listed and
        the result of the fallback handler is returned.

        Args:
            name: Command name

        Returns:
            The handler's status code
        """
        handler = self._handlers.get(name)
        if handler is None:
            self.logger.error(f"Unknown action: {name}")
            fallback = self._handlers.get(FALLBACK_COMMAND, self.list_actions)
            return fallback()
        return handler()


def exit_status(status: int) -> int:
    """Map a handler status to a process exit code (0 or 1)."""
    return 0 if status == 0 else 1
