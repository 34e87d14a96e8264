"""
Signal-driven cooperative cancellation.

SIGINT and SIGHUP are each mapped to a ``SolverAction`` by user policy. The
OS-level handlers only record that a signal arrived; the solver learns about
it by polling the action function between iterations.
"""

import signal
from types import FrameType
from typing import Any, Dict, Optional

from .engine import ActionFunction, SolverAction
from .errors import ConfigurationError
from .logger import BrewLogger, get_logger


def get_requested_action(flag_value: str) -> SolverAction:
    """
    Translate a --sigint-effect / --sighup-effect value.

    Args:
        flag_value: "stop", "snapshot" or "none"

    Returns:
        Matching SolverAction
    """
    try:
        return SolverAction(flag_value)
    except ValueError:
        raise ConfigurationError(
            f'Invalid signal effect "{flag_value}" was specified'
        ) from None


class SignalHandler:
    """
    Installs SIGINT/SIGHUP handlers for the duration of a ``with`` block.

    Each handler only sets a flag. ``get_action_function`` returns the
    callable a solver polls; a pending signal is consumed when polled.
    """

    def __init__(
        self,
        sigint_action: SolverAction,
        sighup_action: SolverAction,
        logger: Optional[BrewLogger] = None
    ):
        self.sigint_action = sigint_action
        self.sighup_action = sighup_action
        self.logger = logger or get_logger()
        self._got_sigint = False
        self._got_sighup = False
        self._previous: Dict[int, Any] = {}

    def _handle_sigint(self, signum: int, frame: Optional[FrameType]) -> None:
        self._got_sigint = True

    def _handle_sighup(self, signum: int, frame: Optional[FrameType]) -> None:
        self._got_sighup = True

    def install(self) -> None:
        self._previous[signal.SIGINT] = signal.signal(signal.SIGINT, self._handle_sigint)
        sighup = getattr(signal, "SIGHUP", None)
        if sighup is not None:
            self._previous[sighup] = signal.signal(sighup, self._handle_sighup)

    def restore(self) -> None:
        for signum, handler in self._previous.items():
            signal.signal(signum, handler)
        self._previous.clear()

    def __enter__(self) -> "SignalHandler":
        self.install()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.restore()

    def check_for_signals(self) -> SolverAction:
        """Consume a pending signal and return the action it maps to."""
        if self._got_sigint:
            self._got_sigint = False
            self.logger.info(f"Caught SIGINT, requesting {self.sigint_action.value}")
            return self.sigint_action
        if self._got_sighup:
            self._got_sighup = False
            self.logger.info(f"Caught SIGHUP, requesting {self.sighup_action.value}")
            return self.sighup_action
        return SolverAction.NONE

    def get_action_function(self) -> ActionFunction:
        return self.check_for_signals
