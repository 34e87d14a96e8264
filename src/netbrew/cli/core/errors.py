"""
Error taxonomy for the netbrew command harness.

Fatal errors abort the running command and the process exits with a
non-zero status. Nothing in the harness retries: every fatal condition is
an operator input error or an engine contract violation, never a transient one.
"""


class BrewError(Exception):
    """Base class for all netbrew errors."""


class FatalError(BrewError):
    """An error that terminates the process immediately."""

    exit_code: int = 2


class ConfigurationError(FatalError):
    """
    Invalid or conflicting configuration.

    Raised for missing required flags, mutually exclusive flags, unparseable
    device lists, unknown signal effects and unavailable optional subsystems.
    """


class ConsistencyError(FatalError):
    """The execution engine violated its output contract."""
