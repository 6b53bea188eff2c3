"""Exceptions raised by the parser, the executor and the job manager."""


class ShellError(Exception):
    """Base class for every recoverable shell failure."""
    exit_code = 1


class ShellSyntaxError(ShellError):
    """The input line could not be parsed. The line is discarded."""
    exit_code = 2


class ExecutionError(ShellError):
    """A process could not be spawned (not found, permission denied...)."""


class RedirectionError(ShellError):
    """A redirection target could not be opened or created."""


class SignalDeliveryError(ShellError):
    """A signal could not be delivered to a job, usually because it already exited."""


class JobNotFoundError(ShellError):
    """fg/bg referenced a job id that is not in the registry."""


class ShellExit(Exception):
    """Raised by the exit builtin to leave the shell (or the current subshell)."""

    def __init__(self, status=0):
        super().__init__(status)
        self.status = status
