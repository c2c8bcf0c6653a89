from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import InvocationResult


class PorcelainGitError(Exception):
    """Base error for the project."""


class InvalidRootError(PorcelainGitError):
    pass


class GitArgumentError(PorcelainGitError, ValueError):
    """Arguments rejected before git is spawned."""


class SpawnError(PorcelainGitError):
    """The git binary could not be started."""


class CommandLineError(PorcelainGitError):
    """
    git ran but the invocation is not usable.

    Prefer one of the concrete subclasses:
      - FailedError: exit code outside the caller's policy
      - SignaledError: killed by an uncaught signal
      - CommandTimeoutError: killed after the deadline elapsed
    """

    __match_args__ = ("result",)

    def __init__(self, result: InvocationResult) -> None:
        self.result = result
        super().__init__(self._message())

    def _message(self) -> str:
        r = self.result
        return f"{list(r.command)}, status: {r.exit_status}, stderr: {r.stderr!r}"


class FailedError(CommandLineError):
    pass


class SignaledError(CommandLineError):
    pass


class CommandTimeoutError(SignaledError):
    __match_args__ = ("result", "timeout")

    def __init__(self, result: InvocationResult, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(result)

    def _message(self) -> str:
        r = self.result
        return (
            f"{list(r.command)}, status: {r.exit_status}, stderr: {r.stderr!r}, "
            f"timed out after {self.timeout}s"
        )


class ProcessIOError(PorcelainGitError):
    """A caller-supplied sink raised while receiving output. The sink's error is __cause__."""

    __match_args__ = ("command", "stream")

    def __init__(self, command: tuple[str, ...], stream: str, result: InvocationResult | None = None) -> None:
        self.command = command
        self.stream = stream
        self.result = result
        msg = f"Pipe exception for {list(command)}: {stream}"
        if result is not None:
            msg += f", status: {result.exit_status}"
        super().__init__(msg)


class UnexpectedResultError(PorcelainGitError):
    """git printed something a parser does not understand."""

    __match_args__ = ("line", "index")

    def __init__(self, message: str, *, line: str, index: int, output: str) -> None:
        self.line = line
        self.index = index
        self.output = output
        super().__init__(f"{message} at line {index}: {line!r}")
