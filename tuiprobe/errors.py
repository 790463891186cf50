from __future__ import annotations


class HarnessError(Exception):
    pass


class SpawnError(HarnessError):
    """The pty or the child process could not be created."""


class TeardownError(HarnessError):
    """The child process would not terminate cleanly."""


class WaitTimeoutError(HarnessError, TimeoutError):
    """A wait-for-condition exceeded its budget."""

    def __init__(self, description: str, timeout: float, last_screen: str | None = None) -> None:
        self.description = description
        self.timeout = timeout
        self.last_screen = last_screen
        message = f"Timed out after {timeout:.2f}s waiting for {description}"
        if last_screen is not None:
            message += f"\n--- screen ---\n{last_screen}\n--------------"
        super().__init__(message)


class TestTimeoutError(WaitTimeoutError):
    """The per-test budget expired; the session has been aborted."""

    __test__ = False


class MismatchError(HarnessError, AssertionError):
    """A rendering disagrees with its stored snapshot."""

    def __init__(self, name: str, expected: str | None, actual: str, diff: str) -> None:
        self.name = name
        self.expected = expected
        self.actual = actual
        self.diff = diff
        if expected is None:
            message = f"No stored snapshot for {name!r} (verify mode)\n--- actual ---\n{actual}"
        else:
            message = f"Snapshot {name!r} does not match\n{diff}"
        super().__init__(message)
