from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

from tuiprobe.config import settings
from tuiprobe.errors import WaitTimeoutError

T = TypeVar("T")


def wait_for(
    predicate: Callable[[], T],
    *,
    timeout: float | None = None,
    interval: float | None = None,
    description: str = "condition",
    on_poll: Callable[[float], None] | None = None,
    describe_failure: Callable[[], str] | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Poll ``predicate`` until it returns a truthy value and return that value.

    ``on_poll`` runs before every evaluation with the time left in the budget;
    the harness uses it to pull pending pty output into the emulator. The
    predicate is always evaluated at least once, even with a zero timeout.
    ``describe_failure`` supplies the screen dump attached to the timeout error.
    """
    budget = settings.wait_timeout if timeout is None else timeout
    step = settings.poll_interval if interval is None else interval
    deadline = clock() + budget
    attempts = 0
    while True:
        remaining = max(deadline - clock(), 0.0)
        if on_poll is not None:
            on_poll(min(step, remaining))
        attempts += 1
        result = predicate()
        if result:
            logging.debug("Condition %s met after %s polls", description, attempts)
            return result
        if clock() >= deadline:
            break
        sleep(min(step, max(deadline - clock(), 0.0)))
    raise WaitTimeoutError(
        description,
        budget,
        last_screen=describe_failure() if describe_failure is not None else None,
    )
