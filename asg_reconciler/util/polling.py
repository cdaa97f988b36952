# Copyright Amazon.com, Inc. or its affiliates. All Rights Reserved.
# SPDX-License-Identifier: Apache-2.0
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class PollStatus(str, Enum):
    SATISFIED = "Satisfied"
    TIMED_OUT = "TimedOut"
    FAILED = "Failed"


@dataclass(frozen=True)
class Pending:
    """returned by a poll attempt whose target condition does not hold yet"""

    reason: str


@dataclass(frozen=True)
class PollResult(Generic[T]):
    status: PollStatus
    value: Optional[T] = None
    reason: str = ""
    error: Optional[Exception] = None
    attempts: int = 0

    @property
    def satisfied(self) -> bool:
        return self.status == PollStatus.SATISFIED

    @property
    def timed_out(self) -> bool:
        return self.status == PollStatus.TIMED_OUT

    @property
    def failed(self) -> bool:
        return self.status == PollStatus.FAILED


@dataclass(frozen=True)
class Backoff:
    min_interval: timedelta = timedelta(milliseconds=500)
    max_interval: timedelta = timedelta(seconds=10)

    def __post_init__(self) -> None:
        if self.min_interval <= timedelta(0):
            raise ValueError(
                f"min_interval must be positive, found {self.min_interval}"
            )
        if self.max_interval < self.min_interval:
            raise ValueError("max_interval must not be less than min_interval")

    def intervals(self) -> "BackoffIterator":
        return BackoffIterator(self)


@dataclass
class BackoffIterator:
    backoff: Backoff
    _next: Optional[float] = None

    def __iter__(self) -> "BackoffIterator":
        return self

    def __next__(self) -> float:
        if self._next is None:
            self._next = self.backoff.min_interval.total_seconds()
        current = self._next
        self._next = min(current * 2, self.backoff.max_interval.total_seconds())
        return current


@dataclass(frozen=True)
class Clock:
    """time source used by every polling loop, swapped out in tests"""

    monotonic: Callable[[], float] = field(default=time.monotonic)
    sleep: Callable[[float], None] = field(default=time.sleep)


def poll_until(
    attempt: Callable[[], "T | Pending"],
    *,
    timeout: timedelta,
    backoff: Backoff = Backoff(),
    clock: Clock = Clock(),
    final_check: bool = False,
) -> PollResult[T]:
    """
    Repeatedly call `attempt` until it returns something other than `Pending`.

    The first attempt is made immediately. Between attempts the loop sleeps for the
    next backoff interval, never past the deadline. An exception raised by `attempt`
    stops polling at once and is returned as a FAILED result; callers that want to
    retry on an error must catch it inside `attempt` and return `Pending`.

    :param attempt: callable returning the satisfied value or a `Pending` reason
    :param timeout: how long to keep polling
    :param backoff: interval policy between attempts
    :param clock: time source
    :param final_check: make one more attempt once the deadline has passed
    :return: SATISFIED with the value, TIMED_OUT with the last pending reason, or
        FAILED with the error
    """
    deadline = clock.monotonic() + timeout.total_seconds()
    intervals = backoff.intervals()
    attempts = 0
    reason = ""

    while True:
        attempts += 1
        try:
            outcome = attempt()
        except Exception as err:
            return PollResult(
                status=PollStatus.FAILED,
                reason=str(err),
                error=err,
                attempts=attempts,
            )

        if not isinstance(outcome, Pending):
            return PollResult(
                status=PollStatus.SATISFIED, value=outcome, attempts=attempts
            )

        reason = outcome.reason
        remaining = deadline - clock.monotonic()
        if remaining <= 0:
            if final_check:
                final_check = False
                continue
            return PollResult(
                status=PollStatus.TIMED_OUT, reason=reason, attempts=attempts
            )

        clock.sleep(min(next(intervals), remaining))
