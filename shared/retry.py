"""
Bounded retry with a per-attempt deadline.

Usage:
    from shared.retry import attempt

    reply = attempt(5, 3, lambda deadline: conn.recv(deadline))
    if reply is None:
        ...  # every attempt timed out or faulted

The action receives the attempt's Deadline and is expected to bound its
blocking calls with ``deadline.remaining()``; a result delivered after the
deadline is discarded like a timeout.
"""

from __future__ import annotations
import time
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, Type, TypeVar

from shared.log import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Deadline:
    expires_at: float  # time.monotonic() based

    @classmethod
    def after(cls, seconds: float) -> "Deadline":
        return cls(time.monotonic() + seconds)

    def remaining(self) -> float:
        return max(0.0, self.expires_at - time.monotonic())

    def expired(self) -> bool:
        return time.monotonic() >= self.expires_at


def attempt(
    wait_time: float,
    retries: int,
    action: Callable[[Deadline], T],
    retry_on: Tuple[Type[BaseException], ...] = (OSError,),
) -> Optional[T]:
    """
    Run ``action`` up to ``retries`` times, each bounded by ``wait_time`` seconds.

    Args:
        wait_time: Per-attempt deadline in seconds
        retries: Attempt budget; 0 performs no attempts
        action: Callable taking the attempt's Deadline
        retry_on: Exceptions that fail an attempt instead of propagating

    Returns:
        The first result produced within its deadline, or None once the
        budget is exhausted. Attempts are sequential with no backoff.
    """
    for n in range(1, retries + 1):
        deadline = Deadline.after(wait_time)
        try:
            result = action(deadline)
        except retry_on as e:
            logger.debug(f"Attempt {n}/{retries} failed: {e}")
            continue

        if deadline.expired():
            logger.debug(f"Attempt {n}/{retries} completed after its {wait_time}s deadline; discarded")
            continue
        return result

    return None
