"""Ordered fallback and bounded polling helpers.

``first_success`` runs labelled attempts in order and returns the first
result; ``poll_until`` repeats a probe with a fixed delay. Both only catch
``Exception``, so task cancellation always propagates.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Iterable, TypeVar

from questboard.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Attempt(Generic[T]):
    label: str
    run: Callable[[], Awaitable[T]]


@dataclass(frozen=True)
class AttemptFailure:
    label: str
    error: Exception

    def to_dict(self) -> dict[str, str]:
        return {
            "label": self.label,
            "error": f"{type(self.error).__name__}: {self.error}",
        }


class AttemptsExhausted(Exception):
    """Every attempt failed; ``failures`` keeps them in the order tried."""

    def __init__(self, failures: list[AttemptFailure]):
        self.failures = failures
        labels = ", ".join(f.label for f in failures) or "none"
        super().__init__(f"All {len(failures)} attempts failed ({labels})")

    @property
    def last_error(self) -> Exception | None:
        return self.failures[-1].error if self.failures else None

    def trail(self) -> list[dict[str, str]]:
        return [f.to_dict() for f in self.failures]


async def first_success(attempts: Iterable[Attempt[T]]) -> T:
    """Return the result of the first attempt that does not raise."""
    failures: list[AttemptFailure] = []
    for attempt in attempts:
        try:
            result = await attempt.run()
        except Exception as exc:
            failures.append(AttemptFailure(attempt.label, exc))
            logger.info("fallback_attempt_failed", label=attempt.label, error=str(exc))
            continue
        if failures:
            logger.info(
                "fallback_attempt_succeeded",
                label=attempt.label,
                failed_before=len(failures),
            )
        return result
    raise AttemptsExhausted(failures)


async def poll_until(
    probe: Callable[[], Awaitable[bool]],
    max_attempts: int,
    interval: float,
) -> bool:
    """Call ``probe`` until it returns True, at most ``max_attempts`` times.

    Sleeps ``interval`` seconds between calls. Returns False when the budget
    runs out without the probe succeeding.
    """
    for attempt in range(max_attempts):
        if await probe():
            return True
        if attempt < max_attempts - 1:
            await asyncio.sleep(interval)
    return False
