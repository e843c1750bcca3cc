"""
Idempotency policy — behavior configuration.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import timedelta
from typing import TYPE_CHECKING

from encore.idempotency._types import DUPLICATE_MESSAGE, Status

if TYPE_CHECKING:
    from encore.config import EncoreSettings


def _delta(
    seconds: float | None,
    minutes: float | None,
    hours: float | None,
    delta: timedelta | None,
) -> timedelta | None:
    if delta is not None:
        return delta
    total_seconds = (seconds or 0) + (minutes or 0) * 60 + (hours or 0) * 3600
    return timedelta(seconds=total_seconds) if total_seconds > 0 else None


@dataclass(frozen=True, slots=True)
class Policy:
    """
    Idempotency policy configuration.

    Fluent builder pattern — chain methods to configure.

    Example:
        policy = (
            Policy()
            .with_lock_ttl(minutes=5)
            .with_result_ttl(hours=24)
            .with_release_on_failure()
        )

    lock_ttl: None keeps the lock until unlock. A crash between lock and
    commit then locks the key out for good; set a TTL in production.

    release_on_failure: False keeps the lock held when the operation
    fails, so retries with the same seq are rejected as duplicates until
    someone forgets the key. True unlocks on failure and lets the caller
    retry with the same seq.
    """

    lock_ttl: timedelta | None = None
    result_ttl: timedelta | None = None
    release_on_failure: bool = False
    duplicate_status: int = Status.DUPLICATE_IDEMPOTENT
    duplicate_message: str = DUPLICATE_MESSAGE

    def with_lock_ttl(
        self,
        *,
        seconds: float | None = None,
        minutes: float | None = None,
        hours: float | None = None,
        delta: timedelta | None = None,
    ) -> Policy:
        """
        Bound how long an uncommitted lock may be held.

        Example:
            .with_lock_ttl(seconds=30)
            .with_lock_ttl(delta=timedelta(minutes=2))
        """
        return replace(self, lock_ttl=_delta(seconds, minutes, hours, delta))

    def with_result_ttl(
        self,
        *,
        seconds: float | None = None,
        minutes: float | None = None,
        hours: float | None = None,
        delta: timedelta | None = None,
    ) -> Policy:
        """
        Set TTL for committed responses.

        After TTL, the same seq executes again.
        """
        return replace(self, result_ttl=_delta(seconds, minutes, hours, delta))

    def with_release_on_failure(self, release: bool = True) -> Policy:
        """Unlock the key when the operation fails."""
        return replace(self, release_on_failure=release)

    def with_duplicate_message(self, message: str) -> Policy:
        """Message put into the rejection response."""
        return replace(self, duplicate_message=message)

    def with_duplicate_status(self, status: int) -> Policy:
        """Status put into the rejection response."""
        return replace(self, duplicate_status=status)

    @classmethod
    def from_settings(cls, settings: EncoreSettings) -> Policy:
        """Build policy from environment configuration."""
        return cls(
            lock_ttl=_delta(settings.lock_ttl_seconds, None, None, None),
            result_ttl=_delta(settings.result_ttl_seconds, None, None, None),
            release_on_failure=settings.release_lock_on_failure,
            duplicate_message=settings.duplicate_message,
        )


__all__ = ("Policy",)
