"""Login attempt rate limiting derived from the attempt log."""

from __future__ import annotations

import logging
import math
from datetime import timedelta
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tokenkeeper.config import settings
from tokenkeeper.core import clock
from tokenkeeper.core.exceptions import PersistenceError, RateLimitedError
from tokenkeeper.models.security import LoginAttempt
from tokenkeeper.services.token_store import login_attempt_store

logger = logging.getLogger(__name__)

RATE_LIMITED_REASON = "rate_limited"


def normalize_identifier(identifier: str) -> str:
    return identifier.strip().lower()


class LoginRateLimiter:
    """
    Sliding-window lockout keyed independently by identifier and by IP.

    Nothing is counted in process; every check re-reads the attempt log, so
    the limiter is safe to run in any number of workers.
    """

    def __init__(self, max_attempts: Optional[int] = None, window_minutes: Optional[int] = None) -> None:
        self._max_attempts = max_attempts
        self._window_minutes = window_minutes

    @property
    def max_attempts(self) -> int:
        return self._max_attempts if self._max_attempts is not None else settings.MAX_LOGIN_ATTEMPTS

    @property
    def window(self) -> timedelta:
        minutes = self._window_minutes if self._window_minutes is not None else settings.LOGIN_LOCKOUT_WINDOW_MINUTES
        return timedelta(minutes=minutes)

    def _retry_after(self, db: Session, since, now, **key) -> int:
        times = login_attempt_store.failed_attempt_times_since(
            db, since=since, ignore_reasons=[RATE_LIMITED_REASON], **key
        )
        if len(times) < self.max_attempts:
            return 0
        # The key unblocks once enough failures have aged out to drop below the max.
        unblock_at = times[len(times) - self.max_attempts] + self.window
        return max(1, math.ceil((unblock_at - now).total_seconds()))

    def check(self, db: Session, identifier: str, ip_address: str) -> None:
        """
        Raises:
            RateLimitedError: Identifier or IP has reached the failure limit
        """
        now = clock.utcnow()
        since = now - self.window
        try:
            retry_after = max(
                self._retry_after(db, since, now, identifier=normalize_identifier(identifier)),
                self._retry_after(db, since, now, ip_address=ip_address),
            )
        except SQLAlchemyError as exc:
            raise PersistenceError() from exc

        if retry_after > 0:
            raise RateLimitedError(retry_after)

    def remaining_attempts(self, db: Session, identifier: str, ip_address: str) -> int:
        since = clock.utcnow() - self.window
        try:
            counts = [
                login_attempt_store.count_failed_since(
                    db, since=since, identifier=normalize_identifier(identifier), ignore_reasons=[RATE_LIMITED_REASON]
                ),
                login_attempt_store.count_failed_since(
                    db, since=since, ip_address=ip_address, ignore_reasons=[RATE_LIMITED_REASON]
                ),
            ]
        except SQLAlchemyError as exc:
            raise PersistenceError() from exc
        return max(0, self.max_attempts - max(counts))

    def record_attempt(
        self,
        db: Session,
        *,
        identifier: str,
        ip_address: str,
        success: bool,
        reason: Optional[str] = None,
        device_id: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> LoginAttempt:
        """Append an attempt and commit it, together with any pending changes in ``db``."""
        attempt = LoginAttempt(
            identifier=normalize_identifier(identifier),
            ip_address=ip_address,
            success=success,
            reason=reason,
            device_id=device_id,
            user_agent=user_agent,
            created_at=clock.utcnow(),
        )
        try:
            login_attempt_store.append(db, attempt)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise PersistenceError("Failed to record login attempt") from exc
        return attempt


login_rate_limiter = LoginRateLimiter()
