"""Failed-login counting and temporary lockout per local AuthMethod."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

from signwise.core.security import as_utc
from signwise.models import AuthMethod
from signwise.services.errors import AccountLocked

if TYPE_CHECKING:
    from signwise.core.config import Settings

MAX_FAILED_ATTEMPTS = 5
LOCKOUT_DURATION = timedelta(minutes=15)


@dataclass(frozen=True)
class LockState:
    failed_attempts: int
    locked_until: datetime | None

    @property
    def locked(self) -> bool:
        return self.locked_until is not None


class AccountLockPolicy:
    """
    Attempts(n) -> Attempts(n+1) on a failed verify, Locked(until) once the
    count reaches the threshold, Attempts(0) on success.

    The counter is updated under a row lock (SELECT ... FOR UPDATE) in a single
    transaction so concurrent failures against the same row never lose an
    increment.
    """

    def __init__(
        self,
        max_failed_attempts: int = MAX_FAILED_ATTEMPTS,
        lockout_duration: timedelta = LOCKOUT_DURATION,
        logger: logging.Logger | None = None,
    ) -> None:
        self.max_failed_attempts = max_failed_attempts
        self.lockout_duration = lockout_duration
        self.logger = logger or logging.getLogger(__name__)

    @classmethod
    def from_settings(cls, settings: "Settings", logger: logging.Logger | None = None) -> "AccountLockPolicy":
        return cls(
            max_failed_attempts=settings.LOGIN_MAX_FAILED_ATTEMPTS,
            lockout_duration=timedelta(minutes=settings.LOGIN_LOCKOUT_MINUTES),
            logger=logger,
        )

    def is_locked(self, method: AuthMethod, now: datetime) -> bool:
        return method.locked_until is not None and now < as_utc(method.locked_until)

    def ensure_not_locked(self, method: AuthMethod, now: datetime) -> None:
        """Fail fast, before any hashing work, while the lock window is open."""
        if self.is_locked(method, now):
            self.logger.warning(
                "Login refused: auth method %s locked until %s",
                method.id,
                as_utc(method.locked_until).isoformat(),
            )
            raise AccountLocked()

    def record_failure(self, db: Session, auth_method_id: int, now: datetime) -> LockState:
        """Increment the failure counter atomically and lock when the threshold is reached. Commits."""
        method = (
            db.query(AuthMethod)
            .filter(AuthMethod.id == auth_method_id)
            .with_for_update()
            .populate_existing()
            .one()
        )
        if method.locked_until is not None and as_utc(method.locked_until) <= now:
            # Previous lock has elapsed; start a fresh window.
            method.failed_attempts = 0
            method.locked_until = None

        method.failed_attempts = (method.failed_attempts or 0) + 1
        if method.failed_attempts >= self.max_failed_attempts:
            method.locked_until = now + self.lockout_duration
            self.logger.warning(
                "Auth method %s locked until %s after %s failed attempts",
                method.id,
                method.locked_until.isoformat(),
                method.failed_attempts,
            )
        else:
            self.logger.info(
                "Failed login for auth method %s (attempt %s of %s)",
                method.id,
                method.failed_attempts,
                self.max_failed_attempts,
            )
        state = LockState(method.failed_attempts, method.locked_until)
        db.commit()
        return state

    def record_success(self, method: AuthMethod, now: datetime) -> None:
        """Reset the counter and stamp last use; persisted by the caller's commit."""
        method.failed_attempts = 0
        method.locked_until = None
        method.last_used_at = now
