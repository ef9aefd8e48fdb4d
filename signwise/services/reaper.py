"""Expired refresh-token cleanup: delete stale, unrevoked, expired Token rows."""

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

from signwise.core.security import utcnow
from signwise.models import Token

if TYPE_CHECKING:
    from signwise.core.config import Settings

DEFAULT_BATCH_SIZE = 1000


class ExpiryReaper:
    """
    Deletes Token rows with expires_at < now and revoked = false, in batches,
    committing after each batch so no long-held locks stall logins or refreshes.
    Revoked rows are left alone.
    """

    def __init__(self, batch_size: int = DEFAULT_BATCH_SIZE, logger: logging.Logger | None = None) -> None:
        self.batch_size = batch_size
        self.logger = logger or logging.getLogger(__name__)

    def sweep(self, session: Session, now: datetime | None = None) -> int:
        """Delete expired unrevoked tokens; returns the number of rows deleted. Idempotent."""
        cutoff = now or utcnow()
        total = 0
        while True:
            ids = [
                token_id
                for (token_id,) in session.query(Token.id)
                .filter(Token.expires_at < cutoff, Token.revoked.is_(False))
                .order_by(Token.id)
                .limit(self.batch_size)
                .all()
            ]
            if not ids:
                break
            deleted = (
                session.query(Token)
                .filter(Token.id.in_(ids), Token.expires_at < cutoff, Token.revoked.is_(False))
                .delete(synchronize_session=False)
            )
            session.commit()
            total += deleted
            if len(ids) < self.batch_size:
                break

        if total > 0:
            self.logger.info(
                "Token reaper run: cutoff=%s, tokens_deleted=%s",
                cutoff.isoformat(),
                total,
            )
        return total


def run_token_reaper(session: Session, settings: "Settings", logger: logging.Logger | None = None) -> int:
    """Run one sweep honoring TOKEN_REAPER_ENABLED and TOKEN_REAPER_BATCH_SIZE."""
    logger = logger or logging.getLogger(__name__)
    if not settings.TOKEN_REAPER_ENABLED:
        logger.info("Token reaper is disabled (TOKEN_REAPER_ENABLED=false); skipping.")
        return 0
    return ExpiryReaper(settings.TOKEN_REAPER_BATCH_SIZE, logger).sweep(session)
