import logging
from datetime import timedelta

from sqlalchemy import delete, insert
from sqlalchemy.exc import IntegrityError

from edublog import db
from edublog import time_utils
from edublog.models import RateLimitEntry

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    One throttle flag per client IP with a fixed time-to-live.

    Entries live in the rate_limit_entries table so every worker process
    sees the same state. Keys are namespaced so other flows can share the
    table without colliding.
    """

    def __init__(self, ttl: timedelta, namespace: str = "password_reset"):
        self.ttl = ttl
        self.namespace = namespace

    def _key(self, ip: str) -> str:
        return f"{self.namespace}:{ip or 'unknown'}"

    def is_throttled(self, ip: str) -> bool:
        entry = db.session.get(RateLimitEntry, self._key(ip))
        return entry is not None and entry.is_live(time_utils.utc_now())

    def record_attempt(self, ip: str) -> None:
        now = time_utils.utc_now()
        key = self._key(ip)
        entry = db.session.get(RateLimitEntry, key)
        if entry is None:
            entry = RateLimitEntry(key=key, created_at=now, expires_at=now + self.ttl)
            db.session.add(entry)
        else:
            entry.created_at = now
            entry.expires_at = now + self.ttl
        db.session.commit()

    def acquire(self, ip: str) -> bool:
        """
        Check-and-set in one step: True when no live entry existed and this
        call created one. The primary key decides between concurrent callers.
        """
        now = time_utils.utc_now()
        key = self._key(ip)
        db.session.execute(
            delete(RateLimitEntry).where(
                RateLimitEntry.key == key, RateLimitEntry.expires_at <= now
            )
        )
        try:
            db.session.execute(
                insert(RateLimitEntry).values(
                    key=key, created_at=now, expires_at=now + self.ttl
                )
            )
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            logger.info("Throttle already active for %s", key)
            return False
        return True

    def clear(self, ip: str) -> None:
        RateLimitEntry.query.filter_by(key=self._key(ip)).delete()
        db.session.commit()

    def retry_after(self, ip: str) -> int:
        """Seconds until the entry for ip expires, 0 when not throttled."""
        entry = db.session.get(RateLimitEntry, self._key(ip))
        if entry is None:
            return 0
        remaining = (entry.expires_at - time_utils.utc_now()).total_seconds()
        return max(0, int(remaining))

    def prune(self) -> int:
        deleted = RateLimitEntry.query.filter(
            RateLimitEntry.expires_at <= time_utils.utc_now()
        ).delete()
        db.session.commit()
        return deleted
