"""Single-use, time-limited password reset tokens.

Per email the token moves absent -> active -> consumed | expired. Expiry is
detected when a token is validated; nothing sweeps in the background except
the optional ``flask auth prune`` command.
"""
import hashlib
import hmac
import logging
import secrets
from datetime import timedelta
from urllib.parse import urlencode

from flask import current_app, has_request_context, request
from sqlalchemy import delete
from sqlalchemy.dialects import mysql, postgresql, sqlite

from edublog import credentials, db
from edublog import time_utils
from edublog.errors import RateLimited, TokenExpired, TokenInvalid
from edublog.models import PasswordResetToken
from edublog.notifier import dispatch
from edublog.rate_limit import RateLimiter
from edublog.sessions import destroy_user_sessions

logger = logging.getLogger(__name__)

# token_urlsafe(48) yields 64 URL-safe characters (384 bits)
TOKEN_BYTES = 48

RESET_SUBJECT = "Reset Your Password - {app_name}"
RESET_BODY = (
    "Hello,\n\n"
    "You requested a password reset for your {app_name} account.\n\n"
    "Click the link below to reset your password:\n{link}\n\n"
    "This link will expire in {minutes} minutes.\n\n"
    "If you didn't request this reset, please ignore this email.\n\n"
    "Best regards,\n{app_name} Team"
)


def _digest(token):
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class PasswordResetService:
    def __init__(
        self,
        limiter: RateLimiter,
        notifier,
        *,
        token_ttl: timedelta = timedelta(hours=1),
        app_url: str = "",
        app_name: str = "Educational Blog",
        background: bool = True,
    ):
        self.limiter = limiter
        self.notifier = notifier
        self.token_ttl = token_ttl
        self.app_url = app_url
        self.app_name = app_name
        self.background = background

    @classmethod
    def from_app(cls, app=None):
        app = app or current_app
        config = app.config
        return cls(
            RateLimiter(config["PASSWORD_RESET_THROTTLE"]),
            app.extensions["edublog.notifier"],
            token_ttl=config["RESET_TOKEN_TTL"],
            app_url=config.get("APP_URL", ""),
            app_name=config.get("APP_NAME", "Educational Blog"),
            background=config.get("MAIL_ASYNC", True),
        )

    # -- requesting ---------------------------------------------------------

    def request_reset(self, email, ip):
        """
        Issue a reset link for ``email`` if it belongs to a user.

        Returns nothing either way: a known and an unknown email are
        indistinguishable to the caller. Only throttling is reported, via
        RateLimited, and it is checked before any token work happens.
        """
        if self.limiter.is_throttled(ip):
            logger.info("Password reset throttled for %s", ip)
            raise RateLimited()

        credentials.validate_email_address(email)

        if not self.limiter.acquire(ip):
            raise RateLimited()

        user = credentials.find_by_email(email)
        if user is None:
            logger.info("Password reset requested for an unknown email from %s", ip)
            return

        token = self._issue_token(email)
        subject = RESET_SUBJECT.format(app_name=self.app_name)
        body = RESET_BODY.format(
            app_name=self.app_name,
            link=self.reset_link(email, token),
            minutes=int(self.token_ttl.total_seconds() // 60),
        )
        dispatch(self.notifier, email, subject, body, background=self.background)
        logger.info("Password reset link issued for user %s", user.id)

    def _issue_token(self, email):
        token = secrets.token_urlsafe(TOKEN_BYTES)
        self._upsert(email, _digest(token), time_utils.utc_now())
        return token

    def _upsert(self, email, digest, now):
        table = PasswordResetToken.__table__
        values = {"email": email, "token": digest, "created_at": now}
        dialect = db.session.get_bind().dialect.name

        if dialect == "sqlite":
            stmt = sqlite.insert(table).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[table.c.email],
                set_={"token": stmt.excluded.token, "created_at": stmt.excluded.created_at},
            )
        elif dialect == "postgresql":
            stmt = postgresql.insert(table).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[table.c.email],
                set_={"token": stmt.excluded.token, "created_at": stmt.excluded.created_at},
            )
        elif dialect in ("mysql", "mariadb"):
            stmt = mysql.insert(table).values(**values)
            stmt = stmt.on_duplicate_key_update(
                token=stmt.inserted.token, created_at=stmt.inserted.created_at
            )
        else:
            db.session.merge(PasswordResetToken(**values))
            db.session.commit()
            return

        db.session.execute(stmt)
        db.session.commit()

    def reset_link(self, email, token):
        base = self.app_url
        if not base and has_request_context():
            base = request.host_url
        query = urlencode({"token": token, "email": email})
        return f"{(base or '').rstrip('/')}/forgot-password?{query}"

    # -- validating and consuming ------------------------------------------

    def validate_token(self, email, token):
        """
        Return the stored record when ``token`` is the current token for
        ``email`` and still inside its window.

        Raises TokenInvalid when there is no record or the token does not
        match (a superseded token included). Raises TokenExpired when the
        record is older than the window; the record is deleted first.
        """
        record = db.session.get(PasswordResetToken, email) if email else None
        if record is None or not token or not hmac.compare_digest(record.token, _digest(token)):
            raise TokenInvalid()

        if record.age(time_utils.utc_now()) > self.token_ttl:
            db.session.delete(record)
            db.session.commit()
            logger.info("Expired password reset token purged for %s", email)
            raise TokenExpired()
        return record

    def is_reset_link_valid(self, email, token):
        try:
            self.validate_token(email, token)
        except (TokenInvalid, TokenExpired):
            return False
        return True

    def reset_password(self, email, token, new_password, ip=None):
        """
        Validate again (an earlier "link is valid" page proves nothing),
        consume the token and store the new password hash in one commit.
        """
        credentials.validate_new_password(new_password)
        self.validate_token(email, token)

        user = credentials.find_by_email(email)
        if user is None:
            self._delete_token(email)
            db.session.commit()
            raise TokenInvalid()

        table = PasswordResetToken.__table__
        consumed = db.session.execute(
            delete(table).where(table.c.email == email, table.c.token == _digest(token))
        )
        if consumed.rowcount != 1:
            # consumed or replaced by a concurrent request
            db.session.rollback()
            raise TokenInvalid()

        credentials.update_password(user, new_password)
        # sessions opened with the old password do not survive the reset
        destroy_user_sessions(user.id)

        if ip:
            self.limiter.clear(ip)
        logger.info("Password reset completed for user %s", user.id)
        return user

    def _delete_token(self, email):
        db.session.execute(
            delete(PasswordResetToken.__table__).where(
                PasswordResetToken.__table__.c.email == email
            )
        )

    def prune_expired(self):
        cutoff = time_utils.utc_now() - self.token_ttl
        deleted = PasswordResetToken.query.filter(
            PasswordResetToken.created_at < cutoff
        ).delete()
        db.session.commit()
        return deleted
