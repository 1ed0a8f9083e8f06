"""Server-side sessions stored in the user_sessions table.

The cookie carries only an opaque random identifier. Because the state
lives on the server, a session can be regenerated (new identifier, old row
deleted) and destroyed outright, which signed client-side cookies cannot do.
"""
import logging
import secrets

from flask.json.tag import TaggedJSONSerializer
from flask.sessions import SessionInterface, SessionMixin
from werkzeug.datastructures import CallbackDict

from edublog import db
from edublog import time_utils
from edublog.models import UserSession

logger = logging.getLogger(__name__)


def new_session_id():
    return secrets.token_urlsafe(32)


class ServerSession(CallbackDict, SessionMixin):
    def __init__(self, initial=None, sid=None, new=False):
        def on_update(self):
            self.modified = True

        super().__init__(initial, on_update)
        self.sid = sid or new_session_id()
        self.new = new
        self.modified = False
        # identifiers whose rows are deleted when the response is saved
        self.stale_sids = []

    def regenerate(self):
        """Move the current state to a fresh identifier; the old one dies."""
        if not self.new:
            self.stale_sids.append(self.sid)
        self.sid = new_session_id()
        self.new = True
        self.modified = True
        return self.sid

    def invalidate(self):
        """Drop every key, including the CSRF token, and regenerate."""
        self.clear()
        return self.regenerate()


class DatabaseSessionInterface(SessionInterface):
    serializer = TaggedJSONSerializer()

    def lifetime(self, app, session):
        if session.permanent:
            return app.config["REMEMBER_SESSION_LIFETIME"]
        return app.config["SESSION_LIFETIME"]

    def open_session(self, app, request):
        sid = request.cookies.get(self.get_cookie_name(app))
        if sid:
            row = db.session.get(UserSession, sid)
            if row is not None:
                if row.expires_at > time_utils.utc_now():
                    data = self.serializer.loads(row.data) if row.data else {}
                    return ServerSession(data, sid=sid)
                db.session.delete(row)
                db.session.commit()
                logger.debug("Expired session discarded")
        return ServerSession(new=True)

    def save_session(self, app, session, response):
        name = self.get_cookie_name(app)
        domain = self.get_cookie_domain(app)
        path = self.get_cookie_path(app)
        response.vary.add("Cookie")

        had_cookie = not session.new or bool(session.stale_sids)
        for stale in session.stale_sids:
            UserSession.query.filter_by(id=stale).delete()
        session.stale_sids = []

        if not session:
            if not session.new:
                UserSession.query.filter_by(id=session.sid).delete()
            if had_cookie:
                response.delete_cookie(name, domain=domain, path=path)
            db.session.commit()
            return

        # sliding expiry: existing sessions are re-stamped on every request
        if not (session.modified or app.config["SESSION_REFRESH_EACH_REQUEST"]):
            db.session.commit()
            return

        row = db.session.get(UserSession, session.sid)
        if row is None:
            row = UserSession(id=session.sid)
            db.session.add(row)
        row.data = self.serializer.dumps(dict(session))
        row.user_id = session.get("user_id")
        row.expires_at = time_utils.utc_now() + self.lifetime(app, session)
        db.session.commit()

        if not (session.new or self.should_set_cookie(app, session)):
            return
        response.set_cookie(
            name,
            session.sid,
            expires=self.get_expiration_time(app, session),
            httponly=self.get_cookie_httponly(app),
            domain=domain,
            path=path,
            secure=self.get_cookie_secure(app),
            samesite=self.get_cookie_samesite(app),
        )


def destroy_user_sessions(user_id, keep_sid=None):
    query = UserSession.query.filter(UserSession.user_id == user_id)
    if keep_sid:
        query = query.filter(UserSession.id != keep_sid)
    deleted = query.delete()
    db.session.commit()
    return deleted


def prune_sessions():
    deleted = UserSession.query.filter(
        UserSession.expires_at <= time_utils.utc_now()
    ).delete()
    db.session.commit()
    return deleted
