"""Login, registration and logout on top of the server-side session.

Every privilege change (login, registration, logout) regenerates the session
identifier, so an identifier known before the change is useless after it.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from edublog import credentials
from edublog.errors import AuthFailure
from edublog.models import User
from edublog.sessions import ServerSession

logger = logging.getLogger(__name__)

SESSION_USER_KEY = "user_id"


@dataclass
class SessionHandle:
    session_id: str
    user_id: int
    remember: bool = False


@dataclass
class AuthContext:
    """Per-request view of who is signed in, passed explicitly to views."""

    session: ServerSession
    user: Optional[User] = None

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None


class SessionManager:
    def login(self, session, email, password, remember=False) -> SessionHandle:
        """
        Authenticate and bind the user to a regenerated session.

        Unknown email and wrong password both raise the same AuthFailure.
        """
        user = credentials.find_by_email(email)
        if not credentials.verify_password(user, password):
            logger.info("Failed login attempt")
            raise AuthFailure()
        handle = self._start(session, user, remember)
        logger.info("User %s logged in", user.id)
        return handle

    def register(self, session, name, email, password) -> SessionHandle:
        user = credentials.create_user(name, email, password)
        return self._start(session, user, remember=False)

    def logout(self, session) -> None:
        user_id = session.get(SESSION_USER_KEY)
        session.invalidate()
        if user_id is not None:
            logger.info("User %s logged out", user_id)

    def current_user(self, session) -> Optional[User]:
        user_id = session.get(SESSION_USER_KEY)
        if user_id is None:
            return None
        user = credentials.get_user(user_id)
        if user is None:
            # bound to an account that no longer exists
            session.pop(SESSION_USER_KEY, None)
        return user

    def context(self, session) -> AuthContext:
        return AuthContext(session=session, user=self.current_user(session))

    def _start(self, session, user, remember) -> SessionHandle:
        session.regenerate()
        session[SESSION_USER_KEY] = user.id
        session.permanent = bool(remember)
        return SessionHandle(session_id=session.sid, user_id=user.id, remember=bool(remember))
