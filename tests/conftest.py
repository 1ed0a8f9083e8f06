# tests/conftest.py
import os
import re
from datetime import datetime, timedelta
from urllib.parse import unquote

import pytest

# --- safe test environment ---
os.environ.setdefault("SECRET_KEY", "test")
# in-memory SQLite so no MySQL is needed in CI
os.environ["SQLALCHEMY_DATABASE_URI"] = "sqlite:///:memory:"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"

# blank MYSQL_* so nothing forces a MySQL DSN
for k in ("MYSQL_HOST", "MYSQL_PORT", "MYSQL_USER", "MYSQL_PASSWORD", "MYSQL_DATABASE"):
    os.environ[k] = ""
os.environ["MAIL_HOST"] = ""

from edublog import create_app, db  # noqa: E402
from edublog import credentials  # noqa: E402
from edublog.notifier import Notifier  # noqa: E402

START = datetime(2025, 6, 9, 9, 0, 0)

TEST_CONFIG = {
    "TESTING": True,
    "WTF_CSRF_ENABLED": False,
    "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
    "MAIL_ASYNC": False,
    "APP_URL": "http://blog.local",
    # cheap hashes keep the suite fast
    "PASSWORD_HASH_METHOD": "pbkdf2:sha256:1000",
}

_TOKEN_RE = re.compile(r"token=([^&\s]+)")


class RecordingNotifier(Notifier):
    def __init__(self):
        self.sent = []

    def send(self, recipient, subject, body):
        self.sent.append({"to": recipient, "subject": subject, "body": body})

    def last_token(self):
        return unquote(_TOKEN_RE.search(self.sent[-1]["body"]).group(1))


class FrozenClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture()
def clock(monkeypatch):
    frozen = FrozenClock(START)
    monkeypatch.setattr("edublog.time_utils.utc_now", frozen)
    return frozen


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def make_app(clock, notifier):
    created = []

    def _make(**overrides):
        a = create_app({**TEST_CONFIG, **overrides})
        a.extensions["edublog.notifier"] = notifier
        with a.app_context():
            db.create_all()
        created.append(a)
        return a

    yield _make

    for a in created:
        with a.app_context():
            db.session.remove()
            db.drop_all()
            db.engine.dispose()


@pytest.fixture()
def app(make_app):
    return make_app()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def runner(app):
    return app.test_cli_runner()


@pytest.fixture()
def make_user(app):
    def _make(name="Alice", email="alice@example.com", password="secret123"):
        with app.app_context():
            user = credentials.create_user(name, email, password)
            return user.id

    return _make


@pytest.fixture()
def current_sid(client, app):
    def _sid():
        cookie = client.get_cookie(app.config["SESSION_COOKIE_NAME"])
        return cookie.value if cookie else None

    return _sid
