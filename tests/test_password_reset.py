from datetime import timedelta

import pytest
from werkzeug.security import check_password_hash

from edublog import db
from edublog.errors import (
    DeliveryFailure,
    RateLimited,
    TokenExpired,
    TokenInvalid,
    ValidationError,
)
from edublog.models import PasswordResetToken, User, UserSession
from edublog.notifier import Notifier
from edublog.password_reset import PasswordResetService

IP = "203.0.113.7"
OTHER_IP = "198.51.100.9"


def _service(app):
    return PasswordResetService.from_app(app)


def test_request_reset_emails_link_with_token_and_email(app, make_user, notifier):
    make_user(email="alice@example.com")

    with app.app_context():
        assert _service(app).request_reset("alice@example.com", IP) is None
        record = db.session.get(PasswordResetToken, "alice@example.com")
        assert record is not None
        stored = record.token

    assert len(notifier.sent) == 1
    message = notifier.sent[0]
    assert message["to"] == "alice@example.com"
    assert "http://blog.local/forgot-password?token=" in message["body"]
    assert "email=alice%40example.com" in message["body"]

    token = notifier.last_token()
    assert len(token) == 64
    # only a digest is persisted
    assert stored != token


def test_unknown_email_is_indistinguishable_but_does_nothing(app, notifier):
    with app.app_context():
        assert _service(app).request_reset("nobody@example.com", IP) is None
        assert PasswordResetToken.query.count() == 0

    assert notifier.sent == []


def test_rate_limit_is_checked_first_for_known_and_unknown_emails(app, make_user):
    make_user(email="alice@example.com")

    with app.app_context():
        service = _service(app)
        service.request_reset("nobody@example.com", IP)

        with pytest.raises(RateLimited):
            service.request_reset("alice@example.com", IP)
        with pytest.raises(RateLimited):
            # throttle wins over input validation
            service.request_reset("not-an-email", IP)
        assert PasswordResetToken.query.count() == 0


def test_malformed_email_is_a_validation_error_and_not_counted(app):
    with app.app_context():
        service = _service(app)
        with pytest.raises(ValidationError) as excinfo:
            service.request_reset("not-an-email", IP)
        assert "email" in excinfo.value.errors
        assert service.limiter.is_throttled(IP) is False


def test_rate_limit_is_per_ip(app, make_user, notifier):
    make_user(email="alice@example.com")
    make_user(name="Bob", email="bob@example.com")

    with app.app_context():
        service = _service(app)
        service.request_reset("alice@example.com", IP)
        service.request_reset("bob@example.com", OTHER_IP)

    assert [m["to"] for m in notifier.sent] == ["alice@example.com", "bob@example.com"]


def test_throttle_lapses_after_twelve_hours(app, make_user, clock):
    make_user(email="alice@example.com")

    with app.app_context():
        service = _service(app)
        service.request_reset("alice@example.com", IP)

        clock.advance(hours=11, minutes=59)
        with pytest.raises(RateLimited):
            service.request_reset("alice@example.com", IP)

        clock.advance(minutes=1)
        service.request_reset("alice@example.com", IP)


def test_token_valid_within_the_hour(app, make_user, notifier, clock):
    make_user(email="alice@example.com")

    with app.app_context():
        service = _service(app)
        service.request_reset("alice@example.com", IP)
        token = notifier.last_token()

        clock.advance(minutes=60)
        assert service.validate_token("alice@example.com", token) is not None
        assert service.is_reset_link_valid("alice@example.com", token) is True


def test_expired_token_is_purged_on_validation(app, make_user, notifier, clock):
    make_user(email="alice@example.com")

    with app.app_context():
        service = _service(app)
        service.request_reset("alice@example.com", IP)
        token = notifier.last_token()

        clock.advance(hours=1, seconds=1)
        with pytest.raises(TokenExpired):
            service.validate_token("alice@example.com", token)
        assert db.session.get(PasswordResetToken, "alice@example.com") is None

        # once purged it is simply unknown
        with pytest.raises(TokenInvalid):
            service.validate_token("alice@example.com", token)


def test_wrong_token_or_email_is_invalid(app, make_user, notifier):
    make_user(email="alice@example.com")

    with app.app_context():
        service = _service(app)
        service.request_reset("alice@example.com", IP)
        token = notifier.last_token()

        with pytest.raises(TokenInvalid):
            service.validate_token("alice@example.com", "x" * 64)
        with pytest.raises(TokenInvalid):
            service.validate_token("bob@example.com", token)
        with pytest.raises(TokenInvalid):
            service.validate_token("alice@example.com", "")


def test_only_newest_token_is_valid(app, make_user, notifier, clock):
    make_user(email="alice@example.com")

    with app.app_context():
        service = _service(app)
        service.request_reset("alice@example.com", IP)
        first = notifier.last_token()

        clock.advance(minutes=5)
        service.request_reset("alice@example.com", OTHER_IP)
        second = notifier.last_token()

        assert first != second
        assert PasswordResetToken.query.count() == 1
        with pytest.raises(TokenInvalid):
            service.validate_token("alice@example.com", first)
        service.validate_token("alice@example.com", second)


def test_reset_password_consumes_token_once(app, make_user, notifier):
    user_id = make_user(email="alice@example.com", password="oldpass123")

    with app.app_context():
        service = _service(app)
        service.request_reset("alice@example.com", IP)
        token = notifier.last_token()

        service.reset_password("alice@example.com", token, "newpass123", ip=IP)

        user = db.session.get(User, user_id)
        assert check_password_hash(user.password, "newpass123")
        assert db.session.get(PasswordResetToken, "alice@example.com") is None

        with pytest.raises(TokenInvalid):
            service.reset_password("alice@example.com", token, "another123", ip=IP)
        assert check_password_hash(db.session.get(User, user_id).password, "newpass123")


def test_reset_password_rejects_weak_password_and_keeps_token(app, make_user, notifier):
    make_user(email="alice@example.com", password="oldpass123")

    with app.app_context():
        service = _service(app)
        service.request_reset("alice@example.com", IP)
        token = notifier.last_token()

        with pytest.raises(ValidationError):
            service.reset_password("alice@example.com", token, "password", ip=IP)
        service.validate_token("alice@example.com", token)


def test_expired_token_cannot_reset(app, make_user, notifier, clock):
    user_id = make_user(email="alice@example.com", password="oldpass123")

    with app.app_context():
        service = _service(app)
        service.request_reset("alice@example.com", IP)
        token = notifier.last_token()

        clock.advance(hours=2)
        with pytest.raises(TokenExpired):
            service.reset_password("alice@example.com", token, "newpass123", ip=IP)
        assert check_password_hash(db.session.get(User, user_id).password, "oldpass123")


def test_reset_clears_throttle_and_closes_sessions(app, make_user, notifier, clock):
    user_id = make_user(email="alice@example.com")

    with app.app_context():
        db.session.add(
            UserSession(
                id="old-device",
                user_id=user_id,
                data="",
                expires_at=clock.now + timedelta(days=1),
            )
        )
        db.session.commit()

        service = _service(app)
        service.request_reset("alice@example.com", IP)
        assert service.limiter.is_throttled(IP)

        service.reset_password("alice@example.com", notifier.last_token(), "newpass123", ip=IP)

        assert service.limiter.is_throttled(IP) is False
        assert db.session.get(UserSession, "old-device") is None


def test_alice_resets_then_replays(app, make_user, notifier, clock):
    make_user(email="alice@example.com", password="oldpass123")

    with app.app_context():
        service = _service(app)
        service.request_reset("alice@example.com", IP)
        t1 = notifier.last_token()

        clock.advance(minutes=30)
        service.reset_password("alice@example.com", t1, "newpass123", ip=IP)
        assert service.limiter.is_throttled(IP) is False

        clock.advance(seconds=1)
        with pytest.raises(TokenInvalid):
            service.reset_password("alice@example.com", t1, "other1234", ip=IP)


def test_alice_second_request_is_throttled_before_token_replacement(app, make_user, notifier, clock):
    make_user(email="alice@example.com")

    with app.app_context():
        service = _service(app)
        service.request_reset("alice@example.com", IP)
        t1 = notifier.last_token()

        clock.advance(minutes=10)
        with pytest.raises(RateLimited):
            service.request_reset("alice@example.com", IP)

        # T1 was not superseded
        service.validate_token("alice@example.com", t1)
    assert len(notifier.sent) == 1


class FailingNotifier(Notifier):
    def send(self, recipient, subject, body):
        raise DeliveryFailure("smtp down")


def test_delivery_failure_is_logged_not_raised(app, make_user, caplog):
    make_user(email="alice@example.com")
    app.extensions["edublog.notifier"] = FailingNotifier()

    with app.app_context():
        _service(app).request_reset("alice@example.com", IP)
        assert db.session.get(PasswordResetToken, "alice@example.com") is not None

    assert "Failed to send email to alice@example.com" in caplog.text


def test_prune_expired_tokens(app, make_user, clock):
    make_user(email="alice@example.com")
    make_user(name="Bob", email="bob@example.com")

    with app.app_context():
        service = _service(app)
        service.request_reset("alice@example.com", IP)
        clock.advance(minutes=45)
        service.request_reset("bob@example.com", OTHER_IP)
        clock.advance(minutes=30)

        assert service.prune_expired() == 1
        assert db.session.get(PasswordResetToken, "bob@example.com") is not None
