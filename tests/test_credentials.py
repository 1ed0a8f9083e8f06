import pytest
from werkzeug.security import check_password_hash

from edublog import credentials, db
from edublog.errors import ValidationError
from edublog.models import User


def test_create_user_stores_hash_not_plaintext(app):
    with app.app_context():
        user = credentials.create_user("Alice", "alice@example.com", "secret123")

        assert user.password != "secret123"
        assert check_password_hash(user.password, "secret123")
        assert user.created_at is not None


def test_registration_reports_every_bad_field(app):
    with app.app_context():
        with pytest.raises(ValidationError) as excinfo:
            credentials.create_user("", "not-an-email", "short")

    errors = excinfo.value.errors
    assert set(errors) == {"name", "email", "password"}
    assert errors["password"] == ["The password must be at least 8 characters."]


def test_registration_rejects_taken_email(app, make_user):
    make_user(email="alice@example.com")

    with app.app_context():
        with pytest.raises(ValidationError) as excinfo:
            credentials.create_user("Other Alice", "alice@example.com", "secret123")
        assert User.query.count() == 1

    assert excinfo.value.errors == {"email": [credentials.EMAIL_TAKEN]}


def test_email_lookup_is_case_sensitive(app, make_user):
    make_user(email="alice@example.com")

    with app.app_context():
        assert credentials.find_by_email("alice@example.com") is not None
        assert credentials.find_by_email("Alice@Example.com") is None


def test_verify_password(app, make_user):
    user_id = make_user(password="secret123")

    with app.app_context():
        user = db.session.get(User, user_id)
        assert credentials.verify_password(user, "secret123") is True
        assert credentials.verify_password(user, "wrong-password") is False
        assert credentials.verify_password(None, "secret123") is False


def test_new_password_needs_letters_and_digits(app):
    with app.app_context():
        with pytest.raises(ValidationError) as excinfo:
            credentials.validate_new_password("abcdefgh")
        assert excinfo.value.errors["password"] == [
            "The password must contain at least one number."
        ]

        with pytest.raises(ValidationError):
            credentials.validate_new_password("12345678")

        credentials.validate_new_password("abcd1234")


def test_change_password_requires_current_password(app, make_user):
    user_id = make_user(password="oldpass123")

    with app.app_context():
        user = db.session.get(User, user_id)
        with pytest.raises(ValidationError) as excinfo:
            credentials.change_password(user, "wrongpass1", "newpass123")
        assert "current_password" in excinfo.value.errors

        credentials.change_password(user, "oldpass123", "newpass123")
        refreshed = db.session.get(User, user_id)
        assert check_password_hash(refreshed.password, "newpass123")


def test_update_profile_keeps_email_unique(app, make_user):
    make_user(name="Bob", email="bob@example.com")
    alice_id = make_user(name="Alice", email="alice@example.com")

    with app.app_context():
        alice = db.session.get(User, alice_id)
        with pytest.raises(ValidationError) as excinfo:
            credentials.update_profile(alice, "Alice", "bob@example.com")
        assert excinfo.value.errors == {"email": [credentials.EMAIL_TAKEN]}

        # keeping her own address is not a conflict
        credentials.update_profile(alice, "Alice Liddell", "alice@example.com")
        assert db.session.get(User, alice_id).name == "Alice Liddell"
