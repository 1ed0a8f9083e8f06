"""User persistence, input validation and password hashing.

This module is the only writer of the users table.
"""
import logging
import re
from functools import lru_cache

from email_validator import EmailNotValidError, validate_email
from flask import current_app
from sqlalchemy.exc import IntegrityError
from werkzeug.security import check_password_hash, generate_password_hash

from edublog import db
from edublog.errors import ValidationError
from edublog.models import User

logger = logging.getLogger(__name__)

MAX_FIELD_LENGTH = 255
MIN_PASSWORD_LENGTH = 8
DEFAULT_HASH_METHOD = "pbkdf2:sha256"

EMAIL_TAKEN = "The email has already been taken."

_LETTER_RE = re.compile(r"[A-Za-z]")
_DIGIT_RE = re.compile(r"\d")


def _add_error(errors, field, message):
    errors.setdefault(field, []).append(message)


def _check_name(errors, name):
    if not name:
        _add_error(errors, "name", "The name field is required.")
    elif len(name) > MAX_FIELD_LENGTH:
        _add_error(errors, "name", "The name may not be greater than 255 characters.")


def _check_email(errors, email, field="email"):
    if not email:
        _add_error(errors, field, "The email field is required.")
        return
    if len(email) > MAX_FIELD_LENGTH:
        _add_error(errors, field, "The email may not be greater than 255 characters.")
        return
    try:
        validate_email(email, check_deliverability=False)
    except EmailNotValidError:
        _add_error(errors, field, "The email must be a valid email address.")


def _check_password(errors, password, strong=False, field="password"):
    if not password:
        _add_error(errors, field, "The password field is required.")
        return
    if len(password) < MIN_PASSWORD_LENGTH:
        _add_error(errors, field, "The password must be at least 8 characters.")
    if strong:
        if not _LETTER_RE.search(password):
            _add_error(errors, field, "The password must contain at least one letter.")
        if not _DIGIT_RE.search(password):
            _add_error(errors, field, "The password must contain at least one number.")


def _raise_if(errors):
    if errors:
        raise ValidationError(errors=errors)


def validate_email_address(email):
    errors = {}
    _check_email(errors, email)
    _raise_if(errors)


def validate_new_password(password):
    """Strength rules for reset and change: 8+ characters, letters and digits."""
    errors = {}
    _check_password(errors, password, strong=True)
    _raise_if(errors)


def validate_registration(name, email, password):
    errors = {}
    _check_name(errors, name)
    _check_email(errors, email)
    _check_password(errors, password)
    if "email" not in errors and find_by_email(email) is not None:
        _add_error(errors, "email", EMAIL_TAKEN)
    _raise_if(errors)


def hash_password(password):
    method = current_app.config.get("PASSWORD_HASH_METHOD", DEFAULT_HASH_METHOD)
    return generate_password_hash(password, method=method)


@lru_cache(maxsize=4)
def _dummy_hash(method):
    return generate_password_hash("timing-equalizer-password", method=method)


def verify_password(user, password):
    """
    Constant-time hash check. A missing user still pays for one hash
    comparison so response timing does not reveal whether the email exists.
    """
    if user is None:
        method = current_app.config.get("PASSWORD_HASH_METHOD", DEFAULT_HASH_METHOD)
        check_password_hash(_dummy_hash(method), password or "")
        return False
    return check_password_hash(user.password, password or "")


def find_by_email(email):
    if not email:
        return None
    return User.query.filter_by(email=email).first()


def get_user(user_id):
    if user_id is None:
        return None
    return db.session.get(User, user_id)


def create_user(name, email, password):
    validate_registration(name, email, password)
    user = User(name=name, email=email, password=hash_password(password))
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        # lost a race against a concurrent registration for the same email
        db.session.rollback()
        raise ValidationError.for_field("email", EMAIL_TAKEN)
    logger.info("Registered user %s", user.id)
    return user


def update_password(user, password):
    user.password = hash_password(password)
    db.session.commit()
    logger.info("Password updated for user %s", user.id)
    return user


def change_password(user, current_password, new_password):
    if not current_password or not verify_password(user, current_password):
        raise ValidationError.for_field(
            "current_password", "The current password you provided is incorrect."
        )
    validate_new_password(new_password)
    return update_password(user, new_password)


def update_profile(user, name, email):
    errors = {}
    _check_name(errors, name)
    _check_email(errors, email)
    if "email" not in errors and email != user.email:
        existing = find_by_email(email)
        if existing is not None and existing.id != user.id:
            _add_error(errors, "email", EMAIL_TAKEN)
    _raise_if(errors)

    user.name = name
    user.email = email
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ValidationError.for_field("email", EMAIL_TAKEN)
    return user
