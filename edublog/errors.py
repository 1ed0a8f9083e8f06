"""Failure modes of the authentication and password-reset flows.

Identity-revealing failures (AuthFailure, TokenInvalid, TokenExpired) carry
fixed generic messages and no field, so callers cannot tell which condition
failed. Only ValidationError names fields.
"""

INVALID_RESET_LINK = "This password reset link is invalid or has expired."


class AuthError(Exception):
    status_code = 422
    message = "The request could not be processed."

    def __init__(self, message=None, errors=None):
        super().__init__(message or self.message)
        self.message = message or self.message
        self.errors = errors or {}

    def to_dict(self):
        return {"message": self.message, "errors": self.errors}


class ValidationError(AuthError):
    message = "The given data was invalid."

    @classmethod
    def for_field(cls, field, message):
        return cls(errors={field: [message]})

    @classmethod
    def from_form(cls, form):
        errors = {
            name: list(messages)
            for name, messages in form.errors.items()
            if name != "csrf_token"
        }
        return cls(errors=errors)


class AuthFailure(AuthError):
    message = "These credentials do not match our records."


class TokenInvalid(AuthError):
    message = INVALID_RESET_LINK


class TokenExpired(AuthError):
    message = INVALID_RESET_LINK


class RateLimited(AuthError):
    status_code = 429
    message = (
        "You have already requested a password reset in the last 12 hours. "
        "Please try again later."
    )


class DeliveryFailure(Exception):
    """Raised by notifiers; logged by dispatch and never shown to users."""
