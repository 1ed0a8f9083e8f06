from edublog import db
from edublog import time_utils


def _now():
    return time_utils.utc_now()


class User(db.Model):
    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False)
    password = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=_now, onupdate=_now)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f'<User {self.email}>'


class PasswordResetToken(db.Model):
    __tablename__ = 'password_reset_tokens'

    # one row per email; a new request overwrites the previous token
    email = db.Column(db.String(255), primary_key=True)
    # sha256 hex digest of the emailed token
    token = db.Column(db.String(64), nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=_now)

    def age(self, now=None):
        return (now or _now()) - self.created_at

    def __repr__(self):
        return f'<PasswordResetToken {self.email}>'


class RateLimitEntry(db.Model):
    __tablename__ = 'rate_limit_entries'

    key = db.Column(db.String(191), primary_key=True)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=_now)

    def is_live(self, now=None):
        return self.expires_at > (now or _now())

    def __repr__(self):
        return f'<RateLimitEntry {self.key}>'


class UserSession(db.Model):
    __tablename__ = 'user_sessions'

    id = db.Column(db.String(64), primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id', ondelete='CASCADE'), nullable=True, index=True)
    data = db.Column(db.Text, nullable=False, default='')
    expires_at = db.Column(db.DateTime, nullable=False, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=_now)
    updated_at = db.Column(db.DateTime, nullable=False, default=_now, onupdate=_now)

    user = db.relationship('User', backref=db.backref('sessions', lazy=True, passive_deletes=True))

    def __repr__(self):
        return f'<UserSession {self.id[:8]}>'
