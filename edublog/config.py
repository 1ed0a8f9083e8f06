from .config_env import (
    env_bool,
    env_int,
    env_minutes,
    env_value,
    load_env_once,
    resolve_database_uri,
    resolve_secret_key,
)


class Config:
    """Settings read once by create_app; override per instance via test_config."""

    def __init__(self):
        load_env_once()

        self.SECRET_KEY = resolve_secret_key()
        self.SQLALCHEMY_DATABASE_URI = resolve_database_uri()
        self.SQLALCHEMY_TRACK_MODIFICATIONS = False

        # public base URL used in emailed reset links; request host when empty
        self.APP_URL = env_value("APP_URL", "")
        self.APP_NAME = env_value("APP_NAME", "Educational Blog")
        self.LOG_LEVEL = env_value("LOG_LEVEL", "INFO")
        # number of reverse proxies in front of the app (X-Forwarded-For hops)
        self.TRUSTED_PROXY_COUNT = env_int("TRUSTED_PROXY_COUNT", 0)

        # sessions
        self.SESSION_COOKIE_HTTPONLY = True
        self.SESSION_COOKIE_SAMESITE = "Lax"
        self.SESSION_COOKIE_SECURE = env_bool("SESSION_COOKIE_SECURE", False)
        self.SESSION_LIFETIME = env_minutes("SESSION_LIFETIME", 120)
        self.REMEMBER_SESSION_LIFETIME = env_minutes(
            "REMEMBER_SESSION_LIFETIME", 60 * 24 * 30
        )
        self.PERMANENT_SESSION_LIFETIME = self.REMEMBER_SESSION_LIFETIME

        # password reset
        self.RESET_TOKEN_TTL = env_minutes("RESET_TOKEN_TTL", 60)
        self.PASSWORD_RESET_THROTTLE = env_minutes("PASSWORD_RESET_THROTTLE", 60 * 12)

        # CSRF token lives as long as the session
        self.WTF_CSRF_TIME_LIMIT = None

        # outbound mail; LogNotifier is used when MAIL_HOST is empty
        self.MAIL_HOST = env_value("MAIL_HOST", "")
        self.MAIL_PORT = env_int("MAIL_PORT", 587)
        self.MAIL_USERNAME = env_value("MAIL_USERNAME", "")
        self.MAIL_PASSWORD = env_value("MAIL_PASSWORD", "")
        self.MAIL_USE_TLS = env_bool("MAIL_USE_TLS", True)
        self.MAIL_FROM = env_value("MAIL_FROM", "no-reply@example.com")
        self.MAIL_TIMEOUT = env_int("MAIL_TIMEOUT", 30)
        self.MAIL_ASYNC = env_bool("MAIL_ASYNC", True)
