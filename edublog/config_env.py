import os
from datetime import timedelta
from urllib.parse import quote_plus
from typing import Optional

from dotenv import load_dotenv, dotenv_values

_ENV_LOADED = False
_DOTENV_VALUES = {}

_TRUE_VALUES = {"1", "true", "yes", "on"}


def load_env_once(dotenv_path: Optional[str] = None) -> None:
    """
    Load .env once and keep the raw file values in _DOTENV_VALUES.
    """
    global _ENV_LOADED, _DOTENV_VALUES
    if _ENV_LOADED:
        return
    path = dotenv_path or os.path.join(os.getcwd(), ".env")
    # into os.environ so Flask and its extensions see it too
    load_dotenv(path)
    # raw .env values, without shell overrides
    _DOTENV_VALUES = dotenv_values(path)
    _ENV_LOADED = True


def _first_nonempty(*vals: Optional[str]) -> Optional[str]:
    for v in vals:
        if v:
            v = v.strip()
            if v:
                return v
    return None


def env_value(key: str, default: Optional[str] = None) -> Optional[str]:
    # ENV first, then the raw .env file
    return _first_nonempty(os.environ.get(key), _DOTENV_VALUES.get(key)) or default


def env_bool(key: str, default: bool = False) -> bool:
    raw = env_value(key)
    if raw is None:
        return default
    return raw.lower() in _TRUE_VALUES


def env_int(key: str, default: int) -> int:
    raw = env_value(key)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def env_minutes(key: str, default_minutes: int) -> timedelta:
    """
    Durations are configured in whole minutes, e.g. RESET_TOKEN_TTL=60.
    """
    return timedelta(minutes=env_int(key, default_minutes))


def _normalize_pg(url: Optional[str]) -> Optional[str]:
    if url and url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


def _mysql_from_parts() -> Optional[str]:
    """
    Build a MySQL DSN from ENV/.env parts:
      MYSQL_USER / MYSQL_USERNAME
      MYSQL_PASSWORD
      MYSQL_HOST (default 127.0.0.1)
      MYSQL_PORT (default 3306)
      MYSQL_DB / MYSQL_DATABASE
      MYSQL_CHARSET (default utf8mb4)
    """
    user = _first_nonempty(env_value("MYSQL_USER"), env_value("MYSQL_USERNAME"))
    pwd = env_value("MYSQL_PASSWORD", "")
    host = env_value("MYSQL_HOST", "127.0.0.1")
    port = env_value("MYSQL_PORT", "3306")
    db = _first_nonempty(env_value("MYSQL_DB"), env_value("MYSQL_DATABASE"))
    charset = env_value("MYSQL_CHARSET", "utf8mb4")

    if not (user and db):
        return None

    pwd_q = quote_plus(pwd or "")
    return f"mysql+pymysql://{user}:{pwd_q}@{host}:{port}/{db}?charset={charset}"


def resolve_database_uri() -> str:
    """
    Resolution order:
      1) ENV SQLALCHEMY_DATABASE_URI
      2) .env SQLALCHEMY_DATABASE_URI
      3) .env DATABASE_URL
      4) ENV DATABASE_URL
      5) assembled from MYSQL_* (ENV/.env)
      6) fallback sqlite:///instance/edublog.db
    postgres:// is normalized to postgresql://
    """
    v1 = os.environ.get("SQLALCHEMY_DATABASE_URI")
    v2 = _DOTENV_VALUES.get("SQLALCHEMY_DATABASE_URI")
    url = _first_nonempty(v1, v2)
    if url:
        return _normalize_pg(url)

    v3 = _DOTENV_VALUES.get("DATABASE_URL")
    v4 = os.environ.get("DATABASE_URL")
    url = _first_nonempty(v3, v4)
    if url:
        return _normalize_pg(url)

    url = _mysql_from_parts()
    if url:
        return url

    inst = os.path.abspath(os.path.join(os.getcwd(), "instance"))
    os.makedirs(inst, exist_ok=True)
    return f"sqlite:///{os.path.join(inst, 'edublog.db')}"


def resolve_secret_key() -> str:
    """
    SECRET_KEY: ENV first, then .env, finally a development fallback.
    """
    return _first_nonempty(os.environ.get("SECRET_KEY"),
                           _DOTENV_VALUES.get("SECRET_KEY"),
                           "dev-secret-key")  # never in production
