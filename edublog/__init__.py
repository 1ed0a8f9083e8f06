from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_wtf import CSRFProtect
from werkzeug.middleware.proxy_fix import ProxyFix

from .config import Config
from .time_utils import member_since, utc_now

db = SQLAlchemy()
migrate = Migrate()
csrf = CSRFProtect()


def create_app(test_config=None):
    app = Flask(__name__)

    # .env and environment first, then explicit overrides (tests, scripts)
    app.config.from_object(Config())
    if test_config:
        app.config.update(test_config)

    db.init_app(app)
    migrate.init_app(app, db)
    csrf.init_app(app)

    from .notifier import notifier_from_config
    from .sessions import DatabaseSessionInterface

    app.session_interface = DatabaseSessionInterface()
    app.extensions["edublog.notifier"] = notifier_from_config(app.config)

    # request.remote_addr is the rate-limit key; behind proxies it must come
    # from X-Forwarded-For
    proxies = app.config.get("TRUSTED_PROXY_COUNT") or 0
    if proxies:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=proxies, x_proto=proxies, x_host=proxies)

    app.jinja_env.filters["member_since"] = member_since

    from .routes import bp
    from .cli import auth_cli

    app.register_blueprint(bp)
    app.cli.add_command(auth_cli)

    @app.context_processor
    def inject_template_globals():
        return {"current_year": utc_now().year, "app_name": app.config["APP_NAME"]}

    @app.shell_context_processor
    def _ctx():
        # models available directly in flask shell
        from . import models

        return {
            "db": db,
            "User": models.User,
            "PasswordResetToken": models.PasswordResetToken,
            "RateLimitEntry": models.RateLimitEntry,
            "UserSession": models.UserSession,
        }

    return app
