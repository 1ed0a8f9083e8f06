from flask import (
    Blueprint,
    render_template,
    request,
    redirect,
    flash,
    url_for,
    session,
    jsonify,
)
from functools import wraps
from urllib.parse import urlparse, urljoin
import logging

from flask_wtf.csrf import generate_csrf
from wtforms import BooleanField, SubmitField

from edublog import credentials
from edublog.auth import SessionManager
from edublog.errors import AuthError, ValidationError
from edublog.forms import (
    ForgotPasswordForm,
    LoginForm,
    LogoutForm,
    PasswordForm,
    ProfileForm,
    RegisterForm,
    ResetPasswordForm,
)
from edublog.password_reset import PasswordResetService
from edublog.sessions import destroy_user_sessions

logger = logging.getLogger(__name__)

bp = Blueprint("main", __name__)

FORM_ERRORS_KEY = "_form_errors"

RESET_LINK_SENT = (
    "If an account with that email exists, we've sent a password reset link. "
    "Please check your email."
)
PASSWORD_RESET_DONE = (
    "Your password has been reset successfully! Please log in with your new password."
)

session_manager = SessionManager()


def _is_safe_redirect_target(target: str) -> bool:
    if not target:
        return False
    ref_url = urlparse(request.host_url)
    test_url = urlparse(urljoin(request.host_url, target))
    return test_url.scheme in ("http", "https") and ref_url.netloc == test_url.netloc


def _accepts_json():
    return (
        request.is_json
        or (request.accept_mimetypes and request.accept_mimetypes.best == "application/json")
    )


def _client_ip():
    return request.remote_addr or "unknown"


def _auth_context():
    return session_manager.context(session._get_current_object())


def _auth_required_response():
    if _accepts_json():
        return jsonify({"message": "Authentication required."}), 401

    flash("Please log in to access that page.", "warning")
    if request.method == "GET":
        next_target = request.full_path or request.path
    else:
        next_target = request.referrer or request.path
    if not _is_safe_redirect_target(next_target):
        next_target = url_for("main.dashboard")
    return redirect(url_for("main.login", next=next_target))


def login_required(view_func):
    @wraps(view_func)
    def wrapped_view(*args, **kwargs):
        auth = _auth_context()
        if not auth.is_authenticated:
            return _auth_required_response()
        return view_func(*args, auth=auth, **kwargs)

    return wrapped_view


def guest_only(view_func):
    @wraps(view_func)
    def wrapped_view(*args, **kwargs):
        auth = _auth_context()
        if auth.is_authenticated:
            if _accepts_json():
                return jsonify({"message": "Already authenticated."}), 409
            return redirect(url_for("main.dashboard"))
        return view_func(*args, auth=auth, **kwargs)

    return wrapped_view


def _safe_next_url(default_endpoint="main.dashboard", candidate=None):
    target = candidate or request.args.get("next")
    if target and _is_safe_redirect_target(target):
        return target
    return url_for(default_endpoint)


def _back_url(default_endpoint="main.index"):
    if request.referrer and _is_safe_redirect_target(request.referrer):
        return request.referrer
    if request.method == "GET":
        return url_for(default_endpoint)
    return request.path


def _validated(form):
    # JSON bodies can carry numbers, lists or objects where forms expect text
    for field in form:
        if isinstance(field, (BooleanField, SubmitField)):
            continue
        if any(not isinstance(value, str) for value in field.raw_data or ()):
            label = field.name.replace("_", " ")
            raise ValidationError.for_field(field.name, f"The {label} must be a string.")
    if not form.validate_on_submit():
        raise ValidationError.from_form(form)
    return form


def _text(field):
    return (field.data or "").strip()


def _is_put():
    if request.method == "PUT":
        return True
    # HTML forms can only POST; they tunnel PUT through a hidden field
    return request.method == "POST" and (request.form.get("_method") or "").upper() == "PUT"


def _success(message, endpoint=None, *, target=None, status=200, **payload):
    if _accepts_json():
        body = {"message": message}
        body.update(payload)
        return jsonify(body), status
    flash(message, "success")
    return redirect(target or url_for(endpoint))


@bp.app_template_global()
def consume_form_errors():
    return session.pop(FORM_ERRORS_KEY, None) or {}


@bp.errorhandler(AuthError)
def handle_auth_error(exc):
    if _accepts_json():
        return jsonify(exc.to_dict()), exc.status_code

    flash(exc.message, "danger")
    if exc.errors:
        session[FORM_ERRORS_KEY] = exc.errors
    return redirect(_back_url())


@bp.route("/")
def index():
    auth = _auth_context()
    if _accepts_json():
        return jsonify({"user": auth.user.to_dict() if auth.user else None})
    return render_template("index.html", auth=auth)


@bp.route("/dashboard")
@login_required
def dashboard(auth):
    if _accepts_json():
        return jsonify({"user": auth.user.to_dict()})
    return render_template("dashboard.html", auth=auth, logout_form=LogoutForm())


@bp.route("/login", methods=["GET", "POST"])
@guest_only
def login(auth):
    form = LoginForm()
    next_value = request.args.get("next")

    if request.method == "POST":
        _validated(form)
        next_value = request.form.get("next") or next_value
        handle = session_manager.login(
            auth.session,
            form.email.data,
            form.password.data,
            remember=bool(form.remember.data),
        )
        user = credentials.get_user(handle.user_id)
        return _success(
            f"Welcome back, {user.name}!",
            target=_safe_next_url(candidate=next_value),
            user=user.to_dict(),
        )

    limiter = PasswordResetService.from_app().limiter
    can_reset_password = not limiter.is_throttled(_client_ip())
    if _accepts_json():
        return jsonify({"can_reset_password": can_reset_password, "csrf_token": generate_csrf()})
    return render_template(
        "login.html",
        form=form,
        next=next_value,
        can_reset_password=can_reset_password,
        auth=auth,
    )


@bp.route("/register", methods=["GET", "POST"])
@guest_only
def register(auth):
    form = RegisterForm()

    if request.method == "POST":
        _validated(form)
        handle = session_manager.register(
            auth.session,
            _text(form.name),
            _text(form.email),
            form.password.data,
        )
        user = credentials.get_user(handle.user_id)
        return _success(
            f"Welcome to our blog, {user.name}! Your account has been created successfully.",
            "main.dashboard",
            status=201,
            user=user.to_dict(),
        )

    return render_template("register.html", form=form, auth=auth)


@bp.route("/logout", methods=["POST"])
@login_required
def logout(auth):
    session_manager.logout(auth.session)
    return _success("You have been logged out successfully.", "main.index")


@bp.route("/forgot-password", methods=["GET", "POST", "PUT"])
@guest_only
def forgot_password(auth):
    service = PasswordResetService.from_app()

    if _is_put():
        form = _validated(ResetPasswordForm())
        service.reset_password(
            form.email.data,
            form.token.data,
            form.password.data,
            ip=_client_ip(),
        )
        return _success(PASSWORD_RESET_DONE, "main.login")

    if request.method == "POST":
        form = _validated(ForgotPasswordForm())
        service.request_reset(_text(form.email), _client_ip())
        # same answer whether or not the email belongs to an account
        return _success(RESET_LINK_SENT, "main.forgot_password")

    token = request.args.get("token")
    email = request.args.get("email")
    token_valid = bool(token and email and service.is_reset_link_valid(email, token))
    mode = "reset" if token_valid else "request"

    if _accepts_json():
        return jsonify(
            {
                "mode": mode,
                "token_valid": token_valid,
                "email": email,
                "csrf_token": generate_csrf(),
            }
        )

    reset_form = ResetPasswordForm(formdata=None, token=token, email=email) if token_valid else None
    return render_template(
        "forgot_password.html",
        mode=mode,
        request_form=ForgotPasswordForm(formdata=None, email=email),
        reset_form=reset_form,
        auth=auth,
    )


@bp.route("/profile", methods=["GET", "POST", "PUT"])
@login_required
def profile(auth):
    user = auth.user

    if request.method in ("POST", "PUT"):
        form = _validated(ProfileForm())
        credentials.update_profile(
            user, _text(form.name), _text(form.email)
        )
        return _success("Profile updated successfully!", "main.profile", user=user.to_dict())

    if _accepts_json():
        return jsonify({"user": user.to_dict()})
    return render_template(
        "profile.html",
        auth=auth,
        profile_form=ProfileForm(formdata=None, obj=user),
        password_form=PasswordForm(formdata=None),
    )


@bp.route("/profile/password", methods=["POST", "PUT"])
@login_required
def update_password(auth):
    form = _validated(PasswordForm())
    credentials.change_password(auth.user, form.current_password.data, form.password.data)
    # other devices keep the old credentials' sessions otherwise
    closed = destroy_user_sessions(auth.user.id, keep_sid=auth.session.sid)
    logger.info("Closed %s other sessions for user %s", closed, auth.user.id)
    return _success("Password updated successfully!", "main.profile")
