
from flask import Blueprint, current_app, jsonify, session
from flask_login import current_user, login_required, login_user, logout_user
from flask_wtf.csrf import generate_csrf

from ..errors import ValidationError
from ..extensions import db
from ..forms import ChangePasswordForm, LoginForm, RegistrationForm
from ..models import User, utcnow
from ..ratelimit import AUTH, client_key, rate_limit
from ..security import regenerate_session

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


def _form_errors(form) -> ValidationError:
    fields = sorted(form.errors)
    return ValidationError("Invalid input: " + ", ".join(fields), fields)


def _user_payload(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "notifications_enabled": bool(user.notifications_enabled),
    }


@auth_bp.route("/csrf-token")
def csrf_token():
    return jsonify({"csrf_token": generate_csrf()})


@auth_bp.route("/register", methods=["POST"])
@rate_limit(AUTH)
def register():
    if not current_app.config.get("ALLOW_USER_REGISTRATIONS", True):
        return jsonify({"error": "registrations_disabled", "message": "User registrations are disabled."}), 403
    form = RegistrationForm()
    if not form.validate_on_submit():
        raise _form_errors(form)
    email = form.email.data.strip().lower()
    if User.query.filter_by(email=email).first():
        return jsonify({"error": "user_exists", "message": "User already exists"}), 409
    user = User(email=email, name=(form.name.data or "").strip() or None)
    user.set_password(form.password.data)
    db.session.add(user)
    db.session.commit()
    current_app.logger.info("New user registered", extra={"user": user.id, "ip": client_key()})
    return jsonify(_user_payload(user)), 201


@auth_bp.route("/login", methods=["POST"])
@rate_limit(AUTH)
def login():
    form = LoginForm()
    if not form.validate_on_submit():
        raise _form_errors(form)
    user = User.query.filter_by(email=form.email.data.strip().lower()).first()
    if not user or not user.check_password(form.password.data):
        if user:
            user.mark_failed_login()
            db.session.commit()
        current_app.logger.warning(
            "Login failed",
            extra={"user": form.email.data, "ip": client_key()},
        )
        return jsonify({"error": "invalid_credentials", "message": "Invalid credentials"}), 401
    user.reset_failures()
    login_user(user, remember=form.remember.data, fresh=True)
    regenerate_session(session)
    user.last_login_at = utcnow()
    db.session.commit()
    return jsonify(_user_payload(user))


@auth_bp.route("/logout", methods=["POST"])
def logout():
    lang = session.get("lang")
    logout_user()
    session.clear()
    if lang:
        session["lang"] = lang
    return jsonify({"success": True})


@auth_bp.route("/change-password", methods=["POST"])
@login_required
@rate_limit(AUTH)
def change_password():
    form = ChangePasswordForm()
    if not form.validate_on_submit():
        raise _form_errors(form)
    if not current_user.check_password(form.current_password.data):
        current_app.logger.warning(
            "Password change rejected",
            extra={"user": current_user.id, "ip": client_key()},
        )
        raise ValidationError("Current password is incorrect", ["current_password"])
    current_user.set_password(form.new_password.data)
    db.session.commit()
    current_app.logger.info("Password changed", extra={"user": current_user.id})
    return jsonify({"message": "Password changed successfully"})
