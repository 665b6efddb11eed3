from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from ..errors import ValidationError
from ..extensions import db
from ..forms import ProfileForm
from ..ratelimit import API, rate_limit

settings_bp = Blueprint("settings", __name__, url_prefix="/settings")


def _profile(user) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "notifications_enabled": bool(user.notifications_enabled),
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


@settings_bp.route("/profile")
@login_required
def profile():
    return jsonify(_profile(current_user))


@settings_bp.route("/profile", methods=["PUT", "POST"])
@login_required
@rate_limit(API)
def update_profile():
    form = ProfileForm()
    if not form.validate_on_submit():
        raise ValidationError("Name is required", sorted(form.errors))
    current_user.name = form.name.data.strip()
    # Only touch the flag when the client sent it.
    payload = request.get_json(silent=True) or request.form
    if "notifications_enabled" in payload:
        current_user.notifications_enabled = form.notifications_enabled.data
    db.session.commit()
    return jsonify({"message": "Profile updated successfully", "data": _profile(current_user)})
