import math
from datetime import datetime, timedelta

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from ..errors import ValidationError
from ..lifecycle import get_secret_service
from ..models import utcnow
from ..ratelimit import ACCESS_SECRET, API, CREATE_SECRET, admit_user, client_key, rate_limit


secret_bp = Blueprint("secret", __name__, url_prefix="/api/secrets")

MAX_EXPIRES_HOURS = 24 * 30


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _serialize(summary: dict) -> dict:
    data = dict(summary)
    data["created_at"] = _iso(data.get("created_at"))
    data["expires_at"] = _iso(data.get("expires_at"))
    return data


def _parse_expiry(payload: dict) -> datetime | None:
    raw = payload.get("expires_at")
    if raw not in (None, ""):
        if not isinstance(raw, str):
            raise ValidationError("expires_at must be an ISO 8601 timestamp", ["expires_at"])
        try:
            return datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError("expires_at must be an ISO 8601 timestamp", ["expires_at"]) from None
    hours = payload.get("expires_hours")
    if hours in (None, "", 0):
        return None
    try:
        hours = float(hours)
    except (TypeError, ValueError):
        raise ValidationError("expires_hours must be a number", ["expires_hours"]) from None
    if not math.isfinite(hours) or hours < 0:
        raise ValidationError("expires_hours must be a positive number", ["expires_hours"])
    return utcnow() + timedelta(hours=min(hours, MAX_EXPIRES_HOURS))


@secret_bp.route("", methods=["POST"])
@login_required
@rate_limit(CREATE_SECRET)
def create_secret():
    admit_user("create_secret")
    payload = request.get_json(silent=True) or {}
    secret_text = payload.get("secret_text")
    password = payload.get("password") or None
    if password is not None and not isinstance(password, str):
        raise ValidationError("password must be a string", ["password"])
    one_time_access = payload.get("one_time_access", True)
    if not isinstance(one_time_access, bool):
        raise ValidationError("one_time_access must be a boolean", ["one_time_access"])

    result = get_secret_service().create(
        current_user.id,
        secret_text,
        password=password,
        expires_at=_parse_expiry(payload),
        one_time_access=one_time_access,
    )
    return jsonify({"id": result["id"], "created_at": _iso(result["created_at"])}), 201


@secret_bp.route("/<secret_id>/info")
@rate_limit(ACCESS_SECRET)
def secret_info(secret_id):
    info = get_secret_service().get_info(secret_id)
    return jsonify(_serialize(info))


@secret_bp.route("/<secret_id>/view", methods=["POST"])
@rate_limit(ACCESS_SECRET)
def view_secret(secret_id):
    payload = request.get_json(silent=True) or {}
    password = payload.get("password") or None
    if password is not None and not isinstance(password, str):
        raise ValidationError("password must be a string", ["password"])
    result = get_secret_service().get(secret_id, password=password, viewer_ip=client_key())
    return jsonify(
        {
            "secret_text": result["plaintext"],
            "created_at": _iso(result["created_at"]),
            "one_time_access": result["one_time_access"],
        }
    )


@secret_bp.route("")
@login_required
@rate_limit(API)
def list_secrets():
    summaries = get_secret_service().list(current_user.id)
    return jsonify({"secrets": [_serialize(s) for s in summaries]})


@secret_bp.route("/search")
@login_required
@rate_limit(API)
def search_secrets():
    query = request.args.get("q", "")
    summaries = get_secret_service().search(current_user.id, query)
    return jsonify({"query": query, "secrets": [_serialize(s) for s in summaries]})


@secret_bp.route("/stats")
@login_required
@rate_limit(API)
def secret_stats():
    return jsonify(get_secret_service().stats(current_user.id))


@secret_bp.route("/<secret_id>", methods=["DELETE"])
@login_required
@rate_limit(API)
def delete_secret(secret_id):
    admit_user("delete_secret")
    get_secret_service().delete(secret_id, current_user.id)
    return jsonify({"success": True})
