import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..lifecycle import get_secret_service
from ..models import utcnow

health_bp = Blueprint("health", __name__)

_started = time.monotonic()


@health_bp.route("/health")
def health():
    status = "healthy"
    services = {"application": {"status": "healthy", "uptime": round(time.monotonic() - _started, 1)}}
    try:
        db_start = time.monotonic()
        db.session.execute(text("SELECT 1"))
        services["database"] = {
            "status": "healthy",
            "response_time_ms": round((time.monotonic() - db_start) * 1000, 1),
        }
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error("Health check database probe failed: %s", exc)
        services["database"] = {"status": "unhealthy", "error": "database unavailable"}
        status = "unhealthy"
    codec_ok = get_secret_service().codec.healthy
    services["encryption"] = {"status": "healthy" if codec_ok else "unhealthy"}
    if not codec_ok:
        status = "unhealthy"
    body = {
        "status": status,
        "timestamp": utcnow().isoformat(),
        "version": current_app.config.get("APP_VERSION", "1.0.0"),
        "services": services,
    }
    return jsonify(body), 503 if status == "unhealthy" else 200
