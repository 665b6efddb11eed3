import logging
import secrets
import time

from flask import g, jsonify, redirect, request, session
from flask_login import current_user, logout_user
from werkzeug.middleware.proxy_fix import ProxyFix

from .errors import ValidationError

logger = logging.getLogger("secretshare.security")

SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
}

SESSION_OWNER_KEY = "_session_owner"


def register_security_hooks(app):
    app.wsgi_app = ProxyFix(app.wsgi_app, x_proto=1, x_for=1)

    @app.before_request
    def require_https():
        if not app.config.get("FORCE_HTTPS", True) or app.testing or request.is_secure:
            return None
        if request.method in ("GET", "HEAD"):
            return redirect(request.url.replace("http://", "https://", 1), code=301)
        # Requests with a body are refused, not redirected.
        return jsonify({"error": "https_required", "message": "Use HTTPS."}), 403

    @app.before_request
    def require_json_object():
        if request.method not in ("POST", "PUT", "PATCH") or not request.is_json:
            return
        payload = request.get_json(silent=True)
        if payload is None and request.get_data(cache=True):
            raise ValidationError("Request body is not valid JSON")
        if payload is not None and not isinstance(payload, dict):
            raise ValidationError("Request body must be a JSON object")

    @app.before_request
    def start_timer():
        g.request_started = time.monotonic()

    @app.before_request
    def guard_session_owner():
        if not current_user.is_authenticated:
            session.pop(SESSION_OWNER_KEY, None)
            return
        owner = session.get(SESSION_OWNER_KEY)
        if owner is not None and owner != current_user.get_id():
            logger.warning("Session owner changed mid-session; signing out", extra={"ip": request.remote_addr})
            logout_user()
            session.clear()

    @app.after_request
    def finish_response(response):
        response.headers.update(SECURITY_HEADERS)
        response.cache_control.private = True
        response.cache_control.no_store = True
        started = g.get("request_started")
        if started is not None:
            response.headers["X-Response-Time"] = f"{(time.monotonic() - started) * 1000:.0f}ms"
        if current_user.is_authenticated:
            session[SESSION_OWNER_KEY] = current_user.get_id()
        return response


def regenerate_session(sess):
    """Keep the session data but mint a new nonce after login."""
    data = dict(sess)
    sess.clear()
    sess.update(data)
    sess["_session_nonce"] = secrets.token_hex(16)
