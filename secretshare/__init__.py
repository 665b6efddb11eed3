import click
from flask import Flask, jsonify, request, session
from flask_limiter.errors import RateLimitExceeded
from flask_babel import gettext
from flask_talisman import Talisman
from flask_wtf.csrf import CSRFError
from .config import Config
from .crypto import generate_key
from .errors import RateLimited, SecretShareError, Unauthorized
from .extensions import db, login_manager, csrf, migrate, limiter, babel
from .lifecycle import create_secret_service
from .models import User
from .ratelimit import create_rate_limiter
from .security import register_security_hooks
from .tasks import purge_expired_secrets, rotate_encryption_keys
from .routes.auth import auth_bp
from .routes.health import health_bp
from .routes.secret import secret_bp
from .routes.settings import settings_bp


def create_app(config_class: type[Config] = Config) -> Flask:
    app = Flask(__name__)
    app.config.from_object(config_class)
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    csrf.init_app(app)
    limiter.init_app(app)
    babel.init_app(app, locale_selector=lambda: select_locale(app))
    app.extensions["rate_limiter"] = create_rate_limiter(app)
    app.extensions["secret_service"] = create_secret_service(app)

    Talisman(
        app,
        content_security_policy=app.config["SECURITY_CSP"],
        frame_options="DENY",
        referrer_policy="no-referrer",
        # HTTPS enforcement lives in register_security_hooks.
        force_https=False,
        session_cookie_secure=app.config.get("SESSION_COOKIE_SECURE", True),
        content_security_policy_nonce_in=None,
    )
    register_security_hooks(app)

    app.register_blueprint(auth_bp)
    app.register_blueprint(secret_bp)
    app.register_blueprint(settings_bp)
    app.register_blueprint(health_bp)

    with app.app_context():
        db.create_all()

    @login_manager.unauthorized_handler
    def handle_unauthorized():
        raise Unauthorized()

    @app.errorhandler(SecretShareError)
    def handle_secretshare_error(e: SecretShareError):
        if e.status_code >= 500:
            app.logger.error("Request failed: %s", e.code, extra={"path": request.path})
        body = e.to_dict()
        body["message"] = gettext(e.message)
        response = jsonify(body)
        response.status_code = e.status_code
        if isinstance(e, RateLimited):
            response.headers.update(e.headers())
        return response

    @app.errorhandler(RateLimitExceeded)
    def handle_global_ratelimit(e):
        app.logger.warning("Global request limit hit", extra={"limit": e.description, "path": request.path})
        message = gettext("Too many requests, please try again later.")
        return jsonify({"error": "rate_limited", "message": message}), 429

    @app.errorhandler(CSRFError)
    def handle_csrf(e):
        return jsonify({"error": "csrf_failed", "message": e.description}), 400

    @app.cli.command("purge-expired")
    def purge_expired():
        """Delete expired and already viewed one-time secrets."""
        deleted = purge_expired_secrets()
        print(f"Purged {deleted} expired or burned secret(s)")

    @app.cli.command("rotate-keys")
    def rotate_keys():
        """Re-encrypt stored secrets under the active encryption key."""
        stats = rotate_encryption_keys()
        print(
            f"Rotated {stats['rotated']} of {stats['total']} secret(s) "
            f"({stats['skipped']} already current, {stats['errors']} errors)"
        )

    @app.cli.command("generate-key")
    def generate_key_command():
        """Print a new random encryption key (hex)."""
        print(generate_key())

    @app.cli.command("list-users")
    def list_users():
        """Print all users with id, email and secret count."""
        users = User.query.order_by(User.id).all()
        for user in users:
            print(f"{user.id}\t{user.email}\tsecrets={user.secrets.count()}")

    @app.cli.command("delete-user")
    @click.argument("user_id", type=int)
    def delete_user(user_id: int):
        """Delete a user and every secret they own."""
        user = db.session.get(User, user_id)
        if not user:
            print(f"No user with id={user_id}")
            return
        db.session.delete(user)
        db.session.commit()
        print(f"Deleted user {user_id}")

    return app


def select_locale(app: Flask):
    """Resolve locale from session override or Accept-Language."""
    languages = app.config.get("LANGUAGES", {})
    default = app.config.get("BABEL_DEFAULT_LOCALE", "en")
    lang = request.args.get("lang")
    if lang in languages:
        session["lang"] = lang
        return lang
    lang_override = session.get("lang")
    if lang_override in languages:
        return lang_override
    return request.accept_languages.best_match(list(languages.keys()), default=default) or default
