import logging
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, g, jsonify, request
from werkzeug.exceptions import HTTPException

from app.eqpqiq.config import load_config
from app.eqpqiq.db import init_db, teardown_db_session
from app.eqpqiq.errors import ServiceError
from app.eqpqiq.routes import bp as routes_bp
from app.eqpqiq.auth import bp as auth_bp, enforce_password_change, load_current_user
from app.eqpqiq.modules.surveys.admin import bp as surveys_bp
from app.eqpqiq.modules.ratings.admin import bp as ratings_bp
from app.eqpqiq.modules.progress_check.admin import bp as progress_check_bp
from app.eqpqiq.modules.pulsecheck.admin import bp as pulsecheck_bp
from app.eqpqiq.modules.interview.admin import bp as interview_bp
from app.eqpqiq.modules.access_requests.admin import bp as access_requests_bp

# Endpoints authenticated by something other than the session cookie.
CSRF_EXEMPT_ENDPOINTS = ("auth.login_post", "auth.logout")
CSRF_EXEMPT_PREFIXES = ("/api/surveys/respond/", "/api/access-requests", "/api/cron/")


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        if not app.config.get("CRON_SECRET"):
            app.logger.warning("CRON_SECRET is not set; /api/cron/* will reject every call.")
        if not app.config.get("RESEND_API_KEY"):
            app.logger.warning("RESEND_API_KEY is not set; emails will only be logged.")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        import os

        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(surveys_bp, url_prefix="/api")
    app.register_blueprint(ratings_bp, url_prefix="/api")
    app.register_blueprint(progress_check_bp, url_prefix="/api")
    app.register_blueprint(pulsecheck_bp, url_prefix="/api/pulsecheck")
    app.register_blueprint(interview_bp, url_prefix="/api/interview")
    app.register_blueprint(access_requests_bp, url_prefix="/api")

    # Order matters: the CSRF guard needs g.auth_method.
    app.before_request(load_current_user)

    from app.eqpqiq.security import validate_csrf

    @app.before_request
    def _csrf_guard():
        if request.method not in ("POST", "PUT", "PATCH", "DELETE"):
            return None
        if getattr(g, "auth_method", None) != "session":
            return None
        if request.endpoint in CSRF_EXEMPT_ENDPOINTS or request.path.startswith(CSRF_EXEMPT_PREFIXES):
            return None
        if not validate_csrf(request):
            return jsonify({"error": "CSRF token missing or invalid."}), 400
        return None

    app.before_request(enforce_password_change)

    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(ServiceError)
    def _service_error(e: ServiceError):
        if e.status_code == 403:
            app.logger.warning(
                "Forbidden: %s missing_permission=%s request_id=%s",
                e.message,
                getattr(g, "missing_permission", None),
                getattr(g, "request_id", None),
            )
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(HTTPException)
    def _http_error(e: HTTPException):
        return jsonify({"error": e.description}), e.code

    @app.errorhandler(Exception)
    def _unhandled(e: Exception):
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return jsonify({"error": "Internal server error"}), 500

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
