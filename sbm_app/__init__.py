import os
import secrets
import time
from flask import Flask, session, request, url_for, flash, redirect, current_app, render_template
from flask_login import LoginManager, current_user
from flask_sqlalchemy import SQLAlchemy
from werkzeug.exceptions import RequestEntityTooLarge
from functools import wraps
from flask_migrate import Migrate
from datetime import timedelta
from flask_limiter import Limiter
from flask_caching import Cache
from werkzeug.exceptions import HTTPException
from flask_limiter.errors import RateLimitExceeded

# Global extensions
db = SQLAlchemy()
login_manager = LoginManager()
migrate = Migrate()
def _rate_key():
    try:
        ip = (request.headers.get("X-Forwarded-For") or request.remote_addr or "local")
        token = (session.get("rlid") or "")
        path = (getattr(request, "path", "/") or "/")
        return f"{ip}|{token}|{path}"
    except Exception:
        return "local"

limiter = Limiter(key_func=_rate_key)
cache = Cache()


def _env_flag(name, default="true"):
    return (os.environ.get(name, default) or "").strip().lower() == "true"


def create_app():
    app = Flask(__name__)
    app.config["SECRET_KEY"] = os.environ.get("SECRET_KEY", "dev-secret-key")

    # Session timeout: 30 minutes of inactivity
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(minutes=30)

    REDIS_URL = os.environ.get("REDIS_URL")
    if REDIS_URL:
        app.config["CACHE_TYPE"] = "RedisCache"
        app.config["CACHE_REDIS_URL"] = REDIS_URL
        app.config["RATELIMIT_STORAGE_URI"] = REDIS_URL
    else:
        app.config["CACHE_TYPE"] = "SimpleCache"
    if os.environ.get("CACHE_TYPE"):
        app.config["CACHE_TYPE"] = os.environ["CACHE_TYPE"]
    app.config["RATELIMIT_ENABLED"] = _env_flag("RATELIMIT_ENABLED")

    # Global upload cap (can be overridden via env)
    app.config["MAX_CONTENT_LENGTH"] = int(os.environ.get("MAX_CONTENT_LENGTH", str(32 * 1024 * 1024)))
    # CSRF token TTL (seconds)
    app.config["CSRF_TOKEN_TTL"] = int(os.environ.get("CSRF_TOKEN_TTL", "7200"))

    # Domain settings
    app.config["CURRENCY_CODE"] = os.environ.get("CURRENCY_CODE", "UGX")
    app.config["ABSENCE_WARNING_RATIO"] = float(os.environ.get("ABSENCE_WARNING_RATIO", "0.7"))
    app.config["BACKUP_ROW_LIMIT"] = int(os.environ.get("BACKUP_ROW_LIMIT", "50000"))

    log_level = (os.environ.get("LOG_LEVEL") or "").strip().upper()
    if log_level:
        app.logger.setLevel(log_level)

    # Database configuration: use DATABASE_URL if provided, else sqlite file
    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        db_path = os.path.join(os.path.dirname(__file__), "..", "sbm.db")
        database_url = f"sqlite:///{os.path.abspath(db_path)}"

    app.config["SQLALCHEMY_DATABASE_URI"] = database_url
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False

    app.config.setdefault("RATELIMIT_STORAGE_URI", "memory://")
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cache.init_app(app)
    # Auth: Flask-Login
    login_manager.init_app(app)
    login_manager.login_view = "main.login"

    # Import models so they are registered with SQLAlchemy
    from . import models  # noqa: F401

    @app.before_request
    def check_maintenance_mode():
        # Allow static files (CSS, JS, images)
        if request.endpoint and 'static' in request.endpoint:
            return

        # Allow login/logout endpoints so Super Admin can access
        if request.endpoint in ['main.login', 'main.logout']:
            return

        from .models import SystemConfig
        maint = db.session.get(SystemConfig, 'maintenance_mode')
        if maint and maint.config_value == 'true':
            if current_user.is_authenticated and getattr(current_user, 'is_super_admin', False):
                return
            return render_template('maintenance.html'), 503

    @app.before_request
    def check_tenant_active():
        # Kill switch: suspended tenants lose access until reactivated
        if not current_user.is_authenticated or getattr(current_user, "is_super_admin", False):
            return
        if request.endpoint in ['main.login', 'main.logout'] or (request.endpoint and 'static' in request.endpoint):
            return
        tenant = current_user.tenant
        if tenant is None or not tenant.is_active:
            return render_template('suspended.html', tenant=tenant), 403

    @app.before_request
    def ensure_rate_key():
        if not session.get("rlid"):
            session["rlid"] = secrets.token_urlsafe(16)

    @app.context_processor
    def inject_ui_flags():
        ctx = {"currency_code": app.config.get("CURRENCY_CODE", "UGX")}
        if getattr(current_user, "is_authenticated", False) and current_user.tenant is not None:
            ctx["tenant"] = current_user.tenant
        return ctx

    @app.context_processor
    def inject_csrf_token():
        token = session.get("csrf_token")
        issued_at = session.get("csrf_token_issued_at")
        ttl = app.config.get("CSRF_TOKEN_TTL", 7200)
        # Regenerate token if missing or expired
        now = int(time.time())
        if (not token) or (not issued_at) or (ttl > 0 and (now - int(issued_at)) > ttl):
            token = secrets.token_urlsafe(32)
            session["csrf_token"] = token
            session["csrf_token_issued_at"] = now
        def _csrf_token():
            return token
        return {"csrf_token": _csrf_token, "csrf_token_value": token}

    @app.template_filter("money")
    def money_filter(value):
        try:
            amount = float(value or 0)
        except (TypeError, ValueError):
            amount = 0.0
        return f"{app.config.get('CURRENCY_CODE', 'UGX')} {amount:,.0f}"

    @login_manager.user_loader
    def load_user(user_id: str):
        from .models import User
        try:
            return db.session.get(User, int(user_id))
        except (TypeError, ValueError):
            return None

    # Blueprints
    from .main.routes import main_bp
    app.register_blueprint(main_bp)

    from .academics import academics_bp
    app.register_blueprint(academics_bp, url_prefix="/academics")

    from .students import students_bp
    app.register_blueprint(students_bp, url_prefix="/students")

    from .lifecycle import lifecycle_bp
    app.register_blueprint(lifecycle_bp, url_prefix="/lifecycle")

    from .fees import fees_bp
    app.register_blueprint(fees_bp, url_prefix="/fees")

    from .report_cards import report_cards_bp
    app.register_blueprint(report_cards_bp, url_prefix="/report-cards")

    from .exams import exams_bp
    app.register_blueprint(exams_bp, url_prefix="/exams")

    from .timetable import timetable_bp
    app.register_blueprint(timetable_bp, url_prefix="/timetable")

    from .term_calendar import calendar_bp
    app.register_blueprint(calendar_bp, url_prefix="/calendar")

    from .pos import pos_bp
    app.register_blueprint(pos_bp, url_prefix="/pos")

    from .assets import assets_bp
    app.register_blueprint(assets_bp, url_prefix="/assets")

    from .reports import reports_bp
    app.register_blueprint(reports_bp, url_prefix="/reports")

    from .backups import backups_bp
    app.register_blueprint(backups_bp, url_prefix="/backups")

    from .super_admin import super_admin as super_admin_bp
    app.register_blueprint(super_admin_bp, url_prefix="/super-admin")

    @app.errorhandler(RequestEntityTooLarge)
    def handle_large_upload(e):
        limit_bytes = app.config.get("MAX_CONTENT_LENGTH") or (32 * 1024 * 1024)
        limit_mb = max(1, int(limit_bytes / (1024 * 1024)))
        flash(f"Upload exceeds the global size limit (max {limit_mb} MB).", "danger")
        return redirect(request.referrer or url_for("main.index")), 413

    @app.errorhandler(RateLimitExceeded)
    def handle_rate_limit(e):
        from .api_utils import api_error
        return api_error("rate_limited", "Too many requests", 429)

    @app.errorhandler(HTTPException)
    def handle_http_exception(e):
        from .api_utils import api_error, wants_json
        if wants_json():
            return api_error(str(e.code), e.description or "", e.code)
        return render_template("error.html", error=e), e.code

    # Create tables on first run (dev convenience)
    with app.app_context():
        db.create_all()

    return app


def _csrf_reject():
    flash("Refresh the Page or login again", "warning")
    return redirect(request.referrer or url_for("main.index"))


def csrf_required(view_func):
    @wraps(view_func)
    def _wrapped(*args, **kwargs):
        method = (request.method or "GET").upper()
        if method in ("POST", "PUT", "DELETE"):
            token = (request.form.get("csrf_token") or request.headers.get("X-CSRF-Token") or "").strip()
            sess_token = (session.get("csrf_token") or "")
            issued_at = session.get("csrf_token_issued_at")
            ttl = current_app.config.get("CSRF_TOKEN_TTL", 7200)
            now = int(time.time())
            # Expired token
            if not issued_at or (ttl > 0 and (now - int(issued_at)) > ttl):
                return _csrf_reject()
            # Missing token in request
            if not token:
                return _csrf_reject()
            # Mismatch
            if token != sess_token:
                return _csrf_reject()
        return view_func(*args, **kwargs)
    return _wrapped
