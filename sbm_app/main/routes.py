from datetime import date, datetime, time as dtime
from flask import Blueprint, render_template, request, redirect, url_for, flash, session
from flask_login import login_user, logout_user, login_required, current_user
from sqlalchemy import select, func
from werkzeug.security import check_password_hash

from .. import db, limiter, cache
from ..api_utils import api_success
from ..models import User, Student, AbsenceAlert, Sale, SchoolAsset, AcademicTerm
from ..lifecycle.services import get_settings, warning_threshold

main_bp = Blueprint("main", __name__)


@main_bp.route("/")
def index():
    if current_user.is_authenticated:
        return redirect(url_for("main.dashboard"))
    return redirect(url_for("main.login"))


# Authentication routes
@main_bp.route("/login", methods=["GET", "POST"])
@limiter.limit("5 per minute", methods=["POST"])
def login():
    if request.method == "POST":
        username = (request.form.get("username") or "").strip()
        password = request.form.get("password") or ""
        if not username or not password:
            flash("Username and password are required.", "danger")
            return render_template("login.html")
        user = db.session.execute(select(User).filter_by(username=username)).scalars().first()
        if not user or not user.password_hash or not check_password_hash(user.password_hash, password):
            flash("Invalid credentials.", "danger")
            return render_template("login.html")
        if not user.is_active:
            flash("This account has been deactivated.", "danger")
            return render_template("login.html")
        login_user(user)
        session.permanent = True
        flash("Logged in successfully.", "success")
        if user.is_super_admin:
            return redirect(url_for("super_admin.dashboard"))
        return redirect(url_for("main.dashboard"))
    return render_template("login.html")


@main_bp.route("/logout")
def logout():
    if current_user.is_authenticated:
        logout_user()
        flash("Logged out.", "info")
    return redirect(url_for("main.login"))


def _count(q):
    return db.session.execute(select(func.count()).select_from(q.subquery())).scalar() or 0


def dashboard_metrics(tenant_id):
    settings = get_settings(tenant_id)
    floor_days = warning_threshold(settings.absence_threshold_days)
    today_start = datetime.combine(date.today(), dtime.min)
    sales_today = db.session.execute(
        select(func.coalesce(func.sum(Sale.total_amount), 0.0)).filter(
            Sale.tenant_id_fk == tenant_id,
            Sale.sale_date >= today_start,
            (Sale.return_status.is_(None)) | (Sale.return_status != "voided"),
        )
    ).scalar()
    return {
        "active_students": _count(select(Student).filter_by(tenant_id_fk=tenant_id, status="active")),
        "at_risk": _count(select(Student).filter(
            Student.tenant_id_fk == tenant_id,
            Student.status == "active",
            Student.consecutive_absence_days >= floor_days,
        )),
        "open_alerts": _count(select(AbsenceAlert).filter_by(tenant_id_fk=tenant_id, acknowledged=False)),
        "sales_today": round(sales_today or 0.0, 2),
        "active_assets": _count(select(SchoolAsset).filter_by(tenant_id_fk=tenant_id, is_active=True)),
        "current_term": db.session.execute(
            select(AcademicTerm).filter_by(tenant_id_fk=tenant_id, is_current=True)
        ).scalars().first(),
    }


@main_bp.route("/dashboard")
@login_required
@cache.cached(timeout=60, key_prefix=lambda: f"dashboard_{getattr(current_user, 'user_id', 'anon')}_{request.full_path}", unless=lambda: session.get("_flashes"))
def dashboard():
    if current_user.is_super_admin and not current_user.tenant_id_fk:
        return redirect(url_for("super_admin.dashboard"))
    metrics = dashboard_metrics(current_user.tenant_id_fk)
    return render_template("dashboard.html", metrics=metrics, role=(current_user.role or "").lower())


@main_bp.route("/api/dashboard")
@login_required
def dashboard_api():
    metrics = dashboard_metrics(current_user.tenant_id_fk)
    term = metrics.pop("current_term")
    metrics["current_term"] = term.name if term else None
    return api_success(metrics)
