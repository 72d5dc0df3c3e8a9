from flask import render_template, request, redirect, url_for, flash, current_app
from flask_login import login_required, current_user
from sqlalchemy.exc import SQLAlchemyError

from . import lifecycle_bp
from .. import db, csrf_required
from ..api_utils import api_success
from ..decorators import role_required, ACADEMIC_STAFF
from ..errors import ServiceError
from ..models import Student, AbsenceAlert
from ..tenancy import current_tenant_id, get_tenant_row_or_404, parse_int
from . import services


@lifecycle_bp.route("/")
@login_required
@role_required(*ACADEMIC_STAFF)
def overview():
    tid = current_tenant_id()
    settings = services.get_settings(tid)
    return render_template(
        "lifecycle/overview.html",
        settings=settings,
        warning_days=services.warning_threshold(settings.absence_threshold_days),
        at_risk=services.at_risk_students(tid, settings),
        alerts=services.open_alerts(tid),
        withdrawn=services.withdrawn_students(tid),
        withdrawal_types=[t for t in services.WITHDRAWAL_TYPES if t != "automatic"],
    )


@lifecycle_bp.route("/settings", methods=["POST"])
@login_required
@role_required("admin", "head_teacher")
@csrf_required
def save_settings():
    tid = current_tenant_id()
    values = {
        "absence_threshold_days": parse_int(request.form.get("absence_threshold_days")),
        "minimum_attendance_window_days": parse_int(request.form.get("minimum_attendance_window_days")),
    }
    for flag in ("exclude_holidays", "auto_void_fees", "require_dos_approval", "notification_enabled"):
        values[flag] = request.form.get(flag) == "on"
    try:
        services.save_settings(tid, values)
        db.session.commit()
        flash("Withdrawal settings saved.", "success")
    except ServiceError as e:
        db.session.rollback()
        flash(str(e), "danger")
    return redirect(url_for("lifecycle.overview"))


@lifecycle_bp.route("/students/<int:student_id>/withdraw", methods=["POST"])
@login_required
@role_required(*ACADEMIC_STAFF)
@csrf_required
def withdraw(student_id):
    tid = current_tenant_id()
    student = get_tenant_row_or_404(Student, student_id)
    settings = services.get_settings(tid)
    try:
        result = services.process_student_withdrawal(
            student, tid,
            (request.form.get("withdrawal_type") or "manual").strip(),
            request.form.get("reason"),
            performed_by=current_user.user_id,
            auto_void_fees=settings.auto_void_fees,
        )
        db.session.commit()
    except ServiceError as e:
        db.session.rollback()
        flash(str(e), "danger")
        return redirect(request.referrer or url_for("lifecycle.overview"))
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Withdrawal of student %s failed", student_id)
        flash("Withdrawal failed. No changes were saved.", "danger")
        return redirect(request.referrer or url_for("lifecycle.overview"))

    voided = result["fees_voided"]
    msg = f"{student.full_name} withdrawn."
    if voided["count"]:
        msg += f" {voided['count']} fee record(s) voided ({voided['total_voided']:,.0f})."
    flash(msg, "success")
    return redirect(url_for("lifecycle.overview"))


@lifecycle_bp.route("/students/<int:student_id>/reinstate", methods=["POST"])
@login_required
@role_required("admin", "head_teacher")
@csrf_required
def reinstate(student_id):
    tid = current_tenant_id()
    student = get_tenant_row_or_404(Student, student_id)
    try:
        services.reinstate_student(student, tid, request.form.get("reason"), performed_by=current_user.user_id)
        db.session.commit()
        flash(f"{student.full_name} reinstated.", "success")
    except ServiceError as e:
        db.session.rollback()
        flash(str(e), "danger")
    return redirect(url_for("lifecycle.overview"))


@lifecycle_bp.route("/alerts/<int:alert_id>/acknowledge", methods=["POST"])
@login_required
@role_required(*ACADEMIC_STAFF)
@csrf_required
def acknowledge(alert_id):
    alert = get_tenant_row_or_404(AbsenceAlert, alert_id)
    try:
        services.acknowledge_alert(alert, current_user.user_id)
        db.session.commit()
        flash("Alert acknowledged.", "success")
    except ServiceError as e:
        db.session.rollback()
        flash(str(e), "danger")
    return redirect(url_for("lifecycle.overview"))


@lifecycle_bp.route("/check", methods=["POST"])
@login_required
@role_required("admin", "head_teacher")
@csrf_required
def run_check():
    tid = current_tenant_id()
    try:
        result = services.check_absence_withdrawals(tid, performed_by=current_user.user_id)
        db.session.commit()
    except ServiceError as e:
        db.session.rollback()
        flash(str(e), "danger")
        return redirect(url_for("lifecycle.overview"))
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Absence check failed for tenant %s", tid)
        flash("Absence check failed. No changes were saved.", "danger")
        return redirect(url_for("lifecycle.overview"))
    flash(
        f"Checked {result['checked']} student(s): {result['withdrawn_count']} withdrawn, "
        f"{result['alerts_created']} alert(s) raised, {result['pending_approval']} awaiting approval.",
        "info",
    )
    return redirect(url_for("lifecycle.overview"))


@lifecycle_bp.route("/api/at-risk")
@login_required
@role_required(*ACADEMIC_STAFF)
def at_risk_api():
    tid = current_tenant_id()
    rows = [
        {
            "student_id": e["student"].student_id,
            "full_name": e["student"].full_name,
            "consecutive_absence_days": e["student"].consecutive_absence_days or 0,
            "risk_level": e["risk_level"],
            "label": e["label"],
        }
        for e in services.at_risk_students(tid)
    ]
    return api_success(rows)
