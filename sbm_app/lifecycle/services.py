"""
Student lifecycle: manual and absence-triggered withdrawals.

All writes for one withdrawal (student status, fee voiding, audit log and
alerts) happen in the caller's session; routes commit once per request and
roll back on any ServiceError.
"""
import math
from datetime import date, datetime, timezone
from flask import current_app
from sqlalchemy import select, func

from .. import db
from ..errors import ValidationError, ConflictError
from ..models import (
    Student, StudentFee, WithdrawalSettings, AbsenceAlert, StudentStatusLog, AttendanceRecord,
)
from ..students.services import refresh_absence_streaks

WITHDRAWAL_TYPES = ("manual", "transfer", "expulsion", "automatic")
ALERT_TYPES = ("warning", "critical", "auto_withdrawn")

DEFAULT_SETTINGS = {
    "absence_threshold_days": 45,
    "minimum_attendance_window_days": 14,
    "exclude_holidays": True,
    "auto_void_fees": True,
    "require_dos_approval": False,
    "notification_enabled": True,
}

RISK_LABELS = {"critical": "Auto-Withdraw", "high": "High Risk", "medium": "At Risk"}


def get_settings(tenant_id):
    """Tenant settings row, or an unsaved row holding the defaults."""
    row = db.session.execute(select(WithdrawalSettings).filter_by(tenant_id_fk=tenant_id)).scalars().first()
    if row is None:
        row = WithdrawalSettings(tenant_id_fk=tenant_id, **DEFAULT_SETTINGS)
    return row


def save_settings(tenant_id, values):
    threshold = values.get("absence_threshold_days")
    window = values.get("minimum_attendance_window_days")
    if threshold is None or threshold < 1:
        raise ValidationError("Absence threshold must be at least 1 day.")
    if window is None or window < 0:
        raise ValidationError("Minimum attendance window cannot be negative.")

    row = db.session.execute(select(WithdrawalSettings).filter_by(tenant_id_fk=tenant_id)).scalars().first()
    if row is None:
        row = WithdrawalSettings(tenant_id_fk=tenant_id)
        db.session.add(row)
    holidays_were_excluded = row.exclude_holidays is not False
    for key in DEFAULT_SETTINGS:
        if key in values:
            setattr(row, key, values[key])
    if (row.exclude_holidays is not False) != holidays_were_excluded:
        db.session.flush()
        refresh_absence_streaks(tenant_id)
    return row


def warning_threshold(threshold):
    ratio = current_app.config.get("ABSENCE_WARNING_RATIO", 0.7)
    return max(1, math.floor(threshold * ratio))


def risk_level(days, threshold):
    pct = (days / threshold * 100) if threshold else 100
    if pct >= 100:
        return "critical"
    if pct >= 85:
        return "high"
    return "medium"


def at_risk_students(tenant_id, settings=None):
    settings = settings or get_settings(tenant_id)
    floor_days = warning_threshold(settings.absence_threshold_days)
    students = db.session.execute(
        select(Student).filter(
            Student.tenant_id_fk == tenant_id,
            Student.is_active == True,  # noqa: E712
            Student.status == "active",
            Student.consecutive_absence_days >= floor_days,
        ).order_by(Student.consecutive_absence_days.desc())
    ).scalars().all()
    out = []
    for s in students:
        level = risk_level(s.consecutive_absence_days or 0, settings.absence_threshold_days)
        out.append({"student": s, "risk_level": level, "label": RISK_LABELS[level]})
    return out


def open_alerts(tenant_id, limit=50):
    return db.session.execute(
        select(AbsenceAlert)
        .filter_by(tenant_id_fk=tenant_id, acknowledged=False)
        .order_by(AbsenceAlert.created_at.desc())
        .limit(limit)
    ).scalars().all()


def withdrawn_students(tenant_id, limit=100):
    return db.session.execute(
        select(Student)
        .filter_by(tenant_id_fk=tenant_id, status="withdrawn")
        .order_by(Student.withdrawal_date.desc())
        .limit(limit)
    ).scalars().all()


def acknowledge_alert(alert, user_id):
    if alert.acknowledged:
        raise ConflictError("Alert has already been acknowledged.")
    alert.acknowledged = True
    alert.acknowledged_by_id_fk = user_id
    alert.acknowledged_at = datetime.now(timezone.utc)
    return alert


def void_outstanding_fees(student):
    """Void every pending/partial fee; returns (count, total outstanding voided)."""
    fees = db.session.execute(
        select(StudentFee).filter(
            StudentFee.student_id_fk == student.student_id,
            StudentFee.status.in_(("pending", "partial")),
        )
    ).scalars().all()
    total = 0.0
    for fee in fees:
        total += fee.balance
        fee.status = "voided"
    return len(fees), round(total, 2)


def process_student_withdrawal(student, tenant_id, withdrawal_type, reason, performed_by=None, auto_void_fees=True):
    if student is None or student.tenant_id_fk != tenant_id:
        raise ValidationError("Student not found.")
    if withdrawal_type not in WITHDRAWAL_TYPES:
        raise ValidationError(f"Unknown withdrawal type '{withdrawal_type}'.")
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A reason is required to withdraw a student.")
    if student.status != "active":
        raise ConflictError(f"{student.full_name} is not an active student.")

    count, total_voided = void_outstanding_fees(student) if auto_void_fees else (0, 0.0)

    previous = student.status
    student.status = "withdrawn"
    student.is_active = False
    student.withdrawal_date = date.today()
    student.withdrawal_type = withdrawal_type
    student.withdrawal_reason = reason
    student.withdrawn_by_id_fk = performed_by

    db.session.add(StudentStatusLog(
        tenant_id_fk=tenant_id,
        student_id_fk=student.student_id,
        action="withdrawn",
        from_status=previous,
        to_status="withdrawn",
        withdrawal_type=withdrawal_type,
        reason=reason,
        fees_voided=total_voided,
        performed_by_id_fk=performed_by,
    ))
    current_app.logger.info(
        "Student %s withdrawn (%s) tenant=%s fees_voided=%s",
        student.student_id, withdrawal_type, tenant_id, total_voided,
    )
    return {
        "student_id": student.student_id,
        "status": student.status,
        "fees_voided": {"count": count, "total_voided": total_voided},
    }


def reinstate_student(student, tenant_id, reason, performed_by=None):
    if student is None or student.tenant_id_fk != tenant_id:
        raise ValidationError("Student not found.")
    if student.status != "withdrawn":
        raise ConflictError(f"{student.full_name} is not withdrawn.")
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A reason is required to reinstate a student.")

    db.session.add(StudentStatusLog(
        tenant_id_fk=tenant_id,
        student_id_fk=student.student_id,
        action="reinstated",
        from_status=student.status,
        to_status="active",
        reason=reason,
        performed_by_id_fk=performed_by,
    ))
    student.status = "active"
    student.is_active = True
    student.consecutive_absence_days = 0
    student.withdrawal_date = None
    student.withdrawal_type = None
    student.withdrawal_reason = None
    student.withdrawn_by_id_fk = None
    return student


def _has_open_alert(student_id, alert_type):
    return db.session.execute(
        select(AbsenceAlert.alert_id).filter_by(student_id_fk=student_id, alert_type=alert_type, acknowledged=False)
    ).first() is not None


def _raise_alert(settings, student, alert_type, message):
    if not settings.notification_enabled or _has_open_alert(student.student_id, alert_type):
        return False
    db.session.add(AbsenceAlert(
        tenant_id_fk=student.tenant_id_fk,
        student_id_fk=student.student_id,
        alert_type=alert_type,
        consecutive_days=student.consecutive_absence_days or 0,
        message=message,
    ))
    return True


def _history_span_days(student_id, today):
    first = db.session.execute(
        select(func.min(AttendanceRecord.date_marked)).filter_by(student_id_fk=student_id)
    ).scalar()
    return (today - first).days if first else 0


def check_absence_withdrawals(tenant_id, performed_by=None, today=None):
    """Scan active students and warn, escalate or withdraw on long absence."""
    today = today or date.today()
    settings = get_settings(tenant_id)
    threshold = settings.absence_threshold_days
    result = {"checked": 0, "withdrawn_count": 0, "alerts_created": 0, "pending_approval": 0, "total_voided": 0.0}

    for entry in at_risk_students(tenant_id, settings):
        student = entry["student"]
        days = student.consecutive_absence_days or 0
        result["checked"] += 1

        if days < threshold:
            if _raise_alert(settings, student, "warning",
                            f"{student.full_name} has been absent {days} consecutive days (threshold {threshold})."):
                result["alerts_created"] += 1
            continue

        if settings.require_dos_approval:
            result["pending_approval"] += 1
            if _raise_alert(settings, student, "critical",
                            f"{student.full_name} reached {days} consecutive absences. Withdrawal awaits DOS approval."):
                result["alerts_created"] += 1
            continue

        if _history_span_days(student.student_id, today) < settings.minimum_attendance_window_days:
            continue

        outcome = process_student_withdrawal(
            student, tenant_id, "automatic",
            f"Absent for {days} consecutive school days (threshold {threshold}).",
            performed_by=performed_by,
            auto_void_fees=settings.auto_void_fees,
        )
        result["withdrawn_count"] += 1
        result["total_voided"] += outcome["fees_voided"]["total_voided"]
        if _raise_alert(settings, student, "auto_withdrawn",
                        f"{student.full_name} was withdrawn automatically after {days} consecutive absences."):
            result["alerts_created"] += 1

    result["total_voided"] = round(result["total_voided"], 2)
    current_app.logger.info("Absence check tenant=%s result=%s", tenant_id, result)
    return result


def status_history(student_id):
    return db.session.execute(
        select(StudentStatusLog).filter_by(student_id_fk=student_id).order_by(StudentStatusLog.created_at.desc())
    ).scalars().all()
