from datetime import date, timedelta

import pytest
from sqlalchemy import select

from sbm_app import db
from sbm_app.errors import ValidationError, ConflictError
from sbm_app.fees.services import add_fee, record_fee_payment
from sbm_app.lifecycle import services
from sbm_app.models import Student, StudentFee, StudentStatusLog, AbsenceAlert, AttendanceRecord


def _student(school, index=0):
    return db.session.get(Student, school.student_ids[index])


def _fees(student):
    first = add_fee(student, "Tuition", 300000)
    second = add_fee(student, "Lunch", 100000)
    db.session.flush()
    record_fee_payment(second, 50000)
    paid = add_fee(student, "Uniform", 40000)
    db.session.flush()
    record_fee_payment(paid, 40000)
    db.session.flush()
    return first, second, paid


def test_withdrawal_voids_outstanding_fees_and_logs(ctx, school):
    student = _student(school)
    first, second, paid = _fees(student)

    result = services.process_student_withdrawal(
        student, school.tenant_id, "transfer", "Family relocated", performed_by=school.users["admin"],
    )
    db.session.commit()

    assert result["status"] == "withdrawn"
    assert result["fees_voided"] == {"count": 2, "total_voided": 350000.0}
    assert student.status == "withdrawn"
    assert student.is_active is False
    assert student.withdrawal_type == "transfer"
    assert student.withdrawal_date == date.today()
    assert first.status == "voided" and second.status == "voided"
    assert paid.status == "paid"

    log = db.session.execute(select(StudentStatusLog).filter_by(student_id_fk=student.student_id)).scalars().one()
    assert log.action == "withdrawn"
    assert log.from_status == "active"
    assert log.fees_voided == 350000.0


def test_withdrawal_without_fee_voiding_keeps_fees(ctx, school):
    student = _student(school)
    fee = add_fee(student, "Tuition", 200000)
    db.session.flush()

    result = services.process_student_withdrawal(student, school.tenant_id, "manual", "Parent request",
                                                 auto_void_fees=False)
    assert result["fees_voided"]["count"] == 0
    assert fee.status == "pending"


def test_withdrawal_validation(ctx, school, other_school):
    student = _student(school)
    with pytest.raises(ValidationError):
        services.process_student_withdrawal(student, school.tenant_id, "manual", "   ")
    with pytest.raises(ValidationError):
        services.process_student_withdrawal(student, school.tenant_id, "graduated", "Done")
    with pytest.raises(ValidationError):
        services.process_student_withdrawal(student, other_school.tenant_id, "manual", "Wrong school")

    services.process_student_withdrawal(student, school.tenant_id, "manual", "Left")
    with pytest.raises(ConflictError):
        services.process_student_withdrawal(student, school.tenant_id, "manual", "Again")


def test_reinstate_resets_lifecycle_fields(ctx, school):
    student = _student(school)
    student.consecutive_absence_days = 50
    services.process_student_withdrawal(student, school.tenant_id, "expulsion", "Misconduct")

    services.reinstate_student(student, school.tenant_id, "Appeal upheld", performed_by=school.users["admin"])
    db.session.commit()

    assert student.status == "active"
    assert student.is_active is True
    assert student.consecutive_absence_days == 0
    assert student.withdrawal_type is None
    actions = [log.action for log in services.status_history(student.student_id)]
    assert sorted(actions) == ["reinstated", "withdrawn"]

    with pytest.raises(ConflictError):
        services.reinstate_student(student, school.tenant_id, "Twice")


def test_risk_levels_and_warning_threshold(ctx):
    assert services.risk_level(10, 10) == "critical"
    assert services.risk_level(9, 10) == "high"
    assert services.risk_level(7, 10) == "medium"
    assert services.warning_threshold(45) == 31


def test_settings_validation(ctx, school):
    with pytest.raises(ValidationError):
        services.save_settings(school.tenant_id, {"absence_threshold_days": 0, "minimum_attendance_window_days": 5})
    row = services.save_settings(school.tenant_id, {"absence_threshold_days": 20, "minimum_attendance_window_days": 5,
                                                    "auto_void_fees": False})
    db.session.commit()
    assert services.get_settings(school.tenant_id).setting_id == row.setting_id
    assert services.get_settings(school.tenant_id).auto_void_fees is False


def test_defaults_used_when_no_settings_saved(ctx, school):
    settings = services.get_settings(school.tenant_id)
    assert settings.absence_threshold_days == 45
    assert settings.require_dos_approval is False


def _attended_on(student, days_ago):
    db.session.add(AttendanceRecord(
        tenant_id_fk=student.tenant_id_fk, student_id_fk=student.student_id, class_id_fk=student.class_id_fk,
        date_marked=date.today() - timedelta(days=days_ago), status="present",
    ))


def test_absence_check_warns_and_withdraws(ctx, school):
    services.save_settings(school.tenant_id, {"absence_threshold_days": 10, "minimum_attendance_window_days": 5})
    long_absent, warned, fresh = (_student(school, i) for i in range(3))
    long_absent.consecutive_absence_days = 12
    _attended_on(long_absent, 30)
    warned.consecutive_absence_days = 8
    fresh.consecutive_absence_days = 11  # no attendance history yet
    fee = add_fee(long_absent, "Tuition", 150000)
    db.session.commit()

    result = services.check_absence_withdrawals(school.tenant_id, performed_by=school.users["admin"])
    db.session.commit()

    assert result["checked"] == 3
    assert result["withdrawn_count"] == 1
    assert result["total_voided"] == 150000.0
    assert long_absent.status == "withdrawn"
    assert long_absent.withdrawal_type == "automatic"
    assert fee.status == "voided"
    assert warned.status == "active"
    assert fresh.status == "active"

    alerts = {(a.student_id_fk, a.alert_type) for a in services.open_alerts(school.tenant_id)}
    assert (warned.student_id, "warning") in alerts
    assert (long_absent.student_id, "auto_withdrawn") in alerts

    again = services.check_absence_withdrawals(school.tenant_id)
    assert again["alerts_created"] == 0


def test_absence_check_waits_for_approval_when_required(ctx, school):
    services.save_settings(school.tenant_id, {"absence_threshold_days": 10, "minimum_attendance_window_days": 0,
                                              "require_dos_approval": True})
    student = _student(school)
    student.consecutive_absence_days = 15
    db.session.commit()

    result = services.check_absence_withdrawals(school.tenant_id)

    assert result["withdrawn_count"] == 0
    assert result["pending_approval"] == 1
    assert student.status == "active"
    alert = db.session.execute(select(AbsenceAlert).filter_by(student_id_fk=student.student_id)).scalars().one()
    assert alert.alert_type == "critical"


def test_one_day_threshold_ignores_students_never_absent(ctx, school):
    services.save_settings(school.tenant_id, {"absence_threshold_days": 1, "minimum_attendance_window_days": 0})
    db.session.commit()

    assert services.warning_threshold(1) == 1
    assert services.at_risk_students(school.tenant_id) == []
    result = services.check_absence_withdrawals(school.tenant_id)
    assert result["checked"] == 0
    assert result["alerts_created"] == 0
    assert services.open_alerts(school.tenant_id) == []


def test_absence_check_silent_when_notifications_disabled(ctx, school):
    services.save_settings(school.tenant_id, {"absence_threshold_days": 10, "minimum_attendance_window_days": 5,
                                              "notification_enabled": False})
    long_absent, warned = _student(school, 0), _student(school, 1)
    long_absent.consecutive_absence_days = 12
    _attended_on(long_absent, 30)
    warned.consecutive_absence_days = 8
    db.session.commit()

    result = services.check_absence_withdrawals(school.tenant_id)
    db.session.commit()

    assert result["withdrawn_count"] == 1
    assert long_absent.status == "withdrawn"
    assert result["alerts_created"] == 0
    assert db.session.execute(select(AbsenceAlert)).scalars().all() == []


def test_acknowledge_alert_once(ctx, school):
    student = _student(school)
    alert = AbsenceAlert(tenant_id_fk=school.tenant_id, student_id_fk=student.student_id, alert_type="warning")
    db.session.add(alert)
    db.session.flush()

    services.acknowledge_alert(alert, school.users["head_teacher"])
    assert alert.acknowledged is True
    assert alert.acknowledged_at is not None
    with pytest.raises(ConflictError):
        services.acknowledge_alert(alert, school.users["head_teacher"])
    assert services.open_alerts(school.tenant_id) == []


def test_void_outstanding_fees_ignores_voided_and_paid(ctx, school):
    student = _student(school)
    _fees(student)
    count, total = services.void_outstanding_fees(student)
    assert (count, total) == (2, 350000.0)
    assert services.void_outstanding_fees(student) == (0, 0.0)
    statuses = sorted(f.status for f in db.session.execute(
        select(StudentFee).filter_by(student_id_fk=student.student_id)).scalars())
    assert statuses == ["paid", "voided", "voided"]
