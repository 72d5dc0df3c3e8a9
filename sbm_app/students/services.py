from datetime import date, timedelta
from sqlalchemy import select, func, delete, or_

from .. import db
from ..errors import ValidationError, ConflictError, NotFoundError
from ..models import Student, SchoolClass, AttendanceRecord, SchoolHoliday, WithdrawalSettings

GENDERS = ("Male", "Female", "Other")
BOARDING_STATUSES = ("day", "boarding")
ATTENDANCE_STATUSES = ("present", "absent", "late", "excused")

STUDENT_FIELDS = (
    "gender", "nationality", "religion", "address",
    "guardian_name", "guardian_phone", "guardian_email", "guardian_relationship",
    "father_name", "father_phone", "mother_name", "mother_phone",
    "boarding_status", "previous_school", "medical_notes",
)


def next_admission_number(tenant_id, year=None):
    """ADM/<year>/<seq>, continuing after the highest number used this year."""
    year = year or date.today().year
    prefix = f"ADM/{year}/"
    existing = db.session.execute(
        select(Student.admission_number).filter(
            Student.tenant_id_fk == tenant_id,
            Student.admission_number.like(f"{prefix}%"),
        )
    ).scalars().all()
    seq = 0
    for number in existing:
        tail = number[len(prefix):]
        if tail.isdigit():
            seq = max(seq, int(tail))
    return f"{prefix}{seq + 1:04d}"


def _validate_student_data(tenant_id, data, student=None):
    errors = []
    full_name = (data.get("full_name") or "").strip()
    if not full_name:
        errors.append("Full name is required.")
    class_id = data.get("class_id")
    school_class = None
    if not class_id:
        errors.append("Class is required.")
    else:
        school_class = db.session.get(SchoolClass, int(class_id))
        if not school_class or school_class.tenant_id_fk != tenant_id:
            errors.append("Selected class was not found.")
    gender = (data.get("gender") or "").strip()
    if gender and gender not in GENDERS:
        errors.append("Gender must be Male, Female or Other.")
    boarding = (data.get("boarding_status") or "day").strip().lower()
    if boarding not in BOARDING_STATUSES:
        errors.append("Boarding status must be day or boarding.")

    admission_number = (data.get("admission_number") or "").strip()
    if admission_number:
        q = select(Student).filter_by(tenant_id_fk=tenant_id, admission_number=admission_number)
        clash = db.session.execute(q).scalars().first()
        if clash and (student is None or clash.student_id != student.student_id):
            errors.append(f"Admission number {admission_number} is already in use.")
    if errors:
        raise ValidationError(" ".join(errors))
    return school_class, admission_number


def _apply_fields(student, data):
    for field in STUDENT_FIELDS:
        if field in data:
            value = data.get(field)
            value = value.strip() if isinstance(value, str) else value
            setattr(student, field, value or None)
    student.full_name = (data.get("full_name") or "").strip()
    student.boarding_status = (data.get("boarding_status") or "day").strip().lower()
    if not student.nationality:
        student.nationality = "Ugandan"
    if data.get("date_of_birth") is not None:
        student.date_of_birth = data.get("date_of_birth")
    if data.get("admission_date") is not None:
        student.admission_date = data.get("admission_date")


def enroll_student(tenant_id, data):
    school_class, admission_number = _validate_student_data(tenant_id, data)
    student = Student(tenant_id_fk=tenant_id, class_id_fk=school_class.class_id)
    student.admission_number = admission_number or next_admission_number(tenant_id)
    _apply_fields(student, data)
    student.status = "active"
    student.is_active = True
    db.session.add(student)
    db.session.flush()
    return student


def update_student(student, data):
    school_class, admission_number = _validate_student_data(student.tenant_id_fk, data, student=student)
    student.class_id_fk = school_class.class_id
    if admission_number:
        student.admission_number = admission_number
    _apply_fields(student, data)
    return student


def list_students(tenant_id, class_id=None, status=None, search=None):
    q = select(Student).filter(Student.tenant_id_fk == tenant_id)
    if class_id:
        q = q.filter(Student.class_id_fk == class_id)
    if status:
        q = q.filter(Student.status == status)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter((Student.full_name.ilike(like)) | (Student.admission_number.ilike(like)))
    return db.session.execute(q.order_by(Student.full_name)).scalars().all()


# ==========================================
# ATTENDANCE
# ==========================================

def holiday_dates(tenant_id, start=None, end=None):
    """Set of every calendar date covered by the tenant's holidays."""
    q = select(SchoolHoliday).filter_by(tenant_id_fk=tenant_id)
    if start:
        q = q.filter(SchoolHoliday.end_date >= start)
    if end:
        q = q.filter(SchoolHoliday.start_date <= end)
    days = set()
    for h in db.session.execute(q).scalars():
        d = h.start_date
        while d <= h.end_date:
            days.add(d)
            d += timedelta(days=1)
    return days


def recompute_absence_streak(student, skip_dates=None):
    """Refresh consecutive_absence_days and last_attendance_date from records.

    Records are walked newest first; absences are counted until the first
    record that is not an absence. Dates in ``skip_dates`` are ignored.
    """
    skip_dates = skip_dates or set()
    records = db.session.execute(
        select(AttendanceRecord)
        .filter_by(student_id_fk=student.student_id)
        .order_by(AttendanceRecord.date_marked.desc())
    ).scalars().all()

    streak = 0
    for rec in records:
        if rec.date_marked in skip_dates:
            continue
        if rec.status != "absent":
            break
        streak += 1

    last_seen = next((r.date_marked for r in records if r.status in ("present", "late")), None)
    student.consecutive_absence_days = streak
    student.last_attendance_date = last_seen
    return streak


def save_class_attendance(tenant_id, school_class, marked_on, statuses, recorded_by=None):
    """Replace a class register for one day.

    ``statuses`` maps student_id -> status. Returns the number of records saved.
    """
    if marked_on is None:
        raise ValidationError("Attendance date is required.")
    if marked_on > date.today():
        raise ValidationError("Attendance cannot be recorded for a future date.")
    if school_class is None or school_class.tenant_id_fk != tenant_id:
        raise NotFoundError("Class not found.")

    students = {
        s.student_id: s for s in db.session.execute(
            select(Student).filter_by(tenant_id_fk=tenant_id, class_id_fk=school_class.class_id, status="active")
        ).scalars()
    }
    for sid, status in statuses.items():
        if status not in ATTENDANCE_STATUSES:
            raise ValidationError(f"Invalid attendance status '{status}'.")
        if sid not in students:
            raise ConflictError("A student on the register is not an active member of this class.")

    # a student who moved class may already hold a record for the day under the old class
    replaced = or_(
        AttendanceRecord.class_id_fk == school_class.class_id,
        AttendanceRecord.student_id_fk.in_(list(statuses)),
    )
    touched = set(db.session.execute(
        select(AttendanceRecord.student_id_fk).where(
            AttendanceRecord.tenant_id_fk == tenant_id,
            AttendanceRecord.date_marked == marked_on,
            replaced,
        )
    ).scalars())
    db.session.execute(
        delete(AttendanceRecord).where(
            AttendanceRecord.tenant_id_fk == tenant_id,
            AttendanceRecord.date_marked == marked_on,
            replaced,
        )
    )
    for sid, status in statuses.items():
        db.session.add(AttendanceRecord(
            tenant_id_fk=tenant_id,
            student_id_fk=sid,
            class_id_fk=school_class.class_id,
            date_marked=marked_on,
            status=status,
            recorded_by_id_fk=recorded_by,
        ))
    db.session.flush()

    skip = streak_skip_dates(tenant_id)
    for sid in touched | set(statuses):
        student = students.get(sid) or db.session.get(Student, sid)
        if student is not None:
            recompute_absence_streak(student, skip)
    return len(statuses)


def streak_skip_dates(tenant_id):
    """Dates left out of absence streaks: the tenant's holidays unless the school counts them."""
    settings = db.session.execute(select(WithdrawalSettings).filter_by(tenant_id_fk=tenant_id)).scalars().first()
    exclude = settings is None or settings.exclude_holidays is not False
    return holiday_dates(tenant_id) if exclude else set()


def refresh_absence_streaks(tenant_id):
    """Recompute every active student's streak, e.g. after the holiday list changes."""
    skip = streak_skip_dates(tenant_id)
    rows = db.session.execute(
        select(Student).filter_by(tenant_id_fk=tenant_id, status="active")
    ).scalars().all()
    for student in rows:
        recompute_absence_streak(student, skip)
    return len(rows)


def attendance_summary(records):
    summary = {s: 0 for s in ATTENDANCE_STATUSES}
    for r in records:
        if r.status in summary:
            summary[r.status] += 1
    summary["total"] = sum(summary[s] for s in ATTENDANCE_STATUSES)
    attended = summary["present"] + summary["late"]
    summary["rate"] = round(attended / summary["total"] * 100, 1) if summary["total"] else 0.0
    return summary


def class_attendance_for(tenant_id, class_id, marked_on):
    rows = db.session.execute(
        select(AttendanceRecord).filter_by(tenant_id_fk=tenant_id, class_id_fk=class_id, date_marked=marked_on)
    ).scalars().all()
    return {r.student_id_fk: r.status for r in rows}


def class_size(tenant_id, class_id):
    return db.session.execute(
        select(func.count(Student.student_id)).filter_by(tenant_id_fk=tenant_id, class_id_fk=class_id, status="active")
    ).scalar() or 0
