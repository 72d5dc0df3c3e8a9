from sqlalchemy import select

from .. import db
from ..errors import ValidationError, ConflictError
from ..models import TimetablePeriod, TimetableEntry, Subject, User, SchoolClass

PERIOD_TYPES = ("lesson", "break", "lunch", "assembly")
DAY_NAMES = {0: "Sunday", 1: "Monday", 2: "Tuesday", 3: "Wednesday", 4: "Thursday", 5: "Friday", 6: "Saturday"}
WEEKDAYS = (1, 2, 3, 4, 5)


def save_period(tenant_id, data, period=None):
    name = (data.get("name") or "").strip()
    start, end = data.get("start_time"), data.get("end_time")
    ptype = (data.get("period_type") or "lesson").strip().lower()
    errors = []
    if not name:
        errors.append("Period name is required.")
    if not start or not end:
        errors.append("Start and end times are required.")
    elif end <= start:
        errors.append("End time must be after start time.")
    if ptype not in PERIOD_TYPES:
        errors.append("Unknown period type.")
    if errors:
        raise ValidationError(" ".join(errors))
    if period is None:
        period = TimetablePeriod(tenant_id_fk=tenant_id)
        db.session.add(period)
    period.name = name
    period.start_time = start
    period.end_time = end
    period.period_type = ptype
    period.display_order = data.get("display_order") or 0
    return period


def active_periods(tenant_id):
    return db.session.execute(
        select(TimetablePeriod)
        .filter_by(tenant_id_fk=tenant_id, is_active=True)
        .order_by(TimetablePeriod.display_order, TimetablePeriod.start_time)
    ).scalars().all()


def _find_cell(class_id, period_id, day):
    return db.session.execute(
        select(TimetableEntry).filter_by(class_id_fk=class_id, period_id_fk=period_id, day_of_week=day, is_active=True)
    ).scalars().first()


def save_timetable_entry(tenant_id, class_id, period_id, day_of_week, subject_id, teacher_id=None, room=None):
    school_class = db.session.get(SchoolClass, class_id) if class_id else None
    period = db.session.get(TimetablePeriod, period_id) if period_id else None
    subject = db.session.get(Subject, subject_id) if subject_id else None
    teacher = db.session.get(User, teacher_id) if teacher_id else None
    for row, label in ((school_class, "Class"), (period, "Period"), (subject, "Subject")):
        if row is None or row.tenant_id_fk != tenant_id:
            raise ValidationError(f"{label} is required.")
    if teacher is not None and teacher.tenant_id_fk != tenant_id:
        raise ValidationError("Teacher not found.")
    if day_of_week not in DAY_NAMES:
        raise ValidationError("Day of week must be between 0 (Sunday) and 6 (Saturday).")
    if not period.is_active:
        raise ValidationError("Period is no longer active.")
    if period.period_type != "lesson":
        raise ValidationError(f"{period.name} is a {period.period_type} period; lessons cannot be scheduled in it.")

    if teacher is not None:
        clash = db.session.execute(
            select(TimetableEntry).filter(
                TimetableEntry.tenant_id_fk == tenant_id,
                TimetableEntry.teacher_id_fk == teacher.user_id,
                TimetableEntry.period_id_fk == period.period_id,
                TimetableEntry.day_of_week == day_of_week,
                TimetableEntry.is_active == True,  # noqa: E712
                TimetableEntry.class_id_fk != school_class.class_id,
            )
        ).scalars().first()
        if clash:
            raise ConflictError(
                f"{teacher.display_name} already teaches {clash.school_class.display_name} "
                f"on {DAY_NAMES[day_of_week]} during {period.name}."
            )

    entry = _find_cell(school_class.class_id, period.period_id, day_of_week)
    if entry is None:
        entry = TimetableEntry(
            tenant_id_fk=tenant_id,
            class_id_fk=school_class.class_id,
            period_id_fk=period.period_id,
            day_of_week=day_of_week,
        )
        db.session.add(entry)
    entry.subject_id_fk = subject.subject_id
    entry.teacher_id_fk = teacher.user_id if teacher else None
    entry.room = (room or "").strip() or None
    return entry


def class_timetable_grid(tenant_id, class_id):
    """Rows of (period, {day: entry}) and the list of days to show."""
    periods = active_periods(tenant_id)
    entries = db.session.execute(
        select(TimetableEntry).filter_by(tenant_id_fk=tenant_id, class_id_fk=class_id, is_active=True)
    ).scalars().all()
    cells = {(e.period_id_fk, e.day_of_week): e for e in entries}
    days = list(WEEKDAYS)
    if any(e.day_of_week == 6 for e in entries):
        days.append(6)
    rows = [(p, {d: cells.get((p.period_id, d)) for d in days}) for p in periods]
    return rows, days


def teacher_load(tenant_id):
    """Lessons per teacher per week."""
    load = {}
    for e in db.session.execute(
        select(TimetableEntry).filter_by(tenant_id_fk=tenant_id, is_active=True)
    ).scalars():
        if e.teacher is not None:
            load[e.teacher.display_name] = load.get(e.teacher.display_name, 0) + 1
    return sorted(load.items())
