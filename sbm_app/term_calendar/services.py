import calendar
from datetime import date, timedelta
from sqlalchemy import select

from .. import db
from ..errors import ValidationError
from ..models import CalendarEvent, SchoolHoliday, AcademicTerm
from ..students.services import refresh_absence_streaks

EVENT_TYPES = {
    "general": ("General", "#3B82F6"),
    "exam": ("Exam", "#EF4444"),
    "holiday": ("Holiday", "#22C55E"),
    "meeting": ("Meeting", "#8B5CF6"),
    "sports": ("Sports", "#F97316"),
    "cultural": ("Cultural", "#EC4899"),
    "deadline": ("Deadline", "#EAB308"),
}
HOLIDAY_TYPES = ("public", "school", "mid_term")


def save_event(tenant_id, data, event=None, created_by=None):
    title = (data.get("title") or "").strip()
    event_type = (data.get("event_type") or "general").strip().lower()
    start = data.get("start_date")
    end = data.get("end_date") or start
    all_day = bool(data.get("is_all_day", True))
    errors = []
    if not title:
        errors.append("Title is required.")
    if event_type not in EVENT_TYPES:
        errors.append("Unknown event type.")
    if start is None:
        errors.append("Start date is required.")
    elif end < start:
        errors.append("End date cannot be before the start date.")
    start_time = None if all_day else data.get("start_time")
    end_time = None if all_day else data.get("end_time")
    if start_time and end_time and start == end and end_time <= start_time:
        errors.append("End time must be after start time.")
    if errors:
        raise ValidationError(" ".join(errors))

    term = None
    if data.get("term_id"):
        term = db.session.get(AcademicTerm, data["term_id"])
        if term is None or term.tenant_id_fk != tenant_id:
            raise ValidationError("Term not found.")
    else:
        term = db.session.execute(
            select(AcademicTerm).filter_by(tenant_id_fk=tenant_id, is_current=True)
        ).scalars().first()

    if event is None:
        event = CalendarEvent(tenant_id_fk=tenant_id, created_by_id_fk=created_by, is_published=False)
        db.session.add(event)
    event.title = title
    event.description = (data.get("description") or "").strip() or None
    event.event_type = event_type
    event.term_id_fk = term.term_id if term else None
    event.start_date = start
    event.end_date = end
    event.is_all_day = all_day
    event.start_time = start_time
    event.end_time = end_time
    event.color = EVENT_TYPES[event_type][1]
    return event


def toggle_published(event):
    event.is_published = not event.is_published
    return event


def list_events(tenant_id, term_id=None, published_only=False):
    q = select(CalendarEvent).filter_by(tenant_id_fk=tenant_id)
    if term_id:
        q = q.filter(CalendarEvent.term_id_fk == term_id)
    if published_only:
        q = q.filter(CalendarEvent.is_published == True)  # noqa: E712
    return db.session.execute(q.order_by(CalendarEvent.start_date, CalendarEvent.start_time)).scalars().all()


def publication_counts(events):
    published = sum(1 for e in events if e.is_published)
    return {"published": published, "draft": len(events) - published, "total": len(events)}


def month_grid(year, month):
    """Weeks (Sunday first) covering the month, as lists of dates."""
    cal = calendar.Calendar(firstweekday=calendar.SUNDAY)
    return cal.monthdatescalendar(year, month)


def events_on(day, events):
    return [e for e in events if e.start_date <= day <= e.end_date]


def shift_month(year, month, delta):
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def events_by_month(events):
    """[(first_of_month, [events])] for the printable calendar."""
    groups = {}
    for e in events:
        groups.setdefault(date(e.start_date.year, e.start_date.month, 1), []).append(e)
    return sorted(groups.items())


def save_holiday(tenant_id, data, holiday=None):
    name = (data.get("name") or "").strip()
    start = data.get("start_date")
    end = data.get("end_date") or start
    htype = (data.get("holiday_type") or "public").strip().lower()
    errors = []
    if not name:
        errors.append("Holiday name is required.")
    if start is None:
        errors.append("Start date is required.")
    elif end < start:
        errors.append("End date cannot be before the start date.")
    if htype not in HOLIDAY_TYPES:
        errors.append("Unknown holiday type.")
    if errors:
        raise ValidationError(" ".join(errors))
    if holiday is None:
        holiday = SchoolHoliday(tenant_id_fk=tenant_id)
        db.session.add(holiday)
    holiday.name = name
    holiday.start_date = start
    holiday.end_date = end
    holiday.holiday_type = htype
    db.session.flush()
    refresh_absence_streaks(tenant_id)
    return holiday


def delete_holiday(holiday):
    tenant_id = holiday.tenant_id_fk
    db.session.delete(holiday)
    db.session.flush()
    refresh_absence_streaks(tenant_id)


def holiday_days(holiday):
    return (holiday.end_date - holiday.start_date + timedelta(days=1)).days
