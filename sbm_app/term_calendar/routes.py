from flask import render_template, request, redirect, url_for, flash
from flask_login import login_required, current_user
from sqlalchemy import select

from . import calendar_bp
from .. import db, csrf_required
from ..decorators import role_required, ACADEMIC_STAFF, TEACHING_STAFF
from ..errors import ServiceError
from ..models import CalendarEvent, SchoolHoliday, AcademicTerm
from ..tenancy import current_tenant_id, get_tenant_row, get_tenant_row_or_404, parse_date, parse_time, parse_int, today
from ..academics.services import tenant_terms
from ..exams.services import current_term
from . import services


def _term_filter(tid):
    term_id = parse_int(request.args.get("term_id"))
    if term_id:
        return get_tenant_row(AcademicTerm, term_id, tid)
    return current_term(tid)


@calendar_bp.route("/")
@login_required
@role_required(*TEACHING_STAFF, "bursar")
def events():
    tid = current_tenant_id()
    term = _term_filter(tid)
    rows = services.list_events(tid, term_id=term.term_id if term else None)
    return render_template(
        "term_calendar/events.html",
        events=rows,
        counts=services.publication_counts(rows),
        term=term,
        terms=tenant_terms(tid),
        event_types=services.EVENT_TYPES,
    )


@calendar_bp.route("/month")
@login_required
@role_required(*TEACHING_STAFF, "bursar")
def month_view():
    tid = current_tenant_id()
    now = today()
    year = parse_int(request.args.get("year"), now.year)
    month = parse_int(request.args.get("month"), now.month)
    if not 1 <= month <= 12:
        month = now.month
    weeks = services.month_grid(year, month)
    rows = services.list_events(tid)
    cells = [[(day, services.events_on(day, rows)) for day in week] for week in weeks]
    return render_template(
        "term_calendar/month.html",
        year=year,
        month=month,
        weeks=cells,
        prev_month=services.shift_month(year, month, -1),
        next_month=services.shift_month(year, month, 1),
        today=now,
    )


@calendar_bp.route("/events/new", methods=["GET", "POST"])
@calendar_bp.route("/events/<int:event_id>/edit", methods=["GET", "POST"])
@login_required
@role_required(*ACADEMIC_STAFF)
@csrf_required
def edit_event(event_id=None):
    tid = current_tenant_id()
    event = get_tenant_row_or_404(CalendarEvent, event_id) if event_id else None
    if request.method == "POST":
        data = {
            "title": request.form.get("title"),
            "description": request.form.get("description"),
            "event_type": request.form.get("event_type"),
            "term_id": parse_int(request.form.get("term_id")),
            "start_date": parse_date(request.form.get("start_date")),
            "end_date": parse_date(request.form.get("end_date")),
            "is_all_day": request.form.get("is_all_day") == "on",
            "start_time": parse_time(request.form.get("start_time")),
            "end_time": parse_time(request.form.get("end_time")),
        }
        try:
            services.save_event(tid, data, event, created_by=current_user.user_id)
            db.session.commit()
            flash("Event saved.", "success")
            return redirect(url_for("term_calendar.events"))
        except ServiceError as e:
            db.session.rollback()
            flash(str(e), "danger")
    return render_template("term_calendar/event_form.html", event=event, terms=tenant_terms(tid),
                           event_types=services.EVENT_TYPES)


@calendar_bp.route("/events/<int:event_id>/publish", methods=["POST"])
@login_required
@role_required(*ACADEMIC_STAFF)
@csrf_required
def toggle_publish(event_id):
    event = get_tenant_row_or_404(CalendarEvent, event_id)
    services.toggle_published(event)
    db.session.commit()
    flash(f"'{event.title}' {'published' if event.is_published else 'moved to draft'}.", "success")
    return redirect(url_for("term_calendar.events"))


@calendar_bp.route("/events/<int:event_id>/delete", methods=["POST"])
@login_required
@role_required(*ACADEMIC_STAFF)
@csrf_required
def delete_event(event_id):
    event = get_tenant_row_or_404(CalendarEvent, event_id)
    db.session.delete(event)
    db.session.commit()
    flash("Event deleted.", "success")
    return redirect(url_for("term_calendar.events"))


@calendar_bp.route("/print")
@login_required
@role_required(*TEACHING_STAFF, "bursar")
def print_calendar():
    tid = current_tenant_id()
    term = _term_filter(tid)
    rows = services.list_events(tid, term_id=term.term_id if term else None, published_only=True)
    return render_template("term_calendar/print.html", term=term, months=services.events_by_month(rows),
                           event_types=services.EVENT_TYPES)


# ==========================================
# HOLIDAYS
# ==========================================

@calendar_bp.route("/holidays", methods=["GET", "POST"])
@login_required
@role_required(*ACADEMIC_STAFF)
@csrf_required
def holidays():
    tid = current_tenant_id()
    if request.method == "POST":
        holiday_id = parse_int(request.form.get("holiday_id"))
        try:
            existing = get_tenant_row_or_404(SchoolHoliday, holiday_id) if holiday_id else None
            services.save_holiday(tid, {
                "name": request.form.get("name"),
                "start_date": parse_date(request.form.get("start_date")),
                "end_date": parse_date(request.form.get("end_date")),
                "holiday_type": request.form.get("holiday_type"),
            }, existing)
            db.session.commit()
            flash("Holiday saved.", "success")
        except ServiceError as e:
            db.session.rollback()
            flash(str(e), "danger")
        return redirect(url_for("term_calendar.holidays"))
    rows = db.session.execute(
        select(SchoolHoliday).filter_by(tenant_id_fk=tid).order_by(SchoolHoliday.start_date.desc())
    ).scalars().all()
    return render_template("term_calendar/holidays.html", holidays=rows, holiday_types=services.HOLIDAY_TYPES,
                           holiday_days=services.holiday_days)


@calendar_bp.route("/holidays/<int:holiday_id>/delete", methods=["POST"])
@login_required
@role_required(*ACADEMIC_STAFF)
@csrf_required
def delete_holiday(holiday_id):
    holiday = get_tenant_row_or_404(SchoolHoliday, holiday_id)
    services.delete_holiday(holiday)
    db.session.commit()
    flash("Holiday removed.", "success")
    return redirect(url_for("term_calendar.holidays"))
