from flask import render_template, request, flash, redirect, url_for, current_app
from flask_login import login_required
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from . import timetable_bp
from .. import db, csrf_required
from ..api_utils import api_success, api_error
from ..decorators import role_required, ACADEMIC_STAFF, TEACHING_STAFF
from ..errors import ServiceError, ConflictError
from ..models import SchoolClass, TimetablePeriod, TimetableEntry
from ..tenancy import current_tenant_id, get_tenant_row, get_tenant_row_or_404, parse_int, parse_time
from ..academics.services import active_classes, active_subjects, teachers
from . import services


@timetable_bp.route("/periods", methods=["GET", "POST"])
@login_required
@role_required(*ACADEMIC_STAFF)
@csrf_required
def periods():
    tid = current_tenant_id()
    if request.method == "POST":
        period_id = parse_int(request.form.get("period_id"))
        try:
            existing = get_tenant_row_or_404(TimetablePeriod, period_id) if period_id else None
            services.save_period(tid, {
                "name": request.form.get("name"),
                "start_time": parse_time(request.form.get("start_time")),
                "end_time": parse_time(request.form.get("end_time")),
                "period_type": request.form.get("period_type"),
                "display_order": parse_int(request.form.get("display_order"), 0),
            }, existing)
            db.session.commit()
            flash("Period saved.", "success")
        except ServiceError as e:
            db.session.rollback()
            flash(str(e), "danger")
        return redirect(url_for("timetable.periods"))
    return render_template("timetable/periods.html", periods=services.active_periods(tid),
                           period_types=services.PERIOD_TYPES)


@timetable_bp.route("/periods/<int:period_id>/delete", methods=["POST"])
@login_required
@role_required(*ACADEMIC_STAFF)
@csrf_required
def delete_period(period_id):
    period = get_tenant_row_or_404(TimetablePeriod, period_id)
    period.is_active = False
    db.session.commit()
    flash(f"Period {period.name} removed.", "success")
    return redirect(url_for("timetable.periods"))


@timetable_bp.route("/")
@login_required
@role_required(*TEACHING_STAFF)
def index():
    tid = current_tenant_id()
    class_id = parse_int(request.args.get("class_id"))
    school_class = get_tenant_row(SchoolClass, class_id, tid) if class_id else None
    rows, days = services.class_timetable_grid(tid, school_class.class_id) if school_class else ([], list(services.WEEKDAYS))
    return render_template(
        "timetable/index.html",
        classes=active_classes(tid),
        school_class=school_class,
        rows=rows,
        days=days,
        day_names=services.DAY_NAMES,
        subjects=active_subjects(tid),
        teachers=teachers(tid),
        teacher_load=services.teacher_load(tid),
    )


@timetable_bp.route("/entries", methods=["POST"])
@login_required
@role_required(*ACADEMIC_STAFF)
@csrf_required
def save_entry():
    tid = current_tenant_id()
    class_id = parse_int(request.form.get("class_id"))
    try:
        services.save_timetable_entry(
            tid,
            class_id,
            parse_int(request.form.get("period_id")),
            parse_int(request.form.get("day_of_week")),
            parse_int(request.form.get("subject_id")),
            teacher_id=parse_int(request.form.get("teacher_id")),
            room=request.form.get("room"),
        )
        db.session.commit()
        flash("Timetable updated.", "success")
    except ServiceError as e:
        db.session.rollback()
        flash(str(e), "danger")
    return redirect(url_for("timetable.index", class_id=class_id))


@timetable_bp.route("/entries/<int:entry_id>/delete", methods=["POST"])
@login_required
@role_required(*ACADEMIC_STAFF)
@csrf_required
def delete_entry(entry_id):
    entry = get_tenant_row_or_404(TimetableEntry, entry_id)
    entry.is_active = False
    db.session.commit()
    flash("Lesson removed from the timetable.", "success")
    return redirect(url_for("timetable.index", class_id=entry.class_id_fk))


@timetable_bp.route("/api/save_slot", methods=["POST"])
@login_required
@role_required(*ACADEMIC_STAFF)
@csrf_required
def save_slot():
    tid = current_tenant_id()
    data = request.get_json(silent=True) or {}
    class_id = parse_int(data.get("class_id"))
    period_id = parse_int(data.get("period_id"))
    day = parse_int(data.get("day_of_week"))
    subject_id = parse_int(data.get("subject_id"))  # empty clears the slot

    if not (class_id and period_id) or day is None:
        return api_error("bad_request", "Missing coordinates", 400)

    if not subject_id:
        entry = db.session.execute(
            select(TimetableEntry).filter_by(
                tenant_id_fk=tid, class_id_fk=class_id, period_id_fk=period_id, day_of_week=day, is_active=True
            )
        ).scalars().first()
        if entry:
            entry.is_active = False
            db.session.commit()
        return api_success({"status": "cleared"})

    try:
        entry = services.save_timetable_entry(
            tid, class_id, period_id, day, subject_id,
            teacher_id=parse_int(data.get("teacher_id")), room=data.get("room"),
        )
        db.session.commit()
    except ConflictError as e:
        db.session.rollback()
        return api_error("conflict", str(e), 409)
    except ServiceError as e:
        db.session.rollback()
        return api_error("invalid", str(e), 400)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Saving timetable slot failed")
        return api_error("db_error", "Could not save the slot.", 500)

    return api_success({
        "status": "saved",
        "entry_id": entry.entry_id,
        "subject": entry.subject.name if entry.subject else None,
        "teacher": entry.teacher.display_name if entry.teacher else "Unassigned",
    })


@timetable_bp.route("/print/<int:class_id>")
@login_required
@role_required(*TEACHING_STAFF)
def print_timetable(class_id):
    tid = current_tenant_id()
    school_class = get_tenant_row_or_404(SchoolClass, class_id)
    rows, days = services.class_timetable_grid(tid, school_class.class_id)
    return render_template("timetable/print.html", school_class=school_class, rows=rows, days=days,
                           day_names=services.DAY_NAMES)
