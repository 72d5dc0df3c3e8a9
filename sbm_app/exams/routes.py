from flask import render_template, request, redirect, url_for, flash, current_app
from flask_login import login_required, current_user
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from . import exams_bp
from .. import db, csrf_required
from ..decorators import role_required, ACADEMIC_STAFF, TEACHING_STAFF
from ..errors import ServiceError
from ..models import Exam, ExamType, Student
from ..tenancy import current_tenant_id, get_tenant_row_or_404, parse_date, parse_time, parse_float, parse_int, today
from ..academics.services import active_classes, active_subjects, tenant_terms
from . import services


def _exam_types(tid):
    return db.session.execute(
        select(ExamType).filter_by(tenant_id_fk=tid).order_by(ExamType.display_order, ExamType.name)
    ).scalars().all()


# --- EXAM TYPES ---

@exams_bp.route("/types", methods=["GET", "POST"])
@login_required
@role_required(*ACADEMIC_STAFF)
@csrf_required
def exam_types():
    tid = current_tenant_id()
    if request.method == "POST":
        type_id = parse_int(request.form.get("exam_type_id"))
        try:
            existing = get_tenant_row_or_404(ExamType, type_id) if type_id else None
            services.save_exam_type(tid, {
                "name": request.form.get("name"),
                "code": request.form.get("code"),
                "weight_percentage": parse_float(request.form.get("weight_percentage"), None),
                "description": request.form.get("description"),
                "display_order": parse_int(request.form.get("display_order"), 0),
                "is_active": request.form.get("is_active", "on") == "on",
            }, existing)
            db.session.commit()
            flash("Exam type saved.", "success")
        except ServiceError as e:
            db.session.rollback()
            flash(str(e), "danger")
        return redirect(url_for("exams.exam_types"))
    return render_template("exams/types.html", exam_types=_exam_types(tid))


# --- EXAMS ---

@exams_bp.route("/")
@login_required
@role_required(*TEACHING_STAFF)
def list_exams():
    tid = current_tenant_id()
    view = request.args.get("view", "all")
    if view not in ("all", "upcoming", "completed"):
        view = "all"
    class_id = parse_int(request.args.get("class_id"))
    return render_template(
        "exams/list.html",
        exams=services.list_exams(tid, view=view, class_id=class_id, today=today()),
        view=view,
        class_id=class_id,
        classes=active_classes(tid),
    )


def _exam_form_data():
    return {
        "exam_type_id": parse_int(request.form.get("exam_type_id")),
        "class_id": parse_int(request.form.get("class_id")),
        "subject_id": parse_int(request.form.get("subject_id")),
        "term_id": parse_int(request.form.get("term_id")),
        "exam_date": parse_date(request.form.get("exam_date")),
        "start_time": parse_time(request.form.get("start_time")),
        "end_time": parse_time(request.form.get("end_time")),
        "duration_minutes": parse_int(request.form.get("duration_minutes"), 60),
        "max_marks": parse_float(request.form.get("max_marks"), 100.0),
        "venue": request.form.get("venue"),
        "instructions": request.form.get("instructions"),
        "status": (request.form.get("status") or "scheduled").strip(),
    }


@exams_bp.route("/new", methods=["GET", "POST"])
@exams_bp.route("/<int:exam_id>/edit", methods=["GET", "POST"])
@login_required
@role_required(*ACADEMIC_STAFF)
@csrf_required
def edit_exam(exam_id=None):
    tid = current_tenant_id()
    exam = get_tenant_row_or_404(Exam, exam_id) if exam_id else None
    if request.method == "POST":
        try:
            exam = services.save_exam(tid, _exam_form_data(), exam)
            db.session.commit()
            flash("Exam saved.", "success")
            return redirect(url_for("exams.list_exams"))
        except ServiceError as e:
            db.session.rollback()
            flash(str(e), "danger")
        except SQLAlchemyError:
            db.session.rollback()
            current_app.logger.exception("Saving exam failed")
            flash("Exam could not be saved. Please try again.", "danger")
    return render_template(
        "exams/form.html",
        exam=exam,
        exam_types=[t for t in _exam_types(tid) if t.is_active],
        classes=active_classes(tid),
        subjects=active_subjects(tid),
        terms=tenant_terms(tid),
        current_term=services.current_term(tid),
        statuses=services.EXAM_STATUSES,
    )


@exams_bp.route("/<int:exam_id>/status", methods=["POST"])
@login_required
@role_required(*ACADEMIC_STAFF)
@csrf_required
def update_status(exam_id):
    exam = get_tenant_row_or_404(Exam, exam_id)
    try:
        services.set_exam_status(exam, (request.form.get("status") or "").strip())
        db.session.commit()
        flash(f"Exam marked {exam.status}.", "success")
    except ServiceError as e:
        db.session.rollback()
        flash(str(e), "danger")
    return redirect(request.referrer or url_for("exams.list_exams"))


@exams_bp.route("/<int:exam_id>/delete", methods=["POST"])
@login_required
@role_required(*ACADEMIC_STAFF)
@csrf_required
def delete_exam(exam_id):
    exam = get_tenant_row_or_404(Exam, exam_id)
    if exam.scores:
        flash("Exams with recorded results cannot be deleted; cancel it instead.", "danger")
        return redirect(url_for("exams.list_exams"))
    db.session.delete(exam)
    db.session.commit()
    flash("Exam deleted.", "success")
    return redirect(url_for("exams.list_exams"))


@exams_bp.route("/<int:exam_id>/results", methods=["GET", "POST"])
@login_required
@role_required(*TEACHING_STAFF)
@csrf_required
def results(exam_id):
    tid = current_tenant_id()
    exam = get_tenant_row_or_404(Exam, exam_id)
    students = db.session.execute(
        select(Student).filter_by(tenant_id_fk=tid, class_id_fk=exam.class_id_fk, status="active").order_by(Student.full_name)
    ).scalars().all()

    if request.method == "POST":
        rows = {}
        for s in students:
            raw = (request.form.get(f"marks_{s.student_id}") or "").strip()
            rows[s.student_id] = {
                "marks": parse_float(raw, None) if raw else None,
                "absent": request.form.get(f"absent_{s.student_id}") == "on",
                "remarks": request.form.get(f"remarks_{s.student_id}"),
            }
        try:
            saved = services.save_exam_results(exam, rows, graded_by=current_user.user_id)
            db.session.commit()
            flash(f"Saved results for {saved} student(s).", "success")
            return redirect(url_for("exams.results", exam_id=exam_id))
        except ServiceError as e:
            db.session.rollback()
            flash(str(e), "danger")

    return render_template(
        "exams/results.html",
        exam=exam,
        students=students,
        scores={s.student_id_fk: s for s in exam.scores},
        stats=services.exam_statistics(exam),
    )
