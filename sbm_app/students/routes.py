from flask import render_template, request, redirect, url_for, flash, current_app
from flask_login import login_required, current_user
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from . import students_bp
from .. import db, csrf_required
from ..decorators import role_required, ACADEMIC_STAFF, TEACHING_STAFF
from ..errors import ServiceError
from ..models import Student, SchoolClass, AttendanceRecord
from ..tenancy import current_tenant_id, get_tenant_row_or_404, parse_date, parse_int, today
from ..academics.services import active_classes
from ..fees.services import outstanding_balance
from ..lifecycle import services as lifecycle_services
from . import services


def _student_form_data():
    data = {field: request.form.get(field) for field in services.STUDENT_FIELDS if field in request.form}
    data.update({
        "full_name": request.form.get("full_name"),
        "class_id": parse_int(request.form.get("class_id")),
        "admission_number": request.form.get("admission_number"),
        "boarding_status": request.form.get("boarding_status"),
        "date_of_birth": parse_date(request.form.get("date_of_birth")),
        "admission_date": parse_date(request.form.get("admission_date")),
    })
    return data


@students_bp.route("/")
@login_required
@role_required(*TEACHING_STAFF, "bursar")
def list_students():
    tid = current_tenant_id()
    class_id = parse_int(request.args.get("class_id"))
    status = (request.args.get("status") or "active").strip()
    search = (request.args.get("q") or "").strip()
    students = services.list_students(tid, class_id=class_id, status=status or None, search=search or None)
    return render_template(
        "students/list.html",
        students=students,
        classes=active_classes(tid),
        class_id=class_id,
        status=status,
        search=search,
    )


@students_bp.route("/new", methods=["GET", "POST"])
@login_required
@role_required(*ACADEMIC_STAFF)
@csrf_required
def enroll():
    tid = current_tenant_id()
    if request.method == "POST":
        data = _student_form_data()
        try:
            student = services.enroll_student(tid, data)
            db.session.commit()
        except ServiceError as e:
            db.session.rollback()
            flash(str(e), "danger")
            return render_template("students/form.html", student=None, form=request.form,
                                   classes=active_classes(tid), genders=services.GENDERS)
        except SQLAlchemyError:
            db.session.rollback()
            current_app.logger.exception("Enrollment failed")
            flash("Could not enroll student. Please try again.", "danger")
            return redirect(url_for("students.enroll"))
        current_app.logger.info("Enrolled %s (%s) in tenant %s", student.full_name, student.admission_number, tid)
        flash(f"{student.full_name} enrolled as {student.admission_number}.", "success")
        return redirect(url_for("students.profile", student_id=student.student_id))
    return render_template(
        "students/form.html",
        student=None,
        form={"admission_number": services.next_admission_number(tid)},
        classes=active_classes(tid),
        genders=services.GENDERS,
    )


@students_bp.route("/<int:student_id>/edit", methods=["GET", "POST"])
@login_required
@role_required(*ACADEMIC_STAFF)
@csrf_required
def edit(student_id):
    tid = current_tenant_id()
    student = get_tenant_row_or_404(Student, student_id)
    if request.method == "POST":
        try:
            services.update_student(student, _student_form_data())
            db.session.commit()
            flash("Student details updated.", "success")
            return redirect(url_for("students.profile", student_id=student.student_id))
        except ServiceError as e:
            db.session.rollback()
            flash(str(e), "danger")
        except SQLAlchemyError:
            db.session.rollback()
            current_app.logger.exception("Student update failed")
            flash("Could not save changes. Please try again.", "danger")
    return render_template("students/form.html", student=student, form=request.form or None,
                           classes=active_classes(tid), genders=services.GENDERS)


@students_bp.route("/<int:student_id>")
@login_required
@role_required(*TEACHING_STAFF, "bursar")
def profile(student_id):
    student = get_tenant_row_or_404(Student, student_id)
    records = db.session.execute(
        select(AttendanceRecord).filter_by(student_id_fk=student.student_id)
        .order_by(AttendanceRecord.date_marked.desc()).limit(30)
    ).scalars().all()
    return render_template(
        "students/profile.html",
        student=student,
        attendance=records,
        attendance_summary=services.attendance_summary(records),
        balance=outstanding_balance(student.student_id),
        history=lifecycle_services.status_history(student.student_id),
    )


# ==========================================
# ATTENDANCE
# ==========================================

@students_bp.route("/attendance", methods=["GET", "POST"])
@login_required
@role_required(*TEACHING_STAFF)
@csrf_required
def attendance():
    tid = current_tenant_id()
    classes = active_classes(tid)
    class_id = parse_int(request.values.get("class_id"))
    marked_on = parse_date(request.values.get("date"), today())
    school_class = get_tenant_row_or_404(SchoolClass, class_id) if class_id else None

    if request.method == "POST" and school_class is not None:
        statuses = {}
        for key, value in request.form.items():
            if key.startswith("status_"):
                sid = parse_int(key[len("status_"):])
                if sid is not None:
                    statuses[sid] = value
        try:
            saved = services.save_class_attendance(tid, school_class, marked_on, statuses, recorded_by=current_user.user_id)
            db.session.commit()
            flash(f"Attendance saved for {saved} student(s).", "success")
        except ServiceError as e:
            db.session.rollback()
            flash(str(e), "danger")
        except SQLAlchemyError:
            db.session.rollback()
            current_app.logger.exception("Attendance save failed")
            flash("Could not save attendance. Please try again.", "danger")
        return redirect(url_for("students.attendance", class_id=class_id, date=marked_on.isoformat()))

    students, existing = [], {}
    if school_class is not None:
        students = services.list_students(tid, class_id=school_class.class_id, status="active")
        existing = services.class_attendance_for(tid, school_class.class_id, marked_on)
    return render_template(
        "students/attendance.html",
        classes=classes,
        school_class=school_class,
        students=students,
        existing=existing,
        marked_on=marked_on,
        statuses=services.ATTENDANCE_STATUSES,
    )
