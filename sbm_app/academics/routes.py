from flask import render_template, request, redirect, url_for, flash, current_app
from flask_login import login_required, current_user
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.security import generate_password_hash

from . import academics_bp
from .. import db, csrf_required
from ..decorators import role_required, ACADEMIC_STAFF
from ..errors import ServiceError
from ..models import SchoolClass, Subject, AcademicTerm, LearningArea, User
from ..tenancy import current_tenant_id, get_tenant_row_or_404, parse_date, parse_int
from . import services

STAFF_ROLES = ("admin", "head_teacher", "bursar", "teacher", "cashier")


def _commit(success_message):
    try:
        db.session.commit()
        flash(success_message, "success")
        return True
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Academic setup save failed")
        flash("Could not save changes. Please try again.", "danger")
        return False


# ==========================================
# CLASSES
# ==========================================

@academics_bp.route("/classes", methods=["GET", "POST"])
@login_required
@role_required(*ACADEMIC_STAFF)
@csrf_required
def classes():
    tid = current_tenant_id()
    if request.method == "POST":
        data = {
            "name": request.form.get("name"),
            "section": request.form.get("section"),
            "level": request.form.get("level"),
            "capacity": parse_int(request.form.get("capacity"), 40),
            "is_ecd": request.form.get("is_ecd") == "on",
            "class_teacher_id": parse_int(request.form.get("class_teacher_id")),
        }
        class_id = parse_int(request.form.get("class_id"))
        try:
            existing = get_tenant_row_or_404(SchoolClass, class_id) if class_id else None
            services.save_class(tid, data, existing)
            _commit("Class saved.")
        except ServiceError as e:
            db.session.rollback()
            flash(str(e), "danger")
        return redirect(url_for("academics.classes"))
    return render_template(
        "academics/classes.html",
        classes=services.active_classes(tid),
        teachers=services.teachers(tid),
    )


@academics_bp.route("/classes/<int:class_id>/archive", methods=["POST"])
@login_required
@role_required(*ACADEMIC_STAFF)
@csrf_required
def archive_class(class_id):
    c = get_tenant_row_or_404(SchoolClass, class_id)
    active_students = [s for s in c.students if s.status == "active"]
    if active_students:
        flash(f"{c.display_name} still has {len(active_students)} active student(s).", "danger")
        return redirect(url_for("academics.classes"))
    c.is_active = False
    _commit(f"Class {c.display_name} archived.")
    return redirect(url_for("academics.classes"))


# ==========================================
# SUBJECTS
# ==========================================

@academics_bp.route("/subjects", methods=["GET", "POST"])
@login_required
@role_required(*ACADEMIC_STAFF)
@csrf_required
def subjects():
    tid = current_tenant_id()
    if request.method == "POST":
        subject_id = parse_int(request.form.get("subject_id"))
        data = {
            "name": request.form.get("name"),
            "code": request.form.get("code"),
            "level": request.form.get("level"),
            "category": request.form.get("category"),
            "display_order": parse_int(request.form.get("display_order"), 0),
        }
        try:
            existing = get_tenant_row_or_404(Subject, subject_id) if subject_id else None
            services.save_subject(tid, data, existing)
            _commit("Subject saved.")
        except ServiceError as e:
            db.session.rollback()
            flash(str(e), "danger")
        return redirect(url_for("academics.subjects"))
    return render_template("academics/subjects.html", subjects=services.active_subjects(tid))


@academics_bp.route("/subjects/<int:subject_id>/archive", methods=["POST"])
@login_required
@role_required(*ACADEMIC_STAFF)
@csrf_required
def archive_subject(subject_id):
    s = get_tenant_row_or_404(Subject, subject_id)
    s.is_active = False
    _commit(f"Subject {s.name} archived.")
    return redirect(url_for("academics.subjects"))


# ==========================================
# TERMS
# ==========================================

@academics_bp.route("/terms", methods=["GET", "POST"])
@login_required
@role_required(*ACADEMIC_STAFF)
@csrf_required
def terms():
    tid = current_tenant_id()
    if request.method == "POST":
        term_id = parse_int(request.form.get("term_id"))
        data = {
            "name": request.form.get("name"),
            "term_number": parse_int(request.form.get("term_number")),
            "year": parse_int(request.form.get("year")),
            "start_date": parse_date(request.form.get("start_date")),
            "end_date": parse_date(request.form.get("end_date")),
            "is_current": request.form.get("is_current") == "on",
        }
        try:
            existing = get_tenant_row_or_404(AcademicTerm, term_id) if term_id else None
            services.save_term(tid, data, existing)
            _commit("Term saved.")
        except ServiceError as e:
            db.session.rollback()
            flash(str(e), "danger")
        return redirect(url_for("academics.terms"))
    return render_template("academics/terms.html", terms=services.tenant_terms(tid))


@academics_bp.route("/terms/<int:term_id>/current", methods=["POST"])
@login_required
@role_required(*ACADEMIC_STAFF)
@csrf_required
def make_current_term(term_id):
    term = get_tenant_row_or_404(AcademicTerm, term_id)
    services.set_current_term(term)
    _commit(f"{term.name} is now the current term.")
    return redirect(url_for("academics.terms"))


# ==========================================
# ECD LEARNING AREAS
# ==========================================

@academics_bp.route("/learning-areas", methods=["GET", "POST"])
@login_required
@role_required(*ACADEMIC_STAFF)
@csrf_required
def learning_areas():
    tid = current_tenant_id()
    if request.method == "POST":
        area_id = parse_int(request.form.get("area_id"))
        try:
            existing = get_tenant_row_or_404(LearningArea, area_id) if area_id else None
            services.save_learning_area(tid, {
                "name": request.form.get("name"),
                "display_order": parse_int(request.form.get("display_order"), 0),
            }, existing)
            _commit("Learning area saved.")
        except ServiceError as e:
            db.session.rollback()
            flash(str(e), "danger")
        return redirect(url_for("academics.learning_areas"))
    areas = db.session.execute(
        select(LearningArea).filter_by(tenant_id_fk=tid, is_active=True).order_by(LearningArea.display_order)
    ).scalars().all()
    return render_template("academics/learning_areas.html", areas=areas)


# ==========================================
# STAFF ACCOUNTS
# ==========================================

@academics_bp.route("/staff", methods=["GET", "POST"])
@login_required
@role_required("admin")
@csrf_required
def staff():
    tid = current_tenant_id()
    if request.method == "POST":
        username = (request.form.get("username") or "").strip()
        password = request.form.get("password") or ""
        role = (request.form.get("role") or "").strip().lower()
        errors = []
        if not username:
            errors.append("Username is required.")
        if len(password) < 8:
            errors.append("Password must be at least 8 characters.")
        if role not in STAFF_ROLES:
            errors.append("Choose a valid role.")
        if username and db.session.execute(select(User).filter_by(username=username)).scalars().first():
            errors.append("Username already taken.")
        if errors:
            for e in errors:
                flash(e, "danger")
        else:
            db.session.add(User(
                tenant_id_fk=tid,
                username=username,
                full_name=(request.form.get("full_name") or "").strip() or None,
                email=(request.form.get("email") or "").strip() or None,
                password_hash=generate_password_hash(password),
                role=role,
                is_active=True,
            ))
            _commit(f"Account {username} created.")
        return redirect(url_for("academics.staff"))
    users = db.session.execute(select(User).filter_by(tenant_id_fk=tid).order_by(User.username)).scalars().all()
    return render_template("academics/staff.html", users=users, roles=STAFF_ROLES)


@academics_bp.route("/staff/<int:user_id>/toggle", methods=["POST"])
@login_required
@role_required("admin")
@csrf_required
def toggle_staff(user_id):
    user = get_tenant_row_or_404(User, user_id)
    if user.user_id == current_user.user_id:
        flash("You cannot deactivate your own account.", "danger")
        return redirect(url_for("academics.staff"))
    user.is_active = not user.is_active
    _commit(f"Account {user.username} {'activated' if user.is_active else 'deactivated'}.")
    return redirect(url_for("academics.staff"))
