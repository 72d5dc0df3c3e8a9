from flask import render_template, request, redirect, url_for, flash, current_app
from flask_login import login_required, current_user
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from . import fees_bp
from .. import db, csrf_required
from ..decorators import role_required, FINANCE_STAFF
from ..errors import ServiceError
from ..models import Student, StudentFee, AcademicTerm
from ..tenancy import current_tenant_id, get_tenant_row, get_tenant_row_or_404, parse_date, parse_float, parse_int
from ..academics.services import tenant_terms
from . import services


@fees_bp.route("/students/<int:student_id>")
@login_required
@role_required(*FINANCE_STAFF)
def student_fees(student_id):
    tid = current_tenant_id()
    student = get_tenant_row_or_404(Student, student_id)
    fees = db.session.execute(
        select(StudentFee).filter_by(student_id_fk=student.student_id).order_by(StudentFee.created_at.desc())
    ).scalars().all()
    return render_template(
        "fees/student.html",
        student=student,
        fees=fees,
        terms=tenant_terms(tid),
        balance=services.outstanding_balance(student.student_id),
        payment_methods=services.PAYMENT_METHODS,
    )


@fees_bp.route("/students/<int:student_id>/add", methods=["POST"])
@login_required
@role_required(*FINANCE_STAFF)
@csrf_required
def add_fee(student_id):
    tid = current_tenant_id()
    student = get_tenant_row_or_404(Student, student_id)
    term_id = parse_int(request.form.get("term_id"))
    if term_id and get_tenant_row(AcademicTerm, term_id, tid) is None:
        flash("Term not found.", "danger")
        return redirect(url_for("fees.student_fees", student_id=student_id))
    try:
        services.add_fee(
            student,
            request.form.get("description"),
            parse_float(request.form.get("amount"), None),
            term_id=term_id,
            due_date=parse_date(request.form.get("due_date")),
        )
        db.session.commit()
        flash("Fee added.", "success")
    except ServiceError as e:
        db.session.rollback()
        flash(str(e), "danger")
    return redirect(url_for("fees.student_fees", student_id=student_id))


@fees_bp.route("/<int:fee_id>/pay", methods=["POST"])
@login_required
@role_required(*FINANCE_STAFF)
@csrf_required
def record_payment(fee_id):
    fee = get_tenant_row_or_404(StudentFee, fee_id)
    try:
        payment = services.record_fee_payment(
            fee,
            parse_float(request.form.get("amount"), None),
            payment_method=(request.form.get("payment_method") or "cash").strip(),
            reference=request.form.get("reference"),
            received_by=current_user.user_id,
        )
        db.session.commit()
        current_app.logger.info("Fee payment %s recorded against fee %s", payment.payment_id, fee.fee_id)
        flash("Payment recorded.", "success")
    except ServiceError as e:
        db.session.rollback()
        flash(str(e), "danger")
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Fee payment failed for fee %s", fee_id)
        flash("Payment could not be saved. Please try again.", "danger")
    return redirect(url_for("fees.student_fees", student_id=fee.student_id_fk))
