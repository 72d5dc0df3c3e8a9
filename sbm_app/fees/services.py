from sqlalchemy import select

from .. import db
from ..errors import ValidationError, ConflictError
from ..models import StudentFee, FeePayment

PAYMENT_METHODS = ("cash", "mobile_money", "bank")


def add_fee(student, description, amount, term_id=None, due_date=None):
    if amount is None or amount <= 0:
        raise ValidationError("Fee amount must be greater than zero.")
    if student.status != "active":
        raise ConflictError("Fees can only be charged to active students.")
    fee = StudentFee(
        tenant_id_fk=student.tenant_id_fk,
        student_id_fk=student.student_id,
        term_id_fk=term_id,
        description=(description or "").strip() or "Tuition",
        total_amount=round(amount, 2),
        amount_paid=0.0,
        status="pending",
        due_date=due_date,
    )
    db.session.add(fee)
    return fee


def record_fee_payment(fee, amount, payment_method="cash", reference=None, received_by=None):
    if fee.status == "voided":
        raise ConflictError("Payments cannot be recorded against a voided fee.")
    if fee.status == "paid":
        raise ConflictError("This fee is already fully paid.")
    if amount is None or amount <= 0:
        raise ValidationError("Payment amount must be greater than zero.")
    if amount > fee.balance + 0.005:
        raise ValidationError(f"Payment exceeds the outstanding balance of {fee.balance:,.0f}.")
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError("Unknown payment method.")

    payment = FeePayment(
        tenant_id_fk=fee.tenant_id_fk,
        fee_id_fk=fee.fee_id,
        student_id_fk=fee.student_id_fk,
        amount=round(amount, 2),
        payment_method=payment_method,
        reference=(reference or "").strip() or None,
        received_by_id_fk=received_by,
    )
    db.session.add(payment)
    fee.amount_paid = round((fee.amount_paid or 0.0) + amount, 2)
    fee.status = "paid" if fee.balance <= 0.005 else "partial"
    return payment


def outstanding_balance(student_id, term_id=None):
    q = select(StudentFee).filter(StudentFee.student_id_fk == student_id, StudentFee.status != "voided")
    if term_id:
        q = q.filter(StudentFee.term_id_fk == term_id)
    return round(sum(f.balance for f in db.session.execute(q).scalars()), 2)
