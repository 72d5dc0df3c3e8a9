import pytest

from sbm_app import db
from sbm_app.errors import ValidationError, ConflictError
from sbm_app.fees import services
from sbm_app.models import Student, FeePayment


@pytest.fixture()
def student(ctx, school):
    return db.session.get(Student, school.student_ids[0])


def test_partial_then_full_payment(student, school):
    fee = services.add_fee(student, "Tuition", 250000, term_id=school.term_id)
    db.session.flush()

    services.record_fee_payment(fee, 100000, "mobile_money", reference="MM123")
    assert fee.status == "partial"
    assert fee.balance == 150000
    services.record_fee_payment(fee, 150000, "bank")
    assert fee.status == "paid"
    assert db.session.query(FeePayment).filter_by(fee_id_fk=fee.fee_id).count() == 2

    with pytest.raises(ConflictError):
        services.record_fee_payment(fee, 1)


def test_payment_validation(student):
    fee = services.add_fee(student, "Lunch", 80000)
    db.session.flush()
    with pytest.raises(ValidationError):
        services.record_fee_payment(fee, 90000)
    with pytest.raises(ValidationError):
        services.record_fee_payment(fee, 0)
    with pytest.raises(ValidationError):
        services.record_fee_payment(fee, 1000, "cheque")
    fee.status = "voided"
    with pytest.raises(ConflictError):
        services.record_fee_payment(fee, 1000)


def test_add_fee_rules(student):
    with pytest.raises(ValidationError):
        services.add_fee(student, "Tuition", 0)
    student.status = "withdrawn"
    with pytest.raises(ConflictError):
        services.add_fee(student, "Tuition", 1000)


def test_outstanding_balance_skips_voided(student, school):
    a = services.add_fee(student, "Tuition", 300000, term_id=school.term_id)
    b = services.add_fee(student, "Transport", 50000)
    db.session.flush()
    services.record_fee_payment(a, 100000)
    b.status = "voided"
    assert services.outstanding_balance(student.student_id) == 200000
    assert services.outstanding_balance(student.student_id, term_id=school.term_id) == 200000
