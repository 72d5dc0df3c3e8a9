from datetime import date, datetime, timezone
from sqlalchemy import select

from .. import db
from ..errors import ValidationError, ConflictError
from ..models import Exam, ExamType, ExamScore, Student, AcademicTerm, SchoolClass, Subject

EXAM_STATUSES = ("scheduled", "ongoing", "completed", "cancelled")
PASS_RATIO = 0.5


def current_term(tenant_id):
    return db.session.execute(
        select(AcademicTerm).filter_by(tenant_id_fk=tenant_id, is_current=True)
    ).scalars().first()


def save_exam_type(tenant_id, data, exam_type=None):
    name = (data.get("name") or "").strip()
    code = (data.get("code") or "").strip().upper()
    weight = data.get("weight_percentage")
    errors = []
    if not name:
        errors.append("Name is required.")
    if not code:
        errors.append("Code is required.")
    if weight is None or weight <= 0 or weight > 100:
        errors.append("Weight must be between 0 and 100.")
    clash = db.session.execute(select(ExamType).filter_by(tenant_id_fk=tenant_id, code=code)).scalars().first()
    if code and clash and (exam_type is None or clash.exam_type_id != exam_type.exam_type_id):
        errors.append(f"Exam type code {code} already exists.")
    if errors:
        raise ValidationError(" ".join(errors))

    if exam_type is None:
        exam_type = ExamType(tenant_id_fk=tenant_id)
        db.session.add(exam_type)
    exam_type.name = name
    exam_type.code = code
    exam_type.weight_percentage = weight
    exam_type.description = (data.get("description") or "").strip() or None
    exam_type.display_order = data.get("display_order") or 0
    exam_type.is_active = data.get("is_active", True)
    return exam_type


def _owned(model, pk, tenant_id):
    row = db.session.get(model, pk) if pk else None
    return row if row is not None and row.tenant_id_fk == tenant_id else None


def save_exam(tenant_id, data, exam=None):
    errors = []
    exam_type = _owned(ExamType, data.get("exam_type_id"), tenant_id)
    school_class = _owned(SchoolClass, data.get("class_id"), tenant_id)
    subject = _owned(Subject, data.get("subject_id"), tenant_id)
    term = _owned(AcademicTerm, data.get("term_id"), tenant_id) or current_term(tenant_id)
    if exam_type is None:
        errors.append("Exam type is required.")
    if school_class is None:
        errors.append("Class is required.")
    if subject is None:
        errors.append("Subject is required.")
    if data.get("exam_date") is None:
        errors.append("Exam date is required.")
    start, end = data.get("start_time"), data.get("end_time")
    if start and end and end <= start:
        errors.append("End time must be after start time.")
    max_marks = data.get("max_marks") or 100.0
    if max_marks <= 0:
        errors.append("Maximum marks must be greater than zero.")
    status = data.get("status") or "scheduled"
    if status not in EXAM_STATUSES:
        errors.append("Unknown exam status.")
    if errors:
        raise ValidationError(" ".join(errors))

    if exam is None:
        exam = Exam(tenant_id_fk=tenant_id)
        db.session.add(exam)
    exam.exam_type_id_fk = exam_type.exam_type_id
    exam.class_id_fk = school_class.class_id
    exam.subject_id_fk = subject.subject_id
    exam.term_id_fk = term.term_id if term else None
    exam.exam_date = data["exam_date"]
    exam.start_time = start
    exam.end_time = end
    exam.duration_minutes = data.get("duration_minutes") or 60
    exam.max_marks = max_marks
    exam.venue = (data.get("venue") or "").strip() or None
    exam.instructions = (data.get("instructions") or "").strip() or None
    exam.status = status
    return exam


def set_exam_status(exam, status):
    if status not in EXAM_STATUSES:
        raise ValidationError("Unknown exam status.")
    exam.status = status
    return exam


def save_exam_results(exam, rows, graded_by=None):
    """Upsert scores per student. ``rows``: {student_id: {"marks": float|None, "absent": bool}}."""
    if exam.status == "cancelled":
        raise ConflictError("Results cannot be entered for a cancelled exam.")
    members = set(db.session.execute(
        select(Student.student_id).filter_by(tenant_id_fk=exam.tenant_id_fk, class_id_fk=exam.class_id_fk)
    ).scalars())
    existing = {s.student_id_fk: s for s in exam.scores}
    now = datetime.now(timezone.utc)
    saved = 0
    for student_id, row in rows.items():
        if student_id not in members:
            raise ValidationError("Results include a student who is not in this class.")
        absent = bool(row.get("absent"))
        marks = None if absent else row.get("marks")
        if marks is None and not absent:
            continue
        if marks is not None and (marks < 0 or marks > exam.max_marks):
            raise ValidationError(f"Marks must be between 0 and {exam.max_marks:g}.")
        score = existing.get(student_id)
        if score is None:
            score = ExamScore(tenant_id_fk=exam.tenant_id_fk, student_id_fk=student_id)
            exam.scores.append(score)
            existing[student_id] = score
        score.marks_obtained = marks
        score.is_absent = absent
        score.remarks = (row.get("remarks") or "").strip() or None
        score.graded_at = now
        score.graded_by_id_fk = graded_by
        saved += 1
    return saved


def exam_statistics(exam):
    graded = [s.marks_obtained for s in exam.scores if not s.is_absent and s.marks_obtained is not None]
    absent = sum(1 for s in exam.scores if s.is_absent)
    stats = {"graded": len(graded), "absent": absent, "average": None, "highest": None, "lowest": None, "pass_rate": None}
    if graded:
        pass_mark = (exam.max_marks or 100) * PASS_RATIO
        stats["average"] = round(sum(graded) / len(graded), 2)
        stats["highest"] = max(graded)
        stats["lowest"] = min(graded)
        stats["pass_rate"] = round(sum(1 for m in graded if m >= pass_mark) / len(graded) * 100, 1)
    return stats


def list_exams(tenant_id, view="all", class_id=None, today=None):
    today = today or date.today()
    q = select(Exam).filter(Exam.tenant_id_fk == tenant_id)
    if class_id:
        q = q.filter(Exam.class_id_fk == class_id)
    if view == "upcoming":
        q = q.filter(Exam.exam_date >= today, Exam.status == "scheduled").order_by(Exam.exam_date, Exam.start_time)
    elif view == "completed":
        q = q.filter(Exam.status == "completed").order_by(Exam.exam_date.desc())
    else:
        q = q.order_by(Exam.exam_date.desc())
    return db.session.execute(q).scalars().all()
