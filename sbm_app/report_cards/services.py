import io
import re
import zipfile
from datetime import datetime, timezone
from sqlalchemy import select, func

from .. import db
from ..errors import ValidationError, ConflictError
from ..models import (
    ReportCard, ReportCardScore, LearningRating, LearningArea, Student, Subject,
    AcademicTerm, AttendanceRecord, SchoolClass,
)
from ..fees.services import outstanding_balance
from .grading import grade_for_score, subject_total, ecd_rating, competition_ranks
from . import remarks


def _round2(value):
    return round(value or 0.0, 2)


def next_term_after(term):
    return db.session.execute(
        select(AcademicTerm)
        .filter(AcademicTerm.tenant_id_fk == term.tenant_id_fk, AcademicTerm.start_date > term.end_date)
        .order_by(AcademicTerm.start_date)
    ).scalars().first()


def term_attendance(tenant_id, class_id, term):
    """Per-student attendance counts for a class over a term, plus school days."""
    records = db.session.execute(
        select(AttendanceRecord).filter(
            AttendanceRecord.tenant_id_fk == tenant_id,
            AttendanceRecord.class_id_fk == class_id,
            AttendanceRecord.date_marked >= term.start_date,
            AttendanceRecord.date_marked <= term.end_date,
        )
    ).scalars().all()
    school_days = len({r.date_marked for r in records})
    per_student = {}
    for r in records:
        row = per_student.setdefault(r.student_id_fk, {"present": 0, "absent": 0})
        if r.status in ("present", "late"):
            row["present"] += 1
        elif r.status == "absent":
            row["absent"] += 1
    return per_student, school_days


def generate_report_cards(tenant_id, term, school_class, created_by=None):
    """
    Creates draft report cards for active students of a class lacking one.
    Returns: (success: bool, message: str, count: int)
    """
    if term is None or school_class is None:
        return False, "Select a term and a class.", 0

    students = db.session.execute(
        select(Student).filter_by(tenant_id_fk=tenant_id, class_id_fk=school_class.class_id, status="active")
    ).scalars().all()
    if not students:
        return False, "No active students in this class.", 0

    existing = set(db.session.execute(
        select(ReportCard.student_id_fk).filter_by(tenant_id_fk=tenant_id, term_id_fk=term.term_id)
    ).scalars())
    attendance, school_days = term_attendance(tenant_id, school_class.class_id, term)
    following = next_term_after(term)

    created = 0
    for s in students:
        if s.student_id in existing:
            continue
        counts = attendance.get(s.student_id, {"present": 0, "absent": 0})
        db.session.add(ReportCard(
            tenant_id_fk=tenant_id,
            student_id_fk=s.student_id,
            term_id_fk=term.term_id,
            class_id_fk=school_class.class_id,
            days_present=counts["present"],
            days_absent=counts["absent"],
            total_school_days=school_days,
            fees_balance=outstanding_balance(s.student_id, term.term_id),
            next_term_start_date=following.start_date if following else None,
            status="draft",
            created_by_id_fk=created_by,
        ))
        created += 1
    if not created:
        return True, "All students already have report cards for this term.", 0
    return True, f"Created {created} report card(s).", created


def save_report_card_scores(card, rows):
    """Upsert subject scores and refresh the card totals.

    ``rows`` is an iterable of dicts with subject_id, formative, school_based
    and optionally teacher_initials / subject_remark.
    """
    if card.status == "published":
        raise ConflictError("Unpublish the report card before editing scores.")
    current = {s.subject_id_fk: s for s in card.scores}
    for row in rows:
        formative = row.get("formative") or 0.0
        school_based = row.get("school_based") or 0.0
        for label, value in (("Formative", formative), ("School-based", school_based)):
            if value < 0 or value > 100:
                raise ValidationError(f"{label} score must be between 0 and 100.")
        subject = db.session.get(Subject, row["subject_id"])
        if subject is None or subject.tenant_id_fk != card.tenant_id_fk:
            raise ValidationError("Unknown subject on report card.")

        score = current.get(subject.subject_id)
        if score is None:
            if formative == 0 and school_based == 0:
                continue
            score = ReportCardScore(subject_id_fk=subject.subject_id)
            card.scores.append(score)
            current[subject.subject_id] = score
        score.formative_score = formative
        score.school_based_score = school_based
        score.total_score = subject_total(formative, school_based)
        score.grade, score.grade_descriptor = grade_for_score(score.total_score)
        score.teacher_initials = (row.get("teacher_initials") or "").strip() or score.teacher_initials
        score.subject_remark = (row.get("subject_remark") or "").strip() or remarks.subject_remark(score.total_score, subject.name)

    refresh_card_totals(card)
    return card


def refresh_card_totals(card):
    graded = [s for s in card.scores if (s.formative_score or 0) > 0 or (s.school_based_score or 0) > 0]
    if graded:
        total = sum(s.total_score or 0 for s in graded)
        card.total_score = _round2(total)
        card.average_score = _round2(total / len(graded))
    else:
        card.total_score = 0.0
        card.average_score = 0.0
    card.overall_grade = grade_for_score(card.average_score)[0]
    return card


def save_ecd_ratings(card, scores):
    """ECD cards: ``scores`` maps area_id -> (score, remark). Zero scores clear the area."""
    if card.status == "published":
        raise ConflictError("Unpublish the report card before editing ratings.")
    current = {r.area_id_fk: r for r in card.ratings}
    for area_id, (score, remark) in scores.items():
        score = score or 0.0
        if score < 0 or score > 100:
            raise ValidationError("Learning area scores must be between 0 and 100.")
        area = db.session.get(LearningArea, area_id)
        if area is None or area.tenant_id_fk != card.tenant_id_fk:
            raise ValidationError("Unknown learning area.")
        rating = current.get(area_id)
        if score <= 0:
            if rating is not None:
                card.ratings.remove(rating)
                del current[area_id]
            continue
        if rating is None:
            rating = LearningRating(area_id_fk=area_id)
            card.ratings.append(rating)
            current[area_id] = rating
        rating.numeric_score = score
        rating.rating_code = ecd_rating(score)
        rating.remark = (remark or "").strip() or rating.rating_code

    scored = [r.numeric_score for r in card.ratings if (r.numeric_score or 0) > 0]
    card.total_score = _round2(sum(scored))
    card.average_score = _round2(sum(scored) / len(scored)) if scored else 0.0
    card.overall_grade = grade_for_score(card.average_score)[0]
    return card


def calculate_class_ranks(tenant_id, term, class_id=None):
    """
    Ranks report cards by average score within each class.
    Returns: (success: bool, message: str, count: int)
    """
    q = select(ReportCard).filter(
        ReportCard.tenant_id_fk == tenant_id,
        ReportCard.term_id_fk == term.term_id,
        ReportCard.average_score.isnot(None),
    )
    if class_id:
        q = q.filter(ReportCard.class_id_fk == class_id)
    cards = db.session.execute(q).scalars().all()
    if not cards:
        return False, "No report cards with scores to rank.", 0

    by_class = {}
    for c in cards:
        by_class.setdefault(c.class_id_fk, []).append(c)

    for class_cards in by_class.values():
        ranks = competition_ranks([(c.report_card_id, c.average_score) for c in class_cards])
        for c in class_cards:
            c.class_rank = ranks[c.report_card_id]
            c.total_students_in_class = len(class_cards)
    return True, f"Ranked {len(cards)} report card(s) across {len(by_class)} class(es).", len(cards)


def apply_auto_remarks(card, overwrite=False):
    name = card.student.full_name if card.student else ""
    average = card.average_score or 0
    if overwrite or not card.class_teacher_comment:
        card.class_teacher_comment = remarks.class_teacher_remark(average, name)
    if overwrite or not card.head_teacher_comment:
        card.head_teacher_comment = remarks.head_teacher_remark(average, name)
    if overwrite or not card.discipline_remark:
        card.discipline_remark = remarks.discipline_remark(card.conduct)
    return card


def set_published(card, published):
    if published:
        if not card.scores and not card.ratings:
            raise ValidationError("Enter scores before publishing a report card.")
        card.status = "published"
        card.published_at = datetime.now(timezone.utc)
    else:
        card.status = "draft"
        card.published_at = None
    return card


def cards_for(tenant_id, term_id, class_id=None):
    q = (
        select(ReportCard)
        .join(Student, Student.student_id == ReportCard.student_id_fk)
        .filter(ReportCard.tenant_id_fk == tenant_id, ReportCard.term_id_fk == term_id)
    )
    if class_id:
        q = q.filter(ReportCard.class_id_fk == class_id)
    return db.session.execute(q.order_by(ReportCard.class_rank.is_(None), ReportCard.class_rank, Student.full_name)).scalars().all()


def class_subject_averages(tenant_id, term_id, class_id):
    rows = db.session.execute(
        select(Subject.name, func.avg(ReportCardScore.total_score), func.count(ReportCardScore.score_id))
        .join(ReportCardScore, ReportCardScore.subject_id_fk == Subject.subject_id)
        .join(ReportCard, ReportCard.report_card_id == ReportCardScore.report_card_id_fk)
        .filter(ReportCard.tenant_id_fk == tenant_id, ReportCard.term_id_fk == term_id, ReportCard.class_id_fk == class_id)
        .group_by(Subject.name)
        .order_by(Subject.name)
    ).all()
    return [{"subject": name, "average": _round2(avg), "count": count} for name, avg, count in rows]


def _safe_filename(text):
    return re.sub(r"[^A-Za-z0-9_.-]+", "_", (text or "").strip()).strip("_") or "student"


def export_report_cards_zip(cards, term, render):
    """ZIP of one printable HTML file per card, in folder Report_Cards_<term>.

    ``render`` turns a card into an HTML string.
    """
    folder = f"Report_Cards_{_safe_filename(term.name)}"
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
        for card in cards:
            student = card.student
            name = f"{_safe_filename(student.admission_number)}_{_safe_filename(student.full_name)}.html"
            zf.writestr(f"{folder}/{name}", render(card))
    buf.seek(0)
    return buf, f"{folder}.zip"


def class_is_ecd(class_id):
    c = db.session.get(SchoolClass, class_id) if class_id else None
    return bool(c and c.is_ecd)
