import zipfile
from datetime import date, timedelta

import pytest
from sqlalchemy import select

from sbm_app import db
from sbm_app.errors import ValidationError, ConflictError
from sbm_app.fees.services import add_fee
from sbm_app.models import AcademicTerm, SchoolClass, ReportCard, Student, LearningArea, AttendanceRecord
from sbm_app.report_cards import services
from sbm_app.report_cards.grading import grade_for_score, subject_total, ecd_rating, competition_ranks
from sbm_app.report_cards import remarks


@pytest.mark.parametrize("score, grade", [
    (95, "A*"), (90, "A*"), (89.99, "A"), (72, "B"), (60, "C"), (55, "D"), (40, "E"), (30, "F"), (12, "G"), (None, "G"),
])
def test_grade_bands(score, grade):
    assert grade_for_score(score)[0] == grade


def test_subject_total_weights_formative_and_school_based():
    assert subject_total(80, 90) == 88.0
    assert subject_total(None, 50) == 40.0


def test_ecd_rating_bands():
    assert ecd_rating(92) == "EXCELLENT"
    assert ecd_rating(50) == "AVERAGE"
    assert ecd_rating(49) == "NEEDS IMPROVEMENT"


def test_competition_ranks_share_ties():
    ranks = competition_ranks([("a", 80.0), ("b", 92.5), ("c", 80.0), ("d", 61.0)])
    assert ranks == {"b": 1, "a": 2, "c": 2, "d": 4}


def test_remarks_use_first_name_and_bands():
    assert remarks.class_teacher_remark(93, "Amina Nakato").startswith("Amina has demonstrated outstanding")
    assert remarks.head_teacher_remark(85, "Brian Okello").startswith("Congratulations to Brian")
    assert remarks.head_teacher_remark(20, "").startswith("The student's academic performance")
    assert "Mathematics" in remarks.subject_remark(45, "Mathematics")
    assert remarks.discipline_remark("Well Disciplined").startswith("Well disciplined")
    assert remarks.discipline_remark("unknown") == remarks.DISCIPLINE_DEFAULT
    assert remarks.attendance_remark(0, 0) == "Attendance record pending."
    assert remarks.attendance_remark(57, 60).startswith("Excellent attendance (95.0%)")
    assert remarks.performance_level(72)["level"] == "Good"
    assert remarks.performance_level(12)["level"] == "Failure"


def _setup(school):
    term = db.session.get(AcademicTerm, school.term_id)
    p5 = db.session.get(SchoolClass, school.class_id)
    return term, p5


def _cards(school):
    return {c.student_id_fk: c for c in db.session.execute(
        select(ReportCard).filter_by(term_id_fk=school.term_id)).scalars()}


def test_generate_snapshots_attendance_fees_and_next_term(ctx, school):
    term, p5 = _setup(school)
    amina = db.session.get(Student, school.student_ids[0])
    add_fee(amina, "Tuition", 120000, term_id=term.term_id)
    day = term.start_date + timedelta(days=3)
    for status, offset in (("present", 0), ("absent", 1), ("late", 2)):
        db.session.add(AttendanceRecord(tenant_id_fk=school.tenant_id, student_id_fk=amina.student_id,
                                        class_id_fk=p5.class_id, date_marked=day + timedelta(days=offset),
                                        status=status))
    following = AcademicTerm(tenant_id_fk=school.tenant_id, name="Term 2", term_number=2, year=term.year + 1,
                             start_date=term.end_date + timedelta(days=20), end_date=term.end_date + timedelta(days=100))
    db.session.add(following)
    db.session.flush()

    ok, msg, count = services.generate_report_cards(school.tenant_id, term, p5, created_by=school.users["admin"])
    db.session.commit()

    assert ok and count == 3
    card = _cards(school)[amina.student_id]
    assert card.status == "draft"
    assert (card.days_present, card.days_absent, card.total_school_days) == (2, 1, 3)
    assert card.fees_balance == 120000
    assert card.next_term_start_date == following.start_date

    again = services.generate_report_cards(school.tenant_id, term, p5)
    assert again == (True, "All students already have report cards for this term.", 0)


def test_generate_needs_students(ctx, school):
    term = db.session.get(AcademicTerm, school.term_id)
    baby = db.session.get(SchoolClass, school.ecd_class_id)
    ok, _msg, count = services.generate_report_cards(school.tenant_id, term, baby)
    assert not ok and count == 0
    assert services.generate_report_cards(school.tenant_id, None, baby)[0] is False


def _scored_cards(school, averages):
    term, p5 = _setup(school)
    services.generate_report_cards(school.tenant_id, term, p5)
    db.session.flush()
    cards = _cards(school)
    english = school.subject_ids[0]
    for sid, value in zip(school.student_ids, averages):
        services.save_report_card_scores(cards[sid], [
            {"subject_id": english, "formative": value, "school_based": value, "teacher_initials": "JK"},
        ])
    db.session.flush()
    return term, cards


def test_save_scores_computes_totals_grades_and_remarks(ctx, school):
    term, p5 = _setup(school)
    services.generate_report_cards(school.tenant_id, term, p5)
    db.session.flush()
    card = _cards(school)[school.student_ids[0]]
    english, maths, science = school.subject_ids

    services.save_report_card_scores(card, [
        {"subject_id": english, "formative": 80, "school_based": 90, "teacher_initials": "jk "},
        {"subject_id": maths, "formative": 70, "school_based": 60, "subject_remark": "Keep practising."},
        {"subject_id": science, "formative": 0, "school_based": 0},
    ])
    db.session.flush()

    by_subject = {s.subject_id_fk: s for s in card.scores}
    assert set(by_subject) == {english, maths}
    assert by_subject[english].total_score == 88.0
    assert by_subject[english].grade == "A"
    assert by_subject[english].teacher_initials == "jk"
    assert by_subject[english].subject_remark.startswith("Very good performance in English")
    assert by_subject[maths].total_score == 62.0
    assert by_subject[maths].subject_remark == "Keep practising."
    assert card.total_score == 150.0
    assert card.average_score == 75.0
    assert card.overall_grade == "B"


def test_scores_are_validated_and_locked_when_published(ctx, school):
    term, p5 = _setup(school)
    services.generate_report_cards(school.tenant_id, term, p5)
    db.session.flush()
    card = _cards(school)[school.student_ids[0]]

    with pytest.raises(ValidationError):
        services.save_report_card_scores(card, [{"subject_id": school.subject_ids[0], "formative": 101}])
    with pytest.raises(ValidationError):
        services.set_published(card, True)

    services.save_report_card_scores(card, [{"subject_id": school.subject_ids[0], "formative": 50, "school_based": 50}])
    services.set_published(card, True)
    assert card.status == "published" and card.published_at is not None
    with pytest.raises(ConflictError):
        services.save_report_card_scores(card, [{"subject_id": school.subject_ids[0], "formative": 60}])
    services.set_published(card, False)
    assert card.status == "draft" and card.published_at is None


def test_ranks_share_positions_on_ties(ctx, school):
    term, cards = _scored_cards(school, [70, 85, 70])
    ok, _msg, count = services.calculate_class_ranks(school.tenant_id, term, school.class_id)
    assert ok and count == 3
    amina, brian, grace = (cards[sid] for sid in school.student_ids)
    assert (brian.class_rank, amina.class_rank, grace.class_rank) == (1, 2, 2)
    assert amina.total_students_in_class == 3
    ordered = [c.student.full_name for c in services.cards_for(school.tenant_id, term.term_id, school.class_id)]
    assert ordered == ["Brian Okello", "Amina Nakato", "Grace Atim"]


def test_auto_remarks_respect_existing_comments(ctx, school):
    _term, cards = _scored_cards(school, [93, 45, 20])
    card = cards[school.student_ids[0]]
    card.head_teacher_comment = "Seen."
    card.conduct = "excellent"

    services.apply_auto_remarks(card)
    assert card.class_teacher_comment.startswith("Amina has demonstrated")
    assert card.head_teacher_comment == "Seen."
    assert card.discipline_remark.startswith("Outstanding conduct")

    services.apply_auto_remarks(card, overwrite=True)
    assert card.head_teacher_comment.startswith("Congratulations to Amina")


def test_ecd_ratings(ctx, school):
    term = db.session.get(AcademicTerm, school.term_id)
    baby = db.session.get(SchoolClass, school.ecd_class_id)
    child = Student(tenant_id_fk=school.tenant_id, class_id_fk=baby.class_id, admission_number="GHP-ECD-1",
                    full_name="Joy Akello", status="active", is_active=True)
    language = LearningArea(tenant_id_fk=school.tenant_id, name="Language development")
    numbers = LearningArea(tenant_id_fk=school.tenant_id, name="Number work")
    db.session.add_all([child, language, numbers])
    db.session.flush()
    services.generate_report_cards(school.tenant_id, term, baby)
    db.session.flush()
    card = _cards(school)[child.student_id]

    services.save_ecd_ratings(card, {language.area_id: (91, ""), numbers.area_id: (55, "Counts to 20")})
    ratings = {r.area_id_fk: r for r in card.ratings}
    assert ratings[language.area_id].rating_code == "EXCELLENT"
    assert ratings[language.area_id].remark == "EXCELLENT"
    assert ratings[numbers.area_id].remark == "Counts to 20"
    assert card.average_score == 73.0
    assert services.class_is_ecd(baby.class_id) is True
    assert services.class_is_ecd(school.class_id) is False


def test_ecd_cleared_score_leaves_average(ctx, school):
    term = db.session.get(AcademicTerm, school.term_id)
    baby = db.session.get(SchoolClass, school.ecd_class_id)
    child = Student(tenant_id_fk=school.tenant_id, class_id_fk=baby.class_id, admission_number="GHP-ECD-2",
                    full_name="Peter Mugisha", status="active", is_active=True)
    language = LearningArea(tenant_id_fk=school.tenant_id, name="Language development")
    numbers = LearningArea(tenant_id_fk=school.tenant_id, name="Number work")
    db.session.add_all([child, language, numbers])
    db.session.flush()
    services.generate_report_cards(school.tenant_id, term, baby)
    db.session.flush()
    card = _cards(school)[child.student_id]

    services.save_ecd_ratings(card, {language.area_id: (90, ""), numbers.area_id: (50, "")})
    db.session.flush()
    assert card.average_score == 70.0

    services.save_ecd_ratings(card, {language.area_id: (90, ""), numbers.area_id: (0, "")})
    db.session.flush()
    assert card.average_score == 90.0
    assert card.total_score == 90.0
    assert [r.area_id_fk for r in card.ratings] == [language.area_id]


def test_subject_averages_and_zip_export(ctx, school):
    term, cards = _scored_cards(school, [60, 80, 70])
    averages = services.class_subject_averages(school.tenant_id, term.term_id, school.class_id)
    assert averages == [{"subject": "English", "average": 70.0, "count": 3}]

    buf, file_name = services.export_report_cards_zip(list(cards.values()), term, lambda c: f"<p>{c.average_score}</p>")
    assert file_name == "Report_Cards_Term_1.zip"
    with zipfile.ZipFile(buf) as zf:
        names = sorted(zf.namelist())
        assert names[0] == "Report_Cards_Term_1/GHP-001_Amina_Nakato.html"
        assert zf.read(names[0]).decode() == "<p>60.0</p>"
