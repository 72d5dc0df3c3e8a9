from datetime import time

import pytest

from sbm_app import db
from sbm_app.academics.services import save_class
from sbm_app.errors import ValidationError, ConflictError
from sbm_app.timetable import services


@pytest.fixture()
def periods(ctx, school):
    first = services.save_period(school.tenant_id, {"name": "Period 1", "start_time": time(8, 0),
                                                    "end_time": time(8, 40), "display_order": 1})
    brk = services.save_period(school.tenant_id, {"name": "Break", "start_time": time(10, 0),
                                                  "end_time": time(10, 30), "period_type": "break",
                                                  "display_order": 2})
    db.session.flush()
    return first, brk


def test_period_validation(ctx, school):
    with pytest.raises(ValidationError):
        services.save_period(school.tenant_id, {"name": "Odd", "start_time": time(9), "end_time": time(8)})
    with pytest.raises(ValidationError):
        services.save_period(school.tenant_id, {"name": "Nap", "start_time": time(9), "end_time": time(10),
                                                "period_type": "nap"})


def test_save_entry_upserts_the_cell(periods, school):
    first, _ = periods
    english, maths, _ = school.subject_ids
    entry = services.save_timetable_entry(school.tenant_id, school.class_id, first.period_id, 1, english,
                                          school.users["teacher"], room=" Rm 4 ")
    db.session.flush()
    again = services.save_timetable_entry(school.tenant_id, school.class_id, first.period_id, 1, maths)
    assert again is entry
    assert entry.subject_id_fk == maths
    assert entry.teacher_id_fk is None
    assert entry.room is None


def test_teacher_double_booking_is_rejected(periods, school):
    first, _ = periods
    p5_west = save_class(school.tenant_id, {"name": "P.5", "section": "West"})
    db.session.flush()
    teacher = school.users["teacher"]
    services.save_timetable_entry(school.tenant_id, school.class_id, first.period_id, 2, school.subject_ids[0], teacher)
    db.session.flush()
    with pytest.raises(ConflictError, match="already teaches P.5 East on Tuesday"):
        services.save_timetable_entry(school.tenant_id, p5_west.class_id, first.period_id, 2,
                                      school.subject_ids[1], teacher)
    services.save_timetable_entry(school.tenant_id, p5_west.class_id, first.period_id, 3,
                                  school.subject_ids[1], teacher)


def test_lessons_only_in_lesson_periods(periods, school, other_school):
    first, brk = periods
    with pytest.raises(ValidationError, match="break period"):
        services.save_timetable_entry(school.tenant_id, school.class_id, brk.period_id, 1, school.subject_ids[0])
    with pytest.raises(ValidationError):
        services.save_timetable_entry(school.tenant_id, school.class_id, first.period_id, 7, school.subject_ids[0])
    with pytest.raises(ValidationError):
        services.save_timetable_entry(school.tenant_id, other_school.class_id, first.period_id, 1,
                                      school.subject_ids[0])


def test_grid_and_teacher_load(periods, school):
    first, brk = periods
    teacher = school.users["teacher"]
    for day in (1, 3, 6):
        services.save_timetable_entry(school.tenant_id, school.class_id, first.period_id, day,
                                      school.subject_ids[0], teacher)
    db.session.flush()

    rows, days = services.class_timetable_grid(school.tenant_id, school.class_id)
    assert days == [1, 2, 3, 4, 5, 6]
    assert [p.name for p, _cells in rows] == ["Period 1", "Break"]
    cells = rows[0][1]
    assert cells[1] is not None and cells[2] is None
    assert services.teacher_load(school.tenant_id) == [("Teacher GHP", 3)]
