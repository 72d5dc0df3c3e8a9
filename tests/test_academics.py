from datetime import date

import pytest

from sbm_app import db
from sbm_app.academics import services
from sbm_app.errors import ValidationError
from sbm_app.models import AcademicTerm


def test_class_name_and_section_are_unique(ctx, school):
    with pytest.raises(ValidationError, match="already exists"):
        services.save_class(school.tenant_id, {"name": "P.5", "section": "East"})
    west = services.save_class(school.tenant_id, {"name": "P.5", "section": "West", "capacity": 35})
    db.session.flush()
    assert west.display_name == "P.5 West"
    assert [c.display_name for c in services.active_classes(school.tenant_id)] == ["Baby Class", "P.5 East", "P.5 West"]


def test_class_teacher_must_belong_to_tenant(ctx, school, other_school):
    with pytest.raises(ValidationError):
        services.save_class(school.tenant_id, {"name": "P.6", "class_teacher_id": other_school.users["teacher"]})


def test_subject_code_is_upper_cased(ctx, school):
    subject = services.save_subject(school.tenant_id, {"name": "Social Studies", "code": "sst", "display_order": 4})
    assert subject.code == "SST"
    assert subject.category == "core"


def test_term_validation(ctx, school):
    with pytest.raises(ValidationError):
        services.save_term(school.tenant_id, {"name": "Term 4", "term_number": 4, "year": 2025,
                                              "start_date": date(2025, 9, 1), "end_date": date(2025, 12, 1)})
    with pytest.raises(ValidationError):
        services.save_term(school.tenant_id, {"name": "Backwards", "term_number": 2, "year": 2025,
                                              "start_date": date(2025, 8, 1), "end_date": date(2025, 5, 1)})


def test_only_one_current_term(ctx, school):
    year = date.today().year + 1
    term = services.save_term(school.tenant_id, {
        "name": f"Term 2 {year}", "term_number": 2, "year": year,
        "start_date": date(year, 5, 20), "end_date": date(year, 8, 15), "is_current": True,
    })
    db.session.commit()
    current = db.session.query(AcademicTerm).filter_by(tenant_id_fk=school.tenant_id, is_current=True).all()
    assert [t.term_id for t in current] == [term.term_id]
    assert services.tenant_terms(school.tenant_id)[0].term_id == term.term_id


def test_teachers_excludes_finance_roles(ctx, school):
    roles = {u.role for u in services.teachers(school.tenant_id)}
    assert roles == {"admin", "head_teacher", "teacher"}
