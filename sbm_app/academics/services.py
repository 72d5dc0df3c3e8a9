from sqlalchemy import select, update

from .. import db
from ..errors import ValidationError
from ..models import SchoolClass, Subject, AcademicTerm, LearningArea, User


def save_class(tenant_id, data, school_class=None):
    name = (data.get("name") or "").strip()
    section = (data.get("section") or "").strip() or None
    if not name:
        raise ValidationError("Class name is required.")
    clash = db.session.execute(
        select(SchoolClass).filter_by(tenant_id_fk=tenant_id, name=name, section=section)
    ).scalars().first()
    if clash and (school_class is None or clash.class_id != school_class.class_id):
        label = f"{name} {section}" if section else name
        raise ValidationError(f"Class {label} already exists.")
    teacher_id = data.get("class_teacher_id")
    if teacher_id:
        teacher = db.session.get(User, teacher_id)
        if teacher is None or teacher.tenant_id_fk != tenant_id:
            raise ValidationError("Class teacher not found.")
    if school_class is None:
        school_class = SchoolClass(tenant_id_fk=tenant_id)
        db.session.add(school_class)
    school_class.name = name
    school_class.section = section
    school_class.level = (data.get("level") or "").strip() or None
    school_class.capacity = data.get("capacity") or 40
    school_class.is_ecd = bool(data.get("is_ecd"))
    school_class.class_teacher_id_fk = teacher_id or None
    return school_class


def save_subject(tenant_id, data, subject=None):
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("Subject name is required.")
    if subject is None:
        subject = Subject(tenant_id_fk=tenant_id)
        db.session.add(subject)
    subject.name = name
    subject.code = (data.get("code") or "").strip().upper() or None
    subject.level = (data.get("level") or "").strip() or None
    subject.category = (data.get("category") or "core").strip().lower()
    subject.display_order = data.get("display_order") or 0
    return subject


def save_term(tenant_id, data, term=None):
    errors = []
    name = (data.get("name") or "").strip()
    number = data.get("term_number")
    year = data.get("year")
    start, end = data.get("start_date"), data.get("end_date")
    if not name:
        errors.append("Term name is required.")
    if number not in (1, 2, 3):
        errors.append("Term number must be 1, 2 or 3.")
    if not year:
        errors.append("Year is required.")
    if not start or not end:
        errors.append("Start and end dates are required.")
    elif end <= start:
        errors.append("Term must end after it starts.")
    clash = db.session.execute(
        select(AcademicTerm).filter_by(tenant_id_fk=tenant_id, year=year, term_number=number)
    ).scalars().first()
    if clash and (term is None or clash.term_id != term.term_id):
        errors.append(f"Term {number} of {year} already exists.")
    if errors:
        raise ValidationError(" ".join(errors))
    if term is None:
        term = AcademicTerm(tenant_id_fk=tenant_id, is_current=False)
        db.session.add(term)
    term.name = name
    term.term_number = number
    term.year = year
    term.start_date = start
    term.end_date = end
    if data.get("is_current"):
        db.session.flush()
        set_current_term(term)
    return term


def set_current_term(term):
    db.session.execute(
        update(AcademicTerm)
        .where(AcademicTerm.tenant_id_fk == term.tenant_id_fk, AcademicTerm.term_id != term.term_id)
        .values(is_current=False)
    )
    term.is_current = True
    return term


def save_learning_area(tenant_id, data, area=None):
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("Learning area name is required.")
    if area is None:
        area = LearningArea(tenant_id_fk=tenant_id)
        db.session.add(area)
    area.name = name
    area.display_order = data.get("display_order") or 0
    return area


def active_classes(tenant_id):
    return db.session.execute(
        select(SchoolClass).filter_by(tenant_id_fk=tenant_id, is_active=True).order_by(SchoolClass.name, SchoolClass.section)
    ).scalars().all()


def active_subjects(tenant_id):
    return db.session.execute(
        select(Subject).filter_by(tenant_id_fk=tenant_id, is_active=True).order_by(Subject.display_order, Subject.name)
    ).scalars().all()


def tenant_terms(tenant_id):
    return db.session.execute(
        select(AcademicTerm).filter_by(tenant_id_fk=tenant_id).order_by(AcademicTerm.start_date.desc())
    ).scalars().all()


def teachers(tenant_id):
    return db.session.execute(
        select(User).filter(
            User.tenant_id_fk == tenant_id,
            User.is_active == True,  # noqa: E712
            User.role.in_(("teacher", "head_teacher", "admin")),
        ).order_by(User.full_name, User.username)
    ).scalars().all()
