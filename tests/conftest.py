import os
import time
from datetime import date, timedelta
from types import SimpleNamespace

import pytest
from werkzeug.security import generate_password_hash

from sbm_app import create_app, db
from sbm_app.models import Tenant, User, SchoolClass, Subject, AcademicTerm, Student

PASSWORD = "secret-pass"
ROLES = ("admin", "head_teacher", "teacher", "bursar", "cashier")
CSRF = "test-csrf-token"


@pytest.fixture(scope="session", autouse=True)
def test_env():
    os.environ["DATABASE_URL"] = "sqlite:///:memory:"
    os.environ["CACHE_TYPE"] = "NullCache"
    os.environ["RATELIMIT_ENABLED"] = "false"
    yield


@pytest.fixture()
def app(test_env):
    app = create_app()
    app.config["TESTING"] = True
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def ctx(app):
    """App context for tests that call services directly."""
    with app.app_context():
        yield app


def _hash():
    # cheap hash keeps the suite fast
    return generate_password_hash(PASSWORD, method="pbkdf2:sha256:1000")


def make_tenant(code="GHP", name="Greenhill Primary"):
    tenant = Tenant(tenant_name=name, business_code=code, business_type="school", is_active=True)
    db.session.add(tenant)
    db.session.flush()
    users = {}
    for role in ROLES:
        user = User(
            tenant_id_fk=tenant.tenant_id,
            username=f"{code.lower()}_{role}",
            full_name=f"{role.replace('_', ' ').title()} {code}",
            password_hash=_hash(),
            role=role,
            is_active=True,
        )
        db.session.add(user)
        users[role] = user
    p5 = SchoolClass(tenant_id_fk=tenant.tenant_id, name="P.5", section="East", is_active=True)
    baby = SchoolClass(tenant_id_fk=tenant.tenant_id, name="Baby Class", is_ecd=True, is_active=True)
    db.session.add_all([p5, baby])
    subjects = [
        Subject(tenant_id_fk=tenant.tenant_id, name=name, display_order=i, is_active=True)
        for i, name in enumerate(("English", "Mathematics", "Science"))
    ]
    db.session.add_all(subjects)
    today = date.today()
    term = AcademicTerm(
        tenant_id_fk=tenant.tenant_id, name="Term 1", term_number=1, year=today.year,
        start_date=today - timedelta(days=60), end_date=today + timedelta(days=30), is_current=True,
    )
    db.session.add(term)
    db.session.flush()
    students = []
    for i, full_name in enumerate(("Amina Nakato", "Brian Okello", "Grace Atim"), start=1):
        s = Student(
            tenant_id_fk=tenant.tenant_id, class_id_fk=p5.class_id, admission_number=f"{code}-{i:03d}",
            full_name=full_name, status="active", is_active=True,
        )
        db.session.add(s)
        students.append(s)
    db.session.flush()
    return SimpleNamespace(
        tenant_id=tenant.tenant_id,
        code=code,
        users={role: u.user_id for role, u in users.items()},
        usernames={role: u.username for role, u in users.items()},
        class_id=p5.class_id,
        ecd_class_id=baby.class_id,
        subject_ids=[s.subject_id for s in subjects],
        term_id=term.term_id,
        student_ids=[s.student_id for s in students],
    )


@pytest.fixture()
def school(app):
    with app.app_context():
        data = make_tenant()
        super_admin = User(
            username="platform_root", full_name="Platform Root", password_hash=_hash(),
            role="admin", is_super_admin=True, is_active=True,
        )
        db.session.add(super_admin)
        db.session.commit()
        data.super_admin_id = super_admin.user_id
    return data


@pytest.fixture()
def other_school(app, school):
    with app.app_context():
        data = make_tenant(code="RVS", name="Riverside School")
        db.session.commit()
    return data


def login(client, username, password=PASSWORD):
    resp = client.post("/login", data={"username": username, "password": password})
    with client.session_transaction() as sess:
        sess["csrf_token"] = CSRF
        sess["csrf_token_issued_at"] = int(time.time())
    return resp


@pytest.fixture()
def as_role(client, school):
    """Log the test client in as the given role of the seeded school."""
    def _login(role):
        login(client, school.usernames[role])
        return client
    return _login


@pytest.fixture()
def as_super_admin(client, school):
    login(client, "platform_root")
    return client


@pytest.fixture()
def csrf_token():
    return CSRF
