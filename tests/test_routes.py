from datetime import time

from sqlalchemy import select

from sbm_app import db
from sbm_app.models import Student, Tenant, TenantBackup, SystemConfig, TimetablePeriod, SchoolClass, User
from conftest import login, CSRF


def test_login_page_and_bad_credentials(client, school):
    assert client.get("/login").status_code == 200
    resp = client.post("/login", data={"username": school.usernames["admin"], "password": "wrong"})
    assert resp.status_code == 200
    assert b"Invalid credentials." in resp.data


def test_login_redirects_by_account_type(client, school):
    resp = login(client, school.usernames["admin"])
    assert resp.status_code == 302 and resp.headers["Location"].endswith("/dashboard")
    assert client.get("/dashboard").status_code == 200
    client.get("/logout")
    resp = login(client, "platform_root")
    assert resp.headers["Location"].endswith("/super-admin/dashboard")


def test_dashboard_requires_login(client, school):
    resp = client.get("/dashboard")
    assert resp.status_code == 302
    assert "/login" in resp.headers["Location"]


def test_dashboard_api_envelope(as_role):
    client = as_role("bursar")
    body = client.get("/api/dashboard").get_json()
    assert body["success"] is True
    assert body["data"]["active_students"] == 3
    assert body["data"]["current_term"] == "Term 1"


def test_role_denial_redirects_to_dashboard(as_role):
    client = as_role("teacher")
    resp = client.get("/reports/financial")
    assert resp.status_code == 302 and resp.headers["Location"].endswith("/dashboard")
    assert as_role("bursar").get("/reports/financial").status_code == 200


def test_withdraw_requires_csrf_token(app, as_role, school):
    client = as_role("head_teacher")
    student_id = school.student_ids[0]
    url = f"/lifecycle/students/{student_id}/withdraw"

    client.post(url, data={"withdrawal_type": "transfer", "reason": "Moved"})
    with app.app_context():
        assert db.session.get(Student, student_id).status == "active"

    resp = client.post(url, data={"withdrawal_type": "transfer", "reason": "Moved", "csrf_token": CSRF})
    assert resp.status_code == 302
    with app.app_context():
        assert db.session.get(Student, student_id).status == "withdrawn"
    assert b"Amina Nakato" in client.get("/lifecycle/").data


def test_other_tenants_rows_are_not_found(as_role, other_school):
    client = as_role("admin")
    assert client.get(f"/students/{other_school.student_ids[0]}").status_code == 404
    resp = client.post(f"/lifecycle/students/{other_school.student_ids[0]}/withdraw",
                       data={"reason": "x", "csrf_token": CSRF})
    assert resp.status_code == 404


def test_at_risk_api(app, as_role, school):
    with app.app_context():
        db.session.get(Student, school.student_ids[1]).consecutive_absence_days = 44
        db.session.commit()
    body = as_role("admin").get("/lifecycle/api/at-risk").get_json()
    assert body["success"] is True
    assert [(r["full_name"], r["risk_level"]) for r in body["data"]] == [("Brian Okello", "high")]


def _slot_setup(app, school):
    with app.app_context():
        period = TimetablePeriod(tenant_id_fk=school.tenant_id, name="Period 1", start_time=time(8),
                                 end_time=time(8, 40), period_type="lesson", is_active=True)
        west = SchoolClass(tenant_id_fk=school.tenant_id, name="P.5", section="West", is_active=True)
        db.session.add_all([period, west])
        db.session.commit()
        return period.period_id, west.class_id


def test_save_slot_json_and_teacher_conflict(app, as_role, school):
    period_id, west_id = _slot_setup(app, school)
    client = as_role("head_teacher")
    payload = {"class_id": school.class_id, "period_id": period_id, "day_of_week": 1,
               "subject_id": school.subject_ids[0], "teacher_id": school.users["teacher"]}

    resp = client.post("/timetable/api/save_slot", json=payload, headers={"X-CSRF-Token": CSRF})
    body = resp.get_json()
    assert resp.status_code == 200
    assert body["data"]["status"] == "saved"
    assert body["data"]["teacher"] == "Teacher GHP"

    resp = client.post("/timetable/api/save_slot", json=dict(payload, class_id=west_id), headers={"X-CSRF-Token": CSRF})
    assert resp.status_code == 409
    assert resp.get_json()["error"]["code"] == "conflict"

    resp = client.post("/timetable/api/save_slot", json=dict(payload, subject_id=None), headers={"X-CSRF-Token": CSRF})
    assert resp.get_json()["data"]["status"] == "cleared"


def test_save_slot_without_token_is_rejected(app, as_role, school):
    period_id, _ = _slot_setup(app, school)
    resp = as_role("admin").post("/timetable/api/save_slot", json={
        "class_id": school.class_id, "period_id": period_id, "day_of_week": 1, "subject_id": school.subject_ids[0],
    })
    assert resp.status_code == 302


def test_sale_and_receipt_pages(app, as_role, school):
    client = as_role("cashier")
    with app.app_context():
        from sbm_app.pos.services import save_product
        product = save_product(school.tenant_id, {"name": "Pen", "unit_price": 1000, "stock_quantity": 5})
        db.session.commit()
        product_id = product.product_id
    assert client.get("/pos/sales/new").status_code == 200
    resp = client.post("/pos/sales/new", data={
        "product_id": [str(product_id)], "quantity": ["2"], "payment_method": "cash", "csrf_token": CSRF,
    }, follow_redirects=True)
    assert resp.status_code == 200
    assert b"Sale #1 recorded." in resp.data


def test_report_card_pages_render(app, as_role, school):
    client = as_role("admin")
    resp = client.post("/report-cards/generate", data={
        "term_id": school.term_id, "class_id": school.class_id, "csrf_token": CSRF,
    }, follow_redirects=True)
    assert b"Created 3 report card(s)." in resp.data
    with app.app_context():
        from sbm_app.models import ReportCard
        card_id = db.session.execute(select(ReportCard.report_card_id)).scalars().first()
    assert client.get(f"/report-cards/{card_id}").status_code == 200
    assert client.get(f"/report-cards/{card_id}/print").status_code == 200


def test_backup_export_download(as_role):
    client = as_role("admin")
    resp = client.post("/backups/export", data={"categories": ["students"], "format": "zip", "csrf_token": CSRF})
    assert resp.status_code == 200
    assert resp.mimetype == "application/zip"
    assert "attachment; filename=backup_GHP_" in resp.headers["Content-Disposition"]


def test_suspended_tenant_is_locked_out(app, as_role, school):
    client = as_role("admin")
    with app.app_context():
        db.session.get(Tenant, school.tenant_id).is_active = False
        db.session.commit()
    assert client.get("/dashboard").status_code == 403


def test_maintenance_mode_blocks_everyone_but_super_admins(app, client, school):
    login(client, "platform_root")
    client.post("/super-admin/config", data={"maintenance_mode": "on", "csrf_token": CSRF})
    with app.app_context():
        assert db.session.get(SystemConfig, "maintenance_mode").config_value == "true"
    assert client.get("/super-admin/dashboard").status_code == 200

    client.get("/logout")
    login(client, school.usernames["admin"])
    assert client.get("/dashboard").status_code == 503


def test_super_admin_creates_and_deletes_tenant(app, as_super_admin):
    client = as_super_admin
    client.post("/super-admin/tenants/create", data={
        "tenant_name": "Hilltop Academy", "business_code": "hta", "business_type": "school",
        "admin_username": "hta_admin", "admin_password": "long-enough-pw", "csrf_token": CSRF,
    })
    with app.app_context():
        tenant = db.session.execute(select(Tenant).filter_by(business_code="HTA")).scalars().one()
        tenant_id = tenant.tenant_id
        assert db.session.execute(select(User).filter_by(username="hta_admin")).scalars().one().role == "admin"

    client.post(f"/super-admin/tenants/{tenant_id}/delete", data={
        "confirm_code": "WRONG", "reason": "Test", "csrf_token": CSRF,
    })
    with app.app_context():
        assert db.session.get(Tenant, tenant_id) is not None

    resp = client.post(f"/super-admin/tenants/{tenant_id}/delete", data={
        "confirm_code": "hta", "reason": "Duplicate signup", "csrf_token": CSRF,
    })
    assert resp.headers["Location"].endswith("/super-admin/tenant-backups")
    with app.app_context():
        assert db.session.get(Tenant, tenant_id) is None
        backup = db.session.execute(select(TenantBackup).filter_by(tenant_id=tenant_id)).scalars().one()
        assert backup.reason == "Duplicate signup"
    assert client.get("/super-admin/tenant-backups").status_code == 200


def test_tenant_users_cannot_reach_super_admin(as_role):
    resp = as_role("admin").get("/super-admin/tenants")
    assert resp.status_code == 302 and resp.headers["Location"].endswith("/dashboard")


def test_short_admin_password_is_rejected(app, as_super_admin):
    as_super_admin.post("/super-admin/tenants/create", data={
        "tenant_name": "Tiny", "business_code": "TNY", "admin_username": "tny_admin",
        "admin_password": "short", "csrf_token": CSRF,
    })
    with app.app_context():
        assert db.session.execute(select(Tenant).filter_by(business_code="TNY")).first() is None
