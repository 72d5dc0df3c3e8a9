from flask import render_template, request, redirect, url_for, flash, current_app
from flask_login import login_required, current_user
from sqlalchemy import select, func
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.security import generate_password_hash

from . import super_admin
from .. import db, csrf_required
from ..decorators import super_admin_required
from ..errors import ServiceError
from ..models import SystemConfig, Tenant, TenantBackup, User, Student
from ..backups.services import delete_tenant_with_backup

BUSINESS_TYPES = ("school", "kindergarten", "retail", "restaurant", "other")


def _maintenance_on():
    conf = db.session.get(SystemConfig, 'maintenance_mode')
    return (conf.config_value == 'true') if conf else False


@super_admin.route('/dashboard')
@login_required
@super_admin_required
def dashboard():
    total_tenants = db.session.execute(select(func.count(Tenant.tenant_id))).scalar() or 0
    active_tenants = db.session.execute(
        select(func.count(Tenant.tenant_id)).filter(Tenant.is_active == True)  # noqa: E712
    ).scalar() or 0
    total_users = db.session.execute(select(func.count(User.user_id))).scalar() or 0
    total_students = db.session.execute(select(func.count(Student.student_id))).scalar() or 0
    return render_template('super_admin/dashboard.html',
                           total_tenants=total_tenants,
                           active_tenants=active_tenants,
                           total_users=total_users,
                           total_students=total_students,
                           is_maintenance=_maintenance_on())


# ==========================================
# TENANT MANAGEMENT (KILL SWITCH)
# ==========================================

@super_admin.route('/tenants')
@login_required
@super_admin_required
def tenants():
    rows = db.session.execute(select(Tenant).order_by(Tenant.tenant_name)).scalars().all()
    return render_template('super_admin/tenants.html', tenants=rows, business_types=BUSINESS_TYPES)


@super_admin.route('/tenants/create', methods=['POST'])
@login_required
@super_admin_required
@csrf_required
def create_tenant():
    name = (request.form.get('tenant_name') or '').strip()
    code = (request.form.get('business_code') or '').strip().upper()
    business_type = (request.form.get('business_type') or 'school').strip().lower()
    admin_username = (request.form.get('admin_username') or '').strip()
    admin_password = request.form.get('admin_password') or ''

    errors = []
    if not name or not code:
        errors.append("Organization name and code are required.")
    if business_type not in BUSINESS_TYPES:
        errors.append("Unknown business type.")
    if not admin_username or len(admin_password) < 8:
        errors.append("An admin username and a password of at least 8 characters are required.")
    if code and db.session.execute(select(Tenant).filter_by(business_code=code)).scalars().first():
        errors.append("Organization code must be unique.")
    if admin_username and db.session.execute(select(User).filter_by(username=admin_username)).scalars().first():
        errors.append("Admin username already taken.")
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for('super_admin.tenants'))

    tenant = Tenant(
        tenant_name=name,
        business_code=code,
        business_type=business_type,
        contact_email=(request.form.get('contact_email') or '').strip() or None,
        contact_phone=(request.form.get('contact_phone') or '').strip() or None,
        is_active=True,
    )
    db.session.add(tenant)
    db.session.flush()
    db.session.add(User(
        tenant_id_fk=tenant.tenant_id,
        username=admin_username,
        full_name=(request.form.get('admin_full_name') or '').strip() or None,
        password_hash=generate_password_hash(admin_password),
        role='admin',
        is_active=True,
    ))
    db.session.commit()
    current_app.logger.info("Tenant %s (%s) created by %s", tenant.tenant_id, code, current_user.username)
    flash(f"Organization '{name}' created with admin account {admin_username}.", "success")
    return redirect(url_for('super_admin.tenants'))


@super_admin.route('/tenants/<int:tenant_id>/toggle', methods=['POST'])
@login_required
@super_admin_required
@csrf_required
def toggle_tenant(tenant_id):
    tenant = db.get_or_404(Tenant, tenant_id)
    tenant.is_active = not tenant.is_active
    db.session.commit()
    status = "Active" if tenant.is_active else "Suspended"
    flash(f"Organization '{tenant.tenant_name}' is now {status}.", "warning" if not tenant.is_active else "success")
    return redirect(url_for('super_admin.tenants'))


@super_admin.route('/tenants/<int:tenant_id>/delete', methods=['POST'])
@login_required
@super_admin_required
@csrf_required
def delete_tenant(tenant_id):
    tenant = db.get_or_404(Tenant, tenant_id)
    name = tenant.tenant_name
    if (request.form.get('confirm_code') or '').strip().upper() != tenant.business_code.upper():
        flash("Type the organization code to confirm deletion.", "danger")
        return redirect(url_for('super_admin.tenants'))
    if current_user.tenant_id_fk == tenant.tenant_id:
        flash("You cannot delete the organization your own account belongs to.", "danger")
        return redirect(url_for('super_admin.tenants'))
    try:
        delete_tenant_with_backup(tenant, request.form.get('reason'), deleted_by=current_user.user_id)
        db.session.commit()
    except ServiceError as e:
        db.session.rollback()
        flash(str(e), "danger")
        return redirect(url_for('super_admin.tenants'))
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Deleting tenant %s failed", tenant_id)
        flash("Deletion failed. The organization was left unchanged.", "danger")
        return redirect(url_for('super_admin.tenants'))
    flash(f"Organization '{name}' deleted. A backup snapshot was kept.", "warning")
    return redirect(url_for('super_admin.tenant_backups'))


@super_admin.route('/tenant-backups')
@login_required
@super_admin_required
def tenant_backups():
    rows = db.session.execute(select(TenantBackup).order_by(TenantBackup.deleted_at.desc())).scalars().all()
    return render_template('super_admin/tenant_backups.html', backups=rows)


# ==========================================
# SYSTEM CONFIG (MAINTENANCE MODE)
# ==========================================

@super_admin.route('/config', methods=['GET', 'POST'])
@login_required
@super_admin_required
@csrf_required
def config():
    if request.method == 'POST':
        is_maint = 'true' if request.form.get('maintenance_mode') else 'false'
        conf = db.session.get(SystemConfig, 'maintenance_mode')
        if not conf:
            conf = SystemConfig(config_key='maintenance_mode', config_value=is_maint,
                                description="Blocks every non super admin request with a 503 page")
            db.session.add(conf)
        else:
            conf.config_value = is_maint
        db.session.commit()
        current_app.logger.warning("Maintenance mode set to %s by %s", is_maint, current_user.username)
        flash("System Configuration updated.", "success")
        return redirect(url_for('super_admin.config'))
    return render_template('super_admin/config.html', is_maintenance=_maintenance_on())
