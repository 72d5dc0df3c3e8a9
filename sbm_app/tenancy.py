"""Tenant scoping helpers.

Every tenant-owned row carries ``tenant_id_fk``; routes reach rows only
through these helpers so one tenant never sees another tenant's data.
"""
from datetime import date, datetime
from flask import abort
from flask_login import current_user
from sqlalchemy import select

from . import db


def current_tenant_id():
    tid = getattr(current_user, "tenant_id_fk", None) if current_user.is_authenticated else None
    if tid is None:
        abort(403, description="No organization is linked to this account.")
    return tid


def tenant_select(model, tenant_id=None):
    tid = tenant_id if tenant_id is not None else current_tenant_id()
    return select(model).filter(model.tenant_id_fk == tid)


def get_tenant_row(model, pk, tenant_id):
    row = db.session.get(model, pk)
    if row is None or row.tenant_id_fk != tenant_id:
        return None
    return row


def get_tenant_row_or_404(model, pk):
    row = get_tenant_row(model, pk, current_tenant_id())
    if row is None:
        abort(404)
    return row


def parse_date(raw, default=None):
    raw = (raw or "").strip()
    if not raw:
        return default
    try:
        return datetime.strptime(raw, "%Y-%m-%d").date()
    except ValueError:
        return default


def parse_time(raw):
    raw = (raw or "").strip()
    if not raw:
        return None
    for fmt in ("%H:%M", "%H:%M:%S"):
        try:
            return datetime.strptime(raw, fmt).time()
        except ValueError:
            continue
    return None


def parse_float(raw, default=0.0):
    try:
        return float(str(raw).replace(",", "").strip())
    except (TypeError, ValueError):
        return default


def parse_int(raw, default=None):
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError):
        return default


def today():
    return date.today()
