"""
Tenant backup and restore.

Exports write one sheet (xlsx) or one CSV (zip) per table. Imports are
insert-only: rows whose primary key already exists are skipped, tenant-owned
rows are always re-homed to the importing tenant, and rows that point at
another tenant's data are dropped.
"""
import csv
import io
import json
import zipfile
from collections import namedtuple
from datetime import date, datetime, time, timezone

from flask import current_app
from openpyxl import Workbook, load_workbook
from openpyxl.utils.exceptions import InvalidFileException
from sqlalchemy import select, delete
from sqlalchemy.types import Boolean, Date, DateTime, Float, Integer, Time

from .. import db
from ..errors import ValidationError
from ..models import (
    SchoolClass, Subject, AcademicTerm, LearningArea, ExamType, TimetablePeriod, Student,
    AttendanceRecord, SchoolHoliday, WithdrawalSettings, AbsenceAlert, StudentStatusLog,
    Exam, ExamScore, TimetableEntry, CalendarEvent, ReportCard, ReportCardScore, LearningRating,
    StudentFee, FeePayment, Expense, Product, Customer, Sale, SaleItem, SaleReturn, SaleReturnItem,
    SchoolAsset, SystemBackup, TenantBackup, User, Tenant,
)

# parent/fk are set for child tables that reach the tenant through a parent row
BackupTable = namedtuple("BackupTable", "name model category parent fk")


def _t(model, category, parent=None, fk=None):
    return BackupTable(model.__tablename__, model, category, parent, fk)


# Parents before children; imports run in this order, deletes in reverse.
BACKUP_TABLES = [
    _t(SchoolClass, "academics"),
    _t(Subject, "academics"),
    _t(AcademicTerm, "academics"),
    _t(LearningArea, "academics"),
    _t(ExamType, "academics"),
    _t(TimetablePeriod, "academics"),
    _t(Student, "students"),
    _t(AttendanceRecord, "students"),
    _t(WithdrawalSettings, "students"),
    _t(AbsenceAlert, "students"),
    _t(StudentStatusLog, "students"),
    _t(Exam, "academics"),
    _t(ExamScore, "academics"),
    _t(TimetableEntry, "academics"),
    _t(ReportCard, "academics"),
    _t(ReportCardScore, "academics", ReportCard, "report_card_id_fk"),
    _t(LearningRating, "academics", ReportCard, "report_card_id_fk"),
    _t(SchoolHoliday, "calendar"),
    _t(CalendarEvent, "calendar"),
    _t(StudentFee, "finance"),
    _t(FeePayment, "finance"),
    _t(Expense, "finance"),
    _t(Product, "sales"),
    _t(Customer, "sales"),
    _t(Sale, "sales"),
    _t(SaleItem, "sales", Sale, "sale_id_fk"),
    _t(SaleReturn, "sales"),
    _t(SaleReturnItem, "sales", SaleReturn, "return_id_fk"),
    _t(SchoolAsset, "assets"),
]
TABLES_BY_NAME = {t.name: t for t in BACKUP_TABLES}
CATEGORIES = ("academics", "students", "calendar", "finance", "sales", "assets")
EXPORT_FORMATS = ("xlsx", "zip")
METADATA_FILE = "_backup_metadata.json"
SHEET_NAME_MAX = 31

# Columns never written to a backup file
_EXCLUDED_COLUMNS = {"users": {"password_hash"}}


def tables_for(categories):
    wanted = set(categories or CATEGORIES)
    unknown = wanted - set(CATEGORIES)
    if unknown:
        raise ValidationError(f"Unknown backup categories: {', '.join(sorted(unknown))}.")
    return [t for t in BACKUP_TABLES if t.category in wanted]


def _pk_name(model):
    return model.__table__.primary_key.columns.keys()[0]


def _serialize(value):
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    return value


def row_to_dict(row):
    skip = _EXCLUDED_COLUMNS.get(row.__tablename__, set())
    return {c.name: _serialize(getattr(row, c.key)) for c in row.__table__.columns if c.name not in skip}


def _tenant_query(table, tenant_id):
    if table.parent is None:
        return select(table.model).filter(table.model.tenant_id_fk == tenant_id)
    parent_pk = getattr(table.parent, _pk_name(table.parent))
    return (
        select(table.model)
        .join(table.parent, parent_pk == getattr(table.model, table.fk))
        .filter(table.parent.tenant_id_fk == tenant_id)
    )


def collect_tenant_rows(tenant_id, tables, limit=None):
    data = {}
    for table in tables:
        q = _tenant_query(table, tenant_id).order_by(getattr(table.model, _pk_name(table.model)))
        if limit:
            q = q.limit(limit)
        data[table.name] = [row_to_dict(r) for r in db.session.execute(q).scalars()]
    return data


def _columns(model):
    skip = _EXCLUDED_COLUMNS.get(model.__tablename__, set())
    return [c.name for c in model.__table__.columns if c.name not in skip]


def export_tenant_backup(tenant, categories, fmt, created_by=None):
    """Build a backup file. Returns (BytesIO, file_name, row_counts)."""
    if fmt not in EXPORT_FORMATS:
        raise ValidationError("Backup format must be xlsx or zip.")
    tables = tables_for(categories)
    data = collect_tenant_rows(tenant.tenant_id, tables, current_app.config.get("BACKUP_ROW_LIMIT"))
    row_counts = {name: len(rows) for name, rows in data.items()}
    stamp = datetime.now(timezone.utc)
    file_name = f"backup_{tenant.business_code}_{stamp.strftime('%Y%m%d_%H%M%S')}.{fmt}"

    out = io.BytesIO()
    if fmt == "xlsx":
        wb = Workbook()
        wb.remove(wb.active)
        for table in tables:
            ws = wb.create_sheet(title=table.name[:SHEET_NAME_MAX])
            cols = _columns(table.model)
            ws.append(cols)
            for row in data[table.name]:
                ws.append([row.get(c) for c in cols])
        wb.save(out)
    else:
        with zipfile.ZipFile(out, "w", zipfile.ZIP_DEFLATED) as zf:
            for table in tables:
                buf = io.StringIO()
                writer = csv.DictWriter(buf, fieldnames=_columns(table.model))
                writer.writeheader()
                writer.writerows(data[table.name])
                zf.writestr(f"{table.name}.csv", buf.getvalue())
            zf.writestr(METADATA_FILE, json.dumps({
                "created_at": stamp.isoformat(),
                "tenant": tenant.business_code,
                "categories": sorted({t.category for t in tables}),
                "tables": [t.name for t in tables],
                "row_counts": row_counts,
            }, indent=2))
    out.seek(0)

    db.session.add(SystemBackup(
        tenant_id_fk=tenant.tenant_id,
        backup_type="export",
        categories=json.dumps(sorted({t.category for t in tables})),
        tables_included=json.dumps([t.name for t in tables]),
        row_counts=json.dumps(row_counts),
        format=fmt,
        file_name=file_name,
        created_by_id_fk=created_by,
    ))
    current_app.logger.info("Backup exported tenant=%s file=%s rows=%s", tenant.tenant_id, file_name, sum(row_counts.values()))
    return out, file_name, row_counts


# ==========================================
# IMPORT
# ==========================================

_TRUE_VALUES = {"true", "1", "yes", "y", "t"}


def coerce_value(column, raw):
    if raw is None:
        return None
    if isinstance(raw, str):
        raw = raw.strip()
        if raw == "":
            return None
    ctype = column.type
    if isinstance(ctype, Boolean):
        return raw if isinstance(raw, bool) else str(raw).lower() in _TRUE_VALUES
    if isinstance(ctype, Integer):
        return int(float(raw))
    if isinstance(ctype, Float):
        return float(raw)
    if isinstance(ctype, DateTime):
        return raw if isinstance(raw, datetime) else datetime.fromisoformat(str(raw))
    if isinstance(ctype, Date):
        if isinstance(raw, datetime):
            return raw.date()
        return raw if isinstance(raw, date) else date.fromisoformat(str(raw)[:10])
    if isinstance(ctype, Time):
        return raw if isinstance(raw, time) else time.fromisoformat(str(raw))
    return str(raw)


def read_backup_file(filename, stream):
    """Parse an uploaded backup into {table_name: [row dicts]}."""
    name = (filename or "").lower()
    payload = stream.read()
    if name.endswith(".xlsx"):
        try:
            wb = load_workbook(io.BytesIO(payload), read_only=True, data_only=True)
        except (InvalidFileException, zipfile.BadZipFile):
            raise ValidationError("The uploaded file is not a valid Excel workbook.")
        by_sheet = {t.name[:SHEET_NAME_MAX]: t.name for t in BACKUP_TABLES}
        out = {}
        for ws in wb.worksheets:
            table_name = by_sheet.get(ws.title)
            if table_name is None:
                continue
            rows = ws.iter_rows(values_only=True)
            header = next(rows, None)
            if not header:
                out[table_name] = []
                continue
            keys = [str(h) if h is not None else "" for h in header]
            out[table_name] = [dict(zip(keys, values)) for values in rows if any(v is not None for v in values)]
        wb.close()
        return out
    if name.endswith(".zip"):
        out = {}
        try:
            zf = zipfile.ZipFile(io.BytesIO(payload))
        except zipfile.BadZipFile:
            raise ValidationError("The uploaded file is not a valid zip archive.")
        with zf:
            for member in zf.namelist():
                base = member.rsplit("/", 1)[-1]
                if not base.endswith(".csv"):
                    continue
                table_name = base[:-4]
                if table_name not in TABLES_BY_NAME:
                    continue
                text = zf.read(member).decode("utf-8-sig")
                out[table_name] = list(csv.DictReader(io.StringIO(text)))
        return out
    raise ValidationError("Unsupported backup format. Upload an .xlsx or .zip backup.")


def _owner_ok(model, pk, tenant_id):
    row = db.session.get(model, pk)
    return row is not None and getattr(row, "tenant_id_fk", None) == tenant_id


def _tenant_models():
    models = {t.model.__tablename__: t.model for t in BACKUP_TABLES if t.parent is None}
    models["users"] = User
    return models


def _prepare_row(table, raw, tenant_id, tenant_models):
    """Coerce a raw row; returns a dict for insert or None if it must be skipped."""
    cols = {c.name: c for c in table.model.__table__.columns}
    values = {}
    for key, raw_value in raw.items():
        column = cols.get(key)
        if column is None or key in _EXCLUDED_COLUMNS.get(table.name, set()):
            continue
        values[key] = coerce_value(column, raw_value)

    if table.parent is None:
        values["tenant_id_fk"] = tenant_id
    elif values.get(table.fk) is None or not _owner_ok(table.parent, values[table.fk], tenant_id):
        return None

    for key, column in cols.items():
        if key == "tenant_id_fk" or values.get(key) is None:
            continue
        for fk in column.foreign_keys:
            target = tenant_models.get(fk.column.table.name)
            if target is None:
                continue
            if not _owner_ok(target, values[key], tenant_id):
                if target is User:
                    values[key] = None
                else:
                    return None
    return values


def import_tenant_backup(tenant, filename, stream, created_by=None):
    """Insert rows from a backup file; existing primary keys are left untouched."""
    parsed = read_backup_file(filename, stream)
    if not parsed:
        raise ValidationError("No recognised tables were found in the backup file.")
    tenant_models = _tenant_models()
    results = {}
    for table in BACKUP_TABLES:
        if table.name not in parsed:
            continue
        pk = _pk_name(table.model)
        inserted = skipped = 0
        for raw in parsed[table.name]:
            try:
                values = _prepare_row(table, raw, tenant.tenant_id, tenant_models)
            except (TypeError, ValueError):
                values = None
            if values is None or (values.get(pk) is not None and db.session.get(table.model, values[pk]) is not None):
                skipped += 1
                continue
            db.session.add(table.model(**values))
            db.session.flush()
            inserted += 1
        results[table.name] = {"inserted": inserted, "skipped": skipped}

    db.session.add(SystemBackup(
        tenant_id_fk=tenant.tenant_id,
        backup_type="import",
        categories=json.dumps(sorted({TABLES_BY_NAME[n].category for n in results})),
        tables_included=json.dumps(list(results)),
        row_counts=json.dumps({n: r["inserted"] for n, r in results.items()}),
        format=filename.rsplit(".", 1)[-1].lower(),
        file_name=filename,
        created_by_id_fk=created_by,
    ))
    current_app.logger.info("Backup imported tenant=%s file=%s results=%s", tenant.tenant_id, filename, results)
    return {
        "tables_processed": len(results),
        "tables_found": len(parsed),
        "results": results,
        "message": f"{len(results)}/{len(parsed)} tables processed",
    }


def backup_history(tenant_id, limit=50):
    return db.session.execute(
        select(SystemBackup).filter_by(tenant_id_fk=tenant_id).order_by(SystemBackup.created_at.desc()).limit(limit)
    ).scalars().all()


# ==========================================
# TENANT DELETION
# ==========================================

def delete_tenant_with_backup(tenant, reason, deleted_by=None):
    """Snapshot every tenant row into TenantBackup, then delete children first."""
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A reason is required to delete an organization.")
    tenant_id = tenant.tenant_id

    snapshot = collect_tenant_rows(tenant_id, BACKUP_TABLES)
    snapshot["users"] = [row_to_dict(u) for u in db.session.execute(select(User).filter_by(tenant_id_fk=tenant_id)).scalars()]
    snapshot["tenant"] = [row_to_dict(tenant)]
    backup = TenantBackup(
        tenant_id=tenant_id,
        tenant_name=tenant.tenant_name,
        business_type=tenant.business_type,
        backup_data=json.dumps(snapshot),
        reason=reason,
        deleted_by_id_fk=deleted_by,
    )
    db.session.add(backup)

    for table in reversed(BACKUP_TABLES):
        if table.parent is None:
            db.session.execute(delete(table.model).where(table.model.tenant_id_fk == tenant_id))
        else:
            parent_pk = getattr(table.parent, _pk_name(table.parent))
            parent_ids = select(parent_pk).where(table.parent.tenant_id_fk == tenant_id)
            db.session.execute(delete(table.model).where(getattr(table.model, table.fk).in_(parent_ids)))
    db.session.execute(delete(SystemBackup).where(SystemBackup.tenant_id_fk == tenant_id))
    db.session.execute(delete(User).where(User.tenant_id_fk == tenant_id))
    db.session.execute(delete(Tenant).where(Tenant.tenant_id == tenant_id))

    current_app.logger.warning(
        "Tenant %s (%s) deleted; snapshot of %s rows kept as backup",
        tenant_id, tenant.tenant_name, sum(len(v) for v in snapshot.values()),
    )
    return backup
