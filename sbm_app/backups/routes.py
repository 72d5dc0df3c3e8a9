import json

from flask import render_template, request, redirect, url_for, flash, current_app, Response
from flask_login import login_required, current_user
from sqlalchemy.exc import SQLAlchemyError

from . import backups_bp
from .. import db, csrf_required
from ..decorators import role_required
from ..errors import ServiceError
from ..tenancy import current_tenant_id
from . import services

EXPORT_MIMETYPES = {
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "zip": "application/zip",
}


@backups_bp.route("/")
@login_required
@role_required("admin")
def index():
    tid = current_tenant_id()
    history = services.backup_history(tid)
    row_totals = {b.backup_id: sum(json.loads(b.row_counts or "{}").values()) for b in history}
    return render_template(
        "backups/index.html",
        history=history,
        row_totals=row_totals,
        categories=services.CATEGORIES,
        formats=services.EXPORT_FORMATS,
        tables=services.BACKUP_TABLES,
    )


@backups_bp.route("/export", methods=["POST"])
@login_required
@role_required("admin")
@csrf_required
def export():
    current_tenant_id()
    categories = request.form.getlist("categories")
    fmt = (request.form.get("format") or "xlsx").strip().lower()
    try:
        out, file_name, _counts = services.export_tenant_backup(current_user.tenant, categories, fmt,
                                                                created_by=current_user.user_id)
        db.session.commit()
    except ServiceError as e:
        db.session.rollback()
        flash(str(e), "danger")
        return redirect(url_for("backups.index"))
    return Response(out.getvalue(), mimetype=EXPORT_MIMETYPES[fmt], headers={
        "Content-Disposition": f"attachment; filename={file_name}"
    })


@backups_bp.route("/import", methods=["POST"])
@login_required
@role_required("admin")
@csrf_required
def import_backup():
    current_tenant_id()
    f = request.files.get("file")
    if not f or not f.filename:
        flash("Choose a backup file to import.", "danger")
        return redirect(url_for("backups.index"))
    try:
        result = services.import_tenant_backup(current_user.tenant, f.filename, f.stream,
                                               created_by=current_user.user_id)
        db.session.commit()
    except ServiceError as e:
        db.session.rollback()
        flash(str(e), "danger")
        return redirect(url_for("backups.index"))
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Backup import failed for %s", f.filename)
        flash("Import failed. No rows were restored.", "danger")
        return redirect(url_for("backups.index"))

    inserted = sum(r["inserted"] for r in result["results"].values())
    skipped = sum(r["skipped"] for r in result["results"].values())
    flash(f"Import complete: {result['message']}, {inserted} row(s) restored, {skipped} skipped.", "success")
    return redirect(url_for("backups.index"))
