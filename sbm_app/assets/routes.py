from flask import render_template, request, redirect, url_for, flash, current_app, Response
from flask_login import login_required
from sqlalchemy.exc import SQLAlchemyError

from . import assets_bp
from .. import db, csrf_required
from ..decorators import role_required, FINANCE_STAFF
from ..errors import ServiceError
from ..models import SchoolAsset
from ..tenancy import current_tenant_id, get_tenant_row_or_404, parse_date, parse_float, parse_int, today
from ..academics.services import active_classes
from . import services


def _filters():
    return (
        (request.args.get("q") or "").strip() or None,
        (request.args.get("category") or "").strip() or None,
        (request.args.get("condition") or "").strip() or None,
    )


@assets_bp.route("/")
@login_required
@role_required(*FINANCE_STAFF, "head_teacher")
def index():
    tid = current_tenant_id()
    search, category, condition = _filters()
    rows = services.search_assets(tid, search=search, category=category, condition=condition)
    on = today()
    return render_template(
        "assets/index.html",
        assets=rows,
        stats=services.asset_stats(rows, on),
        book_values={a.asset_id: services.current_book_value(a, on) for a in rows},
        total_value=services.total_value,
        categories=services.CATEGORIES,
        conditions=services.CONDITIONS,
        search=search,
        category=category,
        condition=condition,
    )


@assets_bp.route("/new", methods=["GET", "POST"])
@assets_bp.route("/<int:asset_id>/edit", methods=["GET", "POST"])
@login_required
@role_required(*FINANCE_STAFF)
@csrf_required
def edit(asset_id=None):
    tid = current_tenant_id()
    asset = get_tenant_row_or_404(SchoolAsset, asset_id) if asset_id else None
    if request.method == "POST":
        data = {field: request.form.get(field) for field in (
            "name", "description", "category", "sub_category", "condition", "location", "supplier",
            "invoice_number", "serial_number", "barcode", "notes",
        )}
        data.update({
            "quantity": parse_int(request.form.get("quantity"), 1),
            "unit_cost": parse_float(request.form.get("unit_cost"), 0.0),
            "salvage_value": parse_float(request.form.get("salvage_value"), 0.0),
            "useful_life_years": parse_int(request.form.get("useful_life_years"), 5),
            "purchase_date": parse_date(request.form.get("purchase_date")),
            "warranty_expiry": parse_date(request.form.get("warranty_expiry")),
            "assigned_class_id": parse_int(request.form.get("assigned_class_id")),
        })
        try:
            asset = services.save_asset(tid, data, asset)
            db.session.commit()
            flash(f"Asset {asset.asset_code} saved.", "success")
            return redirect(url_for("assets.index"))
        except ServiceError as e:
            db.session.rollback()
            flash(str(e), "danger")
        except SQLAlchemyError:
            db.session.rollback()
            current_app.logger.exception("Saving asset failed")
            flash("Asset could not be saved. Please try again.", "danger")
    return render_template(
        "assets/form.html",
        asset=asset,
        classes=active_classes(tid),
        categories=services.CATEGORIES,
        conditions=services.CONDITIONS,
    )


@assets_bp.route("/<int:asset_id>/retire", methods=["POST"])
@login_required
@role_required(*FINANCE_STAFF)
@csrf_required
def retire(asset_id):
    asset = get_tenant_row_or_404(SchoolAsset, asset_id)
    services.retire_asset(asset)
    db.session.commit()
    flash(f"Asset {asset.asset_code} removed from the register.", "success")
    return redirect(url_for("assets.index"))


@assets_bp.route("/export.csv")
@login_required
@role_required(*FINANCE_STAFF, "head_teacher")
def export_csv():
    tid = current_tenant_id()
    search, category, condition = _filters()
    data = services.assets_csv(services.search_assets(tid, search=search, category=category, condition=condition))
    return Response(data, headers={
        "Content-Type": "text/csv",
        "Content-Disposition": f"attachment; filename=assets_{today().isoformat()}.csv",
    })
