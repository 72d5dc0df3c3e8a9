import csv
import io
from datetime import date, timedelta
from sqlalchemy import select

from .. import db
from ..errors import ValidationError
from ..models import SchoolAsset, SchoolClass

CATEGORIES = (
    "furniture", "equipment", "books", "sports", "electronics",
    "musical_instruments", "lab_equipment", "teaching_aids", "vehicles", "other",
)
CONDITIONS = ("excellent", "good", "fair", "poor", "needs_repair", "damaged", "disposed")
REPAIR_CONDITIONS = ("needs_repair", "damaged")
WARRANTY_WINDOW_DAYS = 30


def next_asset_code(tenant_id):
    codes = db.session.execute(
        select(SchoolAsset.asset_code).filter(SchoolAsset.tenant_id_fk == tenant_id, SchoolAsset.asset_code.like("AST-%"))
    ).scalars().all()
    seq = max((int(c[4:]) for c in codes if c[4:].isdigit()), default=0)
    return f"AST-{seq + 1:05d}"


def total_value(asset):
    return round((asset.quantity or 0) * (asset.unit_cost or 0.0), 2)


def current_book_value(asset, on=None):
    """Straight-line depreciation from purchase date down to salvage value."""
    if asset.condition == "disposed":
        return 0.0
    cost = total_value(asset)
    salvage = min(asset.salvage_value or 0.0, cost)
    life = asset.useful_life_years or 0
    if not asset.purchase_date or life <= 0:
        return cost
    on = on or date.today()
    years = max(0.0, (on - asset.purchase_date).days / 365.25)
    value = cost - (cost - salvage) * min(1.0, years / life)
    return round(max(salvage, value), 2)


def save_asset(tenant_id, data, asset=None):
    name = (data.get("name") or "").strip()
    category = (data.get("category") or "other").strip().lower()
    condition = (data.get("condition") or "good").strip().lower()
    quantity = data.get("quantity") if data.get("quantity") is not None else 1
    unit_cost = data.get("unit_cost") or 0.0
    errors = []
    if not name:
        errors.append("Asset name is required.")
    if category not in CATEGORIES:
        errors.append("Unknown asset category.")
    if condition not in CONDITIONS:
        errors.append("Unknown asset condition.")
    if quantity < 1:
        errors.append("Quantity must be at least 1.")
    if unit_cost < 0 or (data.get("salvage_value") or 0) < 0:
        errors.append("Costs cannot be negative.")
    if (data.get("useful_life_years") or 1) < 1:
        errors.append("Useful life must be at least one year.")
    class_id = data.get("assigned_class_id")
    if class_id:
        c = db.session.get(SchoolClass, class_id)
        if c is None or c.tenant_id_fk != tenant_id:
            errors.append("Assigned class not found.")
    if errors:
        raise ValidationError(" ".join(errors))

    if asset is None:
        asset = SchoolAsset(tenant_id_fk=tenant_id, asset_code=next_asset_code(tenant_id), is_active=True)
        db.session.add(asset)
    asset.name = name
    asset.category = category
    asset.condition = condition
    asset.quantity = quantity
    asset.unit_cost = unit_cost
    asset.salvage_value = data.get("salvage_value") or 0.0
    asset.useful_life_years = data.get("useful_life_years") or 5
    asset.assigned_class_id_fk = class_id or None
    for field in ("description", "sub_category", "location", "supplier", "invoice_number", "serial_number", "barcode", "notes"):
        value = data.get(field)
        setattr(asset, field, value.strip() if isinstance(value, str) and value.strip() else None)
    asset.purchase_date = data.get("purchase_date")
    asset.warranty_expiry = data.get("warranty_expiry")
    return asset


def retire_asset(asset):
    asset.is_active = False
    return asset


def search_assets(tenant_id, search=None, category=None, condition=None):
    q = select(SchoolAsset).filter(SchoolAsset.tenant_id_fk == tenant_id, SchoolAsset.is_active == True)  # noqa: E712
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(
            SchoolAsset.name.ilike(like) | SchoolAsset.asset_code.ilike(like) | SchoolAsset.location.ilike(like)
        )
    if category:
        q = q.filter(SchoolAsset.category == category)
    if condition:
        q = q.filter(SchoolAsset.condition == condition)
    return db.session.execute(q.order_by(SchoolAsset.asset_code)).scalars().all()


def asset_stats(assets, on=None):
    on = on or date.today()
    horizon = on + timedelta(days=WARRANTY_WINDOW_DAYS)
    return {
        "total": len(assets),
        "total_value": round(sum(total_value(a) for a in assets), 2),
        "current_book_value": round(sum(current_book_value(a, on) for a in assets), 2),
        "needs_repair": sum(1 for a in assets if a.condition in REPAIR_CONDITIONS),
        "warranty_expiring": sum(1 for a in assets if a.warranty_expiry and on < a.warranty_expiry <= horizon),
    }


EXPORT_COLUMNS = [
    "asset_code", "name", "category", "condition", "quantity", "unit_cost", "total_value",
    "current_book_value", "location", "purchase_date", "warranty_expiry", "supplier", "serial_number",
]


def assets_csv(assets):
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(EXPORT_COLUMNS)
    for a in assets:
        writer.writerow([
            a.asset_code, a.name, a.category, a.condition, a.quantity, a.unit_cost, total_value(a),
            current_book_value(a), a.location or "", a.purchase_date or "", a.warranty_expiry or "",
            a.supplier or "", a.serial_number or "",
        ])
    return buf.getvalue()
