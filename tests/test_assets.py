import csv
import io
from datetime import date, timedelta

import pytest

from sbm_app import db
from sbm_app.assets import services
from sbm_app.errors import ValidationError
from sbm_app.models import SchoolAsset


def _asset(school, **data):
    values = {"name": "Desk", "category": "furniture", "quantity": 10, "unit_cost": 50000}
    values.update(data)
    asset = services.save_asset(school.tenant_id, values)
    db.session.flush()
    return asset


def test_codes_are_sequential(ctx, school):
    assert _asset(school).asset_code == "AST-00001"
    assert _asset(school, name="Projector", category="electronics").asset_code == "AST-00002"
    assert services.next_asset_code(school.tenant_id) == "AST-00003"


def test_asset_validation(ctx, school, other_school):
    with pytest.raises(ValidationError):
        services.save_asset(school.tenant_id, {"name": "Boat", "category": "boats"})
    with pytest.raises(ValidationError):
        services.save_asset(school.tenant_id, {"name": "Desk", "quantity": 0})
    with pytest.raises(ValidationError):
        services.save_asset(school.tenant_id, {"name": "Desk", "assigned_class_id": other_school.class_id})


def test_straight_line_book_value():
    asset = SchoolAsset(quantity=2, unit_cost=500000, salvage_value=100000, useful_life_years=4,
                        purchase_date=date(2020, 1, 1), condition="good")
    assert services.total_value(asset) == 1000000
    assert services.current_book_value(asset, on=date(2020, 1, 1)) == 1000000
    halfway = services.current_book_value(asset, on=date(2020, 1, 1) + timedelta(days=round(365.25 * 2)))
    assert halfway == pytest.approx(550000, abs=1000)
    assert services.current_book_value(asset, on=date(2030, 1, 1)) == 100000
    asset.condition = "disposed"
    assert services.current_book_value(asset) == 0.0


def test_book_value_without_purchase_date_is_cost():
    asset = SchoolAsset(quantity=1, unit_cost=300, useful_life_years=5, condition="fair")
    assert services.current_book_value(asset) == 300


def test_search_stats_and_retire(ctx, school):
    today = date.today()
    desk = _asset(school, location="Block A")
    _asset(school, name="Laptop", category="electronics", quantity=1, unit_cost=2000000,
           condition="needs_repair", warranty_expiry=today + timedelta(days=10))
    _asset(school, name="Drum", category="musical_instruments", quantity=1, unit_cost=150000,
           warranty_expiry=today + timedelta(days=90))

    assert [a.name for a in services.search_assets(school.tenant_id, search="block")] == ["Desk"]
    assert [a.name for a in services.search_assets(school.tenant_id, condition="needs_repair")] == ["Laptop"]
    stats = services.asset_stats(services.search_assets(school.tenant_id), on=today)
    assert stats["total"] == 3
    assert stats["total_value"] == 2650000
    assert stats["needs_repair"] == 1
    assert stats["warranty_expiring"] == 1

    services.retire_asset(desk)
    assert len(services.search_assets(school.tenant_id)) == 2


def test_csv_export(ctx, school):
    _asset(school, location="Block A", supplier="Kampala Furnishers")
    rows = list(csv.reader(io.StringIO(services.assets_csv(services.search_assets(school.tenant_id)))))
    assert rows[0] == services.EXPORT_COLUMNS
    assert rows[1][:2] == ["AST-00001", "Desk"]
    assert rows[1][6] == "500000.0"
