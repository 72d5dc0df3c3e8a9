from datetime import date

from openpyxl import load_workbook

from sbm_app import db
from sbm_app.fees.services import add_fee, record_fee_payment
from sbm_app.models import Student
from sbm_app.pos import services as pos
from sbm_app.reports import services


def _trade(school):
    tid = school.tenant_id
    pen = pos.save_product(tid, {"name": "Pen", "unit_price": 1000, "cost_price": 600, "stock_quantity": 10})
    book = pos.save_product(tid, {"name": "Exercise Book", "unit_price": 5000, "stock_quantity": 5})
    db.session.flush()
    first = pos.create_sale(tid, [(pen.product_id, 3)])
    pos.create_sale(tid, [(book.product_id, 1)])
    voided = pos.create_sale(tid, [(pen.product_id, 2)])
    db.session.flush()
    pos.process_return(first, "refund", "Leaking", items=[{"sale_item_id": first.items[0].item_id, "quantity": 1}])
    pos.process_return(voided, "void", "Rung up twice")

    fee = add_fee(db.session.get(Student, school.student_ids[0]), "Tuition", 100000)
    db.session.flush()
    record_fee_payment(fee, 40000)
    for category, amount in (("Transport", 10000), ("Stationery", 3000), ("Transport", 2000)):
        pos.record_expense(tid, {"category": category, "amount": amount, "expense_date": date.today()})
    db.session.commit()


def test_income_statement_nets_refunds_and_skips_voided_sales(ctx, school):
    _trade(school)
    income = services.income_statement(school.tenant_id)
    assert income["gross_sales"] == 8000
    assert income["refunds"] == 1000
    assert income["sales_revenue"] == 7000
    assert income["fee_income"] == 40000
    assert income["revenue"] == 47000
    assert income["expenses"] == [{"category": "Stationery", "amount": 3000}, {"category": "Transport", "amount": 12000}]
    assert income["total_expenses"] == 15000
    assert income["net_income"] == 32000


def test_balance_sheet_balances(ctx, school):
    _trade(school)
    sheet = services.balance_sheet(school.tenant_id)
    assert sheet["inventory"] == 24800
    assert sheet["cash"] == 32000
    assert sheet["total_assets"] == 56800
    assert sheet["total_equity"] == 32000
    assert sheet["liabilities"] + sheet["total_equity"] == sheet["total_assets"]


def test_period_outside_activity_is_empty(ctx, school):
    _trade(school)
    income = services.income_statement(school.tenant_id, date(2000, 1, 1), date(2000, 12, 31))
    assert income["revenue"] == 0 and income["expenses"] == []


def test_reports_are_tenant_scoped(ctx, school, other_school):
    _trade(school)
    assert services.income_statement(other_school.tenant_id)["revenue"] == 0
    assert services.inventory_value(other_school.tenant_id) == 0


def test_workbook_has_both_statements(ctx, school):
    _trade(school)
    out = services.financial_workbook("Greenhill Primary", services.balance_sheet(school.tenant_id))
    wb = load_workbook(out)
    assert wb.sheetnames == ["Income Statement", "Balance Sheet"]
    assert wb["Income Statement"]["A1"].value == "Greenhill Primary"
    assert wb["Balance Sheet"]["B2"].value == 24800
