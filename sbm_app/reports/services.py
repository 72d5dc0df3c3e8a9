from datetime import datetime, time
from io import BytesIO
from openpyxl import Workbook
from openpyxl.styles import Font
from sqlalchemy import select, func

from .. import db
from ..models import Sale, SaleReturn, Expense, Product, FeePayment


def _in_range(column, start, end, timestamps=True):
    clauses = []
    if start:
        clauses.append(column >= (datetime.combine(start, time.min) if timestamps else start))
    if end:
        clauses.append(column <= (datetime.combine(end, time.max) if timestamps else end))
    return clauses


def income_statement(tenant_id, start=None, end=None):
    sales_total = db.session.execute(
        select(func.coalesce(func.sum(Sale.total_amount), 0.0)).filter(
            Sale.tenant_id_fk == tenant_id,
            (Sale.return_status.is_(None)) | (Sale.return_status != "voided"),
            *_in_range(Sale.sale_date, start, end),
        )
    ).scalar()
    refunds = db.session.execute(
        select(func.coalesce(func.sum(SaleReturn.total_refund_amount), 0.0))
        .join(Sale, Sale.sale_id == SaleReturn.sale_id_fk)
        .filter(
            SaleReturn.tenant_id_fk == tenant_id,
            SaleReturn.return_type == "refund",
            # refunds on a later-voided sale are already excluded with the sale
            (Sale.return_status.is_(None)) | (Sale.return_status != "voided"),
            *_in_range(SaleReturn.created_at, start, end),
        )
    ).scalar()
    fee_income = db.session.execute(
        select(func.coalesce(func.sum(FeePayment.amount), 0.0)).filter(
            FeePayment.tenant_id_fk == tenant_id,
            *_in_range(FeePayment.paid_at, start, end),
        )
    ).scalar()
    expense_rows = db.session.execute(
        select(func.coalesce(Expense.category, "Other"), func.sum(Expense.amount))
        .filter(Expense.tenant_id_fk == tenant_id, *_in_range(Expense.expense_date, start, end, timestamps=False))
        .group_by(func.coalesce(Expense.category, "Other"))
        .order_by(func.coalesce(Expense.category, "Other"))
    ).all()

    expenses = [{"category": cat or "Other", "amount": round(amount or 0.0, 2)} for cat, amount in expense_rows]
    sales_revenue = round((sales_total or 0.0) - (refunds or 0.0), 2)
    revenue = round(sales_revenue + (fee_income or 0.0), 2)
    total_expenses = round(sum(e["amount"] for e in expenses), 2)
    return {
        "start": start,
        "end": end,
        "gross_sales": round(sales_total or 0.0, 2),
        "refunds": round(refunds or 0.0, 2),
        "sales_revenue": sales_revenue,
        "fee_income": round(fee_income or 0.0, 2),
        "revenue": revenue,
        "expenses": expenses,
        "total_expenses": total_expenses,
        "net_income": round(revenue - total_expenses, 2),
    }


def inventory_value(tenant_id):
    products = db.session.execute(
        select(Product).filter(Product.tenant_id_fk == tenant_id, Product.is_active == True)  # noqa: E712
    ).scalars()
    return round(sum((p.cost_price or p.unit_price or 0.0) * (p.stock_quantity or 0) for p in products), 2)


def balance_sheet(tenant_id, start=None, end=None):
    income = income_statement(tenant_id, start, end)
    inventory = inventory_value(tenant_id)
    cash = round(income["revenue"] - income["total_expenses"], 2)
    total_assets = round(inventory + max(0.0, cash), 2)
    equity = income["net_income"]
    return {
        "inventory": inventory,
        "cash": cash,
        "total_assets": total_assets,
        "retained_earnings": equity,
        "total_equity": equity,
        "liabilities": round(total_assets - equity, 2),
        "income": income,
    }


def financial_workbook(tenant_name, sheet):
    wb = Workbook()
    ws = wb.active
    ws.title = "Income Statement"
    bold = Font(bold=True)
    income = sheet["income"]
    period = f"{income['start'] or 'Beginning'} to {income['end'] or 'Today'}"
    ws.append([tenant_name])
    ws.append(["Period", period])
    ws.append([])
    ws.append(["Revenue"])
    ws.append(["Sales (net of refunds)", income["sales_revenue"]])
    ws.append(["Fee collections", income["fee_income"]])
    ws.append(["Total revenue", income["revenue"]])
    ws.append([])
    ws.append(["Expenses"])
    for row in income["expenses"]:
        ws.append([row["category"], row["amount"]])
    ws.append(["Total expenses", income["total_expenses"]])
    ws.append(["Net income", income["net_income"]])
    for cell in ("A1", "A4", "A9"):
        ws[cell].font = bold

    bs = wb.create_sheet("Balance Sheet")
    bs.append(["Assets"])
    bs.append(["Inventory", sheet["inventory"]])
    bs.append(["Cash", max(0.0, sheet["cash"])])
    bs.append(["Total assets", sheet["total_assets"]])
    bs.append([])
    bs.append(["Liabilities", sheet["liabilities"]])
    bs.append(["Retained earnings", sheet["retained_earnings"]])
    bs.append(["Total liabilities & equity", round(sheet["liabilities"] + sheet["total_equity"], 2)])
    bs["A1"].font = bold

    out = BytesIO()
    wb.save(out)
    out.seek(0)
    return out
