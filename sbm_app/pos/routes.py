from flask import render_template, request, redirect, url_for, flash, current_app
from flask_login import login_required, current_user
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from . import pos_bp
from .. import db, csrf_required
from ..decorators import role_required, FINANCE_STAFF, SALES_STAFF
from ..errors import ServiceError
from ..models import Product, Sale, Customer, Expense
from ..tenancy import current_tenant_id, get_tenant_row, get_tenant_row_or_404, parse_date, parse_float, parse_int, today
from . import services


# --- PRODUCTS ---

@pos_bp.route("/products", methods=["GET", "POST"])
@login_required
@role_required(*SALES_STAFF)
@csrf_required
def products():
    tid = current_tenant_id()
    if request.method == "POST":
        product_id = parse_int(request.form.get("product_id"))
        try:
            existing = get_tenant_row_or_404(Product, product_id) if product_id else None
            services.save_product(tid, {
                "name": request.form.get("name"),
                "sku": request.form.get("sku"),
                "barcode": request.form.get("barcode"),
                "category": request.form.get("category"),
                "unit_price": parse_float(request.form.get("unit_price"), None),
                "cost_price": parse_float(request.form.get("cost_price"), None),
                "stock_quantity": parse_int(request.form.get("stock_quantity"), 0),
                "min_stock_level": parse_int(request.form.get("min_stock_level"), 0),
            }, existing)
            db.session.commit()
            flash("Product saved.", "success")
        except ServiceError as e:
            db.session.rollback()
            flash(str(e), "danger")
        return redirect(url_for("pos.products"))
    rows = db.session.execute(
        select(Product).filter_by(tenant_id_fk=tid, is_active=True).order_by(Product.name)
    ).scalars().all()
    return render_template("pos/products.html", products=rows)


@pos_bp.route("/products/<int:product_id>/archive", methods=["POST"])
@login_required
@role_required(*FINANCE_STAFF)
@csrf_required
def archive_product(product_id):
    product = get_tenant_row_or_404(Product, product_id)
    product.is_active = False
    db.session.commit()
    flash(f"{product.name} archived.", "success")
    return redirect(url_for("pos.products"))


# --- SALES ---

@pos_bp.route("/sales")
@login_required
@role_required(*SALES_STAFF)
def sales():
    tid = current_tenant_id()
    rows = db.session.execute(
        select(Sale).filter_by(tenant_id_fk=tid).order_by(Sale.sale_date.desc()).limit(200)
    ).scalars().all()
    return render_template("pos/sales.html", sales=rows)


def _resolve_customer(tid):
    customer_id = parse_int(request.form.get("customer_id"))
    if customer_id:
        customer = get_tenant_row(Customer, customer_id, tid)
        return customer.customer_id if customer else None
    name = (request.form.get("customer_name") or "").strip()
    if not name:
        return None
    customer = Customer(
        tenant_id_fk=tid,
        name=name,
        phone=(request.form.get("customer_phone") or "").strip() or None,
    )
    db.session.add(customer)
    db.session.flush()
    return customer.customer_id


@pos_bp.route("/sales/new", methods=["GET", "POST"])
@login_required
@role_required(*SALES_STAFF)
@csrf_required
def new_sale():
    tid = current_tenant_id()
    if request.method == "POST":
        lines = []
        for pid, qty in zip(request.form.getlist("product_id"), request.form.getlist("quantity")):
            pid, qty = parse_int(pid), parse_int(qty, 0)
            if pid and qty:
                lines.append((pid, qty))
        try:
            sale = services.create_sale(
                tid,
                lines,
                payment_method=(request.form.get("payment_method") or "cash").strip(),
                discount=parse_float(request.form.get("discount"), 0.0),
                customer_id=_resolve_customer(tid),
                notes=request.form.get("notes"),
                created_by=current_user.user_id,
            )
            db.session.commit()
        except ServiceError as e:
            db.session.rollback()
            flash(str(e), "danger")
            return redirect(url_for("pos.new_sale"))
        except SQLAlchemyError:
            db.session.rollback()
            current_app.logger.exception("Sale failed")
            flash("Sale could not be saved. Please try again.", "danger")
            return redirect(url_for("pos.new_sale"))
        flash(f"Sale #{sale.order_number} recorded.", "success")
        return redirect(url_for("pos.receipt", sale_id=sale.sale_id))

    customers = db.session.execute(select(Customer).filter_by(tenant_id_fk=tid).order_by(Customer.name)).scalars().all()
    return render_template("pos/new_sale.html", products=services.exchange_products(tid), customers=customers,
                           payment_methods=services.PAYMENT_METHODS)


@pos_bp.route("/sales/<int:sale_id>")
@login_required
@role_required(*SALES_STAFF)
def receipt(sale_id):
    sale = get_tenant_row_or_404(Sale, sale_id)
    return render_template("pos/receipt.html", sale=sale, returnable=services.returnable_items(sale))


@pos_bp.route("/sales/<int:sale_id>/return", methods=["GET", "POST"])
@login_required
@role_required(*FINANCE_STAFF)
@csrf_required
def return_sale(sale_id):
    tid = current_tenant_id()
    sale = get_tenant_row_or_404(Sale, sale_id)
    if request.method == "POST":
        return_type = (request.form.get("return_type") or "refund").strip()
        items = []
        for item, left in services.returnable_items(sale):
            qty = parse_int(request.form.get(f"qty_{item.item_id}"), 0)
            if qty:
                items.append({
                    "sale_item_id": item.item_id,
                    "quantity": qty,
                    "restock": request.form.get(f"restock_{item.item_id}") == "on",
                })
        exchange_items = []
        for pid, qty in zip(request.form.getlist("exchange_product_id"), request.form.getlist("exchange_quantity")):
            pid, qty = parse_int(pid), parse_int(qty, 0)
            if pid and qty:
                exchange_items.append((pid, qty))
        try:
            result = services.process_return(
                sale, return_type, request.form.get("reason"),
                items=items,
                exchange_items=exchange_items,
                processed_by=current_user.user_id,
                notes=request.form.get("notes"),
            )
            db.session.commit()
        except ServiceError as e:
            db.session.rollback()
            flash(str(e), "danger")
            return redirect(url_for("pos.return_sale", sale_id=sale_id))
        except SQLAlchemyError:
            db.session.rollback()
            current_app.logger.exception("Return on sale %s failed", sale_id)
            flash("Return failed. No changes were saved.", "danger")
            return redirect(url_for("pos.return_sale", sale_id=sale_id))

        msg = f"{return_type.title()} processed: {result['return_total']:,.0f} returned."
        if result["exchange_sale"] is not None:
            due = result["balance_due"]
            if due > 0:
                msg += f" Customer pays {due:,.0f}."
            elif due < 0:
                msg += f" Refund {abs(due):,.0f} to customer."
            flash(msg, "success")
            return redirect(url_for("pos.receipt", sale_id=result["exchange_sale"].sale_id))
        flash(msg, "success")
        return redirect(url_for("pos.receipt", sale_id=sale_id))

    return render_template(
        "pos/return.html",
        sale=sale,
        returnable=services.returnable_items(sale),
        products=services.exchange_products(tid),
        return_types=services.RETURN_TYPES,
    )


# --- EXPENSES ---

@pos_bp.route("/expenses", methods=["GET", "POST"])
@login_required
@role_required(*FINANCE_STAFF)
@csrf_required
def expenses():
    tid = current_tenant_id()
    if request.method == "POST":
        try:
            services.record_expense(tid, {
                "amount": parse_float(request.form.get("amount"), None),
                "expense_date": parse_date(request.form.get("expense_date"), today()),
                "category": request.form.get("category"),
                "description": request.form.get("description"),
            }, recorded_by=current_user.user_id)
            db.session.commit()
            flash("Expense recorded.", "success")
        except ServiceError as e:
            db.session.rollback()
            flash(str(e), "danger")
        return redirect(url_for("pos.expenses"))
    rows = db.session.execute(
        select(Expense).filter_by(tenant_id_fk=tid).order_by(Expense.expense_date.desc()).limit(200)
    ).scalars().all()
    return render_template("pos/expenses.html", expenses=rows)


@pos_bp.route("/expenses/<int:expense_id>/delete", methods=["POST"])
@login_required
@role_required(*FINANCE_STAFF)
@csrf_required
def delete_expense(expense_id):
    expense = get_tenant_row_or_404(Expense, expense_id)
    db.session.delete(expense)
    db.session.commit()
    flash("Expense deleted.", "success")
    return redirect(url_for("pos.expenses"))
