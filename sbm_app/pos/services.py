"""
Point of sale: sales, returns, voids and exchanges.

A return touches several tables (return rows, product stock, the original
sale and possibly a replacement sale). Everything is staged in the current
session and committed once by the route, so a failure leaves no partial
return behind.
"""
from flask import current_app
from sqlalchemy import select, func

from .. import db
from ..errors import ValidationError, ConflictError
from ..models import Product, Sale, SaleItem, SaleReturn, SaleReturnItem, Expense

RETURN_TYPES = ("refund", "void", "exchange")
PAYMENT_METHODS = ("cash", "mobile_money", "card")


def next_order_number(tenant_id):
    current = db.session.execute(
        select(func.max(Sale.order_number)).filter(Sale.tenant_id_fk == tenant_id)
    ).scalar()
    return (current or 0) + 1


def _load_products(tenant_id, lines):
    """Validate (product_id, qty) lines against active stock; returns [(product, qty)]."""
    wanted = {}
    for product_id, qty in lines:
        if not qty or qty <= 0:
            raise ValidationError("Quantities must be at least 1.")
        wanted[product_id] = wanted.get(product_id, 0) + qty
    out = []
    for product_id, qty in wanted.items():
        product = db.session.get(Product, product_id)
        if product is None or product.tenant_id_fk != tenant_id or not product.is_active:
            raise ValidationError("Product not available.")
        if (product.stock_quantity or 0) < qty:
            raise ConflictError(f"Only {product.stock_quantity or 0} of {product.name} left in stock.")
        out.append((product, qty))
    return out


def _add_items(sale, products):
    subtotal = 0.0
    for product, qty in products:
        line_total = round(product.unit_price * qty, 2)
        sale.items.append(SaleItem(
            product_id_fk=product.product_id,
            product_name=product.name,
            quantity=qty,
            unit_price=product.unit_price,
            total_price=line_total,
        ))
        product.stock_quantity = (product.stock_quantity or 0) - qty
        subtotal += line_total
    return round(subtotal, 2)


def create_sale(tenant_id, lines, payment_method="cash", discount=0.0, customer_id=None, notes=None, created_by=None):
    if not lines:
        raise ValidationError("Add at least one product to the sale.")
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError("Unknown payment method.")
    products = _load_products(tenant_id, lines)

    sale = Sale(
        tenant_id_fk=tenant_id,
        order_number=next_order_number(tenant_id),
        customer_id_fk=customer_id,
        payment_method=payment_method,
        payment_status="paid",
        order_type="sale",
        order_status="completed",
        notes=(notes or "").strip() or None,
        created_by_id_fk=created_by,
    )
    db.session.add(sale)
    sale.subtotal = _add_items(sale, products)
    discount = max(0.0, discount or 0.0)
    if discount > sale.subtotal:
        raise ValidationError("Discount cannot exceed the sale subtotal.")
    sale.discount_amount = discount
    sale.total_amount = round(sale.subtotal - discount, 2)
    return sale


def returned_quantities(sale):
    """{sale_item_id: quantity already returned} across previous returns."""
    rows = db.session.execute(
        select(SaleReturnItem.sale_item_id_fk, func.sum(SaleReturnItem.quantity))
        .join(SaleReturn, SaleReturn.return_id == SaleReturnItem.return_id_fk)
        .filter(SaleReturn.sale_id_fk == sale.sale_id)
        .group_by(SaleReturnItem.sale_item_id_fk)
    ).all()
    return {item_id: int(qty or 0) for item_id, qty in rows}


def returnable_items(sale):
    done = returned_quantities(sale)
    return [(item, item.quantity - done.get(item.item_id, 0)) for item in sale.items]


def process_return(sale, return_type, reason, items=None, exchange_items=None, processed_by=None, notes=None):
    """
    Reverse some or all of a sale.

    ``items``: list of dicts {sale_item_id, quantity, restock}.
    ``exchange_items``: list of (product_id, quantity) for an exchange.
    Returns a dict with the return row, totals and any replacement sale.
    """
    if return_type not in RETURN_TYPES:
        raise ValidationError("Return type must be refund, void or exchange.")
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A reason is required for returns.")
    if sale.return_status == "voided":
        raise ConflictError(f"Sale #{sale.order_number} has already been voided.")
    if return_type == "exchange" and not exchange_items:
        raise ValidationError("Choose the replacement items for an exchange.")

    remaining = {item.item_id: (item, left) for item, left in returnable_items(sale)}
    if return_type == "void":
        selections = [
            {"sale_item_id": item_id, "quantity": left, "restock": True}
            for item_id, (item, left) in remaining.items() if left > 0
        ]
    else:
        selections = [s for s in (items or []) if s.get("quantity")]
    if not selections:
        raise ValidationError("Select at least one item to return.")

    sale_return = SaleReturn(
        tenant_id_fk=sale.tenant_id_fk,
        sale_id_fk=sale.sale_id,
        return_type=return_type,
        reason=reason,
        status="completed",
        notes=(notes or "").strip() or None,
        processed_by_id_fk=processed_by,
    )
    return_total = 0.0
    for sel in selections:
        entry = remaining.get(sel["sale_item_id"])
        if entry is None:
            raise ValidationError("Selected item does not belong to this sale.")
        item, left = entry
        qty = int(sel["quantity"])
        if qty < 1 or qty > left:
            raise ValidationError(f"{item.product_name}: quantity must be between 1 and {left}.")
        refund = round(qty * item.unit_price, 2)
        restock = bool(sel.get("restock", True))
        sale_return.items.append(SaleReturnItem(
            sale_item_id_fk=item.item_id,
            product_id_fk=item.product_id_fk,
            product_name=item.product_name,
            quantity=qty,
            unit_price=item.unit_price,
            refund_amount=refund,
            restock=restock,
        ))
        if restock and item.product is not None:
            item.product.stock_quantity = (item.product.stock_quantity or 0) + qty
        remaining[item.item_id] = (item, left - qty)
        return_total += refund
    return_total = round(return_total, 2)
    sale_return.total_refund_amount = return_total
    db.session.add(sale_return)

    if return_type == "void":
        sale.return_status = "voided"
    elif return_type == "exchange":
        sale.return_status = "exchanged"
    else:
        fully_returned = all(left == 0 for _, left in remaining.values())
        sale.return_status = "full_return" if fully_returned else "partial_return"

    exchange_sale = None
    exchange_total = 0.0
    if return_type == "exchange":
        products = _load_products(sale.tenant_id_fk, exchange_items)
        exchange_total = round(sum(p.unit_price * q for p, q in products), 2)
        balance = round(exchange_total - return_total, 2)
        exchange_sale = Sale(
            tenant_id_fk=sale.tenant_id_fk,
            order_number=next_order_number(sale.tenant_id_fk),
            customer_id_fk=sale.customer_id_fk,
            payment_method="cash" if balance > 0 else "exchange_credit",
            payment_status="paid",
            order_type="exchange",
            order_status="completed",
            notes=f"Exchange from sale #{sale.order_number}",
            created_by_id_fk=processed_by,
        )
        db.session.add(exchange_sale)
        exchange_sale.subtotal = _add_items(exchange_sale, products)
        exchange_sale.total_amount = max(balance, 0.0)
        db.session.flush()
        sale_return.exchange_sale_id_fk = exchange_sale.sale_id

    balance_due = round(exchange_total - return_total, 2)
    db.session.flush()
    current_app.logger.info(
        "Sale #%s %s processed tenant=%s total=%s balance_due=%s",
        sale.order_number, return_type, sale.tenant_id_fk, return_total, balance_due,
    )
    return {
        "sale_return": sale_return,
        "return_total": return_total,
        "exchange_total": exchange_total,
        "balance_due": balance_due,
        "exchange_sale": exchange_sale,
    }


def exchange_products(tenant_id):
    return db.session.execute(
        select(Product)
        .filter(Product.tenant_id_fk == tenant_id, Product.is_active == True, Product.stock_quantity > 0)  # noqa: E712
        .order_by(Product.name)
    ).scalars().all()


def save_product(tenant_id, data, product=None):
    name = (data.get("name") or "").strip()
    price = data.get("unit_price")
    errors = []
    if not name:
        errors.append("Product name is required.")
    if price is None or price < 0:
        errors.append("Unit price cannot be negative.")
    if (data.get("stock_quantity") or 0) < 0:
        errors.append("Stock cannot be negative.")
    if errors:
        raise ValidationError(" ".join(errors))
    if product is None:
        product = Product(tenant_id_fk=tenant_id)
        db.session.add(product)
    product.name = name
    product.sku = (data.get("sku") or "").strip() or None
    product.barcode = (data.get("barcode") or "").strip() or None
    product.category = (data.get("category") or "").strip() or None
    product.unit_price = price
    product.cost_price = data.get("cost_price")
    product.stock_quantity = data.get("stock_quantity") or 0
    product.min_stock_level = data.get("min_stock_level") or 0
    return product


def record_expense(tenant_id, data, recorded_by=None):
    amount = data.get("amount")
    if amount is None or amount <= 0:
        raise ValidationError("Expense amount must be greater than zero.")
    if data.get("expense_date") is None:
        raise ValidationError("Expense date is required.")
    expense = Expense(
        tenant_id_fk=tenant_id,
        category=(data.get("category") or "").strip() or "Other",
        amount=round(amount, 2),
        expense_date=data["expense_date"],
        description=(data.get("description") or "").strip() or None,
        recorded_by_id_fk=recorded_by,
    )
    db.session.add(expense)
    return expense
