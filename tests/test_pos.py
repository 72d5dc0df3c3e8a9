from datetime import date

import pytest

from sbm_app import db
from sbm_app.errors import ValidationError, ConflictError
from sbm_app.pos import services


@pytest.fixture()
def products(ctx, school):
    rows = {}
    for name, price, stock in (("Pen", 1000, 10), ("Exercise Book", 5000, 5), ("School Bag", 20000, 2)):
        rows[name] = services.save_product(school.tenant_id, {"name": name, "unit_price": price, "stock_quantity": stock})
    db.session.flush()
    return rows


def _sale(school, lines, **kwargs):
    sale = services.create_sale(school.tenant_id, lines, created_by=school.users["cashier"], **kwargs)
    db.session.flush()
    return sale


def _item(sale, product):
    return next(i for i in sale.items if i.product_id_fk == product.product_id)


def test_sale_decrements_stock_and_applies_discount(products, school):
    pen, book = products["Pen"], products["Exercise Book"]
    sale = _sale(school, [(pen.product_id, 2), (book.product_id, 1), (pen.product_id, 1)], discount=500)
    assert sale.order_number == 1
    assert sale.subtotal == 8000
    assert sale.total_amount == 7500
    assert _item(sale, pen).quantity == 3
    assert (pen.stock_quantity, book.stock_quantity) == (7, 4)
    assert _sale(school, [(pen.product_id, 1)]).order_number == 2


def test_sale_rules(products, school, other_school):
    bag = products["School Bag"]
    with pytest.raises(ConflictError, match="Only 2 of School Bag"):
        services.create_sale(school.tenant_id, [(bag.product_id, 3)])
    with pytest.raises(ValidationError):
        services.create_sale(school.tenant_id, [(bag.product_id, 1)], discount=50000)
    with pytest.raises(ValidationError):
        services.create_sale(school.tenant_id, [])
    with pytest.raises(ValidationError):
        services.create_sale(school.tenant_id, [(bag.product_id, 1)], payment_method="barter")
    with pytest.raises(ValidationError):
        services.create_sale(other_school.tenant_id, [(bag.product_id, 1)])


def test_partial_refund_then_void(products, school):
    pen, book = products["Pen"], products["Exercise Book"]
    sale = _sale(school, [(pen.product_id, 3), (book.product_id, 1)])
    pen_item = _item(sale, pen)

    result = services.process_return(sale, "refund", "Wrong colour",
                                     items=[{"sale_item_id": pen_item.item_id, "quantity": 1, "restock": True}])
    assert result["return_total"] == 1000
    assert result["balance_due"] == -1000
    assert sale.return_status == "partial_return"
    assert pen.stock_quantity == 8
    assert dict((i.item_id, left) for i, left in services.returnable_items(sale))[pen_item.item_id] == 2

    with pytest.raises(ValidationError, match="between 1 and 2"):
        services.process_return(sale, "refund", "Too many",
                                items=[{"sale_item_id": pen_item.item_id, "quantity": 3}])

    voided = services.process_return(sale, "void", "Customer cancelled")
    assert voided["return_total"] == 7000
    assert sale.return_status == "voided"
    assert (pen.stock_quantity, book.stock_quantity) == (10, 5)
    with pytest.raises(ConflictError):
        services.process_return(sale, "refund", "Again",
                                items=[{"sale_item_id": pen_item.item_id, "quantity": 1}])


def test_refund_of_everything_is_a_full_return(products, school):
    pen = products["Pen"]
    sale = _sale(school, [(pen.product_id, 2)])
    services.process_return(sale, "refund", "Damaged",
                            items=[{"sale_item_id": _item(sale, pen).item_id, "quantity": 2, "restock": False}])
    assert sale.return_status == "full_return"
    assert pen.stock_quantity == 8


def test_exchange_for_dearer_item_charges_the_difference(products, school):
    book, bag = products["Exercise Book"], products["School Bag"]
    sale = _sale(school, [(book.product_id, 2)])
    result = services.process_return(
        sale, "exchange", "Wants a bag",
        items=[{"sale_item_id": _item(sale, book).item_id, "quantity": 1, "restock": True}],
        exchange_items=[(bag.product_id, 1)], processed_by=school.users["cashier"],
    )
    exchange = result["exchange_sale"]
    assert result["exchange_total"] == 20000
    assert result["balance_due"] == 15000
    assert sale.return_status == "exchanged"
    assert exchange.order_type == "exchange"
    assert exchange.payment_method == "cash"
    assert exchange.total_amount == 15000
    assert result["sale_return"].exchange_sale_id_fk == exchange.sale_id
    assert (book.stock_quantity, bag.stock_quantity) == (4, 1)


def test_exchange_for_cheaper_item_uses_credit(products, school):
    pen, book = products["Pen"], products["Exercise Book"]
    sale = _sale(school, [(book.product_id, 1)])
    result = services.process_return(
        sale, "exchange", "Only needed a pen",
        items=[{"sale_item_id": _item(sale, book).item_id, "quantity": 1}],
        exchange_items=[(pen.product_id, 1)],
    )
    assert result["balance_due"] == -4000
    assert result["exchange_sale"].payment_method == "exchange_credit"
    assert result["exchange_sale"].total_amount == 0


def test_return_validation(products, school):
    pen = products["Pen"]
    sale = _sale(school, [(pen.product_id, 1)])
    with pytest.raises(ValidationError):
        services.process_return(sale, "refund", "  ", items=[{"sale_item_id": sale.items[0].item_id, "quantity": 1}])
    with pytest.raises(ValidationError):
        services.process_return(sale, "swap", "Reason")
    with pytest.raises(ValidationError):
        services.process_return(sale, "refund", "Nothing chosen", items=[])
    with pytest.raises(ValidationError):
        services.process_return(sale, "refund", "Not ours", items=[{"sale_item_id": 9999, "quantity": 1}])
    with pytest.raises(ValidationError, match="replacement"):
        services.process_return(sale, "exchange", "Wrong colour",
                                items=[{"sale_item_id": sale.items[0].item_id, "quantity": 1}], exchange_items=[])
    assert sale.return_status is None


def test_exchange_products_and_expenses(products, school):
    products["School Bag"].stock_quantity = 0
    assert [p.name for p in services.exchange_products(school.tenant_id)] == ["Exercise Book", "Pen"]
    with pytest.raises(ValidationError):
        services.record_expense(school.tenant_id, {"amount": 0, "expense_date": date.today()})
    expense = services.record_expense(school.tenant_id, {"amount": 12000, "expense_date": date.today(), "category": "  "})
    assert expense.amount == 12000
    assert expense.category == "Other"
