# Overview: Pytest coverage for sale creation, voiding and their side effects.

"""
Sale Ledger Tests

Verifies:
1. A completed sale moves stock, loyalty and tenant counters together
2. Any failure leaves stock, loyalty and counters untouched
3. total = subtotal + tax - discount - points_used * 100 on every sale
4. Voiding restores stock, reverses loyalty and happens once
5. Sales are only visible inside their own tenant
"""

import re

import pytest

from shoppos.errors import (
    AlreadyVoided,
    CustomerNotFound,
    InsufficientStock,
    InvalidAmount,
    InvalidPaymentMethod,
    ProductNotFound,
    SaleNotFound,
    ValidationError,
)
from shoppos.models import Customer, Product, Sale, StockMovement, Tenant
from shoppos.services import customers_service, products_service, sales_service
from shoppos.validation import parse_sale_payload


RECEIPT_PATTERN = re.compile(r"^RCP-\d+-[A-Z0-9]{5}$")


@pytest.fixture
def sell(db_session, tenant_a, owner_a):
    """sell(body) parses a request body and records the sale in Shop A."""
    def _sell(body, tenant_id=None, cashier=None):
        data = parse_sale_payload(body)
        return sales_service.create_sale(
            tenant_id or tenant_a.id,
            data,
            cashier_user_id=(cashier or owner_a).id,
        )
    return _sell


def _body(*lines, **extra):
    body = {
        "items": [{"product": product_id, "quantity": quantity} for product_id, quantity in lines],
        "paymentMethod": "cash",
        "amountPaid": 100,
    }
    body.update(extra)
    return body


class TestCreateSale:

    def test_cash_sale_with_customer(self, db_session, sell, tenant_a, product_a, customer_a, reload):
        sale = sell(_body((product_a.id, 2), customer=customer_a.id, amountPaid=50))

        assert sale.subtotal_cents == 4000
        assert sale.total_cents == 4000
        assert sale.change_cents == 1000
        assert sale.loyalty_points_earned == 4
        assert sale.status == "completed"
        assert RECEIPT_PATTERN.match(sale.receipt_number)

        [item] = sale.items
        assert (item.product_name, item.sku, item.quantity, item.unit_price_cents) == ("Widget", "WID-001", 2, 2000)

        assert reload(Product, product_a.id).stock == 8
        customer = reload(Customer, customer_a.id)
        assert customer.loyalty_points == 4
        assert customer.total_visits == 1
        assert customer.total_spent_cents == 4000

        tenant = reload(Tenant, tenant_a.id)
        assert tenant.monthly_transactions == 1
        assert tenant.total_sales == 1

    def test_stock_movements_reference_the_sale(self, db_session, sell, product_a):
        sale = sell(_body((product_a.id, 1)))
        movement = db_session.query(StockMovement).filter_by(product_id=product_a.id, type="SALE").one()
        assert movement.sale_id == sale.id
        assert movement.quantity_delta == -1

    def test_walk_in_sale_earns_nothing(self, db_session, sell, product_a):
        sale = sell(_body((product_a.id, 1)))
        assert sale.customer_id is None
        assert sale.loyalty_points_earned == 0

    def test_totals_with_tax_discount_and_line_discount(self, db_session, sell, product_a, product_a2):
        sale = sell({
            "items": [
                {"product": product_a.id, "quantity": 1, "discount": 2.5},
                {"product": product_a2.id, "quantity": 2},
            ],
            "tax": 3.25,
            "discount": 1,
            "paymentMethod": "card",
            "amountPaid": 100,
        })
        assert sale.subtotal_cents == 2000 - 250 + 1000
        assert sale.total_cents == sale.subtotal_cents + sale.tax_cents - sale.discount_cents
        assert sale.total_cents == 2750 + 325 - 100
        assert [item.position for item in sale.items] == [0, 1]

    def test_unit_price_override(self, db_session, sell, product_a):
        sale = sell({
            "items": [{"product": product_a.id, "quantity": 3, "unitPrice": "15.00"}],
            "paymentMethod": "cash",
            "amountPaid": 45,
        })
        assert sale.items[0].unit_price_cents == 1500
        assert sale.total_cents == 4500
        assert sale.change_cents == 0

    def test_underpayment_gives_no_change(self, db_session, sell, product_a):
        sale = sell(_body((product_a.id, 1), amountPaid=5))
        assert sale.change_cents == 0

    def test_redeeming_points(self, db_session, sell, product_a, customer_a, reload):
        customer_a.loyalty_points = 5
        db_session.commit()

        sale = sell(_body((product_a.id, 2), customer=customer_a.id, loyaltyPointsUsed=2))

        assert sale.total_cents == 3800
        assert sale.loyalty_points_used == 2
        assert sale.loyalty_points_earned == 3
        assert reload(Customer, customer_a.id).loyalty_points == 6

    def test_receipt_numbers_are_unique(self, db_session, sell, product_a):
        receipts = {sell(_body((product_a.id, 1))).receipt_number for _ in range(3)}
        assert len(receipts) == 3


class TestCreateSaleFailures:

    def test_insufficient_stock_changes_nothing(
        self, db_session, sell, tenant_a, product_a, product_a2, customer_a, reload
    ):
        with pytest.raises(InsufficientStock) as exc:
            sell(_body((product_a.id, 2), (product_a2.id, 4), customer=customer_a.id))

        assert exc.value.details["product_id"] == product_a2.id
        assert reload(Product, product_a.id).stock == 10
        assert reload(Product, product_a2.id).stock == 3
        assert reload(Customer, customer_a.id).loyalty_points == 0
        assert reload(Tenant, tenant_a.id).monthly_transactions == 0
        assert db_session.query(Sale).count() == 0
        assert db_session.query(StockMovement).filter(StockMovement.type != "INITIAL").count() == 0

    def test_duplicate_lines_are_reserved_together(self, db_session, sell, product_a, reload):
        with pytest.raises(InsufficientStock) as exc:
            sell(_body((product_a.id, 6), (product_a.id, 5)))
        assert exc.value.details["requested"] == 11
        assert reload(Product, product_a.id).stock == 10

    def test_duplicate_lines_within_stock(self, db_session, sell, product_a, reload):
        sale = sell(_body((product_a.id, 6), (product_a.id, 4)))
        assert len(sale.items) == 2
        assert reload(Product, product_a.id).stock == 0

    def test_negative_total_rolls_back(self, db_session, sell, product_a2, reload):
        with pytest.raises(InvalidAmount):
            sell(_body((product_a2.id, 1), discount=10))
        assert reload(Product, product_a2.id).stock == 3
        assert db_session.query(Sale).count() == 0

    def test_points_without_customer(self, db_session, sell, product_a):
        with pytest.raises(InvalidAmount):
            sell(_body((product_a.id, 1), loyaltyPointsUsed=1))

    def test_redeeming_more_points_than_held(self, db_session, sell, tenant_a, product_a, customer_a, reload):
        with pytest.raises(InvalidAmount):
            sell(_body((product_a.id, 2), customer=customer_a.id, loyaltyPointsUsed=10))

        assert reload(Product, product_a.id).stock == 10
        customer = reload(Customer, customer_a.id)
        assert customer.loyalty_points == 0
        assert customer.total_visits == 0
        assert reload(Tenant, tenant_a.id).monthly_transactions == 0
        assert db_session.query(Sale).count() == 0

    def test_line_discount_above_line_amount(self, db_session, sell, product_a, product_a2, reload):
        body = _body((product_a2.id, 3))
        body["items"].insert(0, {"product": product_a.id, "quantity": 1, "discount": 30})

        with pytest.raises(InvalidAmount) as exc:
            sell(body)

        assert exc.value.details["product_id"] == product_a.id
        assert reload(Product, product_a.id).stock == 10
        assert reload(Product, product_a2.id).stock == 3
        assert db_session.query(Sale).count() == 0

    def test_line_discount_equal_to_line_amount(self, db_session, sell, product_a, product_a2):
        body = _body((product_a2.id, 1))
        body["items"].insert(0, {"product": product_a.id, "quantity": 1, "discount": 20})

        sale = sell(body)

        assert [item.total_price_cents for item in sale.items] == [0, 500]
        assert sale.total_cents == 500

    def test_other_tenants_customer(self, db_session, sell, tenant_b, product_a, reload):
        outsider = customers_service.create_customer(tenant_id=tenant_b.id, patch={"name": "Oscar"})

        with pytest.raises(CustomerNotFound):
            sell(_body((product_a.id, 1), customer=outsider.id))
        assert reload(Product, product_a.id).stock == 10

    def test_other_tenants_product(self, db_session, sell, product_b, reload):
        with pytest.raises(ProductNotFound):
            sell(_body((product_b.id, 1)))
        assert reload(Product, product_b.id).stock == 5

    @pytest.mark.parametrize("body,error", [
        ({"items": [], "paymentMethod": "cash", "amountPaid": 1}, ValidationError),
        ({"items": [{"product": 1, "quantity": 0}], "paymentMethod": "cash", "amountPaid": 1}, ValidationError),
        ({"items": [{"quantity": 1}], "paymentMethod": "cash", "amountPaid": 1}, ValidationError),
        ({"items": [{"product": 1, "quantity": 1}], "paymentMethod": "barter", "amountPaid": 1}, InvalidPaymentMethod),
        ({"items": [{"product": 1, "quantity": 1}], "paymentMethod": "cash"}, InvalidAmount),
        ({"items": [{"product": 1, "quantity": 1}], "paymentMethod": "cash", "amountPaid": -1}, InvalidAmount),
        ({"items": [{"product": 1, "quantity": 1, "unitPrice": "abc"}], "paymentMethod": "cash", "amountPaid": 1},
         InvalidAmount),
        ({"items": [{"product": 1, "quantity": 10**30}], "paymentMethod": "cash", "amountPaid": 1}, ValidationError),
        ({"items": [{"product": 10**30, "quantity": 1}], "paymentMethod": "cash", "amountPaid": 1}, ValidationError),
        ({"items": [{"product": 1, "quantity": 1}], "paymentMethod": "cash", "amountPaid": 1, "customer": 1,
          "loyaltyPointsUsed": 10**30}, InvalidAmount),
    ])
    def test_payload_validation(self, body, error):
        with pytest.raises(error):
            parse_sale_payload(body)


class TestVoidSale:

    def test_void_restores_stock_and_loyalty(self, db_session, sell, tenant_a, product_a, customer_a, manager_a, reload):
        sale = sell(_body((product_a.id, 2), customer=customer_a.id))

        voided = sales_service.void_sale(tenant_a.id, sale.id, "Customer changed mind", actor_user_id=manager_a.id)

        assert voided.is_void is True
        assert voided.status == "voided"
        assert voided.void_reason == "Customer changed mind"
        assert voided.voided_by_user_id == manager_a.id
        assert voided.voided_at is not None
        assert reload(Product, product_a.id).stock == 10

        customer = reload(Customer, customer_a.id)
        assert customer.loyalty_points == 0
        assert customer.total_spent_cents == 0

        # Counters are not given back on void
        assert reload(Tenant, tenant_a.id).monthly_transactions == 1

    def test_round_trip_with_redemption(self, db_session, sell, tenant_a, product_a, customer_a, owner_a, reload):
        customer_a.loyalty_points = 5
        db_session.commit()

        sale = sell(_body((product_a.id, 2), customer=customer_a.id, loyaltyPointsUsed=5))
        assert sale.total_cents == 3500
        assert sale.loyalty_points_earned == 3
        assert reload(Customer, customer_a.id).loyalty_points == 3

        sales_service.void_sale(tenant_a.id, sale.id, "Returned", actor_user_id=owner_a.id)

        customer = reload(Customer, customer_a.id)
        assert customer.loyalty_points == 5
        assert customer.total_spent_cents == 0
        assert reload(Product, product_a.id).stock == 10

    def test_void_keeps_sale_amounts(self, db_session, sell, tenant_a, product_a, owner_a):
        sale = sell(_body((product_a.id, 1)))
        before = sale.to_dict()

        after = sales_service.void_sale(tenant_a.id, sale.id, "Mistake", actor_user_id=owner_a.id).to_dict()

        changed = {k for k in before if before[k] != after[k]}
        assert changed == {"status", "is_void", "void_reason", "voided_by_user_id", "voided_at"}

    def test_second_void_fails(self, db_session, sell, tenant_a, product_a, owner_a, reload):
        sale = sell(_body((product_a.id, 3)))
        sales_service.void_sale(tenant_a.id, sale.id, "first", actor_user_id=owner_a.id)

        with pytest.raises(AlreadyVoided):
            sales_service.void_sale(tenant_a.id, sale.id, "second", actor_user_id=owner_a.id)
        assert reload(Product, product_a.id).stock == 10

    def test_void_requires_reason(self, db_session, sell, tenant_a, product_a, owner_a):
        sale = sell(_body((product_a.id, 1)))
        with pytest.raises(ValidationError):
            sales_service.void_sale(tenant_a.id, sale.id, "   ", actor_user_id=owner_a.id)

    def test_void_reason_must_be_text(self, db_session, sell, tenant_a, product_a, owner_a, reload):
        sale = sell(_body((product_a.id, 1)))
        with pytest.raises(ValidationError):
            sales_service.void_sale(tenant_a.id, sale.id, 123, actor_user_id=owner_a.id)
        assert reload(Sale, sale.id).is_void is False

    def test_void_in_other_tenant_is_not_found(self, db_session, sell, tenant_b, product_a, owner_b):
        sale = sell(_body((product_a.id, 1)))
        with pytest.raises(SaleNotFound):
            sales_service.void_sale(tenant_b.id, sale.id, "nope", actor_user_id=owner_b.id)

    def test_void_after_product_deleted(self, db_session, sell, tenant_a, product_a, product_a2, owner_a, reload):
        sale = sell(_body((product_a.id, 1), (product_a2.id, 1)))
        products_service.delete_product(tenant_id=tenant_a.id, product_id=product_a2.id)

        voided = sales_service.void_sale(tenant_a.id, sale.id, "Return", actor_user_id=owner_a.id)

        assert voided.is_void is True
        assert reload(Product, product_a.id).stock == 10


class TestListSales:

    def test_voided_sales_are_hidden(self, db_session, sell, tenant_a, product_a, owner_a):
        kept = sell(_body((product_a.id, 1)))
        dropped = sell(_body((product_a.id, 1)))
        sales_service.void_sale(tenant_a.id, dropped.id, "dup", actor_user_id=owner_a.id)

        result = sales_service.list_sales(tenant_a.id)
        assert [s["id"] for s in result["items"]] == [kept.id]
        assert result["total"] == 1
        assert result["total_amount_cents"] == 2000

    def test_filter_by_payment_method(self, db_session, sell, tenant_a, product_a):
        sell(_body((product_a.id, 1)))
        sell(_body((product_a.id, 1), paymentMethod="card"))
        result = sales_service.list_sales(tenant_a.id, payment_method="card")
        assert [s["payment_method"] for s in result["items"]] == ["card"]

    def test_receipt_view(self, db_session, sell, product_a, customer_a, owner_a):
        sale = sell(_body((product_a.id, 1), customer=customer_a.id))
        receipt = sales_service.build_receipt(sale)
        assert receipt["receipt_number"] == sale.receipt_number
        assert receipt["cashier"] == owner_a.name
        assert receipt["customer"]["name"] == "Carla"
        assert receipt["items"][0]["total_cents"] == 2000


class TestSalesOverHttp:

    def test_cashier_records_sale(self, client, db_session, tenant_a, cashier_a, product_a, customer_a, headers_for):
        resp = client.post(
            "/api/sales",
            json=_body((product_a.id, 2), customer=customer_a.id, amountPaid=50),
            headers=headers_for(cashier_a, tenant_a.id),
        )
        assert resp.status_code == 201
        sale = resp.json["sale"]
        assert sale["total_cents"] == 4000
        assert sale["change_cents"] == 1000
        assert sale["loyalty_points_earned"] == 4
        assert sale["cashier_user_id"] == cashier_a.id
        assert len(sale["items"]) == 1

    def test_invalid_payment_method(self, client, db_session, tenant_a, owner_a, product_a, headers_for):
        resp = client.post(
            "/api/sales",
            json=_body((product_a.id, 1), paymentMethod="barter"),
            headers=headers_for(owner_a, tenant_a.id),
        )
        assert resp.status_code == 400
        assert resp.json["error"] == "InvalidPaymentMethod"

    def test_empty_items(self, client, db_session, tenant_a, owner_a, headers_for):
        resp = client.post(
            "/api/sales",
            json={"items": [], "paymentMethod": "cash", "amountPaid": 1},
            headers=headers_for(owner_a, tenant_a.id),
        )
        assert resp.status_code == 400
        assert resp.json["error"] == "ValidationError"

    def test_insufficient_stock_message(self, client, db_session, tenant_a, owner_a, product_a, headers_for):
        resp = client.post(
            "/api/sales",
            json=_body((product_a.id, 11)),
            headers=headers_for(owner_a, tenant_a.id),
        )
        assert resp.status_code == 400
        assert resp.json["error"] == "InsufficientStock"
        assert resp.json["message"] == "Insufficient stock for Widget. Available: 10"

    def test_list_get_and_receipt(self, client, db_session, sell, tenant_a, owner_a, product_a, headers_for):
        sale = sell(_body((product_a.id, 1)))
        headers = headers_for(owner_a, tenant_a.id)

        listing = client.get("/api/sales", headers=headers)
        assert listing.status_code == 200
        assert [s["id"] for s in listing.json["items"]] == [sale.id]

        detail = client.get(f"/api/sales/{sale.id}", headers=headers)
        assert detail.json["sale"]["receipt_number"] == sale.receipt_number

        receipt = client.get(f"/api/sales/{sale.id}/receipt", headers=headers)
        assert receipt.json["receipt"]["total_cents"] == 2000

    def test_bad_date_filter(self, client, db_session, tenant_a, owner_a, headers_for):
        resp = client.get("/api/sales?start=yesterday", headers=headers_for(owner_a, tenant_a.id))
        assert resp.status_code == 400

    def test_other_tenant_cannot_read_sale(self, client, db_session, sell, tenant_b, owner_b, product_a, headers_for):
        sale = sell(_body((product_a.id, 1)))
        resp = client.get(f"/api/sales/{sale.id}", headers=headers_for(owner_b, tenant_b.id))
        assert resp.status_code == 404
        assert resp.json["error"] == "SaleNotFound"

    def test_void_flow(self, client, db_session, sell, tenant_a, manager_a, product_a, headers_for, reload):
        sale = sell(_body((product_a.id, 2)))
        headers = headers_for(manager_a, tenant_a.id)

        missing_reason = client.put(f"/api/sales/{sale.id}/void", json={}, headers=headers)
        assert missing_reason.status_code == 400

        first = client.put(f"/api/sales/{sale.id}/void", json={"reason": "Wrong item"}, headers=headers)
        assert first.status_code == 200
        assert first.json["message"] == "Sale voided"
        assert first.json["sale"]["status"] == "voided"
        assert reload(Product, product_a.id).stock == 10

        second = client.put(f"/api/sales/{sale.id}/void", json={"reason": "Again"}, headers=headers)
        assert second.status_code == 400
        assert second.json["error"] == "AlreadyVoided"

    @pytest.mark.parametrize("payload", [{"reason": 123}, ["Wrong item"], {"reason": ["Wrong item"]}])
    def test_malformed_void_body(self, client, db_session, sell, tenant_a, owner_a, product_a, headers_for, payload, reload):
        sale = sell(_body((product_a.id, 1)))
        resp = client.put(f"/api/sales/{sale.id}/void", json=payload, headers=headers_for(owner_a, tenant_a.id))

        assert resp.status_code == 400
        assert resp.json["error"] == "ValidationError"
        assert reload(Sale, sale.id).is_void is False

    def test_oversized_quantity_is_400(self, client, db_session, tenant_a, owner_a, product_a, headers_for, reload):
        resp = client.post(
            "/api/sales",
            json=_body((product_a.id, 10**30)),
            headers=headers_for(owner_a, tenant_a.id),
        )
        assert resp.status_code == 400
        assert resp.json["error"] == "ValidationError"
        assert reload(Product, product_a.id).stock == 10

    def test_cashier_cannot_void(self, client, db_session, sell, tenant_a, cashier_a, product_a, headers_for):
        sale = sell(_body((product_a.id, 1)))
        resp = client.put(
            f"/api/sales/{sale.id}/void",
            json={"reason": "Please"},
            headers=headers_for(cashier_a, tenant_a.id),
        )
        assert resp.status_code == 403
        assert resp.json["error"] == "InsufficientRole"
