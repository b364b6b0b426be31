"""Tests for OrderUpdater — totals, validation and derived states."""

from datetime import UTC, datetime
from decimal import Decimal

import pytest
from inventory.stock.stock import InventoryUnit
from ordering.order.order import AdjustmentSource, LineItem, Order, Shipment
from ordering.order.updater import OrderUpdater
from payments.payment.payment import Payment, Refund
from shared.errors import ValidationError


def _order(**kwargs):
    defaults = {
        "state": "delivery",
        "item_total": Decimal("0.00"),
        "adjustment_total": Decimal("0.00"),
        "included_tax_total": Decimal("0.00"),
        "additional_tax_total": Decimal("0.00"),
        "shipment_total": Decimal("0.00"),
        "promo_total": Decimal("0.00"),
        "total": Decimal("0.00"),
        "payment_total": Decimal("0.00"),
    }
    defaults.update(kwargs)
    return Order(**defaults)


@pytest.fixture
def updater():
    return OrderUpdater()


class TestTotals:
    def test_full_recalculation(self, updater):
        order = _order(
            line_items=[
                LineItem(variant_id=1, quantity=2, price="10.00"),
                LineItem(variant_id=2, quantity=1, price="4.50"),
            ],
            shipments=[Shipment(cost="5.00")],
        )
        order.add_adjustment(AdjustmentSource.PROMOTION, "SPRING", "-3.00")
        order.add_adjustment(AdjustmentSource.PROMOTION, "EXPIRED", "-10.00", eligible=False)
        order.add_adjustment(AdjustmentSource.TAX, "Sales tax", "1.50")
        order.add_adjustment(AdjustmentSource.TAX, "VAT", "0.80", included=True)

        updater.update_totals(order)

        assert order.item_total == Decimal("24.50")
        assert order.item_count == 3
        assert order.shipment_total == Decimal("5.00")
        assert order.promo_total == Decimal("-3.00")
        assert order.additional_tax_total == Decimal("1.50")
        assert order.included_tax_total == Decimal("0.80")
        assert order.adjustment_total == Decimal("-1.50")
        assert order.total == Decimal("28.00")

    def test_payment_total_counts_completed_payments_net_of_refunds(self, updater):
        completed = Payment(amount="30.00", state="completed")
        Refund(payment=completed, amount="5.00")
        order = _order(
            payments=[
                completed,
                Payment(amount="10.00", state="pending"),
                Payment(amount="7.00", state="failed"),
            ]
        )

        updater.update_payment_total(order)

        assert order.payment_total == Decimal("25.00")

    def test_empty_order_totals_zero(self, updater):
        order = _order(total=Decimal("9.99"))
        updater.update_totals(order)
        assert order.total == Decimal("0.00")
        assert order.item_count == 0

    def test_out_of_range_item_total_is_rejected(self, updater):
        order = _order(line_items=[LineItem(variant_id=1, quantity=2, price="99999999.99")])
        with pytest.raises(ValidationError) as exc:
            updater.update_totals(order)
        assert "item_total" in exc.value.messages

    def test_positive_promo_total_is_rejected(self, updater):
        order = _order(line_items=[LineItem(variant_id=1, quantity=1, price="10.00")])
        order.add_adjustment(AdjustmentSource.PROMOTION, "Broken", "2.00")
        with pytest.raises(ValidationError) as exc:
            updater.update_totals(order)
        assert "promo_total" in exc.value.messages


class TestPaymentState:
    def _completed_order(self, **kwargs):
        defaults = {"state": "complete", "completed_at": datetime.now(UTC), "total": Decimal("20.00")}
        defaults.update(kwargs)
        return _order(**defaults)

    def test_balance_due(self, updater):
        order = self._completed_order(payment_total=Decimal("5.00"))
        assert updater.update_payment_state(order) == "balance_due"

    def test_paid(self, updater):
        order = self._completed_order(payment_total=Decimal("20.00"))
        assert updater.update_payment_state(order) == "paid"

    def test_credit_owed(self, updater):
        order = self._completed_order(payment_total=Decimal("25.00"))
        assert updater.update_payment_state(order) == "credit_owed"

    def test_failed_when_every_payment_failed(self, updater):
        order = self._completed_order(payments=[Payment(amount="20.00", state="failed")])
        assert updater.update_payment_state(order) == "failed"

    def test_void_for_canceled_order_without_payments(self, updater):
        order = self._completed_order(state="canceled")
        assert updater.update_payment_state(order) == "void"

    def test_change_is_recorded_once(self, updater):
        order = self._completed_order(payment_total=Decimal("20.00"))
        updater.update_payment_state(order)
        updater.update_payment_state(order)

        changes = [c for c in order.state_changes if c.name == "payment"]
        assert [(c.previous_state, c.next_state) for c in changes] == [(None, "paid")]


class TestShipmentState:
    def _unit(self, state="on_hand"):
        return InventoryUnit(variant_id=1, state=state)

    def test_no_shipments(self, updater):
        assert updater.update_shipment_state(_order()) is None

    def test_single_state_is_copied(self, updater):
        order = _order(shipments=[Shipment(state="ready", inventory_units=[self._unit()])])
        assert updater.update_shipment_state(order) == "ready"

    def test_mixed_states_are_partial(self, updater):
        order = _order(
            shipments=[
                Shipment(state="ready", inventory_units=[self._unit()]),
                Shipment(state="shipped", inventory_units=[self._unit("shipped")]),
            ]
        )
        assert updater.update_shipment_state(order) == "partial"

    def test_backordered_unit_wins(self, updater):
        order = _order(
            shipments=[
                Shipment(state="ready", inventory_units=[self._unit()]),
                Shipment(state="pending", inventory_units=[self._unit("backordered")]),
            ]
        )
        assert updater.update_shipment_state(order) == "backorder"


class TestHooks:
    def test_update_runs_hooks(self):
        seen = []
        updater = OrderUpdater(hooks=[lambda order: seen.append(order.total)])

        updater.update(_order(line_items=[LineItem(variant_id=1, quantity=1, price="3.00")]))

        assert seen == [Decimal("3.00")]
