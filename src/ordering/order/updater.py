"""Order updater — recomputes the derived totals and states of an order.

The updater works on an order attached to the caller's session. It never
commits and never clamps: totals outside the money bounds raise
``ValidationError`` and the caller's transaction rolls back.
"""

from collections.abc import Callable, Iterable

import structlog

from ordering.order.order import Order, OrderPaymentState, OrderShipmentState
from shared.db import ZERO
from shared.money import validate_totals

logger = structlog.get_logger(__name__)

UpdateHook = Callable[[Order], None]


class OrderUpdater:
    def __init__(self, hooks: Iterable[UpdateHook] = ()):
        self.hooks = list(hooks)

    def update(self, order: Order) -> None:
        """Recompute totals, then payment and shipment states of a completed order."""
        self.update_totals(order)
        if order.completed:
            self.update_payment_state(order)
            self.update_shipments(order)
            self.update_shipment_state(order)
        self.run_hooks(order)
        self.validate_totals(order)

    # -------------------------------------------------------------------
    # Totals
    # -------------------------------------------------------------------
    def update_totals(self, order: Order) -> None:
        self.update_payment_total(order)
        self.update_item_total(order)
        self.update_shipment_total(order)
        self.update_adjustment_total(order)
        self.update_order_total(order)
        self.validate_totals(order)

    def update_payment_total(self, order: Order) -> None:
        order.payment_total = sum(
            (payment.amount - payment.refund_total for payment in order.payments if payment.completed),
            ZERO,
        )

    def update_item_total(self, order: Order) -> None:
        order.item_total = sum((line_item.amount for line_item in order.line_items), ZERO)
        order.item_count = sum(line_item.quantity for line_item in order.line_items)

    def update_shipment_total(self, order: Order) -> None:
        order.shipment_total = sum((shipment.cost for shipment in order.shipments), ZERO)

    def update_adjustment_total(self, order: Order) -> None:
        eligible = [adjustment for adjustment in order.adjustments if adjustment.eligible]

        order.promo_total = sum((a.amount for a in eligible if a.is_promotion), ZERO)
        order.included_tax_total = sum((a.amount for a in eligible if a.is_tax and a.included), ZERO)
        order.additional_tax_total = sum((a.amount for a in eligible if a.is_tax and not a.included), ZERO)
        order.adjustment_total = sum((a.amount for a in eligible if not a.included), ZERO)

    def update_order_total(self, order: Order) -> None:
        order.total = order.item_total + order.shipment_total + order.adjustment_total

    def validate_totals(self, order: Order) -> None:
        validate_totals(
            {
                "item_total": order.item_total,
                "adjustment_total": order.adjustment_total,
                "included_tax_total": order.included_tax_total,
                "additional_tax_total": order.additional_tax_total,
                "payment_total": order.payment_total,
                "shipment_total": order.shipment_total,
                "promo_total": order.promo_total,
                "total": order.total,
            }
        )

    # -------------------------------------------------------------------
    # States
    # -------------------------------------------------------------------
    def update_payment_state(self, order: Order) -> str | None:
        previous = order.payment_state

        if order.payments and not order.valid_payments():
            order.payment_state = OrderPaymentState.FAILED.value
        elif order.canceled and order.payment_total == 0:
            order.payment_state = OrderPaymentState.VOID.value
        else:
            balance = order.outstanding_balance
            if balance > 0:
                order.payment_state = OrderPaymentState.BALANCE_DUE.value
            elif balance < 0:
                order.payment_state = OrderPaymentState.CREDIT_OWED.value
            else:
                order.payment_state = OrderPaymentState.PAID.value

        if order.payment_state != previous:
            order.record_state_change("payment", previous, order.payment_state)
            logger.info(
                "Order payment state changed",
                order_id=order.id,
                previous=previous,
                payment_state=order.payment_state,
            )
        return order.payment_state

    def update_shipments(self, order: Order) -> None:
        for shipment in order.shipments:
            shipment.update(order)

    def update_shipment_state(self, order: Order) -> str | None:
        """Aggregate the shipment states onto the order.

        Any backordered shipment makes the order ``backorder``; more than one
        distinct shipment state makes it ``partial``.
        """
        previous = order.shipment_state

        if order.backordered:
            order.shipment_state = OrderShipmentState.BACKORDER.value
        else:
            states = {shipment.state for shipment in order.shipments}
            if len(states) > 1:
                order.shipment_state = OrderShipmentState.PARTIAL.value
            else:
                order.shipment_state = states.pop() if states else None

        if order.shipment_state != previous:
            order.record_state_change("shipment", previous, order.shipment_state)
        return order.shipment_state

    def run_hooks(self, order: Order) -> None:
        for hook in self.hooks:
            hook(order)
