"""Order contents — adds and removes line items and promotion codes.

Each call is its own transaction on a locked order. Changing the contents
of an order that already has shipments throws them away and sends the
order back to the address step, so delivery is planned again.
"""

from collections.abc import Callable, Iterable
from decimal import Decimal

import structlog
from sqlalchemy.orm import Session, sessionmaker

from ordering.order.order import LineItem, Order, OrderPromotion, OrderState
from ordering.order.updater import OrderUpdater
from shared.db import ZERO, lock_row
from shared.errors import ObjectNotFoundError, StateError, ValidationError

logger = structlog.get_logger(__name__)

ComparisonHook = Callable[[LineItem, dict], bool]


class OrderContents:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        updater: OrderUpdater | None = None,
        comparison_hooks: Iterable[ComparisonHook] = (),
    ):
        self.session_factory = session_factory
        self.updater = updater or OrderUpdater()
        self.comparison_hooks = list(comparison_hooks)

    def add(
        self,
        order_id: int,
        variant_id: int,
        quantity: int = 1,
        price: Decimal = ZERO,
        options: dict | None = None,
    ) -> LineItem:
        """Add units of a variant, merging into a matching line item."""
        _check_quantity(quantity)
        with self.session_factory.begin() as session:
            order = self._editable_order(session, order_id)

            line_item = order.find_line_item_by_variant(variant_id, options, self.comparison_hooks)
            if line_item is None:
                line_item = LineItem(variant_id=variant_id, quantity=quantity, price=price, options=options)
                order.line_items.append(line_item)
            else:
                line_item.quantity += quantity

            self._after_change(session, order)
            logger.info("Line item added", order_id=order.id, variant_id=variant_id, quantity=quantity)
        return line_item

    def remove(self, order_id: int, variant_id: int, quantity: int = 1, options: dict | None = None) -> None:
        """Remove units of a variant; the line item goes when none are left."""
        _check_quantity(quantity)
        with self.session_factory.begin() as session:
            order = self._editable_order(session, order_id)

            line_item = order.find_line_item_by_variant(variant_id, options, self.comparison_hooks)
            if line_item is None:
                raise ObjectNotFoundError({"variant_id": [f"Line item not found for variant {variant_id}"]})

            if line_item.quantity <= quantity:
                order.line_items.remove(line_item)
            else:
                line_item.quantity -= quantity

            self._after_change(session, order)
            logger.info("Line item removed", order_id=order.id, variant_id=variant_id, quantity=quantity)

    def apply_promotion_code(self, order_id: int, code: str) -> OrderPromotion:
        """Link a promotion code to the order; the promotion engine prices it."""
        code = (code or "").strip().lower()
        if not code:
            raise ValidationError({"promotion_code": ["can't be blank"]})

        with self.session_factory.begin() as session:
            order = self._editable_order(session, order_id)
            if any(link.promotion_code == code for link in order.order_promotions):
                raise ValidationError({"promotion_code": ["has already been applied"]})

            link = OrderPromotion(promotion_code=code)
            order.order_promotions.append(link)
            session.flush()
        return link

    def quantity_of(self, order: Order, variant_id: int, options: dict | None = None) -> int:
        return order.quantity_of(variant_id, options, self.comparison_hooks)

    def _editable_order(self, session: Session, order_id: int) -> Order:
        order = lock_row(session, Order, order_id)
        if order.completed:
            raise StateError({"order": ["Cannot change the contents of a completed order"]})
        return order

    def _after_change(self, session: Session, order: Order) -> None:
        self._ensure_updated_shipments(session, order)
        self.updater.update_totals(order)
        session.flush()

    def _ensure_updated_shipments(self, session: Session, order: Order) -> None:
        if not order.shipments:
            return

        order.shipments.clear()
        previous = order.state
        next_state = OrderState.ADDRESS.value if order.line_items else OrderState.CART.value
        order.state = next_state
        order.record_state_change("order", previous, next_state)
        session.flush()


def _check_quantity(quantity: int) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise ValidationError({"quantity": ["must be an integer greater than 0"]})
