"""Order records — the persistent side of the ordering domain.

An Order owns its line items, adjustments, shipments, payments, state
changes and promotion links; all of them are deleted with the order. The
order's ``state`` moves through the checkout flow (see ``checkout``), while
``payment_state`` and ``shipment_state`` are derived facets recomputed by
the updater.

Order States:
    cart → address → delivery → [payment] → [confirm] → complete
    complete / resumed → canceled → resumed
    complete / resumed → awaiting_return → returned
"""

import secrets
from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from inventory.stock.stock import InventoryUnit
from payments.payment.payment import Payment
from shared.config import Settings, get_settings
from shared.db import MONEY, ZERO, Base, TimestampMixin, utcnow
from shared.errors import StateError, ValidationError
from shared.money import to_money


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class OrderState(Enum):
    CART = "cart"
    ADDRESS = "address"
    DELIVERY = "delivery"
    PAYMENT = "payment"
    CONFIRM = "confirm"
    COMPLETE = "complete"
    CANCELED = "canceled"
    AWAITING_RETURN = "awaiting_return"
    RETURNED = "returned"
    RESUMED = "resumed"


class OrderPaymentState(Enum):
    BALANCE_DUE = "balance_due"
    CREDIT_OWED = "credit_owed"
    FAILED = "failed"
    PAID = "paid"
    VOID = "void"


class OrderShipmentState(Enum):
    BACKORDER = "backorder"
    CANCELED = "canceled"
    PARTIAL = "partial"
    PENDING = "pending"
    READY = "ready"
    SHIPPED = "shipped"
    ARRIVED = "arrived"
    DONE = "done"


class ShipmentState(Enum):
    PENDING = "pending"
    READY = "ready"
    BACKORDER = "backorder"
    SHIPPED = "shipped"
    CANCELED = "canceled"


class AdjustmentSource(Enum):
    PROMOTION = "promotion"
    TAX = "tax"
    MANUAL = "manual"


class AdjustmentState(Enum):
    OPEN = "open"
    CLOSED = "closed"


# Order states from which shipments may leave the warehouse
_SHIPPABLE_STATES = {
    OrderState.COMPLETE.value,
    OrderState.RESUMED.value,
    OrderState.AWAITING_RETURN.value,
    OrderState.RETURNED.value,
}

# Shipment states that still allow canceling the order
_CANCELABLE_SHIPMENT_STATES = {
    None,
    OrderShipmentState.READY.value,
    OrderShipmentState.BACKORDER.value,
    OrderShipmentState.PENDING.value,
}


def _choice(enum_cls: type[Enum], key: str, value, nullable: bool = False):
    if value is None and nullable:
        return value
    if value not in {member.value for member in enum_cls}:
        raise ValidationError({key: [f"{value!r} is not a valid {key.replace('_', ' ')}"]})
    return value


def _order_number() -> str:
    return f"R{secrets.randbelow(10**9):09d}"


def _shipment_number() -> str:
    return f"H{secrets.randbelow(10**11):011d}"


# ---------------------------------------------------------------------------
# Order
# ---------------------------------------------------------------------------
class Order(Base, TimestampMixin):
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(primary_key=True)
    number: Mapped[str] = mapped_column(String(32), unique=True, default=_order_number)
    email: Mapped[str | None] = mapped_column(String(255))
    user_id: Mapped[int | None] = mapped_column(Integer)
    currency: Mapped[str] = mapped_column(String(3), default=lambda: get_settings().currency)

    state: Mapped[str] = mapped_column(String(20), default=OrderState.CART.value)
    payment_state: Mapped[str | None] = mapped_column(String(20))
    shipment_state: Mapped[str | None] = mapped_column(String(20))

    item_total: Mapped[Decimal] = mapped_column(MONEY, default=ZERO)
    adjustment_total: Mapped[Decimal] = mapped_column(MONEY, default=ZERO)
    additional_tax_total: Mapped[Decimal] = mapped_column(MONEY, default=ZERO)
    included_tax_total: Mapped[Decimal] = mapped_column(MONEY, default=ZERO)
    shipment_total: Mapped[Decimal] = mapped_column(MONEY, default=ZERO)
    promo_total: Mapped[Decimal] = mapped_column(MONEY, default=ZERO)
    total: Mapped[Decimal] = mapped_column(MONEY, default=ZERO)
    payment_total: Mapped[Decimal] = mapped_column(MONEY, default=ZERO)
    item_count: Mapped[int] = mapped_column(Integer, default=0)

    considered_risky: Mapped[bool] = mapped_column(Boolean, default=False)
    confirmation_delivered: Mapped[bool] = mapped_column(Boolean, default=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    approver_id: Mapped[int | None] = mapped_column(Integer)
    canceled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    canceler_id: Mapped[int | None] = mapped_column(Integer)

    line_items: Mapped[list["LineItem"]] = relationship(
        back_populates="order", cascade="all, delete-orphan", order_by="LineItem.id"
    )
    adjustments: Mapped[list["Adjustment"]] = relationship(
        back_populates="order", cascade="all, delete-orphan", order_by="Adjustment.id"
    )
    shipments: Mapped[list["Shipment"]] = relationship(
        back_populates="order", cascade="all, delete-orphan", order_by="Shipment.id"
    )
    payments: Mapped[list[Payment]] = relationship(
        back_populates="order", cascade="all, delete-orphan", order_by="Payment.id"
    )
    state_changes: Mapped[list["StateChange"]] = relationship(
        back_populates="order", cascade="all, delete-orphan", order_by="StateChange.id"
    )
    order_promotions: Mapped[list["OrderPromotion"]] = relationship(
        back_populates="order", cascade="all, delete-orphan", order_by="OrderPromotion.id"
    )

    @validates("state")
    def _validate_state(self, key, value):
        return _choice(OrderState, key, value)

    @validates("payment_state")
    def _validate_payment_state(self, key, value):
        return _choice(OrderPaymentState, key, value, nullable=True)

    @validates("shipment_state")
    def _validate_shipment_state(self, key, value):
        return _choice(OrderShipmentState, key, value, nullable=True)

    # -------------------------------------------------------------------
    # State queries
    # -------------------------------------------------------------------
    @property
    def completed(self) -> bool:
        return self.completed_at is not None

    @property
    def canceled(self) -> bool:
        return self.state == OrderState.CANCELED.value

    @property
    def can_ship(self) -> bool:
        return self.state in _SHIPPABLE_STATES

    @property
    def paid(self) -> bool:
        return self.payment_state in (OrderPaymentState.PAID.value, OrderPaymentState.CREDIT_OWED.value)

    @property
    def backordered(self) -> bool:
        return any(shipment.backordered for shipment in self.shipments if not shipment.canceled)

    def allow_cancel(self) -> bool:
        if not self.completed or self.canceled:
            return False
        return self.shipment_state in _CANCELABLE_SHIPMENT_STATES

    @property
    def approved(self) -> bool:
        return self.approved_at is not None

    def can_approve(self) -> bool:
        return not self.approved

    def is_risky(self) -> bool:
        return any(payment.risky for payment in self.payments)

    # -------------------------------------------------------------------
    # Money
    # -------------------------------------------------------------------
    @property
    def tax_total(self) -> Decimal:
        return self.included_tax_total + self.additional_tax_total

    @property
    def refund_total(self) -> Decimal:
        return sum((payment.refund_total for payment in self.payments), ZERO)

    @property
    def outstanding_balance(self) -> Decimal:
        if self.canceled:
            return -self.payment_total
        if any(payment.refunds for payment in self.payments):
            # Refunds already reduced payment_total; add them back so a
            # refunded order does not fall back to balance_due.
            return self.total - (self.payment_total + self.refund_total)
        return self.total - self.payment_total

    def has_outstanding_balance(self) -> bool:
        return self.outstanding_balance != 0

    def payment_required(self) -> bool:
        return self.total > 0

    def confirmation_required(self, settings: Settings | None = None) -> bool:
        settings = settings or get_settings()
        return (
            settings.always_include_confirm_step
            or any(
                payment.payment_method is not None and payment.payment_method.payment_profiles_supported
                for payment in self.valid_payments()
            )
            # Keeps an order that fails to complete from falling back out of confirm.
            or self.state == OrderState.CONFIRM.value
        )

    def valid_payments(self) -> list[Payment]:
        return [payment for payment in self.payments if payment.valid]

    # -------------------------------------------------------------------
    # Contents
    # -------------------------------------------------------------------
    def find_line_item_by_variant(self, variant_id: int, options: dict | None = None, comparison_hooks=()):
        """The line item for ``variant_id`` whose options every comparison hook accepts."""
        for line_item in self.line_items:
            if line_item.variant_id != variant_id:
                continue
            if options is None or all(hook(line_item, options) for hook in comparison_hooks):
                return line_item
        return None

    def quantity_of(self, variant_id: int, options: dict | None = None, comparison_hooks=()) -> int:
        line_item = self.find_line_item_by_variant(variant_id, options, comparison_hooks)
        return line_item.quantity if line_item else 0

    @property
    def quantity(self) -> int:
        return sum(line_item.quantity for line_item in self.line_items)

    # -------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------
    def record_state_change(self, name: str, previous_state: str | None, next_state: str | None) -> None:
        if previous_state == next_state:
            return
        self.state_changes.append(
            StateChange(
                name=name,
                previous_state=previous_state,
                next_state=next_state,
                user_id=self.user_id,
            )
        )

    def add_adjustment(
        self,
        source_type: AdjustmentSource,
        label: str,
        amount,
        included: bool = False,
        eligible: bool = True,
    ) -> "Adjustment":
        adjustment = Adjustment(
            source_type=source_type.value,
            label=label,
            amount=amount,
            included=included,
            eligible=eligible,
        )
        self.adjustments.append(adjustment)
        return adjustment


# ---------------------------------------------------------------------------
# Line items
# ---------------------------------------------------------------------------
class LineItem(Base, TimestampMixin):
    __tablename__ = "line_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"))
    variant_id: Mapped[int] = mapped_column(ForeignKey("variants.id"))
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    price: Mapped[Decimal] = mapped_column(MONEY)
    options: Mapped[dict | None] = mapped_column(JSON)

    order: Mapped[Order] = relationship(back_populates="line_items")

    @validates("quantity")
    def _validate_quantity(self, key, value):
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise ValidationError({key: ["must be an integer greater than 0"]})
        return value

    @validates("price")
    def _validate_price(self, key, value):
        return to_money(value, field=key, positive=True)

    @property
    def amount(self) -> Decimal:
        return self.price * self.quantity


# ---------------------------------------------------------------------------
# Adjustments
# ---------------------------------------------------------------------------
class Adjustment(Base, TimestampMixin):
    """A signed change to the order total written by a tax or promotion engine.

    ``included`` tax is already part of the line prices and only feeds
    ``included_tax_total``. Closed adjustments are frozen.
    """

    __tablename__ = "adjustments"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"))
    source_type: Mapped[str] = mapped_column(String(20), default=AdjustmentSource.MANUAL.value)
    label: Mapped[str] = mapped_column(String(255))
    amount: Mapped[Decimal] = mapped_column(MONEY, default=ZERO)
    included: Mapped[bool] = mapped_column(Boolean, default=False)
    eligible: Mapped[bool] = mapped_column(Boolean, default=True)
    state: Mapped[str] = mapped_column(String(20), default=AdjustmentState.OPEN.value)

    order: Mapped[Order] = relationship(back_populates="adjustments")

    @validates("source_type")
    def _validate_source_type(self, key, value):
        return _choice(AdjustmentSource, key, value)

    @validates("amount")
    def _validate_amount(self, key, value):
        if self.closed:
            raise StateError({key: ["Closed adjustments cannot change"]})
        return to_money(value, field=key)

    @property
    def closed(self) -> bool:
        return self.state == AdjustmentState.CLOSED.value

    @property
    def is_promotion(self) -> bool:
        return self.source_type == AdjustmentSource.PROMOTION.value

    @property
    def is_tax(self) -> bool:
        return self.source_type == AdjustmentSource.TAX.value

    def close(self) -> None:
        self.state = AdjustmentState.CLOSED.value

    def update_amount(self, amount) -> None:
        self.amount = amount


# ---------------------------------------------------------------------------
# Shipments
# ---------------------------------------------------------------------------
class Shipment(Base, TimestampMixin):
    __tablename__ = "shipments"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"))
    number: Mapped[str] = mapped_column(String(32), unique=True, default=_shipment_number)
    state: Mapped[str] = mapped_column(String(20), default=ShipmentState.PENDING.value)
    cost: Mapped[Decimal] = mapped_column(MONEY, default=ZERO)
    stock_location_id: Mapped[int] = mapped_column(ForeignKey("stock_locations.id"))
    tracking: Mapped[str | None] = mapped_column(String(255))
    shipped_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    finalized_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    order: Mapped[Order] = relationship(back_populates="shipments")
    inventory_units: Mapped[list[InventoryUnit]] = relationship(
        cascade="all, delete-orphan",
        order_by=InventoryUnit.id,
    )

    @validates("state")
    def _validate_state(self, key, value):
        return _choice(ShipmentState, key, value)

    @validates("cost")
    def _validate_cost(self, key, value):
        return to_money(value, field=key, positive=True)

    @property
    def backordered(self) -> bool:
        return any(unit.backordered for unit in self.inventory_units)

    @property
    def shipped(self) -> bool:
        return self.state == ShipmentState.SHIPPED.value

    @property
    def canceled(self) -> bool:
        return self.state == ShipmentState.CANCELED.value

    @property
    def finalized(self) -> bool:
        return self.finalized_at is not None

    def manifest(self) -> dict[int, dict[str, int]]:
        """Unit counts per variant, split by inventory unit state."""
        manifest: dict[int, dict[str, int]] = {}
        for unit in self.inventory_units:
            states = manifest.setdefault(unit.variant_id, {})
            states[unit.state] = states.get(unit.state, 0) + 1
        return manifest

    def determine_state(self, order: Order) -> str:
        if order.canceled:
            return ShipmentState.CANCELED.value
        if not order.can_ship or self.backordered:
            return ShipmentState.PENDING.value
        if self.shipped:
            return ShipmentState.SHIPPED.value
        return ShipmentState.READY.value if order.paid else ShipmentState.PENDING.value

    def update(self, order: Order) -> str:
        """Move to the state implied by the order and record the change."""
        previous = self.state
        new_state = self.determine_state(order)
        if new_state != previous:
            self.state = new_state
            order.record_state_change("shipment", previous, new_state)
        return self.state

    def cancel(self, order: Order) -> None:
        if self.shipped:
            raise StateError({"state": [f"Shipment {self.number} has already shipped"]})
        previous = self.state
        self.state = ShipmentState.CANCELED.value
        order.record_state_change("shipment", previous, self.state)

    def resume(self, order: Order) -> None:
        if not self.canceled:
            raise StateError({"state": [f"Shipment {self.number} is not canceled"]})
        previous = self.state
        self.state = self.determine_state(order)
        order.record_state_change("shipment", previous, self.state)

    def ship(self, order: Order) -> None:
        if self.state != ShipmentState.READY.value:
            raise StateError({"state": [f"Cannot ship a shipment in {self.state} state"]})
        previous = self.state
        self.state = ShipmentState.SHIPPED.value
        self.shipped_at = utcnow()
        for unit in self.inventory_units:
            unit.ship()
        order.record_state_change("shipment", previous, self.state)


# ---------------------------------------------------------------------------
# History and promotions
# ---------------------------------------------------------------------------
class StateChange(Base):
    __tablename__ = "state_changes"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"))
    name: Mapped[str] = mapped_column(String(20))
    previous_state: Mapped[str | None] = mapped_column(String(20))
    next_state: Mapped[str | None] = mapped_column(String(20))
    user_id: Mapped[int | None] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    order: Mapped[Order] = relationship(back_populates="state_changes")


class OrderPromotion(Base):
    __tablename__ = "order_promotions"
    __table_args__ = (UniqueConstraint("order_id", "promotion_code", name="uq_order_promotion_code"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"))
    promotion_code: Mapped[str] = mapped_column(String(255))

    order: Mapped[Order] = relationship(back_populates="order_promotions")
