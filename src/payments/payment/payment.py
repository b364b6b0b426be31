"""Payment records — the persistent side of the payments domain.

A Payment is one attempt to collect money for an order through a payment
method. Its ``response_code`` holds the gateway authorization token that
later capture, void and credit calls refer back to.

State Machine:
    CHECKOUT → PROCESSING → COMPLETED / PENDING / FAILED
    PENDING → COMPLETED (capture) / VOID / FAILED
    COMPLETED → VOID
    CHECKOUT → INVALID
"""

from decimal import Decimal
from enum import Enum

from sqlalchemy import Boolean, ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from shared.db import MONEY, ZERO, Base, TimestampMixin
from shared.errors import StateError, ValidationError
from shared.money import to_money


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class PaymentState(Enum):
    CHECKOUT = "checkout"
    PROCESSING = "processing"
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    VOID = "void"
    INVALID = "invalid"


_VALID_TRANSITIONS = {
    PaymentState.CHECKOUT: {
        PaymentState.PROCESSING,
        PaymentState.PENDING,
        PaymentState.COMPLETED,
        PaymentState.VOID,
        PaymentState.INVALID,
    },
    PaymentState.PROCESSING: {
        PaymentState.PENDING,
        PaymentState.COMPLETED,
        PaymentState.FAILED,
        PaymentState.VOID,
    },
    PaymentState.PENDING: {
        PaymentState.PROCESSING,
        PaymentState.COMPLETED,
        PaymentState.FAILED,
        PaymentState.VOID,
    },
    PaymentState.COMPLETED: {PaymentState.PROCESSING, PaymentState.VOID},
    PaymentState.FAILED: set(),  # Terminal
    PaymentState.VOID: set(),  # Terminal
    PaymentState.INVALID: set(),  # Terminal
}

# AVS codes that indicate the address matched well enough to accept.
NON_RISKY_AVS_CODES = frozenset("BDHJMQTVXY")
RISKY_AVS_CODES = frozenset("ABCDEFGHIJKLMNOPQRSTUVWXYZ") - NON_RISKY_AVS_CODES


# ---------------------------------------------------------------------------
# Payment methods
# ---------------------------------------------------------------------------
class PaymentMethod(Base, TimestampMixin):
    """How a customer pays: a gateway-backed card, a check, store credit.

    ``auto_capture`` overrides the store-wide setting when set.
    """

    __tablename__ = "payment_methods"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255))
    payment_profiles_supported: Mapped[bool] = mapped_column(Boolean, default=False)
    auto_capture: Mapped[bool | None] = mapped_column(Boolean, default=None)
    active: Mapped[bool] = mapped_column(Boolean, default=True)


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------
class Payment(Base, TimestampMixin):
    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int] = mapped_column(ForeignKey("orders.id"))
    payment_method_id: Mapped[int | None] = mapped_column(ForeignKey("payment_methods.id"))
    amount: Mapped[Decimal] = mapped_column(MONEY, default=ZERO)
    state: Mapped[str] = mapped_column(String(20), default=PaymentState.CHECKOUT.value)
    source_token: Mapped[str | None] = mapped_column(String(255))
    response_code: Mapped[str | None] = mapped_column(String(255))
    avs_response: Mapped[str | None] = mapped_column(String(10))
    cvv_response_code: Mapped[str | None] = mapped_column(String(10))

    order: Mapped["Order"] = relationship(back_populates="payments")  # noqa: F821
    payment_method: Mapped[PaymentMethod | None] = relationship()
    refunds: Mapped[list["Refund"]] = relationship(
        back_populates="payment",
        cascade="all, delete-orphan",
        order_by="Refund.id",
    )

    @validates("amount")
    def _validate_amount(self, key, value):
        return to_money(value, field=key)

    @validates("state")
    def _validate_state(self, key, value):
        if value not in {s.value for s in PaymentState}:
            raise ValidationError({key: [f"{value!r} is not a valid payment state"]})
        return value

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    @property
    def valid(self) -> bool:
        return self.state not in (PaymentState.FAILED.value, PaymentState.INVALID.value)

    @property
    def completed(self) -> bool:
        return self.state == PaymentState.COMPLETED.value

    @property
    def refund_total(self) -> Decimal:
        return sum((refund.amount for refund in self.refunds), ZERO)

    @property
    def credit_allowed(self) -> Decimal:
        """What can still be refunded against this payment."""
        return self.amount - self.refund_total

    @property
    def risky(self) -> bool:
        if self.avs_response and self.avs_response in RISKY_AVS_CODES:
            return True
        if self.cvv_response_code and self.cvv_response_code != "M":
            return True
        return self.state == PaymentState.FAILED.value

    # -------------------------------------------------------------------
    # State transitions
    # -------------------------------------------------------------------
    def _transition_to(self, target: PaymentState) -> None:
        current = PaymentState(self.state)
        if target not in _VALID_TRANSITIONS[current]:
            raise StateError({"state": [f"Cannot transition payment from {current.value} to {target.value}"]})
        self.state = target.value

    def started_processing(self) -> None:
        self._transition_to(PaymentState.PROCESSING)

    def pend(self) -> None:
        self._transition_to(PaymentState.PENDING)

    def complete(self) -> None:
        self._transition_to(PaymentState.COMPLETED)

    def failure(self) -> None:
        self._transition_to(PaymentState.FAILED)

    def void(self) -> None:
        self._transition_to(PaymentState.VOID)

    def invalidate(self) -> None:
        self._transition_to(PaymentState.INVALID)


class Refund(Base, TimestampMixin):
    __tablename__ = "refunds"

    id: Mapped[int] = mapped_column(primary_key=True)
    payment_id: Mapped[int] = mapped_column(ForeignKey("payments.id"))
    amount: Mapped[Decimal] = mapped_column(MONEY)
    transaction_id: Mapped[str | None] = mapped_column(String(255))
    reason: Mapped[str | None] = mapped_column(String(500))

    payment: Mapped[Payment] = relationship(back_populates="refunds")

    @validates("amount")
    def _validate_amount(self, key, value):
        amount = to_money(value, field=key, positive=True)
        if amount == 0:
            raise ValidationError({key: ["must be greater than 0"]})
        return amount
