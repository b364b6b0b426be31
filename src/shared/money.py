"""Monetary value constraints.

Amounts are ``Decimal`` with at most two decimal places and strictly inside
``±MONEY_THRESHOLD``. Out-of-range or over-precise values are rejected, never
rounded or clamped.
"""

from decimal import Decimal
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from shared.errors import ValidationError

MONEY_THRESHOLD = Decimal(100_000_000)

Money = Annotated[Decimal, Field(gt=-MONEY_THRESHOLD, lt=MONEY_THRESHOLD, decimal_places=2)]
PositiveMoney = Annotated[Decimal, Field(ge=0, lt=MONEY_THRESHOLD, decimal_places=2)]
NegativeMoney = Annotated[Decimal, Field(gt=-MONEY_THRESHOLD, le=0, decimal_places=2)]

_money_adapter = TypeAdapter(Money)
_positive_money_adapter = TypeAdapter(PositiveMoney)


class OrderTotals(BaseModel):
    """Constraints on the persisted totals of an order."""

    model_config = ConfigDict(frozen=True)

    item_total: PositiveMoney
    adjustment_total: Money
    included_tax_total: PositiveMoney
    additional_tax_total: PositiveMoney
    payment_total: Money
    shipment_total: Money
    promo_total: NegativeMoney
    total: Money


def _as_messages(exc: PydanticValidationError, default_field: str) -> dict[str, list[str]]:
    messages: dict[str, list[str]] = {}
    for error in exc.errors():
        field = str(error["loc"][0]) if error["loc"] else default_field
        messages.setdefault(field, []).append(error["msg"])
    return messages


def to_money(value: Any, field: str = "amount", positive: bool = False) -> Decimal:
    """Coerce ``value`` to a validated monetary ``Decimal``."""
    adapter = _positive_money_adapter if positive else _money_adapter
    try:
        return adapter.validate_python(value)
    except PydanticValidationError as exc:
        raise ValidationError(_as_messages(exc, field)) from exc


def validate_totals(totals: dict[str, Decimal]) -> OrderTotals:
    try:
        return OrderTotals.model_validate(totals)
    except PydanticValidationError as exc:
        raise ValidationError(_as_messages(exc, "total")) from exc
