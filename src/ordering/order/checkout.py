"""Checkout flow — the order state transition table.

Transitions are rows of ``(event, sources, target, guard)`` resolved in
declaration order: the first row whose source set holds the order's state
and whose guard passes wins. A row with no target keeps the order in its
current state (``approve``).
"""

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from ordering.order.order import Order, OrderState
from shared.config import Settings, get_settings
from shared.errors import StateError


class CheckoutEvent(Enum):
    NEXT = "next"
    CANCEL = "cancel"
    APPROVE = "approve"
    RESUME = "resume"
    AUTHORIZE_RETURN = "authorize_return"
    RETURN = "return"


Guard = Callable[[Order, Settings], bool]


@dataclass(frozen=True)
class Transition:
    event: CheckoutEvent
    sources: frozenset[OrderState]
    target: OrderState | None
    guard: Guard | None = None

    def matches(self, order: Order, event: CheckoutEvent, settings: Settings) -> bool:
        if event is not self.event or OrderState(order.state) not in self.sources:
            return False
        return self.guard is None or self.guard(order, settings)

    def target_for(self, order: Order) -> OrderState:
        return self.target or OrderState(order.state)


def _from(*states: OrderState) -> frozenset[OrderState]:
    return frozenset(states)


def _payment_required(order: Order, settings: Settings) -> bool:
    return order.payment_required()


def _confirmation_required(order: Order, settings: Settings) -> bool:
    return order.confirmation_required(settings)


def _allow_cancel(order: Order, settings: Settings) -> bool:
    return order.allow_cancel()


def _can_approve(order: Order, settings: Settings) -> bool:
    return order.can_approve()


_POST_CHECKOUT = _from(OrderState.COMPLETE, OrderState.RESUMED)

TRANSITIONS: tuple[Transition, ...] = (
    # Checkout steps (there is no delivery → confirm edge)
    Transition(CheckoutEvent.NEXT, _from(OrderState.CART), OrderState.ADDRESS),
    Transition(CheckoutEvent.NEXT, _from(OrderState.ADDRESS), OrderState.DELIVERY),
    Transition(CheckoutEvent.NEXT, _from(OrderState.DELIVERY), OrderState.PAYMENT, _payment_required),
    Transition(CheckoutEvent.NEXT, _from(OrderState.DELIVERY), OrderState.COMPLETE),
    Transition(CheckoutEvent.NEXT, _from(OrderState.PAYMENT), OrderState.CONFIRM, _confirmation_required),
    Transition(CheckoutEvent.NEXT, _from(OrderState.PAYMENT), OrderState.COMPLETE),
    Transition(CheckoutEvent.NEXT, _from(OrderState.CONFIRM), OrderState.COMPLETE),
    # Post-checkout
    Transition(
        CheckoutEvent.CANCEL,
        _from(OrderState.COMPLETE, OrderState.RESUMED, OrderState.AWAITING_RETURN),
        OrderState.CANCELED,
        _allow_cancel,
    ),
    Transition(CheckoutEvent.APPROVE, _POST_CHECKOUT, None, _can_approve),
    Transition(CheckoutEvent.RESUME, _from(OrderState.CANCELED), OrderState.RESUMED),
    Transition(CheckoutEvent.AUTHORIZE_RETURN, _POST_CHECKOUT, OrderState.AWAITING_RETURN),
    Transition(
        CheckoutEvent.RETURN,
        _from(OrderState.COMPLETE, OrderState.RESUMED, OrderState.AWAITING_RETURN),
        OrderState.RETURNED,
    ),
)


def resolve(order: Order, event: CheckoutEvent, settings: Settings | None = None) -> Transition:
    """Find the transition ``event`` takes from the order's current state."""
    settings = settings or get_settings()
    for transition in TRANSITIONS:
        if transition.matches(order, event, settings):
            return transition
    raise StateError({"state": [f"Cannot {event.value} an order in {order.state} state"]})


def checkout_steps(order: Order, settings: Settings | None = None) -> list[OrderState]:
    """The checkout states this order will pass through, in order."""
    settings = settings or get_settings()
    steps = [OrderState.ADDRESS, OrderState.DELIVERY]
    if order.payment_required():
        steps.append(OrderState.PAYMENT)
        if order.confirmation_required(settings):
            steps.append(OrderState.CONFIRM)
    steps.append(OrderState.COMPLETE)
    return steps
