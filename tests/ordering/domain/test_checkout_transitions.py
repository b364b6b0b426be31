"""Tests for the checkout transition table — targets, guards and invalid events."""

from datetime import UTC, datetime
from decimal import Decimal

import pytest
from ordering.order.checkout import CheckoutEvent, checkout_steps, resolve
from ordering.order.order import Order, OrderState
from payments.payment.payment import Payment, PaymentMethod
from shared.config import Settings
from shared.errors import StateError


@pytest.fixture
def plain():
    return Settings(env="test")


@pytest.fixture
def always_confirm():
    return Settings(env="test", always_include_confirm_step=True)


def _order(state, total="10.00", **kwargs):
    return Order(state=state.value, total=Decimal(total), **kwargs)


def _target(order, event, settings):
    return resolve(order, event, settings).target_for(order)


class TestCheckoutSteps:
    def test_cart_goes_to_address(self, plain):
        assert _target(_order(OrderState.CART), CheckoutEvent.NEXT, plain) is OrderState.ADDRESS

    def test_address_goes_to_delivery(self, plain):
        assert _target(_order(OrderState.ADDRESS), CheckoutEvent.NEXT, plain) is OrderState.DELIVERY

    def test_delivery_goes_to_payment_when_total_is_positive(self, plain):
        assert _target(_order(OrderState.DELIVERY), CheckoutEvent.NEXT, plain) is OrderState.PAYMENT

    def test_free_order_skips_payment(self, plain):
        order = _order(OrderState.DELIVERY, total="0.00")
        assert _target(order, CheckoutEvent.NEXT, plain) is OrderState.COMPLETE

    def test_delivery_never_goes_to_confirm(self, always_confirm):
        assert _target(_order(OrderState.DELIVERY), CheckoutEvent.NEXT, always_confirm) is OrderState.PAYMENT
        free = _order(OrderState.DELIVERY, total="0.00")
        assert _target(free, CheckoutEvent.NEXT, always_confirm) is OrderState.COMPLETE

    def test_payment_goes_to_complete_without_confirmation(self, plain):
        assert _target(_order(OrderState.PAYMENT), CheckoutEvent.NEXT, plain) is OrderState.COMPLETE

    def test_payment_goes_to_confirm_when_always_included(self, always_confirm):
        assert _target(_order(OrderState.PAYMENT), CheckoutEvent.NEXT, always_confirm) is OrderState.CONFIRM

    def test_payment_profiles_require_confirmation(self, plain):
        method = PaymentMethod(name="Saved card", payment_profiles_supported=True)
        order = _order(OrderState.PAYMENT, payments=[Payment(amount="10.00", state="checkout", payment_method=method)])
        assert _target(order, CheckoutEvent.NEXT, plain) is OrderState.CONFIRM

    def test_failed_payments_do_not_require_confirmation(self, plain):
        method = PaymentMethod(name="Saved card", payment_profiles_supported=True)
        order = _order(OrderState.PAYMENT, payments=[Payment(amount="10.00", state="failed", payment_method=method)])
        assert _target(order, CheckoutEvent.NEXT, plain) is OrderState.COMPLETE

    def test_confirm_goes_to_complete(self, plain):
        assert _target(_order(OrderState.CONFIRM), CheckoutEvent.NEXT, plain) is OrderState.COMPLETE

    def test_complete_has_no_next(self, plain):
        with pytest.raises(StateError) as exc:
            resolve(_order(OrderState.COMPLETE), CheckoutEvent.NEXT, plain)
        assert "Cannot next an order in complete state" in exc.value.messages["state"]

    def test_checkout_steps_list(self, plain, always_confirm):
        order = _order(OrderState.CART)
        assert checkout_steps(order, plain) == [
            OrderState.ADDRESS,
            OrderState.DELIVERY,
            OrderState.PAYMENT,
            OrderState.COMPLETE,
        ]
        assert OrderState.CONFIRM in checkout_steps(order, always_confirm)
        assert OrderState.PAYMENT not in checkout_steps(_order(OrderState.CART, total="0.00"), plain)


class TestPostCheckoutEvents:
    def _completed(self, state=OrderState.COMPLETE, **kwargs):
        return _order(state, completed_at=datetime.now(UTC), **kwargs)

    def test_cancel_completed_order(self, plain):
        order = self._completed(shipment_state="ready")
        assert _target(order, CheckoutEvent.CANCEL, plain) is OrderState.CANCELED

    def test_cancel_backordered_order(self, plain):
        order = self._completed(shipment_state="backorder")
        assert _target(order, CheckoutEvent.CANCEL, plain) is OrderState.CANCELED

    def test_cancel_shipped_order_is_rejected(self, plain):
        order = self._completed(shipment_state="shipped")
        with pytest.raises(StateError):
            resolve(order, CheckoutEvent.CANCEL, plain)

    def test_cancel_incomplete_order_is_rejected(self, plain):
        with pytest.raises(StateError):
            resolve(_order(OrderState.PAYMENT), CheckoutEvent.CANCEL, plain)

    def test_cancel_awaiting_return(self, plain):
        order = self._completed(OrderState.AWAITING_RETURN, shipment_state="ready")
        assert _target(order, CheckoutEvent.CANCEL, plain) is OrderState.CANCELED

    def test_approve_keeps_state(self, plain):
        order = self._completed()
        assert _target(order, CheckoutEvent.APPROVE, plain) is OrderState.COMPLETE

        resumed = self._completed(OrderState.RESUMED)
        assert _target(resumed, CheckoutEvent.APPROVE, plain) is OrderState.RESUMED

    def test_approve_twice_is_rejected(self, plain):
        order = self._completed(approved_at=datetime.now(UTC))
        with pytest.raises(StateError):
            resolve(order, CheckoutEvent.APPROVE, plain)

    def test_resume_only_from_canceled(self, plain):
        assert _target(_order(OrderState.CANCELED), CheckoutEvent.RESUME, plain) is OrderState.RESUMED
        with pytest.raises(StateError):
            resolve(self._completed(), CheckoutEvent.RESUME, plain)

    def test_return_flow(self, plain):
        order = self._completed()
        assert _target(order, CheckoutEvent.AUTHORIZE_RETURN, plain) is OrderState.AWAITING_RETURN

        awaiting = self._completed(OrderState.AWAITING_RETURN)
        assert _target(awaiting, CheckoutEvent.RETURN, plain) is OrderState.RETURNED
        with pytest.raises(StateError):
            resolve(awaiting, CheckoutEvent.AUTHORIZE_RETURN, plain)

    @pytest.mark.parametrize("event", [CheckoutEvent.CANCEL, CheckoutEvent.APPROVE, CheckoutEvent.RETURN])
    def test_cart_rejects_post_checkout_events(self, plain, event):
        with pytest.raises(StateError):
            resolve(_order(OrderState.CART), event, plain)
