"""Payment processing — drives Payment records through the gateway.

The processor joins the caller's session: it mutates payments and adds
refunds but never commits, so a gateway failure raised from here rolls
back together with whatever checkout step triggered it.
"""

from decimal import Decimal

import structlog

from payments.gateway import get_gateway
from payments.gateway.port import GatewayResponse, PaymentGateway
from payments.payment.payment import Payment, PaymentState, Refund
from shared.config import Settings, get_settings
from shared.errors import GatewayError, StateError, ValidationError
from shared.money import to_money

logger = structlog.get_logger(__name__)

_VOIDABLE_STATES = {
    PaymentState.CHECKOUT.value,
    PaymentState.PENDING.value,
    PaymentState.PROCESSING.value,
    PaymentState.COMPLETED.value,
}


def to_cents(amount: Decimal) -> int:
    return int((amount * 100).to_integral_value())


class PaymentProcessor:
    def __init__(self, gateway: PaymentGateway | None = None, settings: Settings | None = None):
        self.gateway = gateway or get_gateway()
        self.settings = settings or get_settings()

    def auto_capture(self, payment: Payment) -> bool:
        method = payment.payment_method
        if method is not None and method.auto_capture is not None:
            return method.auto_capture
        return self.settings.auto_capture

    def process(self, payment: Payment) -> Payment:
        """Purchase when the payment auto-captures, authorize otherwise."""
        if self.auto_capture(payment):
            return self.purchase(payment)
        return self.authorize(payment)

    def authorize(self, payment: Payment) -> Payment:
        payment.started_processing()
        response = self.gateway.authorize(to_cents(payment.amount), payment.source_token or "", self._options(payment))
        self._handle_response(payment, "authorize", response)
        payment.pend()
        return payment

    def purchase(self, payment: Payment) -> Payment:
        payment.started_processing()
        response = self.gateway.purchase(to_cents(payment.amount), payment.source_token or "", self._options(payment))
        self._handle_response(payment, "purchase", response)
        payment.complete()
        return payment

    def capture(self, payment: Payment) -> Payment:
        if payment.state != PaymentState.PENDING.value:
            raise StateError({"state": [f"Cannot capture a payment in {payment.state} state"]})

        payment.started_processing()
        response = self.gateway.capture(to_cents(payment.amount), payment.response_code or "", self._options(payment))
        self._handle_response(payment, "capture", response)
        payment.complete()
        return payment

    def void(self, payment: Payment) -> Payment:
        """Cancel the payment at the gateway. A rejected void leaves its state alone."""
        if payment.state not in _VOIDABLE_STATES:
            raise StateError({"state": [f"Cannot void a payment in {payment.state} state"]})

        response = self.gateway.void(to_cents(payment.amount), payment.response_code or "", self._options(payment))
        self._handle_response(payment, "void", response, fail_payment=False)
        payment.void()
        return payment

    def refund(self, payment: Payment, amount: Decimal | None = None, reason: str | None = None) -> Refund:
        """Credit part or all of a completed payment back to the customer."""
        if not payment.completed:
            raise StateError({"state": ["Only completed payments can be refunded"]})

        amount = payment.credit_allowed if amount is None else to_money(amount, positive=True)
        if amount <= 0 or amount > payment.credit_allowed:
            raise ValidationError({"amount": [f"must be between 0.01 and {payment.credit_allowed}"]})

        response = self.gateway.credit(to_cents(amount), payment.response_code or "", self._options(payment))
        if not response.success:
            logger.warning("Refund rejected", payment_id=payment.id, reason=response.message)
            raise GatewayError({"refund": [response.message or "Refund rejected by gateway"]})

        refund = Refund(amount=amount, transaction_id=response.authorization, reason=reason)
        payment.refunds.append(refund)
        logger.info("Payment refunded", payment_id=payment.id, amount=str(amount))
        return refund

    def _options(self, payment: Payment) -> dict:
        return {
            "order_id": payment.order_id,
            "payment_id": payment.id,
            "currency": self.settings.currency,
        }

    def _handle_response(
        self,
        payment: Payment,
        action: str,
        response: GatewayResponse,
        fail_payment: bool = True,
    ) -> None:
        if response.avs_result is not None:
            payment.avs_response = response.avs_result
        if response.cvv_result is not None:
            payment.cvv_response_code = response.cvv_result

        if not response.success:
            if fail_payment:
                payment.failure()
            logger.warning(
                "Payment gateway call failed",
                payment_id=payment.id,
                action=action,
                reason=response.message,
            )
            raise GatewayError({"payment": [response.message or f"Gateway {action} failed"]})

        if response.authorization:
            payment.response_code = response.authorization
        logger.info("Payment gateway call succeeded", payment_id=payment.id, action=action)
