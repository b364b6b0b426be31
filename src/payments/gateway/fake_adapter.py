"""Configurable fake payment gateway for development and testing.

This adapter simulates a real payment gateway without any external calls.
It can be configured at runtime to succeed or fail, or to return risky
AVS/CVV codes, making it useful for:
- Automated tests with predictable outcomes
- Development without real gateway credentials
"""

from uuid import uuid4

from payments.gateway.port import GatewayResponse, PaymentGateway


class FakeGateway(PaymentGateway):
    """Configurable fake payment gateway."""

    def __init__(self) -> None:
        self.should_succeed: bool = True
        self.failure_reason: str = "Card declined"
        self.avs_result: str | None = "D"
        self.cvv_result: str | None = "M"
        self.calls: list[dict] = []

    def configure(
        self,
        should_succeed: bool = True,
        failure_reason: str = "Card declined",
        avs_result: str | None = "D",
        cvv_result: str | None = "M",
    ) -> None:
        """Configure gateway behavior at runtime."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason
        self.avs_result = avs_result
        self.cvv_result = cvv_result

    def _respond(self, method: str, amount: int, source: str, options: dict) -> GatewayResponse:
        self.calls.append(
            {
                "method": method,
                "amount": amount,
                "source": source,
                "options": dict(options),
            }
        )

        if self.should_succeed:
            return GatewayResponse(
                success=True,
                authorization=f"fake_{method}_{uuid4().hex[:12]}",
                message=f"{method.capitalize()} successful",
                avs_result=self.avs_result,
                cvv_result=self.cvv_result,
            )
        return GatewayResponse(
            success=False,
            message=self.failure_reason,
            avs_result=self.avs_result,
            cvv_result=self.cvv_result,
        )

    def authorize(self, amount: int, source: str, options: dict) -> GatewayResponse:
        return self._respond("authorize", amount, source, options)

    def purchase(self, amount: int, source: str, options: dict) -> GatewayResponse:
        return self._respond("purchase", amount, source, options)

    def capture(self, amount: int, source: str, options: dict) -> GatewayResponse:
        return self._respond("capture", amount, source, options)

    def void(self, amount: int, source: str, options: dict) -> GatewayResponse:
        return self._respond("void", amount, source, options)

    def credit(self, amount: int, source: str, options: dict) -> GatewayResponse:
        return self._respond("credit", amount, source, options)

    def methods_called(self) -> list[str]:
        return [call["method"] for call in self.calls]
