"""Payment gateway port (abstract interface).

Defines the contract that all payment gateway adapters must implement.
The core only depends on whether a call succeeded and on the authorization
token it returned, so any gateway can sit behind this interface without
changing domain or application code.

Amounts cross the port in minor units (cents).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class GatewayResponse:
    """Result of a gateway call."""

    success: bool
    authorization: str | None = None
    message: str | None = None
    avs_result: str | None = None
    cvv_result: str | None = None


class PaymentGateway(ABC):
    """Abstract payment gateway interface.

    ``source`` is the payment instrument token for ``authorize`` and
    ``purchase``, and the authorization returned earlier for ``capture``,
    ``void`` and ``credit``.
    """

    @abstractmethod
    def authorize(self, amount: int, source: str, options: dict) -> GatewayResponse:
        """Reserve funds without capturing them."""
        ...

    @abstractmethod
    def purchase(self, amount: int, source: str, options: dict) -> GatewayResponse:
        """Authorize and capture in one step."""
        ...

    @abstractmethod
    def capture(self, amount: int, source: str, options: dict) -> GatewayResponse:
        """Capture previously authorized funds."""
        ...

    @abstractmethod
    def void(self, amount: int, source: str, options: dict) -> GatewayResponse:
        """Cancel an authorization or an unsettled capture."""
        ...

    @abstractmethod
    def credit(self, amount: int, source: str, options: dict) -> GatewayResponse:
        """Refund captured funds."""
        ...
