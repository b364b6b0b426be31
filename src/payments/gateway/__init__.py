"""Payment gateway registry.

Adapters are looked up by the ``payment_gateway`` setting the first time a
gateway is needed; set_gateway() installs a configured instance directly.
"""

from payments.gateway.fake_adapter import FakeGateway
from payments.gateway.port import PaymentGateway
from shared.config import get_settings

ADAPTERS: dict[str, type[PaymentGateway]] = {
    "fake": FakeGateway,
}

_active: PaymentGateway | None = None


def get_gateway() -> PaymentGateway:
    global _active
    if _active is None:
        name = get_settings().payment_gateway
        try:
            _active = ADAPTERS[name]()
        except KeyError:
            raise ValueError(f"Unknown payment gateway: {name}") from None
    return _active


def set_gateway(gateway: PaymentGateway) -> None:
    global _active
    _active = gateway


def reset_gateway() -> None:
    """Forget the active gateway; the next lookup reads settings again."""
    global _active
    _active = None
