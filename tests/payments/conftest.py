import pytest
from payments.gateway.fake_adapter import FakeGateway
from payments.payment.payment import Payment, PaymentMethod
from payments.payment.processing import PaymentProcessor
from shared.config import Settings


@pytest.fixture
def fake_gateway():
    return FakeGateway()


@pytest.fixture
def processor(fake_gateway):
    return PaymentProcessor(gateway=fake_gateway, settings=Settings(env="test", auto_capture=True))


@pytest.fixture
def make_payment():
    def _make(**overrides):
        defaults = {"amount": "25.00", "source_token": "tok_visa", "state": "checkout"}
        defaults.update(overrides)
        return Payment(**defaults)

    return _make


@pytest.fixture
def manual_capture_method():
    return PaymentMethod(name="Check", auto_capture=False)
