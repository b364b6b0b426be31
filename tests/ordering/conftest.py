from contextlib import contextmanager
from decimal import Decimal

import pytest
from sqlalchemy import select

from inventory.stock.ledger import StockLedger
from inventory.stock.stock import StockItem, StockLocation
from ordering.order.contents import OrderContents
from ordering.order.lifecycle import OrderLifecycleManager
from ordering.order.order import Order, OrderState


@pytest.fixture
def ledger(settings):
    return StockLedger(settings=settings)


@pytest.fixture
def manager(session_factory, gateway, mailer, ledger, settings):
    return OrderLifecycleManager(session_factory, gateway=gateway, mailer=mailer, ledger=ledger, settings=settings)


@pytest.fixture
def contents(session_factory):
    return OrderContents(session_factory)


@pytest.fixture
def stock_variant(session_factory, ledger):
    """Register a variant stocked at the warehouse and return its id."""
    counter = iter(range(1, 10_000))

    def _make(count_on_hand=10, backorderable=False):
        with session_factory.begin() as session:
            location = session.scalar(select(StockLocation).where(StockLocation.name == "warehouse"))
            if location is None:
                location = ledger.add_stock_location(session, "warehouse")

            variant = ledger.add_variant(session, f"VAR-{next(counter):04d}")
            stock_item = ledger.stock_item_for(session, location.id, variant.id)
            stock_item.count_on_hand = count_on_hand
            stock_item.backorderable = backorderable
            session.flush()
            return variant.id

    return _make


@pytest.fixture
def place_order(manager, contents, stock_variant):
    """Create an order holding one line item; return ``(order_id, variant_id)``."""

    def _place(quantity=2, price="10.00", count_on_hand=10, backorderable=False):
        variant_id = stock_variant(count_on_hand=count_on_hand, backorderable=backorderable)
        order = manager.create(email="buyer@example.com", user_id=5)
        contents.add(order.id, variant_id, quantity, Decimal(price))
        return order.id, variant_id

    return _place


@pytest.fixture
def read_order(session_factory):
    @contextmanager
    def _read(order_id):
        with session_factory() as session:
            yield session.get(Order, order_id)

    return _read


@pytest.fixture
def stock_count(session_factory):
    def _count(variant_id):
        with session_factory() as session:
            return session.scalar(select(StockItem.count_on_hand).where(StockItem.variant_id == variant_id))

    return _count


@pytest.fixture
def checkout(manager, read_order):
    """Advance an order with ``next`` until it reaches ``until``.

    A payment for the outstanding balance is added on reaching the payment
    step unless ``pay`` is false.
    """

    def _checkout(order_id, until=OrderState.COMPLETE, pay=True, walker=None):
        walker = walker or manager
        for _ in range(10):
            with read_order(order_id) as order:
                state = OrderState(order.state)
                unpaid = not any(payment.state == "checkout" for payment in order.payments)
            if state is until:
                return state
            if pay and unpaid and state in (OrderState.PAYMENT, OrderState.CONFIRM):
                walker.add_payment(order_id, source_token="tok_visa")
            walker.next(order_id)
        raise AssertionError(f"Order {order_id} never reached {until.value}")

    return _checkout
