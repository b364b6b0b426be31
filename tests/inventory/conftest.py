import pytest
from sqlalchemy import select

from inventory.stock.ledger import StockLedger
from inventory.stock.stock import InventoryUnit, InventoryUnitState, StockItem, StockLocation


@pytest.fixture
def ledger(settings):
    return StockLedger(settings=settings)


@pytest.fixture
def make_stock_item(session_factory, ledger):
    """Create a variant stocked at the default location and return its stock item id."""
    counter = iter(range(1, 10_000))

    def _make(count_on_hand=0, backorderable=False, sku=None):
        with session_factory.begin() as session:
            location = session.scalar(select(StockLocation).where(StockLocation.name == "default"))
            if location is None:
                location = ledger.add_stock_location(session, "default")

            variant = ledger.add_variant(session, sku or f"SKU-{next(counter):04d}")
            stock_item = ledger.stock_item_for(session, location.id, variant.id)
            stock_item.count_on_hand = count_on_hand
            stock_item.backorderable = backorderable
            session.flush()
            return stock_item.id

    return _make


@pytest.fixture
def add_backorders(session_factory):
    """Queue ``count`` backordered units on a stock item, oldest first; return their ids."""

    def _add(stock_item_id, count):
        ids = []
        for _ in range(count):
            with session_factory.begin() as session:
                stock_item = session.get(StockItem, stock_item_id)
                unit = InventoryUnit(
                    variant_id=stock_item.variant_id,
                    stock_item_id=stock_item.id,
                    state=InventoryUnitState.BACKORDERED.value,
                )
                session.add(unit)
                session.flush()
                ids.append(unit.id)
        return ids

    return _add


@pytest.fixture
def read_stock(session_factory):
    def _read(stock_item_id):
        with session_factory() as session:
            return session.get(StockItem, stock_item_id).count_on_hand

    return _read


@pytest.fixture
def unit_states(session_factory):
    def _states(unit_ids):
        with session_factory() as session:
            return [session.get(InventoryUnit, unit_id).state for unit_id in unit_ids]

    return _states
