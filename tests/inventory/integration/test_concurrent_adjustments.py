"""Concurrent stock adjustments against a file-backed database."""

import random
from concurrent.futures import ThreadPoolExecutor

from inventory.stock.stock import StockMovement
from sqlalchemy import func, select


def _adjust(session_factory, ledger, item_id, delta):
    with session_factory.begin() as session:
        return ledger.adjust_count_on_hand(session, item_id, delta, originator="concurrency")


class TestConcurrentAdjustments:
    def test_adjustments_compose(self, session_factory, ledger, make_stock_item, read_stock):
        item_id = make_stock_item(count_on_hand=100, backorderable=True)
        rng = random.Random(42)
        deltas = [rng.randint(-20, 20) for _ in range(40)]

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda delta: _adjust(session_factory, ledger, item_id, delta), deltas))

        assert read_stock(item_id) == 100 + sum(deltas)
        assert len(results) == len(deltas)

    def test_every_adjustment_is_logged(self, session_factory, ledger, make_stock_item):
        item_id = make_stock_item(count_on_hand=0, backorderable=True)
        deltas = [1, -1, 2, -2, 3, -3, 4, -4] * 3

        with ThreadPoolExecutor(max_workers=6) as pool:
            list(pool.map(lambda delta: _adjust(session_factory, ledger, item_id, delta), deltas))

        with session_factory() as session:
            count, total = session.execute(
                select(func.count(StockMovement.id), func.sum(StockMovement.quantity)).where(
                    StockMovement.stock_item_id == item_id
                )
            ).one()
        assert count == len(deltas)
        assert total == 0

    def test_concurrent_restocks_fill_each_backorder_once(
        self, session_factory, ledger, make_stock_item, add_backorders, unit_states, read_stock
    ):
        item_id = make_stock_item(count_on_hand=-6, backorderable=True)
        unit_ids = add_backorders(item_id, 6)

        with ThreadPoolExecutor(max_workers=4) as pool:
            list(pool.map(lambda delta: _adjust(session_factory, ledger, item_id, delta), [1, 1, 1, 1]))

        assert read_stock(item_id) == -2
        assert unit_states(unit_ids) == ["on_hand"] * 4 + ["backordered"] * 2
