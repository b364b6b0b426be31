"""Tests for the inventory cache strategy."""

import pytest
from inventory.stock.ledger import InventoryCacheStrategy
from shared.config import Settings


class TestAlwaysStrategy:
    @pytest.mark.parametrize(("previous", "new"), [(5, 4), (0, 1), (-3, -2), (1, 0)])
    def test_touches_on_every_change(self, previous, new):
        assert InventoryCacheStrategy.ALWAYS.should_touch(previous, new) is True

    def test_does_not_touch_when_count_is_unchanged(self):
        assert InventoryCacheStrategy.ALWAYS.should_touch(5, 5) is False


class TestBinaryStrategy:
    @pytest.mark.parametrize(("previous", "new"), [(1, 0), (0, 1), (-2, 3), (4, -1)])
    def test_touches_when_crossing_in_stock_boundary(self, previous, new):
        assert InventoryCacheStrategy.BINARY.should_touch(previous, new) is True

    @pytest.mark.parametrize(("previous", "new"), [(5, 4), (2, 9), (0, -3), (-3, 0)])
    def test_ignores_changes_on_one_side(self, previous, new):
        assert InventoryCacheStrategy.BINARY.should_touch(previous, new) is False


class TestFromSettings:
    def test_default_is_always(self):
        assert InventoryCacheStrategy.from_settings(Settings(env="test")) is InventoryCacheStrategy.ALWAYS

    def test_binary_flag_selects_binary(self):
        settings = Settings(env="test", binary_inventory_cache=True)
        assert InventoryCacheStrategy.from_settings(settings) is InventoryCacheStrategy.BINARY
