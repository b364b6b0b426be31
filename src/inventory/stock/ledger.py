"""Stock ledger — serialized bookkeeping of on-hand counts.

Every count change goes through the ledger, which:

    1. locks the stock item row for the rest of the caller's transaction,
    2. validates the new count against the item's backorder policy,
    3. appends a StockMovement for the signed delta,
    4. fills backordered units oldest first when stock arrives,
    5. touches the variant according to the inventory cache strategy.

The ledger never commits. It joins the caller's session so stock changes
commit or roll back together with whatever caused them (a shipment being
finalized, a receiving document, a manual correction).
"""

from enum import Enum

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from inventory.stock.stock import (
    InventoryUnit,
    InventoryUnitState,
    StockItem,
    StockLocation,
    StockMovement,
    Variant,
)
from shared.config import Settings, get_settings
from shared.db import lock_row
from shared.errors import ObjectNotFoundError, ValidationError

logger = structlog.get_logger(__name__)


class InventoryCacheStrategy(Enum):
    """When a stock change should touch the owning variant.

    ALWAYS touches on every change of ``count_on_hand``. BINARY only touches
    when the item crosses the in-stock boundary (``count_on_hand > 0``), for
    stores whose caches only render "in stock" / "out of stock".
    """

    ALWAYS = "always"
    BINARY = "binary"

    @classmethod
    def from_settings(cls, settings: Settings) -> "InventoryCacheStrategy":
        return cls.BINARY if settings.binary_inventory_cache else cls.ALWAYS

    def should_touch(self, previous: int, new: int) -> bool:
        if self is InventoryCacheStrategy.BINARY:
            return (previous > 0) != (new > 0)
        return previous != new


class StockLedger:
    def __init__(
        self,
        cache_strategy: InventoryCacheStrategy | None = None,
        settings: Settings | None = None,
    ):
        settings = settings or get_settings()
        self.cache_strategy = cache_strategy or InventoryCacheStrategy.from_settings(settings)

    # -------------------------------------------------------------------
    # Count changes
    # -------------------------------------------------------------------
    def adjust_count_on_hand(
        self,
        session: Session,
        stock_item_id: int,
        delta: int,
        originator: str | None = None,
    ) -> int:
        """Apply a signed delta and return the new count.

        Positive deltas fill up to ``delta`` backordered units, oldest
        first, even when the count stays below zero afterwards.
        """
        if isinstance(delta, bool) or not isinstance(delta, int):
            raise ValidationError({"delta": ["must be an integer"]})

        stock_item = lock_row(session, StockItem, stock_item_id)
        previous = stock_item.count_on_hand
        new = previous + delta

        stock_item.verify_count_on_hand(previous, new)
        stock_item.count_on_hand = new
        if delta:
            session.add(StockMovement(stock_item=stock_item, quantity=delta, originator=originator))

        filled = self._process_backorders(session, stock_item, delta) if delta > 0 else []
        self._conditional_variant_touch(stock_item, previous)
        session.flush()

        logger.info(
            "Stock adjusted",
            stock_item_id=stock_item.id,
            variant_id=stock_item.variant_id,
            previous=previous,
            delta=delta,
            count_on_hand=new,
            backorders_filled=len(filled),
            originator=originator,
        )
        return new

    def set_count_on_hand(self, session: Session, stock_item_id: int, value: int) -> int:
        """Overwrite the count. Backorders are left untouched whatever the sign change."""
        stock_item = lock_row(session, StockItem, stock_item_id)
        return self._overwrite(session, stock_item, value)

    def reduce_count_on_hand_to_zero(self, session: Session, stock_item_id: int) -> int:
        stock_item = lock_row(session, StockItem, stock_item_id)
        if stock_item.count_on_hand <= 0:
            return stock_item.count_on_hand
        return self._overwrite(session, stock_item, 0)

    def unstock(
        self,
        session: Session,
        stock_location_id: int,
        variant_id: int,
        quantity: int,
        originator: str | None = None,
    ) -> int:
        """Take ``quantity`` units of a variant out of a location."""
        if quantity <= 0:
            raise ValidationError({"quantity": ["Quantity must be positive"]})
        stock_item = self.stock_item_for(session, stock_location_id, variant_id)
        return self.adjust_count_on_hand(session, stock_item.id, -quantity, originator=originator)

    def restock(
        self,
        session: Session,
        stock_location_id: int,
        variant_id: int,
        quantity: int,
        originator: str | None = None,
    ) -> int:
        """Put ``quantity`` units of a variant back into a location."""
        if quantity <= 0:
            raise ValidationError({"quantity": ["Quantity must be positive"]})
        stock_item = self.stock_item_for(session, stock_location_id, variant_id)
        return self.adjust_count_on_hand(session, stock_item.id, quantity, originator=originator)

    def restock_backordered(self, session: Session, stock_location_id: int, variant_id: int, quantity: int) -> int:
        """Give back the count taken by units that were never on the shelf.

        No movement is logged and the backorder queue is left alone: the
        units being released held no physical stock.
        """
        if quantity <= 0:
            raise ValidationError({"quantity": ["Quantity must be positive"]})
        stock_item = self.stock_item_for(session, stock_location_id, variant_id)
        stock_item = lock_row(session, StockItem, stock_item.id)
        return self._overwrite(session, stock_item, stock_item.count_on_hand + quantity)

    # -------------------------------------------------------------------
    # Stock item lifecycle
    # -------------------------------------------------------------------
    def stock_item_for(self, session: Session, stock_location_id: int, variant_id: int) -> StockItem:
        stock_item = session.scalar(
            select(StockItem).where(
                StockItem.stock_location_id == stock_location_id,
                StockItem.variant_id == variant_id,
            )
        )
        if stock_item is None:
            raise ObjectNotFoundError(
                {"stock_item": [f"No stock item for variant {variant_id} at location {stock_location_id}"]}
            )
        return stock_item

    def create_stock_item(
        self,
        session: Session,
        variant_id: int,
        stock_location_id: int,
        backorderable: bool | None = None,
    ) -> StockItem:
        """Associate a variant with a location. One live item per pair."""
        variant = _get_or_raise(session, Variant, variant_id)
        location = _get_or_raise(session, StockLocation, stock_location_id)

        existing = session.scalar(
            select(StockItem.id).where(
                StockItem.stock_location_id == stock_location_id,
                StockItem.variant_id == variant_id,
            )
        )
        if existing is not None:
            raise ValidationError({"variant_id": ["has already been taken"]})

        stock_item = StockItem(
            variant=variant,
            stock_location=location,
            count_on_hand=0,
            backorderable=location.backorderable_default if backorderable is None else backorderable,
        )
        session.add(stock_item)
        try:
            session.flush()
        except IntegrityError as exc:
            raise ValidationError({"variant_id": ["has already been taken"]}) from exc

        variant.touch()
        return stock_item

    def remove_stock_item(self, session: Session, stock_item_id: int) -> None:
        stock_item = lock_row(session, StockItem, stock_item_id)
        session.execute(
            update(InventoryUnit)
            .where(InventoryUnit.stock_item_id == stock_item.id)
            .values(stock_item_id=None)
            .execution_options(synchronize_session=False)
        )
        stock_item.variant.touch()
        session.delete(stock_item)
        session.flush()

    def add_stock_location(
        self,
        session: Session,
        name: str,
        backorderable_default: bool = False,
        propagate_all_variants: bool = True,
    ) -> StockLocation:
        location = StockLocation(
            name=name,
            backorderable_default=backorderable_default,
            propagate_all_variants=propagate_all_variants,
        )
        session.add(location)
        session.flush()

        if propagate_all_variants:
            for variant_id in session.scalars(select(Variant.id).order_by(Variant.id)):
                self.create_stock_item(session, variant_id, location.id)
        return location

    def add_variant(self, session: Session, sku: str) -> Variant:
        """Register a variant and stock it at every propagating location."""
        variant = Variant(sku=sku)
        session.add(variant)
        session.flush()

        locations = session.scalars(
            select(StockLocation.id).where(StockLocation.propagate_all_variants.is_(True)).order_by(StockLocation.id)
        )
        for location_id in locations:
            self.create_stock_item(session, variant.id, location_id)
        return variant

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------
    def backordered_units(self, session: Session, stock_item: StockItem, limit: int | None = None):
        """The backorder queue of a stock item, oldest first."""
        stmt = (
            select(InventoryUnit)
            .where(
                InventoryUnit.stock_item_id == stock_item.id,
                InventoryUnit.state == InventoryUnitState.BACKORDERED.value,
            )
            .order_by(InventoryUnit.created_at, InventoryUnit.id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(session.scalars(stmt))

    def _process_backorders(self, session: Session, stock_item: StockItem, quantity: int) -> list[InventoryUnit]:
        units = self.backordered_units(session, stock_item, limit=quantity)
        for unit in units:
            unit.fill_backorder()

        if units:
            logger.info(
                "Backorders filled",
                stock_item_id=stock_item.id,
                inventory_unit_ids=[unit.id for unit in units],
            )
        return units

    def _overwrite(self, session: Session, stock_item: StockItem, value: int) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError({"count_on_hand": ["must be an integer"]})

        previous = stock_item.count_on_hand
        stock_item.verify_count_on_hand(previous, value)
        stock_item.count_on_hand = value
        self._conditional_variant_touch(stock_item, previous)
        session.flush()

        logger.info(
            "Stock count set",
            stock_item_id=stock_item.id,
            previous=previous,
            count_on_hand=value,
        )
        return value

    def _conditional_variant_touch(self, stock_item: StockItem, previous: int) -> None:
        if self.cache_strategy.should_touch(previous, stock_item.count_on_hand):
            stock_item.variant.touch()


def _get_or_raise(session: Session, model, pk: int):
    instance = session.get(model, pk)
    if instance is None:
        raise ObjectNotFoundError({"id": [f"{model.__name__} {pk} does not exist"]})
    return instance
