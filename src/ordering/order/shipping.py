"""Shipment planning — turns an order's line items into proposed shipments.

The planner only reads stock; nothing is unstocked until the order
completes and its shipments are finalized.
"""

from typing import Protocol

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from inventory.stock.stock import InventoryUnit, InventoryUnitState, StockItem, StockLocation
from ordering.order.order import Order, Shipment
from shared.config import Settings, get_settings

logger = structlog.get_logger(__name__)


class ShipmentPlanner(Protocol):
    def plan(self, session: Session, order: Order) -> list[Shipment]:
        """Propose shipments for the order, or return an empty list when it cannot ship."""
        ...


class SingleShipmentPlanner:
    """Ships everything from the first active location that stocks every variant.

    Units beyond what is on hand are backordered when the stock item allows
    it; a location that can neither supply nor backorder a line is skipped.
    """

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()

    def plan(self, session: Session, order: Order) -> list[Shipment]:
        if not order.line_items:
            return []

        locations = list(
            session.scalars(select(StockLocation).where(StockLocation.active.is_(True)).order_by(StockLocation.id))
        )
        for location in locations:
            shipment = self._package(session, order, location)
            if shipment is not None:
                logger.info(
                    "Shipment planned",
                    order_id=order.id,
                    stock_location_id=location.id,
                    units=len(shipment.inventory_units),
                )
                return [shipment]

        logger.warning("No stock location can ship order", order_id=order.id)
        return []

    def _package(self, session: Session, order: Order, location: StockLocation) -> Shipment | None:
        units: list[InventoryUnit] = []
        for line_item in order.line_items:
            stock_item = session.scalar(
                select(StockItem).where(
                    StockItem.stock_location_id == location.id,
                    StockItem.variant_id == line_item.variant_id,
                )
            )
            if stock_item is None:
                return None

            on_hand = min(max(stock_item.count_on_hand, 0), line_item.quantity)
            backordered = line_item.quantity - on_hand
            if backordered and not stock_item.backorderable:
                return None

            units.extend(self._units(order, stock_item, InventoryUnitState.ON_HAND, on_hand))
            units.extend(self._units(order, stock_item, InventoryUnitState.BACKORDERED, backordered))

        return Shipment(
            stock_location_id=location.id,
            cost=self.settings.default_shipping_cost,
            inventory_units=units,
        )

    @staticmethod
    def _units(order: Order, stock_item: StockItem, state: InventoryUnitState, count: int) -> list[InventoryUnit]:
        return [
            InventoryUnit(
                order_id=order.id,
                variant_id=stock_item.variant_id,
                stock_item_id=stock_item.id,
                state=state.value,
            )
            for _ in range(count)
        ]
