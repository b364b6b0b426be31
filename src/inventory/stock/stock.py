"""Stock records — the persistent side of the inventory domain.

A StockItem tracks one product variant at one stock location. Its
``count_on_hand`` is signed: backorderable items may go negative, and the
backordered inventory units hanging off the item form its backorder queue.

Stock Model:
    count_on_hand: physical units at the location, minus units already sold
    backorderable: whether the item may be sold below zero
    available:     count_on_hand > 0 or backorderable
    movements:     append-only log of every signed delta applied
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, UniqueConstraint, event
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from shared.db import Base, TimestampMixin, utcnow
from shared.errors import StateError, StockIntegrityError, ValidationError


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class InventoryUnitState(Enum):
    ON_HAND = "on_hand"
    BACKORDERED = "backordered"
    SHIPPED = "shipped"
    RETURNED = "returned"


# ---------------------------------------------------------------------------
# Locations and variants
# ---------------------------------------------------------------------------
class StockLocation(Base, TimestampMixin):
    __tablename__ = "stock_locations"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255), unique=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True)
    backorderable_default: Mapped[bool] = mapped_column(Boolean, default=False)
    propagate_all_variants: Mapped[bool] = mapped_column(Boolean, default=True)

    stock_items: Mapped[list["StockItem"]] = relationship(back_populates="stock_location")


class Variant(Base, TimestampMixin):
    """A sellable product variant.

    ``updated_at`` doubles as the cache key for anything derived from the
    variant's stock status, so the ledger touches it when stock changes.
    """

    __tablename__ = "variants"

    id: Mapped[int] = mapped_column(primary_key=True)
    sku: Mapped[str] = mapped_column(String(255), unique=True)

    stock_items: Mapped[list["StockItem"]] = relationship(back_populates="variant")

    def touch(self) -> None:
        self.updated_at = utcnow()


# ---------------------------------------------------------------------------
# Stock items
# ---------------------------------------------------------------------------
class StockItem(Base, TimestampMixin):
    __tablename__ = "stock_items"
    __table_args__ = (UniqueConstraint("variant_id", "stock_location_id", name="uq_stock_item_variant_location"),)

    id: Mapped[int] = mapped_column(primary_key=True)
    variant_id: Mapped[int] = mapped_column(ForeignKey("variants.id"))
    stock_location_id: Mapped[int] = mapped_column(ForeignKey("stock_locations.id"))
    count_on_hand: Mapped[int] = mapped_column(Integer, default=0)
    backorderable: Mapped[bool] = mapped_column(Boolean, default=False)

    variant: Mapped[Variant] = relationship(back_populates="stock_items")
    stock_location: Mapped[StockLocation] = relationship(back_populates="stock_items")
    movements: Mapped[list["StockMovement"]] = relationship(
        back_populates="stock_item",
        cascade="all, delete-orphan",
        order_by="StockMovement.id",
    )

    @property
    def in_stock(self) -> bool:
        return self.count_on_hand > 0

    @property
    def available(self) -> bool:
        """Whether the item can be included in a shipment."""
        return self.count_on_hand > 0 or self.backorderable

    def verify_count_on_hand(self, previous: int, new: int) -> None:
        """Reject driving a non-backorderable item from zero-or-more into the negative.

        Items that are already negative keep whatever balance they carry;
        only the crossing below zero is refused.
        """
        if not self.backorderable and previous >= 0 and new < 0:
            raise StockIntegrityError({"count_on_hand": ["must be greater than or equal to 0"]})


class StockMovement(Base):
    """An immutable record of a signed quantity applied to a stock item."""

    __tablename__ = "stock_movements"

    id: Mapped[int] = mapped_column(primary_key=True)
    stock_item_id: Mapped[int] = mapped_column(ForeignKey("stock_items.id"))
    quantity: Mapped[int] = mapped_column(Integer)
    originator: Mapped[str | None] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    stock_item: Mapped[StockItem] = relationship(back_populates="movements")

    @validates("quantity")
    def _validate_quantity(self, key, value):
        if not isinstance(value, int) or abs(value) >= 2**31:
            raise ValidationError({key: ["must be an integer between -2^31 and 2^31"]})
        return value


@event.listens_for(StockMovement, "before_update")
def _movements_are_append_only(mapper, connection, target):  # noqa: ARG001
    raise StockIntegrityError({"stock_movement": [f"Stock movement {target.id} cannot be modified"]})


# ---------------------------------------------------------------------------
# Inventory units (backorder queue)
# ---------------------------------------------------------------------------
class InventoryUnit(Base, TimestampMixin):
    """One unit of a variant allocated to an order's shipment.

    Backordered units were sold while their stock item had nothing on hand;
    they are filled oldest first as stock arrives.
    """

    __tablename__ = "inventory_units"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[int | None] = mapped_column(ForeignKey("orders.id"))
    shipment_id: Mapped[int | None] = mapped_column(ForeignKey("shipments.id"))
    variant_id: Mapped[int] = mapped_column(ForeignKey("variants.id"))
    stock_item_id: Mapped[int | None] = mapped_column(ForeignKey("stock_items.id"))
    state: Mapped[str] = mapped_column(String(20), default=InventoryUnitState.ON_HAND.value)

    stock_item: Mapped[StockItem | None] = relationship()

    @validates("state")
    def _validate_state(self, key, value):
        if value not in {s.value for s in InventoryUnitState}:
            raise ValidationError({key: [f"{value!r} is not a valid inventory unit state"]})
        return value

    @property
    def backordered(self) -> bool:
        return self.state == InventoryUnitState.BACKORDERED.value

    def fill_backorder(self) -> None:
        if not self.backordered:
            raise StateError({"state": [f"Cannot fill backorder for a unit in {self.state} state"]})
        self.state = InventoryUnitState.ON_HAND.value

    def ship(self) -> None:
        if self.state == InventoryUnitState.ON_HAND.value:
            self.state = InventoryUnitState.SHIPPED.value
