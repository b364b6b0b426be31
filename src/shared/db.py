"""Persistence plumbing: declarative base, engine/session factories, row locks."""

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import DateTime, Engine, Numeric, create_engine, update
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from shared.config import Settings, get_settings
from shared.errors import ObjectNotFoundError

MONEY = Numeric(10, 2)
ZERO = Decimal("0.00")


def utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


def create_db_engine(settings: Settings | None = None) -> Engine:
    settings = settings or get_settings()

    connect_args = {}
    if settings.database_url.startswith("sqlite"):
        # Writers queue on SQLite's database lock instead of failing fast;
        # pooled connections may be handed between threads.
        connect_args = {"timeout": settings.lock_timeout, "check_same_thread": False}

    return create_engine(settings.database_url, echo=settings.db_echo, connect_args=connect_args)


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, expire_on_commit=False)


def import_models() -> None:
    """Register every mapped class on ``Base.metadata``."""
    import inventory.stock.stock  # noqa: F401
    import ordering.order.order  # noqa: F401
    import payments.payment.payment  # noqa: F401


def setup_db(engine: Engine) -> None:
    """Create all tables."""
    import_models()
    Base.metadata.create_all(engine)


def drop_db(engine: Engine) -> None:
    """Drop all tables."""
    import_models()
    Base.metadata.drop_all(engine)


def lock_row(session: Session, model: type[Base], pk: int):
    """Take an exclusive lock on one row and return it freshly loaded.

    The no-op UPDATE takes the write lock on every backend (a row lock on
    PostgreSQL, the database write lock on SQLite) and blocks while another
    transaction holds it. ``FOR UPDATE`` is added where the dialect supports
    it. The lock lasts until the session's transaction ends.
    """
    result = session.execute(
        update(model).where(model.id == pk).values(id=model.id).execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise ObjectNotFoundError({"id": [f"{model.__name__} {pk} does not exist"]})

    return session.get(model, pk, with_for_update=True, populate_existing=True)
