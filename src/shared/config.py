"""Application settings, loaded from ``STOREFRONT_*`` environment variables."""

from decimal import Decimal
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="STOREFRONT_", env_file=".env", extra="ignore")

    env: str = Field("development", description="development, test, staging or production")
    log_level: str | None = Field(None, description="Overrides the level derived from env")

    # Persistence
    database_url: str = Field("sqlite:///storefront.db", description="SQLAlchemy database URL")
    db_echo: bool = Field(False, description="Log SQL statements")
    lock_timeout: float = Field(30.0, description="Seconds a writer waits for a locked row (SQLite busy timeout)")

    # Checkout
    currency: str = Field("USD", max_length=3)
    always_include_confirm_step: bool = Field(False, description="Force the confirm step for every order")
    auto_capture: bool = Field(True, description="Purchase instead of authorize when processing payments")
    payment_gateway: str = Field("fake", description="Name of the payment gateway adapter")
    default_shipping_cost: Decimal = Field(Decimal("0.00"), ge=0, decimal_places=2)

    # Inventory
    binary_inventory_cache: bool = Field(
        False,
        description="Only touch the variant when a stock item crosses the in-stock boundary",
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
