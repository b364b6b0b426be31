import os
from pathlib import Path

import pytest


def pytest_addoption(parser):
    parser.addoption(
        "--env",
        action="store",
        default="test",
        help="Config environment to run tests on",
    )


def pytest_sessionstart(session):
    """Pytest hook to run before collecting tests.

    Selects the configuration environment, configures logging and registers
    every mapped model so relationships between contexts resolve.
    """
    os.environ["STOREFRONT_ENV"] = session.config.option.env

    from shared.config import get_settings
    from shared.db import import_models
    from shared.logging import configure_logging

    get_settings.cache_clear()
    configure_logging()
    import_models()


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their directory location."""
    for item in items:
        test_path = Path(item.fspath)

        if "/domain/" in str(test_path):
            item.add_marker(pytest.mark.domain)
        elif "/application/" in str(test_path):
            item.add_marker(pytest.mark.application)
        elif "/integration/" in str(test_path):
            item.add_marker(pytest.mark.integration)
            # Integration tests are often slower
            if not any(m.name == "fast" for m in item.iter_markers()):
                item.add_marker(pytest.mark.slow)


@pytest.fixture
def settings(tmp_path):
    from shared.config import Settings

    return Settings(
        env="test",
        database_url=f"sqlite:///{tmp_path / 'storefront.db'}",
        lock_timeout=30.0,
    )


@pytest.fixture
def engine(settings):
    from shared.db import create_db_engine, drop_db, setup_db

    engine = create_db_engine(settings)
    setup_db(engine)

    yield engine

    drop_db(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    from shared.db import make_session_factory

    return make_session_factory(engine)


@pytest.fixture
def gateway():
    from payments.gateway import reset_gateway, set_gateway
    from payments.gateway.fake_adapter import FakeGateway

    fake = FakeGateway()
    set_gateway(fake)
    yield fake
    reset_gateway()


@pytest.fixture
def mailer():
    from notifications.channel import reset_mailer, set_mailer
    from notifications.channel.fake_mail import FakeOrderMailer

    fake = FakeOrderMailer()
    set_mailer(fake)
    yield fake
    reset_mailer()
