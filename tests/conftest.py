"""Shared test fixtures and configuration."""

import os
import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import patch

# Set up test environment variables before importing modules
os.environ.setdefault("API_KEY", "test_api_key_12345")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("PAYMENT_HEALING_ENABLED", "false")

from payments_reconciler.collaborators import SimulatedCollaborators, SimulatorConfig
from payments_reconciler.config import HealingSettings
from payments_reconciler.database import (
    Base,
    PaymentIntent,
    PaymentProvider,
    PaymentPurpose,
    PaymentStatus,
    ProviderTransaction,
    ProviderTransactionStatus,
    create_async_engine,
    create_session_factory,
)
from payments_reconciler.services import PaymentServices
from payments_reconciler.timeutils import utcnow

# Reconciliation window used by most tests
WINDOW_START = datetime(2025, 3, 1)
WINDOW_END = datetime(2025, 3, 2)
IN_WINDOW = datetime(2025, 3, 1, 12, 0)


@pytest.fixture
def mock_api_key():
    """Set up mock API key for authentication."""
    with patch.dict(os.environ, {"API_KEY": "test_api_key_12345"}):
        yield "test_api_key_12345"


@pytest.fixture
def auth_headers(mock_api_key):
    """Return headers with authentication."""
    return {
        "Authorization": f"Bearer {mock_api_key}",
        "X-Operator-Id": "ops-1",
    }


# Database fixtures
@pytest.fixture
async def db_engine():
    """Create an in-memory SQLite database for testing."""
    engine = create_async_engine(
        database_url="sqlite+aiosqlite:///:memory:",
        echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
async def file_session_factory(tmp_path):
    """Session factory over a file-backed SQLite database with a real connection pool."""
    engine = create_async_engine(database_url=f"sqlite+aiosqlite:///{tmp_path / 'payments.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield create_session_factory(engine)
    await engine.dispose()


@pytest.fixture
async def db_session(session_factory):
    """Create a database session for testing."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def healing_settings():
    """Healing settings with no minimum age so freshly seeded intents qualify."""
    return HealingSettings(
        enabled=False,
        interval=timedelta(seconds=1),
        initial_delay=timedelta(0),
        min_age=timedelta(0),
        batch_size=50,
    )


@pytest.fixture
def collaborators():
    return SimulatedCollaborators()


@pytest.fixture
def services(session_factory, collaborators, healing_settings):
    return PaymentServices.build(session_factory, collaborators, settings=healing_settings)


@pytest.fixture
def failing_services(session_factory, healing_settings):
    """Services whose collaborators fail for user ``user-fail``."""
    failing = SimulatedCollaborators(SimulatorConfig(failing_ids=frozenset({"user-fail"})))
    return PaymentServices.build(session_factory, failing, settings=healing_settings)


@pytest.fixture
def seed(session_factory):
    """Persist objects in their own committed session."""
    async def _seed(*objects):
        async with session_factory() as session:
            session.add_all(objects)
            await session.commit()
        return objects[0] if len(objects) == 1 else objects
    return _seed


@pytest.fixture
def load(session_factory):
    """Read a row back through a fresh session."""
    async def _load(model, key):
        async with session_factory() as session:
            return await session.get(model, key)
    return _load


@pytest.fixture
def make_intent():
    """Build a successful Mpesa product purchase intent; keyword arguments override fields."""
    def _make(**overrides):
        fields = dict(
            provider=PaymentProvider.MPESA.value,
            purpose=PaymentPurpose.PUBLIC_PRODUCT_PURCHASE.value,
            status=PaymentStatus.SUCCESS.value,
            user_id="user-1",
            content_product_id="product-1",
            amount=Decimal("500"),
            currency="KES",
            provider_paid_at=IN_WINDOW,
            created_at=IN_WINDOW - timedelta(minutes=5),
        )
        fields.update(overrides)
        return PaymentIntent(**fields)
    return _make


@pytest.fixture
def make_transaction():
    """Build a successful Mpesa provider transaction; keyword arguments override fields."""
    def _make(**overrides):
        fields = dict(
            provider=PaymentProvider.MPESA.value,
            provider_transaction_id="TX-1",
            reference="",
            status=ProviderTransactionStatus.SUCCESS.value,
            amount=Decimal("500"),
            currency="KES",
            paid_at=IN_WINDOW,
            raw_json="",
            first_seen_at=IN_WINDOW,
            last_seen_at=IN_WINDOW,
        )
        fields.update(overrides)
        return ProviderTransaction(**fields)
    return _make


@pytest.fixture
def an_hour_ago():
    return utcnow() - timedelta(hours=1)
