"""
Pytest configuration and fixtures.

Services run against an in-memory SQLite database and a fakeredis server, so
the whole stack (routing, orchestration, ledger, reconciliation) is exercised
without external services.
"""
import random
import uuid
from typing import Any, AsyncGenerator, Dict

import fakeredis
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from payment_orchestrator.cache import RedisCache
from payment_orchestrator.config import Settings
from payment_orchestrator.core.enums import TransactionStatus, TransactionType
from payment_orchestrator.database import Transaction, close_db, create_session_factory, init_db
from payment_orchestrator.database.models import PaymentProvider
from payment_orchestrator.fx import StaticRateProvider
from payment_orchestrator.providers import InMemoryStateStore, default_registry
from payment_orchestrator.services import Services, build_services

MERCHANT_ID = "merchant_test"
SUCCESS_CARD = "4242424242424242"


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite:///:memory:",
        redis_url="redis://localhost:6379/15",
        app_name="payment-orchestrator-test",
        app_env="test",
        log_level="DEBUG",
        debug=True,
        provider_simulate_latency_ms=0,
        provider_failure_rate=0.0,
        provider_call_timeout_seconds=5.0,
        fx_provider_api_key="",
    )


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, Any]:
    """Create test database engine with a fresh schema."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await init_db(engine)
    yield engine
    await close_db(engine)


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest_asyncio.fixture
async def cache() -> AsyncGenerator[RedisCache, Any]:
    """Cache backed by an isolated fakeredis server."""
    client = fakeredis.FakeAsyncRedis(decode_responses=True)
    cache = RedisCache(client, key_prefix="test:")
    yield cache
    await client.flushall()
    await cache.close()


@pytest.fixture
def state_store() -> InMemoryStateStore:
    return InMemoryStateStore()


@pytest.fixture
def services(
    test_settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    cache: RedisCache,
    state_store: InMemoryStateStore,
) -> Services:
    """All services wired against the test database and cache."""
    return build_services(
        test_settings,
        session_factory,
        cache,
        registry=default_registry(state_store),
        fx_providers=[StaticRateProvider()],
        rng=random.Random(42),
    )


@pytest_asyncio.fixture
async def seeded_providers(services: Services) -> Dict[str, PaymentProvider]:
    """Stripe (priority 1) and PayPal (priority 2) enabled for the test merchant."""
    stripe = await services.provider_service.upsert_provider(
        code="stripe",
        name="Stripe",
        supported_currencies=["USD", "EUR", "GBP", "SGD", "JPY"],
        supported_methods=["CARD", "DIGITAL_WALLET"],
        cost_per_transaction=0.029,
        config={"webhook_secret": "whsec_test"},
    )
    paypal = await services.provider_service.upsert_provider(
        code="paypal",
        name="PayPal",
        supported_currencies=["USD", "EUR", "GBP"],
        supported_methods=["CARD", "DIGITAL_WALLET"],
        cost_per_transaction=0.034,
        config={"webhook_secret": "paypal_secret"},
    )
    await services.provider_service.configure_merchant_provider(MERCHANT_ID, stripe.id, priority=1)
    await services.provider_service.configure_merchant_provider(MERCHANT_ID, paypal.id, priority=2)
    return {"stripe": stripe, "paypal": paypal}


@pytest.fixture
def card_payment_method() -> Dict[str, Any]:
    """Sample card payment method."""
    return {
        "type": "CARD",
        "card_number": SUCCESS_CARD,
        "expiry_month": 12,
        "expiry_year": 2030,
        "cvv": "123",
        "card_brand": "visa",
        "country": "US",
    }


@pytest.fixture
def sample_payment_data(card_payment_method: Dict[str, Any]) -> Dict[str, Any]:
    """Sample payment request data."""
    return {
        "merchant_id": MERCHANT_ID,
        "amount": 1000,
        "currency": "USD",
        "payment_method": card_payment_method,
        "customer_id": "cust_123",
        "metadata": {"order_id": "test_order_123"},
    }


async def insert_transaction(
    session_factory: async_sessionmaker[AsyncSession], **fields: Any
) -> Transaction:
    """Insert a transaction row directly, bypassing the orchestrator."""
    values: Dict[str, Any] = {
        "id": uuid.uuid4(),
        "merchant_id": MERCHANT_ID,
        "type": TransactionType.PAYMENT.value,
        "status": TransactionStatus.COMPLETED.value,
        "amount": 1000,
        "currency": "USD",
        "payment_method_type": "CARD",
        "metadata_": {},
        "provider_attempts": [],
    }
    values.update(fields)
    transaction = Transaction(**values)
    async with session_factory() as db:
        db.add(transaction)
        await db.commit()
    return transaction
