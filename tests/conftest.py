"""Pytest configuration and fixtures."""

import pytest

from registrar.config import Settings
from registrar.database import EventDatabase
from registrar.models import FamilyContext, RetryConfig
from registrar.services.cooldown_store import CooldownStore
from registrar.services.payment_guard import PaymentGuard
from registrar.services.registration_orchestrator import RegistrationOrchestrator
from registrar.services.retry_manager import RetryManager
from tests.factories import FakeAdapter, FakeCalendar, FakeClock, FakeEmailSender


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        environment="development",
        parent1_name="Alex",
        parent1_email="alex@example.com",
        parent2_name="Sam",
        parent2_email="sam@example.com",
        emergency_contact="555-0100",
        adapter_timeout=1.0,
        max_parallel_registrations=2,
    )


@pytest.fixture
def fast_retry_config():
    return RetryConfig(max_retries=3, base_delay=0.0, max_delay=0.0, jitter=False)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return CooldownStore(cooldown_seconds=300, retention_hours=24, clock=clock)


@pytest.fixture
def retry_manager(fast_retry_config, store):
    return RetryManager(fast_retry_config, store=store)


@pytest.fixture
async def database(tmp_path):
    db = EventDatabase(tmp_path / "registrar.db")
    await db.init_db()
    return db


@pytest.fixture
def adapter():
    return FakeAdapter()


@pytest.fixture
def email_sender():
    return FakeEmailSender()


@pytest.fixture
def calendar():
    return FakeCalendar()


@pytest.fixture
def orchestrator(database, adapter, email_sender, calendar, retry_manager, test_settings):
    return RegistrationOrchestrator(
        database=database,
        adapter=adapter,
        email_sender=email_sender,
        calendar=calendar,
        retry_manager=retry_manager,
        payment_guard=PaymentGuard(),
        config=test_settings,
    )


@pytest.fixture
def family():
    return FamilyContext(parent1_name="Alex", parent2_name="Sam")
