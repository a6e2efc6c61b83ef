"""Tests for the site adapter base class."""

import pytest

from registrar.models import FamilyContext, SiteAdapterResult
from registrar.services.site_adapter import SiteAdapter
from tests.factories import FakeAdapter, make_event


class NoSessionAdapter(SiteAdapter):
    async def register(self, event, family, session):
        return SiteAdapterResult(success=True, confirmation_number=f"{event.id}-{session}")


class TestAttemptRegistration:
    """Tests for SiteAdapter.attempt_registration."""

    @pytest.mark.asyncio
    async def test_session_released_on_success(self, family):
        adapter = FakeAdapter()

        result = await adapter.attempt_registration(make_event(), family)

        assert result.success
        assert adapter.sessions_acquired == 1
        assert adapter.sessions_released == 1

    @pytest.mark.asyncio
    async def test_session_released_when_register_raises(self, family):
        adapter = FakeAdapter([RuntimeError("page crash")])

        with pytest.raises(RuntimeError, match="page crash"):
            await adapter.attempt_registration(make_event(), family)

        assert adapter.sessions_released == 1

    @pytest.mark.asyncio
    async def test_release_failure_does_not_mask_result(self, family):
        adapter = FakeAdapter()

        async def broken_release(session):
            raise RuntimeError("browser already closed")

        adapter.release_session = broken_release

        result = await adapter.attempt_registration(make_event(), family)

        assert result.confirmation_number == "CONF-1"

    @pytest.mark.asyncio
    async def test_default_session_hooks(self):
        adapter = NoSessionAdapter()

        result = await adapter.attempt_registration(
            make_event("evt-9"), FamilyContext(parent1_name="A", parent2_name="B")
        )

        assert adapter.name == "NoSessionAdapter"
        assert result.confirmation_number == "evt-9-None"
        await adapter.close()
