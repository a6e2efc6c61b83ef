"""
Contract between the orchestrator and site-specific registration adapters.

An adapter fills in one site's registration form. It owns a scarce automation
resource per attempt (a browser page, an HTTP session); ``SiteAdapter``
acquires it before ``register`` runs and releases it on every exit path.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

from registrar.models import Event, FamilyContext, SiteAdapterResult

logger = logging.getLogger(__name__)


class SiteAdapter(ABC):
    """
    Base class for registration adapters.

    Subclasses implement ``register`` and, when they hold a resource per
    attempt, ``acquire_session`` / ``release_session``. Adapters are
    adapter-agnostic from the orchestrator's point of view: it only calls
    ``attempt_registration`` and ``close``.
    """

    def __init__(self, name: str | None = None):
        self.name = name or type(self).__name__

    async def attempt_registration(
        self,
        event: Event,
        family: FamilyContext,
    ) -> SiteAdapterResult:
        """
        Run one registration attempt with guaranteed resource cleanup.

        Exceptions from ``register`` propagate to the caller so they can be
        classified; the session is released first.
        """
        session = await self.acquire_session()
        try:
            logger.info(f"Starting registration attempt with {self.name} for: {event.title}")
            return await self.register(event, family, session)
        finally:
            try:
                await self.release_session(session)
            except Exception as e:
                logger.warning(f"{self.name} failed to release session: {e}")

    async def acquire_session(self) -> Any:
        """Acquire the per-attempt automation resource."""
        return None

    async def release_session(self, session: Any) -> None:
        """Release the resource returned by ``acquire_session``."""
        return None

    @abstractmethod
    async def register(
        self,
        event: Event,
        family: FamilyContext,
        session: Any,
    ) -> SiteAdapterResult:
        """Fill and submit the registration form for one event."""

    async def close(self) -> None:
        """Release long-lived resources (e.g. the browser)."""
        return None
