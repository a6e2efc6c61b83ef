import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from registrar.config import settings as app_settings
from registrar.routers import registrations
from registrar.services.registration_orchestrator import RegistrationOrchestrator

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler()]
)

logger = logging.getLogger(__name__)


async def retry_history_sweep_task(orchestrator: RegistrationOrchestrator, interval_seconds: float):
    """
    Background task that drops old retry history records.
    Records older than the configured retention (24 hours by default) are removed.
    """
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            removed = orchestrator.retry_manager.cleanup_history()
            if removed:
                logger.info(f"Retry history sweep removed {removed} records")
        except asyncio.CancelledError:
            logger.info("Retry history sweep task cancelled")
            break
        except Exception as e:
            logger.error(f"Error in retry history sweep task: {e}")


def create_app(orchestrator: RegistrationOrchestrator) -> FastAPI:
    """
    Build the internal admin API around an already wired orchestrator.

    The orchestrator's collaborators (site adapter, email, calendar) are
    supplied by the embedding application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await orchestrator.database.init_db()

        sweep_task = asyncio.create_task(
            retry_history_sweep_task(orchestrator, app_settings.retry_history_sweep_interval)
        )
        logger.info("Started retry history sweep task")

        yield

        sweep_task.cancel()
        try:
            await sweep_task
        except asyncio.CancelledError:
            pass
        await orchestrator.close()

    app = FastAPI(title="Registrar", version="0.1.0", lifespan=lifespan)
    app.state.orchestrator = orchestrator
    app.include_router(registrations.router, prefix="/api", tags=["registrations"])
    return app
