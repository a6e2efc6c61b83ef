from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from registrar.database import EventNotFoundError
from registrar.models import RegistrationResult
from registrar.services.registration_orchestrator import RegistrationOrchestrator

router = APIRouter()


class RegistrationRequest(BaseModel):
    """Request body for triggering registration of an approved event."""
    approval_id: str = Field(..., min_length=1, max_length=100, description="Approval correlation id")
    channel: str = Field(default="email_reply", max_length=50, description="Channel the approval came from")


def get_orchestrator(request: Request) -> RegistrationOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Registration orchestrator not configured")
    return orchestrator


@router.post("/registrations/sweep")
async def sweep_approved_events(request: Request):
    """Process every approved event"""
    results = await get_orchestrator(request).process_approved_events()
    return {
        "processed": len(results),
        "registered": sum(1 for r in results if r.success),
        "results": results,
    }


@router.get("/registrations/stats")
async def get_registration_stats(request: Request):
    """Retry and payment guard statistics"""
    return get_orchestrator(request).get_retry_statistics()


@router.post("/registrations/{event_id}", response_model=RegistrationResult)
async def register_event(event_id: str, body: RegistrationRequest, request: Request):
    """Register an approved event, falling back to manual registration"""
    orchestrator = get_orchestrator(request)
    try:
        return await orchestrator.process_auto_registration(
            event_id, body.approval_id, channel=body.channel
        )
    except EventNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/registrations/{event_id}/cooldown")
async def get_event_cooldown(event_id: str, request: Request):
    """Whether a fresh attempt sequence may start for an event"""
    store = get_orchestrator(request).retry_manager.store
    record = store.get(event_id)
    return {
        "event_id": event_id,
        "should_retry": store.should_retry_event(event_id),
        "cooldown_remaining": store.cooldown_remaining(event_id),
        "last_outcome": record.to_dict() if record else None,
    }
