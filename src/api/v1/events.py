from fastapi import APIRouter

from src.core.dependencies import DB, AdminPrincipal, Notifier
from src.schemas.event import DispatchResponse
from src.services import events as event_service

router = APIRouter(prefix="/events", tags=["Events"])


@router.post("/dispatch", response_model=DispatchResponse)
async def dispatch_events(db: DB, admin: AdminPrincipal, sink: Notifier):
    return await event_service.dispatch_pending_events(db, sink)
