import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.rate_limit import limiter
from app.sync.errors import SyncError
from app.utils.token_processor import TokenProcessor, get_token_processor
from app.zendesk.schemas import ZendeskTicketEvent
from app.zendesk.service import RelayOutcome, ZendeskEventService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/zendesk", tags=["zendesk"])


@router.post("/events")
@limiter.limit("100/minute")
async def handle_zendesk_event(
    request: Request,
    authorization: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
    token_processor: TokenProcessor = Depends(get_token_processor),
):
    """
    Ticket update webhook installed by the Zensync Zendesk trigger.

    Authenticated by the per-connection bearer token; relays the agent's
    public comment into the Slack thread of the ticket's conversation.
    """
    try:
        event = ZendeskTicketEvent.model_validate(await request.json())
    except (ValueError, ValidationError) as e:
        logger.warning(f"Invalid Zendesk webhook payload: {e}")
        raise HTTPException(status_code=400, detail="Invalid payload")

    service = ZendeskEventService(token_processor)
    try:
        outcome = await service.handle_ticket_event(db, event, authorization)
    except SyncError as e:
        logger.warning(f"Zendesk event for ticket {event.ticket_id} rejected: {e}")
        raise HTTPException(status_code=e.status_code, detail=e.message)

    if outcome == RelayOutcome.NOT_FOUND:
        raise HTTPException(status_code=404, detail="Conversation not found")

    status_code = 202 if outcome in (RelayOutcome.RELAYED, RelayOutcome.UNDELIVERED) else 200
    return JSONResponse({"status": outcome.value}, status_code=status_code)
