"""
FastAPI router for the dashboard's connection endpoints.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.security.internal_auth import require_internal_token
from app.sync.errors import SyncError
from app.utils.token_processor import TokenProcessor, get_token_processor
from app.zendesk.schemas import ZendeskConnectionPublic, ZendeskCredentialsUpdate

from .schemas import OrganizationConnectionsResponse
from .service import ConnectionsService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/organizations/{organization_id}/connections",
    tags=["connections"],
    dependencies=[Depends(require_internal_token)],
)


@router.get("", response_model=OrganizationConnectionsResponse)
async def get_connections(
    organization_id: str,
    db: AsyncSession = Depends(get_db),
    token_processor: TokenProcessor = Depends(get_token_processor),
):
    """
    Get the Slack and Zendesk connections of an organization.

    **Auth:** X-Internal-Token

    **Response:** Public connection data plus plan usage; never tokens or keys
    """
    service = ConnectionsService(db, token_processor)
    result = await service.get_connections(organization_id)
    if result is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Organization not found"
        )
    return result


@router.put("/zendesk", response_model=ZendeskConnectionPublic)
async def update_zendesk_connection(
    organization_id: str,
    update: ZendeskCredentialsUpdate,
    db: AsyncSession = Depends(get_db),
    token_processor: TokenProcessor = Depends(get_token_processor),
):
    """
    Save Zendesk credentials and (re)create the webhook and trigger.

    **Auth:** X-Internal-Token

    **Response:** The stored connection (API key omitted)
    """
    service = ConnectionsService(db, token_processor)
    try:
        result = await service.update_zendesk(organization_id, update)
    except SyncError as e:
        logger.warning(
            f"Zendesk credentials rejected for organization {organization_id}: {e}"
        )
        raise HTTPException(status_code=e.status_code, detail=e.message)

    if result is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Organization not found"
        )
    return result
