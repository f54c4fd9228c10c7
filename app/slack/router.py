import json
import logging
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.billing.services.limit_service import is_subscription_active
from app.core.config import settings
from app.core.database import get_db
from app.core.oauth_state import oauth_state_manager
from app.core.rate_limit import limiter
from app.models import ConnectionStatus, Organization, SlackConnection
from app.security.internal_auth import require_internal_token
from app.security.slack_signature import verify_slack_signature
from app.services.slack.client import SlackClient
from app.services.sqs.client import QueueTopic, sqs_client
from app.slack import views
from app.slack.events import LIFECYCLE_KINDS, SlackEventKind, classify
from app.slack.home import SlackHomeService
from app.slack.schemas import (
    LifecycleJob,
    OAuthInstallResponse,
    QueueEnvelope,
    SlackEventCallback,
    SlackOAuthResponse,
)
from app.slack.service import SlackConnectionService, is_message_eligible
from app.sync.errors import AuthenticationError, SyncError
from app.sync.lifecycle import APP_UNINSTALLED, CONNECTION_CREATED, TOKENS_REVOKED
from app.utils.retry_decorator import retry_external_api
from app.utils.token_processor import TokenProcessor, get_token_processor

logger = logging.getLogger(__name__)


router = APIRouter(prefix="/slack", tags=["slack"])

UNINSTALL_EVENT_TYPES = {APP_UNINSTALLED, TOKENS_REVOKED}
MESSAGE_KINDS = {
    SlackEventKind.MESSAGE,
    SlackEventKind.MESSAGE_CHANGED,
    SlackEventKind.MESSAGE_DELETED,
}


def oauth_redirect_uri() -> str:
    return f"{(settings.ROOT_URL or '').rstrip('/')}{settings.API_V1_PREFIX}/slack/oauth/callback"


async def verify_slack_request(request: Request) -> bytes:
    """Read the raw body and check the Slack signature; 401 on mismatch or stale timestamp."""
    body = await request.body()
    if not verify_slack_signature(
        request.headers.get("X-Slack-Signature"),
        request.headers.get("X-Slack-Request-Timestamp"),
        body,
    ):
        logger.warning("Invalid Slack request signature")
        raise HTTPException(status_code=401, detail="Invalid request signature")
    return body


async def enqueue(
    topic: QueueTopic,
    message_body: Dict[str, Any],
    dedup_key: Optional[str],
    group_key: Optional[str] = None,
) -> None:
    published = await sqs_client.publish(
        topic, message_body, dedup_key=dedup_key, group_key=group_key
    )
    if not published:
        # Slack retries non-2xx responses
        raise HTTPException(status_code=503, detail="Failed to enqueue event")


# ==================== Events API ====================


@router.post("/events")
@limiter.limit("1000/minute")
async def handle_slack_events(
    request: Request,
    db: AsyncSession = Depends(get_db),
    token_processor: TokenProcessor = Depends(get_token_processor),
):
    """
    Endpoint for handling Slack Events API subscription.

    Verifies, classifies and enqueues; the workers do the syncing.
    """
    body = await verify_slack_request(request)

    try:
        payload = SlackEventCallback.model_validate(json.loads(body))
    except (ValueError, ValidationError) as e:
        logger.error(f"Error parsing Slack event body: {e}")
        raise HTTPException(status_code=400, detail="Invalid payload")

    if payload.type == "url_verification":
        return JSONResponse({"challenge": payload.challenge})

    connections = SlackConnectionService(token_processor)
    connection = await connections.get_by_app_id(db, payload.api_app_id)
    if connection is None:
        logger.warning(f"Slack event for unknown app {payload.api_app_id}")
        raise HTTPException(status_code=404, detail="Unknown Slack app")

    event = payload.event
    event_type = event.get("type")
    details = connections.connection_details(connection)

    if event_type in UNINSTALL_EVENT_TYPES:
        job = LifecycleJob(
            kind=event_type,
            connection_details=details,
            idempotency_key=payload.event_id,
        )
        await enqueue(
            QueueTopic.CONNECTION_LIFECYCLE_EVENTS,
            job.model_dump(),
            payload.event_id,
            group_key=connection.organization_id,
        )
        logger.info(f"Queued {event_type} for organization {connection.organization_id}")
        return JSONResponse({"status": "queued"}, status_code=202)

    if connection.status == ConnectionStatus.REVOKED:
        logger.info(f"Ignoring {event_type} for revoked connection {connection.id}")
        return JSONResponse({"status": "ignored"})

    if event_type == "app_home_opened":
        try:
            await SlackHomeService(token_processor).publish_home(
                db, connection, event.get("user")
            )
        except SyncError as e:
            logger.error(f"Failed to publish home tab: {e}")
        return JSONResponse({"status": "ok"})

    kind = classify(event)
    if kind == SlackEventKind.UNKNOWN:
        logger.debug(f"Ignoring Slack event type={event_type} subtype={event.get('subtype')}")
        return JSONResponse({"status": "ignored"})

    if kind in LIFECYCLE_KINDS:
        topic = QueueTopic.CHAT_MESSAGE_EVENTS
    else:
        if kind == SlackEventKind.FILE_SHARE:
            eligible = event.get("user") != connection.bot_user_id
            topic = QueueTopic.FILE_UPLOAD_JOBS
        else:
            eligible = is_message_eligible(event, connection.bot_user_id)
            topic = QueueTopic.CHAT_MESSAGE_EVENTS
        if not eligible:
            return JSONResponse({"status": "ignored"})

        organization = await db.get(Organization, connection.organization_id)
        if not is_subscription_active(organization):
            logger.info(
                f"Subscription inactive for organization {organization.id}, not syncing"
            )
            return JSONResponse({"status": "ignored"})

    envelope = QueueEnvelope(
        event_body=payload.model_dump(),
        connection_details=details,
        idempotency_key=payload.event_id,
    )
    await enqueue(
        topic, envelope.model_dump(), payload.event_id, group_key=envelope.group_key
    )
    logger.info(f"Queued {kind.value} event {payload.event_id} on {topic.value}")
    return JSONResponse({"status": "queued"}, status_code=202)


# ==================== Interactivity ====================


@router.post("/interactivity")
@limiter.limit("100/minute")
async def handle_slack_interactivity(
    request: Request,
    db: AsyncSession = Depends(get_db),
    token_processor: TokenProcessor = Depends(get_token_processor),
):
    """
    Handle Slack interactive components (home tab buttons, modals).

    An empty 200 closes a submitted modal; a `response_action: errors` body
    keeps it open with field errors.
    """
    await verify_slack_request(request)

    form_data = await request.form()
    try:
        payload = json.loads(form_data.get("payload") or "{}")
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid payload")

    connections = SlackConnectionService(token_processor)
    connection = await connections.get_by_app_id(db, payload.get("api_app_id"))
    if connection is None:
        raise HTTPException(status_code=404, detail="Unknown Slack app")

    home = SlackHomeService(token_processor)
    payload_type = payload.get("type")
    user_id = (payload.get("user") or {}).get("id")
    logger.info(f"Received Slack interaction: type={payload_type}")

    try:
        if payload_type == "block_actions":
            await _handle_block_action(db, home, connection, payload)
        elif payload_type == "view_submission":
            view = payload.get("view") or {}
            callback_id = view.get("callback_id") or ""
            state = view.get("state") or {}

            errors = None
            if callback_id == views.ZENDESK_MODAL_CALLBACK:
                errors = await home.save_zendesk_settings(db, connection, state, user_id)
            elif callback_id.startswith(f"{views.EDIT_CHANNEL_MODAL_PREFIX}:"):
                slack_channel_id = callback_id.split(":", 1)[1]
                errors = await home.save_channel_settings(
                    db, connection, slack_channel_id, state, user_id
                )
            if errors:
                return JSONResponse(errors)
        elif payload_type == "view_closed" and user_id:
            await home.publish_home(db, connection, user_id)
    except SyncError as e:
        logger.error(f"Error handling Slack interaction {payload_type}: {e}")
        return Response(content="There was an issue", status_code=500)

    return Response(status_code=200)


async def _handle_block_action(
    db: AsyncSession,
    home: SlackHomeService,
    connection: SlackConnection,
    payload: Dict[str, Any],
) -> None:
    actions = payload.get("actions") or []
    action_id = actions[0].get("action_id") if actions else None
    trigger_id = payload.get("trigger_id")
    if not action_id or not trigger_id:
        return

    if action_id == views.CONFIGURE_ZENDESK_ACTION:
        await home.open_zendesk_modal(db, connection, trigger_id)
    elif action_id.startswith(f"{views.EDIT_CHANNEL_ACTION_PREFIX}:"):
        await home.open_channel_modal(
            db, connection, trigger_id, action_id.split(":", 1)[1]
        )
    elif action_id == views.OPEN_ACCOUNT_SETTINGS_ACTION:
        await home.open_account_modal(db, connection, trigger_id)
    else:
        logger.debug(f"Unhandled Slack action {action_id}")


# ==================== OAuth ====================


@router.get(
    "/oauth/install",
    response_model=OAuthInstallResponse,
    dependencies=[Depends(require_internal_token)],
)
async def initiate_slack_install(
    organization_id: Optional[str] = Query(None),
    created_by: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """
    Issue a single-use OAuth state and return the Slack authorize URL.

    Security:
        - Requires X-Internal-Token (called by the dashboard, never by browsers directly)
        - State is stored server side and expires after OAUTH_STATE_TTL_SECONDS
    """
    if not settings.SLACK_CLIENT_ID:
        raise HTTPException(status_code=503, detail="Slack OAuth not configured")

    state = await oauth_state_manager.issue_state(
        db, organization_id=organization_id, created_by=created_by
    )
    query = urlencode(
        {
            "client_id": settings.SLACK_CLIENT_ID,
            "scope": settings.SLACK_OAUTH_SCOPES,
            "redirect_uri": oauth_redirect_uri(),
            "state": state,
        }
    )
    return OAuthInstallResponse(
        authorize_url=f"{settings.SLACK_OAUTH_AUTHORIZE_URL}?{query}", state=state
    )


@router.get("/oauth/callback")
async def slack_oauth_callback(
    code: Optional[str] = None,
    error: Optional[str] = None,
    state: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    token_processor: TokenProcessor = Depends(get_token_processor),
):
    """
    OAuth 2.0 callback endpoint - handles Slack app installation
    """
    if error:
        logger.error(f"OAuth error from Slack: {error}")
        return JSONResponse(
            status_code=400,
            content={"error": error, "message": "Installation was cancelled or failed"},
        )

    if not code:
        logger.error("No authorization code received")
        raise HTTPException(status_code=400, detail="Missing authorization code")

    try:
        oauth_state = await oauth_state_manager.validate_and_consume_state(db, state)
    except AuthenticationError as e:
        raise HTTPException(status_code=400, detail=e.message)

    try:
        async for attempt in retry_external_api("slack_oauth"):
            with attempt:
                body = await SlackClient().oauth_access(code, oauth_redirect_uri())
        oauth = SlackOAuthResponse.model_validate(body)
        team = await SlackClient(token=oauth.access_token).team_info()
    except SyncError as e:
        logger.error(f"Slack OAuth exchange failed: {e}")
        raise HTTPException(status_code=502, detail="Slack OAuth exchange failed")
    except ValidationError as e:
        logger.error(f"Unexpected Slack OAuth response: {e.error_count()} error(s)")
        raise HTTPException(status_code=502, detail="Slack OAuth exchange failed")

    connections = SlackConnectionService(token_processor)
    try:
        connection, created = await connections.store_installation(
            db, oauth, team, organization_id=oauth_state.organization_id
        )
    except SyncError as e:
        logger.warning(f"Slack installation rejected: {e}")
        raise HTTPException(status_code=e.status_code, detail=e.message)

    if created:
        job = LifecycleJob(
            kind=CONNECTION_CREATED,
            connection_details=connections.connection_details(connection),
            idempotency_key=connection.id,
        )
        published = await sqs_client.publish(
            QueueTopic.CONNECTION_LIFECYCLE_EVENTS,
            job.model_dump(),
            dedup_key=connection.id,
            group_key=connection.organization_id,
        )
        if not published:
            logger.error(f"Failed to queue connection_created for {connection.id}")

    logger.info(
        f"Slack installation complete for team {connection.slack_team_id} "
        f"(organization {connection.organization_id}, created={created})"
    )
    return HTMLResponse(
        views.OAUTH_SUCCESS_HTML.format(
            team_id=connection.slack_team_id, app_id=connection.app_id
        )
    )
