"""
Connection lifecycle jobs: new installs and uninstalls.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import update

from app.billing.services.subscription_service import subscription_service
from app.core.database import AsyncSessionLocal
from app.models import Channel, ConnectionStatus, Organization, SlackConnection
from app.slack.schemas import LifecycleJob
from app.sync.errors import PayloadValidationError

logger = logging.getLogger(__name__)

CONNECTION_CREATED = "connection_created"
APP_UNINSTALLED = "app_uninstalled"
TOKENS_REVOKED = "tokens_revoked"

LIFECYCLE_JOB_KINDS = {CONNECTION_CREATED, APP_UNINSTALLED, TOKENS_REVOKED}


class ConnectionLifecycleProcessor:
    def __init__(self, session_factory=None):
        self.session_factory = session_factory or AsyncSessionLocal

    async def process(self, job: LifecycleJob) -> None:
        """
        Raises:
            PayloadValidationError: Unknown job kind
        """
        if job.kind == CONNECTION_CREATED:
            await self.handle_connection_created(job)
        elif job.kind in (APP_UNINSTALLED, TOKENS_REVOKED):
            await self.handle_uninstalled(job)
        else:
            raise PayloadValidationError(
                f"Unknown lifecycle job kind: {job.kind}",
                {"organization_id": job.connection_details.organization_id},
            )

    async def handle_connection_created(self, job: LifecycleJob) -> None:
        details = job.connection_details
        async with self.session_factory() as db:
            organization = await db.get(Organization, details.organization_id)
            connection = await db.get(SlackConnection, details.slack_connection_id)
            if organization is None or connection is None:
                logger.warning(
                    f"Connection {details.slack_connection_id} no longer exists, skipping"
                )
                return

            await subscription_service.handle_connection_created(
                db,
                organization,
                connection,
                idempotency_key=job.idempotency_key or connection.id,
            )
        logger.info(f"Provisioned billing for organization {details.organization_id}")

    async def handle_uninstalled(self, job: LifecycleJob) -> None:
        """Keep the rows for the audit trail; stop syncing and mark the install revoked."""
        details = job.connection_details
        now = datetime.now(timezone.utc)
        async with self.session_factory() as db:
            await db.execute(
                update(Channel)
                .where(Channel.organization_id == details.organization_id)
                .values(is_member=False, updated_at=now)
            )
            await db.execute(
                update(SlackConnection)
                .where(
                    SlackConnection.id == details.slack_connection_id,
                    SlackConnection.organization_id == details.organization_id,
                )
                .values(status=ConnectionStatus.REVOKED, updated_at=now)
            )
            await db.commit()
        logger.info(
            f"Slack connection {details.slack_connection_id} revoked ({job.kind})"
        )
