# Central API router include file
from fastapi import APIRouter

# Import domain routers
from app.slack.router import router as slack_router
from app.zendesk.router import router as zendesk_router
from app.billing.webhooks import router as billing_webhook_router
from app.connections.router import router as connections_router

# Create main API router
api_router = APIRouter()

# Webhooks (called by Slack, Zendesk and Stripe directly)
api_router.include_router(slack_router)
api_router.include_router(zendesk_router)
api_router.include_router(billing_webhook_router)

# Internal endpoints (dashboard)
api_router.include_router(connections_router)
