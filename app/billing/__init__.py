# Billing domain module
from app.billing.services.limit_service import limit_service
from app.billing.services.stripe_service import stripe_service
from app.billing.services.subscription_service import subscription_service

__all__ = ["limit_service", "stripe_service", "subscription_service"]
