"""
Pydantic models for billing jobs.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel


def _field(obj: Any, name: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


class SubscriptionChangedJob(BaseModel):
    """
    Body of a billing-events message, distilled from a Stripe
    customer.subscription.updated / .deleted event.

    Timestamps are unix seconds as Stripe sends them.
    """

    event_id: str
    event_type: str
    created: int
    subscription_id: str
    customer_id: Optional[str] = None
    product_id: Optional[str] = None
    current_period_start: Optional[int] = None
    current_period_end: Optional[int] = None
    canceled_at: Optional[int] = None

    @classmethod
    def from_stripe_event(cls, event: Any) -> "SubscriptionChangedJob":
        subscription = event["data"]["object"]
        items = (_field(subscription, "items") or {})
        item_list = _field(items, "data") or []
        first_item: Dict[str, Any] = item_list[0] if item_list else {}
        price = _field(first_item, "price") or {}
        product = _field(price, "product")
        if product is not None and not isinstance(product, str):
            product = _field(product, "id")

        customer = _field(subscription, "customer")
        if customer is not None and not isinstance(customer, str):
            customer = _field(customer, "id")

        # Newer Stripe API versions moved the billing period onto the items
        period_start = _field(subscription, "current_period_start") or _field(
            first_item, "current_period_start"
        )
        period_end = _field(subscription, "current_period_end") or _field(
            first_item, "current_period_end"
        )

        return cls(
            event_id=event["id"],
            event_type=event["type"],
            created=event["created"],
            subscription_id=_field(subscription, "id"),
            customer_id=customer,
            product_id=product,
            current_period_start=period_start,
            current_period_end=period_end,
            canceled_at=_field(subscription, "canceled_at"),
        )
