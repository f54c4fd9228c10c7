"""
Unit tests for turning Stripe events into billing jobs.
"""

from app.billing.schemas import SubscriptionChangedJob


def stripe_event(subscription):
    return {
        "id": "evt_1",
        "type": "customer.subscription.updated",
        "created": 1_717_000_000,
        "data": {"object": subscription},
    }


def test_from_stripe_event():
    job = SubscriptionChangedJob.from_stripe_event(
        stripe_event(
            {
                "id": "sub_1",
                "customer": "cus_1",
                "current_period_start": 1_717_000_000,
                "current_period_end": 1_719_600_000,
                "canceled_at": None,
                "items": {"data": [{"price": {"product": "prod_1"}}]},
            }
        )
    )

    assert job.event_id == "evt_1"
    assert job.subscription_id == "sub_1"
    assert job.customer_id == "cus_1"
    assert job.product_id == "prod_1"
    assert job.current_period_end == 1_719_600_000


def test_period_on_items_and_expanded_objects():
    job = SubscriptionChangedJob.from_stripe_event(
        stripe_event(
            {
                "id": "sub_1",
                "customer": {"id": "cus_1"},
                "items": {
                    "data": [
                        {
                            "price": {"product": {"id": "prod_1"}},
                            "current_period_start": 10,
                            "current_period_end": 20,
                        }
                    ]
                },
            }
        )
    )

    assert job.customer_id == "cus_1"
    assert job.product_id == "prod_1"
    assert job.current_period_start == 10
    assert job.current_period_end == 20
