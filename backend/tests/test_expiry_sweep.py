"""Daily subscription expiry job."""
import pytest
from datetime import datetime, timedelta, timezone

from job_runner import run_subscription_expiry_sweep, JOB_RUNNERS


@pytest.mark.asyncio
async def test_only_lapsed_active_subscriptions_expire(memory_db, user_factory):
    now = datetime.now(timezone.utc)
    lapsed = user_factory(tier="growth", expiry_date=now - timedelta(hours=1),
                          email="a@example.com", phone_number="6201")
    current = user_factory(tier="pro", expiry_date=now + timedelta(days=30),
                           email="b@example.com", phone_number="6202")
    lifetime = user_factory(tier="pioneer", expiry_date=None,
                            email="c@example.com", phone_number="6203")
    canceled = user_factory(tier="growth", status="canceled", expiry_date=now - timedelta(days=3),
                            email="d@example.com", phone_number="6204")
    memory_db.users.docs.extend([lapsed, current, lifetime, canceled])

    result = await run_subscription_expiry_sweep()

    assert result["count"] == 1
    statuses = {u["email"]: u["subscription"]["status"] for u in memory_db.users.docs}
    assert statuses == {
        "a@example.com": "expired",
        "b@example.com": "active",
        "c@example.com": "active",
        "d@example.com": "canceled",
    }
    assert memory_db.actions() == ["SUBSCRIPTION_EXPIRED"]


@pytest.mark.asyncio
async def test_sweep_is_repeatable(memory_db, user_factory):
    past = datetime.now(timezone.utc) - timedelta(days=1)
    memory_db.users.docs.append(user_factory(tier="pro", expiry_date=past))

    assert (await run_subscription_expiry_sweep())["count"] == 1
    assert (await run_subscription_expiry_sweep())["count"] == 0


def test_job_registry_names():
    assert set(JOB_RUNNERS) == {"stock_import", "news_import", "faq_import", "wiki_import", "subscription_expiry"}
