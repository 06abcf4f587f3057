"""
Shared job runner for scheduled background jobs.
Used by server (scheduler) and admin (manual run).
Each run_* returns a dict with "message" (and optionally "count") for the admin UI.
"""
import logging

logger = logging.getLogger(__name__)


async def _run_dataset_import(dataset: str):
    from services.stock_import import run_import
    result = await run_import(dataset)
    logger.info(f"{dataset} import job completed: {result}")
    return {
        "message": f"{dataset.capitalize()} imported: {result['success']}/{result['total']} ({result['errors']} errors)",
        "count": result["success"],
        "result": result,
    }


async def run_stock_import():
    try:
        return await _run_dataset_import("stocks")
    except Exception as e:
        logger.error(f"Stock import job failed: {e}")
        raise


async def run_news_import():
    try:
        return await _run_dataset_import("news")
    except Exception as e:
        logger.error(f"News import job failed: {e}")
        raise


async def run_faq_import():
    try:
        return await _run_dataset_import("faqs")
    except Exception as e:
        logger.error(f"FAQ import job failed: {e}")
        raise


async def run_wiki_import():
    try:
        return await _run_dataset_import("wikis")
    except Exception as e:
        logger.error(f"Wiki import job failed: {e}")
        raise


async def run_subscription_expiry_sweep():
    """Mark active subscriptions whose expiry_date has passed as expired."""
    try:
        from database import database
        from models import AuditAction, SubscriptionStatus, utc_now
        from utils.audit import create_audit_log

        db = database.get_db()
        now = utc_now()
        query = {
            "subscription.status": SubscriptionStatus.ACTIVE.value,
            "subscription.expiry_date": {"$ne": None, "$lte": now},
        }
        expired = await db.users.find(
            query, {"_id": 0, "user_id": 1, "subscription.tier": 1}
        ).to_list(length=None)

        count = 0
        for user in expired:
            result = await db.users.update_one(
                {"user_id": user["user_id"], **query},
                {"$set": {"subscription.status": SubscriptionStatus.EXPIRED.value, "updated_at": now}},
            )
            if result.modified_count:
                count += 1
                await create_audit_log(
                    action=AuditAction.SUBSCRIPTION_EXPIRED,
                    user_id=user["user_id"],
                    resource_type="user",
                    resource_id=user["user_id"],
                    metadata={"tier": user.get("subscription", {}).get("tier")},
                )

        logger.info(f"Subscription expiry sweep completed: {count} subscriptions expired")
        return {"message": f"Subscriptions expired: {count}", "count": count}
    except Exception as e:
        logger.error(f"Subscription expiry sweep failed: {e}")
        raise


JOB_RUNNERS = {
    "stock_import": run_stock_import,
    "news_import": run_news_import,
    "faq_import": run_faq_import,
    "wiki_import": run_wiki_import,
    "subscription_expiry": run_subscription_expiry_sweep,
}
