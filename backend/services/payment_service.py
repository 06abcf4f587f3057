"""Payment Service - Order creation and gateway reconciliation.

This service handles:
- Opening a Midtrans Snap checkout for a purchasable tier
- Webhook notifications (signature check, then re-fetch status from Midtrans)
- Manual verification outside production
- Payment history and the challenged-payment review queue

Key Principles:
1. Signature verification is the only trust boundary for notifications
2. Midtrans' status API is the source of truth, never the webhook body
3. Webhook and manual verification share ONE decision table (reconcile)
4. Idempotent: a redelivered success never re-extends a subscription
5. Tier is inferred from the settled amount, not from the order row
"""
import logging
from enum import Enum
from typing import Dict, Any, Optional, List

from pymongo.errors import DuplicateKeyError

from database import database
from models import (
    AuditAction, Transaction, TransactionStatus, SubscriptionStatus, utc_now,
)
from services.tier_catalog import (
    resolve_tier, is_purchasable, TIER_PRICES, tier_for_amount, subscription_expiry,
)
from services.order_ids import build_order_id, parse_order_user_id, InvalidOrderIdError
from services.midtrans_gateway import midtrans_gateway, MidtransGateway, PaymentGatewayError
from utils.audit import create_audit_log

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 100

__all__ = [
    "PaymentService", "payment_service", "ReconcileOutcome",
    "InvalidTierError", "InvalidSignatureError", "OrderNotFoundError",
    "DuplicateOrderError", "InvalidOrderIdError", "PaymentGatewayError",
]


class InvalidTierError(ValueError):
    """Requested tier is unknown or not purchasable."""


class InvalidSignatureError(Exception):
    """Notification signature_key did not match."""


class OrderNotFoundError(Exception):
    """No order with this id for this user."""


class DuplicateOrderError(Exception):
    """order_id collided with an existing order (unique index)."""


class ReconcileOutcome(str, Enum):
    SUCCESS = "success"
    CHALLENGE = "challenge"
    FAILED = "failed"
    PENDING = "pending"
    IGNORED = "ignored"


# Manual verification response per outcome: (status, message)
VERIFY_RESPONSES = {
    ReconcileOutcome.SUCCESS: ("success", "Payment verified"),
    ReconcileOutcome.CHALLENGE: ("pending", "Payment challenged"),
    ReconcileOutcome.PENDING: ("pending", "Payment pending"),
    ReconcileOutcome.FAILED: ("failed", "Payment failed or expired"),
    ReconcileOutcome.IGNORED: ("pending", "Payment status not final"),
}

FAILED_STATUSES = frozenset({"cancel", "deny", "expire"})


def _item_name(tier_value: str) -> str:
    return f"FlexBit {tier_value.replace('_', ' ').upper()} Subscription"


class PaymentService:
    """Midtrans order lifecycle service."""

    def __init__(self, gateway: Optional[MidtransGateway] = None):
        self.gateway = gateway or midtrans_gateway

    # =========================================================================
    # Order creation
    # =========================================================================

    async def create_order(self, user: Dict[str, Any], tier: str) -> Dict[str, Any]:
        """
        Open a checkout session and record a new pending order.

        Any earlier pending order of the user is marked failed first, so a
        user has at most one pending order. Nothing is written if the gateway
        call fails.

        Returns:
            Dict with token, redirect_url and order_id
        """
        resolved = resolve_tier(tier)
        if resolved is None or not is_purchasable(resolved):
            raise InvalidTierError(f"Invalid tier: {tier}")

        price = TIER_PRICES[resolved]
        user_id = user["user_id"]
        order_id = build_order_id(user_id)

        params = {
            "transaction_details": {
                "order_id": order_id,
                "gross_amount": price,
            },
            "customer_details": {
                "first_name": user.get("full_name"),
                "email": user.get("email"),
                "phone": user.get("phone_number"),
            },
            "item_details": [{
                "id": resolved.value,
                "price": price,
                "quantity": 1,
                "name": _item_name(resolved.value),
            }],
        }

        session = await self.gateway.create_transaction(params)

        db = database.get_db()
        now = utc_now()

        invalidated = await db.transactions.update_many(
            {"user_id": user_id, "status": TransactionStatus.PENDING.value},
            {"$set": {"status": TransactionStatus.FAILED.value, "updated_at": now}},
        )
        if invalidated.modified_count:
            logger.info(
                "PAYMENT_PENDING_INVALIDATED user_id=%s count=%s",
                user_id, invalidated.modified_count,
            )

        order = Transaction(
            order_id=order_id,
            user_id=user_id,
            tier=resolved,
            amount=price,
            snap_token=session["token"],
            created_at=now,
            updated_at=now,
        )
        try:
            await db.transactions.insert_one(order.model_dump())
        except DuplicateKeyError as e:
            logger.error("PAYMENT_ORDER_DUPLICATE order_id=%s", order_id)
            raise DuplicateOrderError(order_id) from e

        logger.info(
            "PAYMENT_ORDER_CREATED order_id=%s user_id=%s tier=%s amount=%s",
            order_id, user_id, resolved.value, price,
        )
        await create_audit_log(
            action=AuditAction.PAYMENT_ORDER_CREATED,
            actor_role=user.get("role"),
            actor_id=user_id,
            user_id=user_id,
            resource_type="transaction",
            resource_id=order_id,
            metadata={"tier": resolved.value, "amount": price},
        )

        return {
            "token": session["token"],
            "redirect_url": session.get("redirect_url"),
            "order_id": order_id,
        }

    # =========================================================================
    # Webhook notification
    # =========================================================================

    async def handle_notification(self, notification: Dict[str, Any]) -> ReconcileOutcome:
        """
        Process a Midtrans HTTP notification.

        Raises:
            InvalidSignatureError: signature_key mismatch, nothing touched
            InvalidOrderIdError: order_id not in "<prefix>-<userId>-<millis>" form
            PaymentGatewayError: status re-fetch failed (caller answers 500 so Midtrans retries)
        """
        order_id = str(notification.get("order_id") or "")

        if not self.gateway.verify_signature(notification):
            logger.error("PAYMENT_SIGNATURE_REJECTED order_id=%s", order_id)
            await create_audit_log(
                action=AuditAction.PAYMENT_SIGNATURE_REJECTED,
                resource_type="transaction",
                resource_id=order_id or None,
                metadata={"status_code": str(notification.get("status_code", ""))},
            )
            raise InvalidSignatureError(order_id)

        hinted_user_id = parse_order_user_id(order_id)

        status_response = await self.gateway.get_status(order_id)
        logger.info(
            "PAYMENT_NOTIFICATION_RECEIVED order_id=%s user_hint=%s transaction_status=%s fraud_status=%s",
            order_id, hinted_user_id,
            status_response.get("transaction_status"), status_response.get("fraud_status"),
        )
        return await self.reconcile(order_id, status_response)

    # =========================================================================
    # Decision table (shared by webhook and manual verification)
    # =========================================================================

    async def reconcile(self, order_id: str, status_response: Dict[str, Any]) -> ReconcileOutcome:
        transaction_status = status_response.get("transaction_status")
        fraud_status = status_response.get("fraud_status")
        gross_amount = status_response.get("gross_amount")

        if transaction_status == "capture":
            if fraud_status == "accept":
                await self._apply_success(order_id, gross_amount)
                return ReconcileOutcome.SUCCESS
            if fraud_status == "challenge":
                await self._mark_challenge(order_id, gross_amount)
                return ReconcileOutcome.CHALLENGE
            logger.warning(
                "PAYMENT_CAPTURE_UNHANDLED order_id=%s fraud_status=%s", order_id, fraud_status
            )
            return ReconcileOutcome.IGNORED

        if transaction_status == "settlement":
            await self._apply_success(order_id, gross_amount)
            return ReconcileOutcome.SUCCESS

        if transaction_status in FAILED_STATUSES:
            await self._mark_failed(order_id, transaction_status)
            return ReconcileOutcome.FAILED

        if transaction_status == "pending":
            return ReconcileOutcome.PENDING

        logger.info(
            "PAYMENT_STATUS_IGNORED order_id=%s transaction_status=%s", order_id, transaction_status
        )
        return ReconcileOutcome.IGNORED

    async def _apply_success(self, order_id: str, gross_amount: Any) -> None:
        """
        Mark the order success and grant the paid tier to the order's owner.

        The subscription is only written by the call that moves the order to
        success. An order that was already success is left alone, and the
        user update also skips when subscription.payment_id already points
        at this order.
        """
        db = database.get_db()
        now = utc_now()

        order = await db.transactions.find_one({"order_id": order_id}, {"_id": 0})
        if not order:
            logger.error("PAYMENT_ORDER_UNKNOWN order_id=%s - subscription update skipped", order_id)
            return

        result = await db.transactions.update_one(
            {"order_id": order_id, "status": {"$ne": TransactionStatus.SUCCESS.value}},
            {"$set": {"status": TransactionStatus.SUCCESS.value, "updated_at": now}},
        )
        if not result.modified_count:
            logger.info("PAYMENT_ALREADY_SUCCEEDED order_id=%s - subscription update skipped", order_id)
            return

        logger.info("PAYMENT_SUCCEEDED order_id=%s previous_status=%s", order_id, order.get("status"))
        await create_audit_log(
            action=AuditAction.PAYMENT_SUCCEEDED,
            user_id=order.get("user_id"),
            resource_type="transaction",
            resource_id=order_id,
            before_state={"status": order.get("status")},
            after_state={"status": TransactionStatus.SUCCESS.value},
            metadata={"gross_amount": str(gross_amount)},
        )

        tier = tier_for_amount(gross_amount)
        if tier is None:
            logger.error(
                "PAYMENT_AMOUNT_UNMATCHED order_id=%s gross_amount=%s - subscription update skipped",
                order_id, gross_amount,
            )
            await create_audit_log(
                action=AuditAction.PAYMENT_AMOUNT_UNMATCHED,
                user_id=order.get("user_id"),
                resource_type="transaction",
                resource_id=order_id,
                metadata={"gross_amount": str(gross_amount), "order_amount": order.get("amount")},
            )
            return

        if tier.value != order.get("tier"):
            logger.warning(
                "PAYMENT_TIER_MISMATCH order_id=%s ordered=%s paid=%s", order_id, order.get("tier"), tier.value
            )

        user_id = order["user_id"]
        subscription = {
            "tier": tier.value,
            "status": SubscriptionStatus.ACTIVE.value,
            "start_date": now,
            "expiry_date": subscription_expiry(tier, now),
            "payment_id": order_id,
        }
        result = await db.users.update_one(
            {"user_id": user_id, "subscription.payment_id": {"$ne": order_id}},
            {"$set": {"subscription": subscription, "updated_at": now}},
        )
        if not result.modified_count:
            logger.info("SUBSCRIPTION_ALREADY_APPLIED order_id=%s user_id=%s", order_id, user_id)
            return

        logger.info("SUBSCRIPTION_UPDATED user_id=%s tier=%s order_id=%s", user_id, tier.value, order_id)
        await create_audit_log(
            action=AuditAction.SUBSCRIPTION_UPDATED,
            user_id=user_id,
            resource_type="user",
            resource_id=user_id,
            metadata={
                "tier": tier.value,
                "order_id": order_id,
                "expiry_date": subscription["expiry_date"].isoformat() if subscription["expiry_date"] else None,
            },
        )

    async def _mark_failed(self, order_id: str, transaction_status: str) -> None:
        db = database.get_db()
        result = await db.transactions.update_one(
            {"order_id": order_id, "status": {"$ne": TransactionStatus.SUCCESS.value}},
            {"$set": {"status": TransactionStatus.FAILED.value, "updated_at": utc_now()}},
        )
        logger.info(
            "PAYMENT_FAILED order_id=%s transaction_status=%s modified=%s",
            order_id, transaction_status, result.modified_count,
        )
        if result.modified_count:
            await create_audit_log(
                action=AuditAction.PAYMENT_FAILED,
                resource_type="transaction",
                resource_id=order_id,
                metadata={"transaction_status": transaction_status},
            )

    async def _mark_challenge(self, order_id: str, gross_amount: Any) -> None:
        """Hold the order for manual review. A later settlement still applies success."""
        db = database.get_db()
        result = await db.transactions.update_one(
            {"order_id": order_id, "status": TransactionStatus.PENDING.value},
            {"$set": {"status": TransactionStatus.CHALLENGE.value, "updated_at": utc_now()}},
        )
        logger.warning("PAYMENT_CHALLENGED order_id=%s modified=%s", order_id, result.modified_count)
        if result.modified_count:
            await create_audit_log(
                action=AuditAction.PAYMENT_CHALLENGED,
                resource_type="transaction",
                resource_id=order_id,
                metadata={"gross_amount": str(gross_amount)},
            )

    # =========================================================================
    # Manual verification
    # =========================================================================

    async def verify_order(self, user: Dict[str, Any], order_id: str) -> Dict[str, str]:
        """Re-query Midtrans for one of the caller's orders and reconcile it."""
        db = database.get_db()
        order = await db.transactions.find_one(
            {"order_id": order_id, "user_id": user["user_id"]},
            {"_id": 0, "order_id": 1},
        )
        if not order:
            raise OrderNotFoundError(order_id)

        status_response = await self.gateway.get_status(order_id)
        logger.info(
            "PAYMENT_MANUAL_VERIFY order_id=%s transaction_status=%s",
            order_id, status_response.get("transaction_status"),
        )
        outcome = await self.reconcile(order_id, status_response)
        status, message = VERIFY_RESPONSES[outcome]
        return {"status": status, "message": message}

    # =========================================================================
    # Queries
    # =========================================================================

    async def get_history(self, user_id: str, limit: int = HISTORY_LIMIT) -> List[Dict[str, Any]]:
        db = database.get_db()
        cursor = db.transactions.find({"user_id": user_id}, {"_id": 0}).sort("created_at", -1)
        return await cursor.to_list(length=limit)

    async def list_challenged(self, limit: int = HISTORY_LIMIT) -> List[Dict[str, Any]]:
        db = database.get_db()
        cursor = db.transactions.find(
            {"status": TransactionStatus.CHALLENGE.value}, {"_id": 0, "snap_token": 0}
        ).sort("created_at", 1)
        return await cursor.to_list(length=limit)


payment_service = PaymentService()
