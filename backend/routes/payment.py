"""Payment Routes - Midtrans checkout, notifications and verification.

Endpoints:
- POST /api/payment/transaction - Open a Snap checkout for a tier
- POST /api/payment/notification - Midtrans HTTP notification (public, signature checked)
- POST /api/payment/verify - Manual status re-check (non-production only)
- GET /api/payment/history - Caller's orders, newest first
- GET /api/payment/tiers - Public tier catalog for the pricing page
"""
from fastapi import APIRouter, HTTPException, Request, status, Depends
from fastapi.responses import PlainTextResponse
from models import CreateTransactionRequest, ManualVerificationRequest
from middleware import require_auth
from services.payment_service import (
    payment_service, InvalidTierError, InvalidSignatureError, InvalidOrderIdError,
    OrderNotFoundError, DuplicateOrderError, PaymentGatewayError,
)
from services.tier_catalog import get_catalog
import logging
import os

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/payment", tags=["payment"])

# Notification fields forwarded to the payment service
NOTIFICATION_FIELDS = (
    "order_id", "status_code", "gross_amount", "signature_key",
    "transaction_status", "fraud_status",
)


@router.post("/transaction")
async def create_transaction(body: CreateTransactionRequest, user: dict = Depends(require_auth)):
    """Create a Snap transaction. Any earlier pending order of the user is failed."""
    try:
        return await payment_service.create_order(user, body.tier)
    except InvalidTierError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid tier selected"
        )
    except DuplicateOrderError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Order already exists, please retry"
        )
    except PaymentGatewayError as e:
        logger.error(f"Midtrans transaction error for user {user.get('user_id')}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Payment gateway error"
        )


@router.post("/notification")
async def handle_notification(request: Request):
    """
    Midtrans notification endpoint.

    200 "OK" once the signature passed and processing returned,
    403 on signature mismatch, 400 on a malformed order id,
    500 on any failure after that so Midtrans retries.
    """
    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload")

    # Midtrans may send gross_amount as a string or number; sign over the raw text
    notification = {
        key: ("" if payload.get(key) is None else str(payload.get(key)))
        for key in NOTIFICATION_FIELDS
    }

    try:
        await payment_service.handle_notification(notification)
    except InvalidSignatureError:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid signature")
    except InvalidOrderIdError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid Order ID format")
    except Exception as e:
        logger.error(
            "PAYMENT_NOTIFICATION_FAILED order_id=%s error=%s",
            notification.get("order_id"), e, exc_info=True,
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Notification handler error"
        )

    return PlainTextResponse("OK")


@router.post("/verify")
async def verify_transaction(body: ManualVerificationRequest, user: dict = Depends(require_auth)):
    """Re-query Midtrans for one of the caller's orders and apply the same reconciliation."""
    if os.getenv("ENVIRONMENT") == "production":
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Manual verification not available in production"
        )

    try:
        return await payment_service.verify_order(user, body.order_id)
    except OrderNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    except PaymentGatewayError as e:
        logger.error(f"Verification failed for {body.order_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Verification failed"
        )


@router.get("/history")
async def get_payment_history(user: dict = Depends(require_auth)):
    return await payment_service.get_history(user["user_id"])


@router.get("/tiers")
async def list_tiers():
    return {"tiers": get_catalog()}
