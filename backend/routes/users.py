"""User administration routes (admin only).

- GET /api/users - All users, newest first
- PUT /api/users/{user_id} - Edit profile fields, role and subscription
- DELETE /api/users/{user_id} - Delete a user with their orders and watchlist
"""
from fastapi import APIRouter, HTTPException, Request, status, Depends
from pymongo.errors import DuplicateKeyError
from database import database
from models import UpdateUserRequest, AuditAction, UserRole, utc_now
from middleware import require_admin, PRINCIPAL_PROJECTION
from auth import public_user
from utils.audit import create_audit_log
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("")
async def list_users(admin: dict = Depends(require_admin)):
    db = database.get_db()
    users = await db.users.find({}, PRINCIPAL_PROJECTION).sort("created_at", -1).to_list(length=None)
    return [public_user(u) for u in users]


@router.put("/{user_id}")
async def update_user(
    request: Request,
    user_id: str,
    data: UpdateUserRequest,
    admin: dict = Depends(require_admin),
):
    """
    Partial update. Subscription fields are merged into the existing
    subscription; an explicit null expiryDate makes it lifetime.
    """
    db = database.get_db()
    existing = await db.users.find_one({"user_id": user_id}, PRINCIPAL_PROJECTION)
    if not existing:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    updates = data.model_dump(exclude_unset=True, exclude={"subscription"})
    updates = {k: v for k, v in updates.items() if v is not None}
    if "email" in updates:
        updates["email"] = updates["email"].lower()
    if "role" in updates:
        updates["role"] = UserRole(updates["role"]).value

    if data.subscription is not None:
        for field, value in data.subscription.model_dump(exclude_unset=True).items():
            if value is None and field != "expiry_date":
                continue
            updates[f"subscription.{field}"] = getattr(value, "value", value)

    if not updates:
        return public_user(existing)

    updates["updated_at"] = utc_now()
    try:
        await db.users.update_one({"user_id": user_id}, {"$set": updates})
    except DuplicateKeyError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email or phone number already in use"
        )

    updated = await db.users.find_one({"user_id": user_id}, PRINCIPAL_PROJECTION)

    await create_audit_log(
        action=AuditAction.ADMIN_USER_UPDATED,
        actor_role=UserRole.ADMIN,
        actor_id=admin["user_id"],
        user_id=user_id,
        resource_type="user",
        resource_id=user_id,
        before_state={k: existing.get(k) for k in ("full_name", "email", "phone_number", "role")}
        | {"subscription": existing.get("subscription")},
        after_state={k: updated.get(k) for k in ("full_name", "email", "phone_number", "role")}
        | {"subscription": updated.get("subscription")},
        ip_address=request.client.host if request.client else None,
    )
    logger.info(f"Admin {admin['user_id']} updated user {user_id}: {sorted(updates)}")

    return public_user(updated)


@router.delete("/{user_id}")
async def delete_user(request: Request, user_id: str, admin: dict = Depends(require_admin)):
    db = database.get_db()

    if user_id == admin["user_id"]:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot delete your own account"
        )

    result = await db.users.delete_one({"user_id": user_id})
    if not result.deleted_count:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    orders = await db.transactions.delete_many({"user_id": user_id})
    watchlists = await db.watchlists.delete_many({"user_id": user_id})

    await create_audit_log(
        action=AuditAction.ADMIN_USER_DELETED,
        actor_role=UserRole.ADMIN,
        actor_id=admin["user_id"],
        user_id=user_id,
        resource_type="user",
        resource_id=user_id,
        metadata={
            "transactions_deleted": orders.deleted_count,
            "watchlists_deleted": watchlists.deleted_count,
        },
        ip_address=request.client.host if request.client else None,
    )
    logger.info(f"Admin {admin['user_id']} deleted user {user_id}")

    return {"message": "User removed"}
