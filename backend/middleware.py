from fastapi import Request, HTTPException, status, Depends
from typing import Optional
import logging
from auth import decode_access_token, AUTH_COOKIE_NAME
from models import UserRole, Feature
from database import database
from services.tier_catalog import has_permission, effective_tier

logger = logging.getLogger(__name__)

# Never hand the credential hash or reset token to a handler
PRINCIPAL_PROJECTION = {"_id": 0, "password_hash": 0, "reset_password_token": 0, "reset_password_expires": 0}


def _extract_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header.split(" ", 1)[1]
    return request.cookies.get(AUTH_COOKIE_NAME)


async def get_current_user(request: Request) -> Optional[dict]:
    """Resolve the JWT (header or cookie) to the stored user document."""
    token = _extract_token(request)
    if not token:
        return None

    payload = decode_access_token(token)
    if not payload or not payload.get("user_id"):
        return None

    db = database.get_db()
    return await db.users.find_one({"user_id": payload["user_id"]}, PRINCIPAL_PROJECTION)


async def require_auth(request: Request) -> dict:
    """Require valid authentication. Returns the authenticated principal."""
    user = await get_current_user(request)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authorized"
        )
    return user


async def require_admin(user: dict = Depends(require_auth)) -> dict:
    """Require admin role."""
    if user.get("role") != UserRole.ADMIN.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized as an admin"
        )
    return user


def require_feature(feature: Feature):
    """
    Dependency factory enforcing tier-based feature access.

    Usage:
        @router.get("/export")
        async def export(user: dict = Depends(require_feature(Feature.EXPORT_DATA))):
            ...
    """
    async def dependency(user: dict = Depends(require_auth)) -> dict:
        tier = effective_tier(user.get("subscription"))
        if not has_permission(tier, feature):
            logger.warning(
                "Feature access denied: user_id=%s tier=%s feature=%s",
                user.get("user_id"), tier.value, feature.value,
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "error": "Forbidden",
                    "message": f"Upgrade to Growth or Pro to access {feature.value}",
                    "upgrade_link": "/pricing",
                },
            )
        return user

    return dependency
