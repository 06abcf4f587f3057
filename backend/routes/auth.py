from fastapi import APIRouter, HTTPException, Request, Response, status, Depends
from pymongo.errors import DuplicateKeyError
from database import database
from models import (
    RegisterRequest, LoginRequest, ProfileUpdateRequest, ChangePasswordRequest,
    ForgotPasswordRequest, ResetPasswordRequest, TokenResponse,
    User, UserRole, AuditAction, utc_now,
)
from auth import (
    verify_password, hash_password, create_access_token, generate_reset_token, hash_token,
    cookie_settings, public_user, AUTH_COOKIE_NAME, RESET_TOKEN_TTL_MINUTES,
)
from middleware import require_auth
from services.tier_catalog import effective_tier, get_tier_limits
from services.email_service import email_service
from utils.audit import create_audit_log
from utils.rate_limiter import rate_limiter
from datetime import timedelta
import logging
import os

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/auth", tags=["auth"])

LOGIN_MAX_ATTEMPTS = 10
FORGOT_MAX_ATTEMPTS = 3
RATE_WINDOW_MINUTES = 15

FORGOT_PASSWORD_MESSAGE = "If an account with that email exists, a reset link has been sent."


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _issue_token(response: Response, user: dict) -> str:
    token = create_access_token({"user_id": user["user_id"], "role": user["role"]})
    response.set_cookie(AUTH_COOKIE_NAME, token, **cookie_settings())
    return token


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def register(request: Request, response: Response, data: RegisterRequest):
    """Create an account on the free tier and sign it in."""
    db = database.get_db()
    email = data.email.lower()

    existing = await db.users.find_one(
        {"$or": [{"email": email}, {"phone_number": data.phone_number}]},
        {"_id": 0, "user_id": 1}
    )
    if existing:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="User with this email or phone number already exists"
        )

    user = User(
        email=email,
        phone_number=data.phone_number,
        password_hash=hash_password(data.password),
        full_name=data.full_name,
    )
    doc = user.model_dump()
    try:
        await db.users.insert_one(doc)
    except DuplicateKeyError:
        # Lost a race with a concurrent registration
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="User with this email or phone number already exists"
        )

    await create_audit_log(
        action=AuditAction.USER_REGISTERED,
        actor_role=UserRole.USER,
        actor_id=user.user_id,
        user_id=user.user_id,
        ip_address=_client_ip(request),
    )

    token = _issue_token(response, doc)
    return TokenResponse(access_token=token, user=public_user(doc))


@router.post("/login", response_model=TokenResponse)
async def login(request: Request, response: Response, credentials: LoginRequest):
    db = database.get_db()
    email = credentials.email.lower()

    rate_key = f"login:{email}:{_client_ip(request)}"
    allowed, error_msg = await rate_limiter.check_rate_limit(
        key=rate_key,
        max_attempts=LOGIN_MAX_ATTEMPTS,
        window_minutes=RATE_WINDOW_MINUTES,
    )
    if not allowed:
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=error_msg)

    user = await db.users.find_one({"email": email}, {"_id": 0})
    if not user or not verify_password(credentials.password, user.get("password_hash", "")):
        await create_audit_log(
            action=AuditAction.USER_LOGIN_FAILED,
            actor_id=user.get("user_id") if user else None,
            metadata={"email": email, "reason": "invalid_password" if user else "user_not_found"},
            ip_address=_client_ip(request),
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password"
        )

    rate_limiter.reset(rate_key)
    await create_audit_log(
        action=AuditAction.USER_LOGIN_SUCCESS,
        actor_role=user.get("role"),
        actor_id=user["user_id"],
        user_id=user["user_id"],
        ip_address=_client_ip(request),
    )

    token = _issue_token(response, user)
    return TokenResponse(access_token=token, user=public_user(user))


@router.post("/logout")
async def logout(response: Response):
    response.delete_cookie(AUTH_COOKIE_NAME, httponly=True)
    return {"message": "Logged out successfully"}


@router.get("/me")
async def get_me(user: dict = Depends(require_auth)):
    """Current user plus the tier actually in force (expired subscriptions resolve to free)."""
    tier = effective_tier(user.get("subscription"))
    return {
        **public_user(user),
        "effective_tier": tier.value,
        "limits": get_tier_limits(tier).to_dict(),
    }


@router.patch("/profile")
async def update_profile(data: ProfileUpdateRequest, user: dict = Depends(require_auth)):
    db = database.get_db()

    updates = data.model_dump(exclude_none=True)
    if not updates:
        return public_user(user)

    if "phone_number" in updates and updates["phone_number"] != user.get("phone_number"):
        taken = await db.users.find_one(
            {"phone_number": updates["phone_number"], "user_id": {"$ne": user["user_id"]}},
            {"_id": 0, "user_id": 1}
        )
        if taken:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Phone number already in use"
            )

    updates["updated_at"] = utc_now()
    await db.users.update_one({"user_id": user["user_id"]}, {"$set": updates})

    return public_user({**user, **updates})


@router.put("/password")
async def update_password(request: Request, data: ChangePasswordRequest, user: dict = Depends(require_auth)):
    db = database.get_db()

    # The principal is loaded without the hash
    stored = await db.users.find_one({"user_id": user["user_id"]}, {"_id": 0, "password_hash": 1})
    if not stored:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    if not verify_password(data.current_password, stored["password_hash"]):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Current password is incorrect"
        )

    await db.users.update_one(
        {"user_id": user["user_id"]},
        {"$set": {"password_hash": hash_password(data.new_password), "updated_at": utc_now()}}
    )
    await create_audit_log(
        action=AuditAction.PASSWORD_CHANGED,
        actor_role=user.get("role"),
        actor_id=user["user_id"],
        user_id=user["user_id"],
        ip_address=_client_ip(request),
    )
    return {"message": "Password updated successfully"}


@router.post("/forgot-password")
async def forgot_password(request: Request, data: ForgotPasswordRequest):
    """Always answers the same message so account existence is not revealed."""
    db = database.get_db()
    email = data.email.lower()

    allowed, error_msg = await rate_limiter.check_rate_limit(
        key=f"forgot:{email}",
        max_attempts=FORGOT_MAX_ATTEMPTS,
        window_minutes=RATE_WINDOW_MINUTES,
    )
    if not allowed:
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=error_msg)

    user = await db.users.find_one({"email": email}, {"_id": 0, "user_id": 1, "full_name": 1, "email": 1})
    if not user:
        return {"message": FORGOT_PASSWORD_MESSAGE}

    reset_token = generate_reset_token()
    await db.users.update_one(
        {"user_id": user["user_id"]},
        {"$set": {
            "reset_password_token": hash_token(reset_token),
            "reset_password_expires": utc_now() + timedelta(minutes=RESET_TOKEN_TTL_MINUTES),
        }}
    )

    client_url = os.getenv("CLIENT_URL", "http://localhost:3000").rstrip("/")
    await email_service.send_password_reset_email(
        recipient=user["email"],
        full_name=user.get("full_name", ""),
        reset_url=f"{client_url}/reset-password?token={reset_token}",
        ttl_minutes=RESET_TOKEN_TTL_MINUTES,
        user_id=user["user_id"],
    )
    await create_audit_log(
        action=AuditAction.PASSWORD_RESET_REQUESTED,
        user_id=user["user_id"],
        ip_address=_client_ip(request),
    )
    return {"message": FORGOT_PASSWORD_MESSAGE}


@router.post("/reset-password")
async def reset_password(request: Request, data: ResetPasswordRequest):
    db = database.get_db()

    user = await db.users.find_one(
        {
            "reset_password_token": hash_token(data.token),
            "reset_password_expires": {"$gt": utc_now()},
        },
        {"_id": 0, "user_id": 1}
    )
    if not user:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or expired reset token"
        )

    await db.users.update_one(
        {"user_id": user["user_id"]},
        {
            "$set": {"password_hash": hash_password(data.new_password), "updated_at": utc_now()},
            "$unset": {"reset_password_token": "", "reset_password_expires": ""},
        }
    )
    await create_audit_log(
        action=AuditAction.PASSWORD_RESET_COMPLETED,
        user_id=user["user_id"],
        ip_address=_client_ip(request),
    )
    return {"message": "Password has been reset successfully"}
