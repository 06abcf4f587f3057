from pydantic import BaseModel, EmailStr, Field, ConfigDict
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from enum import Enum
import uuid

# ============================================================================
# ENUMS (System Constants)
# ============================================================================

class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"

class UserTier(str, Enum):
    FREE = "free"
    PIONEER = "pioneer"
    EARLY_ADOPTER = "early_adopter"
    GROWTH = "growth"
    PRO = "pro"

class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELED = "canceled"

class TransactionStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    CHALLENGE = "challenge"

class Feature(str, Enum):
    CORE_ANALYSIS = "core_analysis"  # Narrative, VQSG, Screener
    COMMUNITY_ACCESS = "community_access"
    WATCHLIST_ALERTS = "watchlist_alerts"
    EXPORT_DATA = "export_data"
    PRIORITY_SUPPORT = "priority_support"
    TIMING_LABELS = "timing_labels"

class Theme(str, Enum):
    DARK = "dark"
    LIGHT = "light"

class AuditAction(str, Enum):
    # Auth
    USER_REGISTERED = "USER_REGISTERED"
    USER_LOGIN_SUCCESS = "USER_LOGIN_SUCCESS"
    USER_LOGIN_FAILED = "USER_LOGIN_FAILED"
    PASSWORD_CHANGED = "PASSWORD_CHANGED"
    PASSWORD_RESET_REQUESTED = "PASSWORD_RESET_REQUESTED"
    PASSWORD_RESET_COMPLETED = "PASSWORD_RESET_COMPLETED"

    # Payments
    PAYMENT_ORDER_CREATED = "PAYMENT_ORDER_CREATED"
    PAYMENT_SIGNATURE_REJECTED = "PAYMENT_SIGNATURE_REJECTED"
    PAYMENT_SUCCEEDED = "PAYMENT_SUCCEEDED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    PAYMENT_CHALLENGED = "PAYMENT_CHALLENGED"
    PAYMENT_AMOUNT_UNMATCHED = "PAYMENT_AMOUNT_UNMATCHED"
    SUBSCRIPTION_UPDATED = "SUBSCRIPTION_UPDATED"
    SUBSCRIPTION_EXPIRED = "SUBSCRIPTION_EXPIRED"

    # Admin Actions
    ADMIN_USER_UPDATED = "ADMIN_USER_UPDATED"
    ADMIN_USER_DELETED = "ADMIN_USER_DELETED"
    ADMIN_JOB_TRIGGERED = "ADMIN_JOB_TRIGGERED"

class EmailTemplateAlias(str, Enum):
    PASSWORD_RESET = "password-reset"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)

# ============================================================================
# CORE MODELS
# ============================================================================

class Subscription(BaseModel):
    """Subscription embedded in the user document. Exactly one per user."""
    model_config = ConfigDict(extra="ignore", use_enum_values=True)

    tier: UserTier = UserTier.FREE
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    start_date: datetime = Field(default_factory=utc_now)
    expiry_date: Optional[datetime] = None  # None = lifetime
    payment_id: Optional[str] = None

class Preferences(BaseModel):
    model_config = ConfigDict(extra="ignore", use_enum_values=True)

    theme: Theme = Theme.DARK
    notifications: bool = True

class User(BaseModel):
    model_config = ConfigDict(extra="ignore", use_enum_values=True)

    # hex form: order ids split on "-", so user ids must not contain one
    user_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    email: EmailStr
    phone_number: str
    password_hash: str
    full_name: str
    role: UserRole = UserRole.USER
    subscription: Subscription = Field(default_factory=Subscription)
    preferences: Preferences = Field(default_factory=Preferences)
    reset_password_token: Optional[str] = None
    reset_password_expires: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

class Transaction(BaseModel):
    """One purchase attempt. Only `status` changes after insert."""
    model_config = ConfigDict(extra="ignore", use_enum_values=True)

    order_id: str
    user_id: str
    tier: UserTier
    amount: int
    status: TransactionStatus = TransactionStatus.PENDING
    snap_token: str
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

class AuditLog(BaseModel):
    model_config = ConfigDict(extra="ignore", use_enum_values=True)

    audit_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    action: AuditAction
    actor_role: Optional[UserRole] = None
    actor_id: Optional[str] = None
    user_id: Optional[str] = None
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    before_state: Optional[Dict[str, Any]] = None
    after_state: Optional[Dict[str, Any]] = None
    metadata: Optional[Dict[str, Any]] = None
    ip_address: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)

class MessageLog(BaseModel):
    model_config = ConfigDict(extra="ignore", use_enum_values=True)

    message_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    postmark_message_id: Optional[str] = None
    user_id: Optional[str] = None
    recipient: EmailStr
    template_alias: EmailTemplateAlias
    subject: str
    status: str = "queued"
    sent_at: Optional[datetime] = None
    error_message: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)

# ============================================================================
# REQUEST/RESPONSE MODELS
# ============================================================================

PHONE_PATTERN = r"^62\d+$"

class _CamelRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

class RegisterRequest(_CamelRequest):
    full_name: str = Field(alias="fullName", min_length=2)
    email: EmailStr
    phone_number: str = Field(alias="phoneNumber", pattern=PHONE_PATTERN)
    password: str = Field(min_length=6)

class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)

class ProfileUpdateRequest(_CamelRequest):
    full_name: Optional[str] = Field(default=None, alias="fullName", min_length=2)
    phone_number: Optional[str] = Field(default=None, alias="phoneNumber", pattern=PHONE_PATTERN)

class ChangePasswordRequest(_CamelRequest):
    current_password: str = Field(alias="currentPassword", min_length=1)
    new_password: str = Field(alias="newPassword", min_length=6)

class ForgotPasswordRequest(BaseModel):
    email: EmailStr

class ResetPasswordRequest(_CamelRequest):
    token: str = Field(min_length=1)
    new_password: str = Field(alias="newPassword", min_length=6)

class SubscriptionUpdate(_CamelRequest):
    tier: Optional[UserTier] = None
    status: Optional[SubscriptionStatus] = None
    start_date: Optional[datetime] = Field(default=None, alias="startDate")
    expiry_date: Optional[datetime] = Field(default=None, alias="expiryDate")
    payment_id: Optional[str] = Field(default=None, alias="paymentId")

class UpdateUserRequest(_CamelRequest):
    full_name: Optional[str] = Field(default=None, alias="fullName", min_length=2)
    email: Optional[EmailStr] = None
    phone_number: Optional[str] = Field(default=None, alias="phoneNumber")
    role: Optional[UserRole] = None
    subscription: Optional[SubscriptionUpdate] = None

class CreateTransactionRequest(BaseModel):
    tier: str  # validated against the tier catalog, free is rejected

class ManualVerificationRequest(_CamelRequest):
    order_id: str = Field(alias="orderId", min_length=1)

class WatchlistAddRequest(BaseModel):
    ticker: str = Field(min_length=1, max_length=14)

class AlertConfigRequest(_CamelRequest):
    price_above: Optional[float] = Field(default=None, alias="priceAbove")
    price_below: Optional[float] = Field(default=None, alias="priceBelow")
    active: bool = True

class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: Dict[str, Any]
