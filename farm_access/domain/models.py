from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic import Field as PydanticField
from pydantic.alias_generators import to_camel
from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from farm_access.domain.permissions import RoleType, ScopeType

USER_SCHEMA_VERSION = 2


def now_utc() -> datetime:
    return datetime.now(UTC)


def coerce_timestamp(value: Any) -> datetime | None:
    """Normalize stored timestamps into aware UTC datetimes.

    Accepts datetimes, ISO-8601 strings, epoch milliseconds and the
    ``{"seconds": ..., "nanoseconds": ...}`` shape written by older clients.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if isinstance(value, bool):
        raise ValueError("boolean is not a timestamp")
    if isinstance(value, int | float):
        return datetime.fromtimestamp(value / 1000.0, tz=UTC)
    if isinstance(value, dict) and "seconds" in value:
        seconds = float(value["seconds"]) + float(value.get("nanoseconds", 0)) / 1_000_000_000
        return datetime.fromtimestamp(seconds, tz=UTC)
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)
    raise ValueError(f"unsupported timestamp value: {value!r}")


class DocumentModel(BaseModel):
    """Base for records persisted in the document store (camelCase on disk)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_document(cls, raw: dict[str, Any]) -> Any:
        return cls.model_validate(raw)


# persisted tables


class DocumentRecord(SQLModel, table=True):
    __tablename__ = "documents"

    collection: str = Field(primary_key=True)
    id: str = Field(primary_key=True)
    data: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )
    updated_at: datetime = Field(default_factory=now_utc, index=True)


class IdentityCredential(SQLModel, table=True):
    __tablename__ = "identity_credentials"

    uid: str = Field(default_factory=lambda: uuid4().hex, primary_key=True)
    email: str = Field(index=True, unique=True)
    display_name: str | None = None
    password_hash: str
    email_verified: bool = Field(default=False)
    verification_code: str | None = Field(default=None, index=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


# identity


class IdentityToken(BaseModel):
    uid: str
    email: str
    email_verified: bool = False
    display_name: str | None = None


# users


class AccountStatus(StrEnum):
    PENDING_VERIFICATION = "pending_verification"
    ACTIVE = "active"
    SUSPENDED = "suspended"


class NotificationSettings(DocumentModel):
    email: bool = True
    push: bool = True
    sms: bool = False
    harvest_reminders: bool = True
    health_alerts: bool = True
    system_updates: bool = True


class DashboardSettings(DocumentModel):
    default_farm: str | None = None
    widget_layout: list[str] = PydanticField(
        default_factory=lambda: ["trees", "health", "harvest", "weather"]
    )
    chart_preferences: dict[str, Any] = PydanticField(default_factory=dict)


class PrivacySettings(DocumentModel):
    profile_visibility: str = "organization"
    share_activity_data: bool = True
    allow_data_export: bool = True


class UserPreferences(DocumentModel):
    theme: str = "light"
    language: str = "vi-VN"
    notifications: NotificationSettings = PydanticField(default_factory=NotificationSettings)
    dashboard: DashboardSettings = PydanticField(default_factory=DashboardSettings)
    privacy: PrivacySettings = PydanticField(default_factory=PrivacySettings)


class User(DocumentModel):
    uid: str
    email: str = ""
    display_name: str = "User"
    phone_number: str | None = None
    photo_url: str | None = PydanticField(default=None, alias="photoURL")
    language: str = "vi-VN"
    timezone: str = "Asia/Ho_Chi_Minh"
    created_at: datetime = PydanticField(default_factory=now_utc)
    updated_at: datetime | None = None
    last_login_at: datetime | None = None
    login_count: int = 0
    is_email_verified: bool = False
    is_phone_verified: bool = False
    account_status: AccountStatus = AccountStatus.ACTIVE
    two_factor_enabled: bool = False
    current_farm_id: str | None = None
    preferences: UserPreferences = PydanticField(default_factory=UserPreferences)
    schema_version: int = USER_SCHEMA_VERSION

    @field_validator("created_at", mode="before")
    @classmethod
    def _created_at(cls, value: Any) -> datetime:
        return coerce_timestamp(value) or now_utc()

    @field_validator("updated_at", "last_login_at", mode="before")
    @classmethod
    def _optional_ts(cls, value: Any) -> datetime | None:
        return coerce_timestamp(value)


class LegacyUserRecord(DocumentModel):
    """Single-tier profile shape written before organizations and roles existed."""

    uid: str
    email: str | None = None
    display_name: str | None = None
    farm_name: str | None = None
    created_at: datetime = PydanticField(default_factory=now_utc)
    schema_version: int = 1

    @field_validator("created_at", mode="before")
    @classmethod
    def _created_at(cls, value: Any) -> datetime:
        return coerce_timestamp(value) or now_utc()


class ProfileUpdate(BaseModel):
    display_name: str | None = None
    phone_number: str | None = None
    language: str | None = None
    timezone: str | None = None
    current_farm_id: str | None = None
    preferences: dict[str, Any] | None = None


# roles


class UserRole(DocumentModel):
    id: str
    user_id: str
    role_type: RoleType
    scope_type: ScopeType
    scope_id: str | None = None
    permissions: list[str] = PydanticField(default_factory=list)
    granted_by: str
    granted_at: datetime = PydanticField(default_factory=now_utc)
    expires_at: datetime | None = None
    is_active: bool = True
    revoked_at: datetime | None = None
    revoked_by: str | None = None
    metadata: dict[str, Any] | None = None

    @field_validator("granted_at", mode="before")
    @classmethod
    def _granted_at(cls, value: Any) -> datetime:
        return coerce_timestamp(value) or now_utc()

    @field_validator("expires_at", "revoked_at", mode="before")
    @classmethod
    def _optional_ts(cls, value: Any) -> datetime | None:
        return coerce_timestamp(value)


class LegacyFarmAccess(DocumentModel):
    user_id: str
    farm_id: str | None = None
    role: str = "viewer"
    permissions: list[str] = PydanticField(default_factory=list)
    invitation_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def _optional_ts(cls, value: Any) -> datetime | None:
        return coerce_timestamp(value)


# tenancy


class SubscriptionType(StrEnum):
    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class SubscriptionStatus(StrEnum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"


class OrganizationSettings(DocumentModel):
    allow_self_registration: bool = False
    require_email_verification: bool = True
    require_admin_approval: bool = True
    default_user_role: str = "viewer"
    session_timeout: int = 480
    enable_audit_logging: bool = True
    enable_api_access: bool = PydanticField(default=False, alias="enableAPIAccess")


class Organization(DocumentModel):
    id: str
    name: str
    display_name: str | None = None
    subscription_type: SubscriptionType = SubscriptionType.FREE
    subscription_status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    max_farms: int = 5
    max_users_per_farm: int = 10
    max_users_total: int = 20
    features: list[str] = PydanticField(default_factory=list)
    settings: OrganizationSettings = PydanticField(default_factory=OrganizationSettings)
    created_at: datetime = PydanticField(default_factory=now_utc)
    updated_at: datetime = PydanticField(default_factory=now_utc)
    is_active: bool = True


class FarmType(StrEnum):
    PERSONAL = "personal"
    COMMERCIAL = "commercial"
    COOPERATIVE = "cooperative"
    RESEARCH = "research"


class FarmStatus(StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    ARCHIVED = "archived"


class FarmSettings(DocumentModel):
    timezone: str = "Asia/Ho_Chi_Minh"
    currency: str = "VND"
    units: str = "metric"
    language: str = "vi-VN"
    enable_gps_tracking: bool = PydanticField(default=True, alias="enableGPSTracking")
    enable_photo_geotagging: bool = True
    data_retention_days: int = 365
    backup_frequency: str = "daily"


class Farm(DocumentModel):
    id: str
    name: str
    organization_id: str | None = None
    owner_id: str | None = None
    farm_type: FarmType = FarmType.PERSONAL
    status: FarmStatus = FarmStatus.ACTIVE
    created_date: datetime = PydanticField(default_factory=now_utc)
    settings: FarmSettings = PydanticField(default_factory=FarmSettings)
    contacts: list[dict[str, Any]] = PydanticField(default_factory=list)
    certifications: list[dict[str, Any]] = PydanticField(default_factory=list)
    metadata: dict[str, Any] = PydanticField(default_factory=dict)

    @field_validator("created_date", mode="before")
    @classmethod
    def _created_date(cls, value: Any) -> datetime:
        return coerce_timestamp(value) or now_utc()


class InvitationStatus(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    RESENT = "resent"


class FarmInvitation(DocumentModel):
    id: str
    farm_id: str
    organization_id: str | None = None
    inviter_user_id: str
    invitee_email: str
    invitee_name: str | None = None
    proposed_role: RoleType
    proposed_permissions: list[str] = PydanticField(default_factory=list)
    invitation_code: str
    message: str | None = None
    status: InvitationStatus = InvitationStatus.PENDING
    sent_at: datetime = PydanticField(default_factory=now_utc)
    responded_at: datetime | None = None
    expires_at: datetime
    accepted_by_user_id: str | None = None
    decline_reason: str | None = None
    metadata: dict[str, Any] = PydanticField(default_factory=dict)

    @field_validator("sent_at", mode="before")
    @classmethod
    def _sent_at(cls, value: Any) -> datetime:
        return coerce_timestamp(value) or now_utc()

    @field_validator("expires_at", mode="before")
    @classmethod
    def _expires_at(cls, value: Any) -> datetime:
        parsed = coerce_timestamp(value)
        if parsed is None:
            raise ValueError("invitation expiry is required")
        return parsed

    @field_validator("responded_at", mode="before")
    @classmethod
    def _optional_ts(cls, value: Any) -> datetime | None:
        return coerce_timestamp(value)


# audit


class ActivityStatus(StrEnum):
    SUCCESS = "success"
    FAILURE = "failure"


class ActivityLog(DocumentModel):
    id: str
    user_id: str = ""
    action: str
    resource: str
    resource_id: str = ""
    details: dict[str, Any] = PydanticField(default_factory=dict)
    timestamp: datetime = PydanticField(default_factory=now_utc)
    status: ActivityStatus = ActivityStatus.SUCCESS
    error_message: str | None = None


# API schemas


class SignUpRequest(BaseModel):
    email: str
    password: str = PydanticField(min_length=6)
    display_name: str
    phone_number: str | None = None
    organization_name: str | None = None
    farm_name: str | None = None


class SignInRequest(BaseModel):
    email: str
    password: str


class PasswordResetRequest(BaseModel):
    email: str


class EmailConfirmRequest(BaseModel):
    code: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: dict[str, Any]


class MeRead(BaseModel):
    user: dict[str, Any]
    roles: list[dict[str, Any]]
    permissions: list[str]
    is_super_admin: bool


class RoleGrantRequest(BaseModel):
    user_id: str
    role_type: RoleType
    scope_type: ScopeType
    scope_id: str | None = None
    expires_at: datetime | None = None


class AccountStatusUpdate(BaseModel):
    account_status: AccountStatus


class PermissionCheckRead(BaseModel):
    permission: str
    scope_id: str | None = None
    allowed: bool


class OrganizationCreate(BaseModel):
    name: str = PydanticField(min_length=1)
    display_name: str | None = None


class FarmCreate(BaseModel):
    name: str = PydanticField(min_length=1)
    organization_id: str | None = None


class InvitationCreate(BaseModel):
    invitee_email: str
    proposed_role: RoleType
    invitee_name: str | None = None
    message: str | None = None


class InvitationResponse(BaseModel):
    code: str
    reason: str | None = None
