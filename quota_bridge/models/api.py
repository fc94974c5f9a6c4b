"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
"""

from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator


class PushStatus(str, Enum):
    """Downstream push status of a donation record.

    pending -> {success, partial, failed}; {partial, failed} --retry--> {success, failed}.
    """

    PENDING = "pending"
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


# ============================================================================
# Bind / Quota Models
# ============================================================================


class BindRequest(BaseModel):
    """POST /v1/bind request body."""

    username: str = Field(..., min_length=1, max_length=255)

    @field_validator("username")
    @classmethod
    def strip_username(cls, v: str) -> str:
        """Usernames are compared trimmed."""
        v = v.strip()
        if not v:
            raise ValueError("username cannot be blank")
        return v


class BindResponse(BaseModel):
    """POST /v1/bind response."""

    username: str
    account_id: int
    first_bind: bool
    bonus_quota: int = 0
    message: str


class QuotaResponse(BaseModel):
    """GET /v1/quota response."""

    username: str
    display_name: str
    quota: int
    used_quota: int
    total: int
    claimed_today: bool
    can_claim: bool
    min_quota_threshold: int


# ============================================================================
# Claim Models
# ============================================================================


class ClaimResponse(BaseModel):
    """POST /v1/claim response."""

    quota_added: int
    claim_date: date
    quota_after: int
    message: str


class ClaimRecordItem(BaseModel):
    """Claim history entry."""

    external_auth_id: str
    username: str
    quota_added: int
    claim_date: date
    created_at: datetime


# ============================================================================
# Donation Models
# ============================================================================


class DonateRequest(BaseModel):
    """POST /v1/donate request body."""

    keys: list[str] = Field(..., min_length=1, max_length=1000)


class DonateResponse(BaseModel):
    """POST /v1/donate response. Raw keys are never echoed back."""

    submitted: int
    live: int
    already_used: int
    invalid_format: int
    dead: int
    duplicate_in_batch: int
    quota_added: int
    push_status: PushStatus
    push_message: str
    failed_push_count: int
    created_at: int | None = None
    message: str


class DonationRecordItem(BaseModel):
    """Donation history entry."""

    external_auth_id: str
    username: str
    keys_count: int
    total_quota_added: int
    push_status: PushStatus
    push_message: str
    failed_keys_count: int
    created_at: int = Field(..., description="Unix timestamp, used to address retries")


class RetryPushResponse(BaseModel):
    """Retry push response."""

    push_status: PushStatus
    push_message: str
    failed_keys_count: int


# ============================================================================
# Admin Models
# ============================================================================


class AdminLoginRequest(BaseModel):
    """POST /admin/login request body."""

    password: str = Field(..., min_length=1)


class AdminLoginResponse(BaseModel):
    """POST /admin/login response."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int


class AdminConfigResponse(BaseModel):
    """GET /admin/config response. Secrets are reported as set/unset only."""

    claim_quota: int
    per_key_quota: int
    min_quota_threshold: int
    push_endpoint: str
    push_group_id: int
    push_auth_token_set: bool
    directory_session_token_set: bool
    updated_at: datetime | None = None


class AdminConfigUpdateRequest(BaseModel):
    """PUT /admin/config request body. Omitted fields are left unchanged."""

    claim_quota: int | None = Field(None, gt=0)
    per_key_quota: int | None = Field(None, gt=0)
    min_quota_threshold: int | None = Field(None, ge=0)
    push_endpoint: str | None = Field(None, max_length=1024)
    push_auth_token: str | None = Field(None, max_length=1024)
    push_group_id: int | None = Field(None, ge=0)
    directory_session_token: str | None = Field(None, max_length=4096)


class AdminUserItem(BaseModel):
    """Admin user listing entry."""

    external_auth_id: str
    username: str
    bound_account_id: int
    created_at: datetime
    claim_count: int
    claim_quota_total: int
    donation_count: int
    donated_keys_total: int
    donation_quota_total: int


class LedgerKeyItem(BaseModel):
    """Exported ledger entry."""

    key_hash: str
    key_value: str | None
    owner_auth_id: str
    username: str
    donation_record_id: int | None
    created_at: datetime


class DeleteKeysRequest(BaseModel):
    """POST /admin/keys/delete request body. Accepts raw keys or hashes."""

    keys: list[str] = Field(default_factory=list)
    key_hashes: list[str] = Field(default_factory=list)


class DeleteKeysResponse(BaseModel):
    """Number of ledger rows removed."""

    deleted: int


class RebindRequest(BaseModel):
    """POST /admin/users/{id}/rebind request body."""

    username: str = Field(..., min_length=1, max_length=255)


class PurgeResponse(BaseModel):
    """DELETE /admin/users/{id} response."""

    external_auth_id: str
    claims_deleted: int
    donations_deleted: int
    keys_deleted: int


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str
    database: str
    version: str
