"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed dataclasses.
"""

from dataclasses import dataclass, field
from datetime import date, datetime

from quota_bridge.models.api import PushStatus


@dataclass(frozen=True)
class Identity:
    """Local identity, keyed by the id issued by the external OAuth directory."""

    external_auth_id: str
    bound_account_id: int = 0
    username: str | None = None

    def __post_init__(self) -> None:
        """Validate identity fields."""
        if not self.external_auth_id:
            raise ValueError("external_auth_id cannot be empty")
        if self.bound_account_id < 0:
            raise ValueError(f"Invalid bound_account_id: {self.bound_account_id}")

    @property
    def is_bound(self) -> bool:
        """An identity is bound once it points at a gateway account."""
        return self.bound_account_id > 0 and bool(self.username)


@dataclass(frozen=True)
class AccountSnapshot:
    """Point-in-time view of a gateway account as reported by the directory."""

    account_id: int
    username: str
    display_name: str
    external_auth_id: str
    quota: int
    used_quota: int
    group: str

    @property
    def total_quota(self) -> int:
        """Remaining plus consumed quota."""
        return self.quota + self.used_quota


@dataclass(frozen=True)
class DirectoryPage:
    """One page of directory search results."""

    items: tuple[AccountSnapshot, ...]
    total: int


@dataclass(frozen=True)
class AdminTunables:
    """Operator-tunable values, read fresh at the start of each operation."""

    claim_quota: int
    per_key_quota: int
    min_quota_threshold: int
    push_endpoint: str
    push_auth_token: str
    push_group_id: int
    directory_session_token: str
    updated_at: datetime | None = None

    @property
    def push_configured(self) -> bool:
        """Push needs both an endpoint and a token."""
        return bool(self.push_endpoint) and bool(self.push_auth_token)

    @property
    def directory_configured(self) -> bool:
        return bool(self.directory_session_token)


@dataclass(frozen=True)
class CreditResult:
    """Outcome of a successful quota credit."""

    account_id: int
    amount: int
    quota_before: int
    quota_after: int


@dataclass
class ValidationReport:
    """
    Partition of a submitted key list.

    Every submitted entry lands in exactly one bucket:
    live + already_used + invalid_format + dead + duplicate_in_batch == submitted.
    Keys that failed the liveness probe count as invalid alongside format
    rejections (see `invalid`).
    """

    submitted_count: int = 0
    live: list[str] = field(default_factory=list)
    already_used: list[str] = field(default_factory=list)
    invalid_format: list[str] = field(default_factory=list)
    dead: list[str] = field(default_factory=list)
    duplicate_in_batch: list[str] = field(default_factory=list)

    @property
    def invalid(self) -> list[str]:
        """Format rejections followed by dead keys."""
        return self.invalid_format + self.dead

    @property
    def accounted(self) -> int:
        return (
            len(self.live)
            + len(self.already_used)
            + len(self.invalid)
            + len(self.duplicate_in_batch)
        )

    def summary(self) -> str:
        """Human readable counts, used in failure messages."""
        return (
            f"submitted {self.submitted_count}, duplicates {len(self.duplicate_in_batch)}, "
            f"already used {len(self.already_used)}, invalid format {len(self.invalid_format)}, "
            f"dead {len(self.dead)}, live {len(self.live)}"
        )


@dataclass(frozen=True)
class PushOutcome:
    """Result of handing a batch of keys to the downstream pool."""

    status: PushStatus
    message: str
    failed_keys: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        """A successful push never carries failed keys."""
        if self.status == PushStatus.SUCCESS and self.failed_keys:
            raise ValueError("Successful push cannot have failed keys")
        if self.status == PushStatus.PENDING:
            raise ValueError("A push outcome cannot be pending")


@dataclass(frozen=True)
class ClaimResult:
    """Outcome of a daily free grant."""

    quota_added: int
    claim_date: date
    quota_after: int
    message: str


@dataclass(frozen=True)
class DonationOutcome:
    """Outcome of a donation, including the push result."""

    report: ValidationReport
    quota_added: int
    push: PushOutcome
    created_at: int | None
    message: str


@dataclass(frozen=True)
class BindResult:
    """Outcome of binding an identity to a gateway account."""

    identity: Identity
    snapshot: AccountSnapshot
    first_bind: bool
    bonus_quota: int
    message: str


@dataclass(frozen=True)
class QuotaView:
    """Live quota and claim eligibility for a bound identity."""

    username: str
    display_name: str
    quota: int
    used_quota: int
    total: int
    claimed_today: bool
    can_claim: bool
    min_quota_threshold: int
