"""
Admin Config Provider - Operator-tunable values from the admin_config row.

Read fresh at the start of every operation; nothing is cached between
requests, so an update is visible to every operation that starts after it.
"""

from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from quota_bridge.config import settings
from quota_bridge.db.models import AdminConfig
from quota_bridge.models.domain import AdminTunables

logger = get_logger(__name__)

ADMIN_CONFIG_ROW_ID = 1

UPDATABLE_FIELDS = (
    "claim_quota",
    "per_key_quota",
    "min_quota_threshold",
    "push_endpoint",
    "push_auth_token",
    "push_group_id",
    "directory_session_token",
)


class AdminConfigProvider:
    """Loads and updates the single admin_config row."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self) -> AdminTunables:
        """Current tunables, seeding the row from settings if it doesn't exist."""
        row = await self._load_or_seed()
        return self._to_domain(row)

    async def update(self, **changes: int | str | None) -> AdminTunables:
        """
        Partial update. Keys with a None value are left unchanged.

        Raises:
            ValueError: If an unknown field is passed
        """
        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown admin config fields: {sorted(unknown)}")

        row = await self._load_or_seed()
        changed: list[str] = []
        for name, value in changes.items():
            if value is None:
                continue
            if isinstance(value, str):
                value = value.strip()
            setattr(row, name, value)
            changed.append(name)

        if changed:
            row.updated_at = datetime.now(UTC)
            await self.session.commit()
            await self.session.refresh(row)

        # Never log secret values, only which fields moved
        logger.info("admin_config_updated", fields=changed)
        return self._to_domain(row)

    async def _load_or_seed(self) -> AdminConfig:
        stmt = select(AdminConfig).where(AdminConfig.id == ADMIN_CONFIG_ROW_ID)
        result = await self.session.execute(stmt)
        row = result.scalar_one_or_none()
        if row is not None:
            return row

        row = AdminConfig(
            id=ADMIN_CONFIG_ROW_ID,
            claim_quota=settings.default_claim_quota,
            per_key_quota=settings.default_per_key_quota,
            min_quota_threshold=settings.default_min_quota_threshold,
            push_endpoint=settings.default_push_endpoint,
            push_auth_token="",
            push_group_id=settings.default_push_group_id,
            directory_session_token="",
        )
        self.session.add(row)
        try:
            await self.session.flush()
            await self.session.commit()
        except IntegrityError:
            # Another request seeded it first
            await self.session.rollback()
            result = await self.session.execute(stmt)
            return result.scalar_one()

        logger.info("admin_config_seeded")
        return row

    def _to_domain(self, row: AdminConfig) -> AdminTunables:
        return AdminTunables(
            claim_quota=row.claim_quota,
            per_key_quota=row.per_key_quota,
            min_quota_threshold=row.min_quota_threshold,
            push_endpoint=row.push_endpoint or "",
            push_auth_token=row.push_auth_token or "",
            push_group_id=row.push_group_id,
            directory_session_token=row.directory_session_token or "",
            updated_at=row.updated_at,
        )
