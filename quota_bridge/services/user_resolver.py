"""
User Resolver - Username to gateway account snapshot, with ownership check.

The directory search is fuzzy, so pages are walked until an exact
(case-insensitive) username match turns up, the reported total is
exhausted, or the page bound is hit.
"""

from structlog import get_logger

from quota_bridge.config import settings
from quota_bridge.exceptions import (
    DirectoryNotConfiguredError,
    InvalidUsernameError,
    OwnershipMismatchError,
    UserNotFoundError,
)
from quota_bridge.models.domain import AccountSnapshot, Identity
from quota_bridge.services.gateway_client import GatewayClient

logger = get_logger(__name__)


class UserResolver:
    """Resolves usernames against the gateway directory."""

    def __init__(
        self,
        gateway: GatewayClient,
        session_token: str,
        page_size: int | None = None,
        max_pages: int | None = None,
    ) -> None:
        self.gateway = gateway
        self.session_token = session_token
        self.page_size = page_size or settings.directory_page_size
        self.max_pages = max_pages or settings.directory_max_pages

    async def resolve(self, username: str) -> AccountSnapshot:
        """
        Find the account whose username equals `username`, ignoring case.

        Raises:
            InvalidUsernameError: If username is blank
            DirectoryNotConfiguredError: If no directory session token is set
            UserNotFoundError: If no page contains an exact match
            ExternalTransportError / ExternalRejectionError: From the gateway
        """
        wanted = username.strip()
        if not wanted:
            raise InvalidUsernameError(username)
        if not self.session_token:
            raise DirectoryNotConfiguredError()

        needle = wanted.casefold()
        for page in range(1, self.max_pages + 1):
            result = await self.gateway.search_users(
                wanted, page, self.page_size, self.session_token
            )
            for item in result.items:
                if item.username.casefold() == needle:
                    logger.debug(
                        "directory_user_resolved",
                        username=item.username,
                        account_id=item.account_id,
                        page=page,
                    )
                    return item

            if not result.items or page * self.page_size >= result.total:
                break
        else:
            logger.warning(
                "directory_page_limit_reached", username=wanted, max_pages=self.max_pages
            )

        raise UserNotFoundError(wanted)

    async def resolve_and_authorize(self, identity: Identity, username: str) -> AccountSnapshot:
        """
        Resolve, then require the account to belong to `identity`.

        Raises:
            OwnershipMismatchError: If the account is linked to another identity
        """
        snapshot = await self.resolve(username)
        if snapshot.external_auth_id != identity.external_auth_id:
            logger.warning(
                "ownership_mismatch",
                username=snapshot.username,
                external_auth_id=identity.external_auth_id,
                owner_auth_id=snapshot.external_auth_id,
            )
            raise OwnershipMismatchError(
                snapshot.username, identity.external_auth_id, snapshot.external_auth_id
            )
        return snapshot
