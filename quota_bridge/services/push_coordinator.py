"""
Push Coordinator - Hands live keys to the downstream pool.

Never raises for push failures; every result is folded into a PushOutcome
so the caller can persist it on the donation record.
"""

from structlog import get_logger

from quota_bridge.exceptions import ExternalRejectionError, ExternalTransportError
from quota_bridge.models.api import PushStatus
from quota_bridge.models.domain import AdminTunables, PushOutcome
from quota_bridge.services.key_pool import KeyPoolClient

logger = get_logger(__name__)

PUSH_NOT_CONFIGURED = "push not configured"


class PushCoordinator:
    """Turns key pool calls into push outcomes."""

    def __init__(self, client: KeyPoolClient) -> None:
        self.client = client

    async def push(self, tunables: AdminTunables, keys: list[str]) -> PushOutcome:
        """
        Push `keys` using the endpoint and token from `tunables`.

        - missing endpoint or token: failed, every key failed
        - transport error or rejection: failed, every key failed
        - no split reported, or empty failed list: success
        - failed keys reported: partial, even when every key is listed
        """
        if not tunables.push_configured:
            logger.warning("push_not_configured", keys=len(keys))
            return PushOutcome(
                status=PushStatus.FAILED, message=PUSH_NOT_CONFIGURED, failed_keys=tuple(keys)
            )

        try:
            response = await self.client.push(
                tunables.push_endpoint, tunables.push_auth_token, tunables.push_group_id, keys
            )
        except (ExternalTransportError, ExternalRejectionError) as e:
            logger.warning("push_failed", keys=len(keys), error=str(e))
            return PushOutcome(status=PushStatus.FAILED, message=str(e), failed_keys=tuple(keys))

        if not response.failed_keys:
            logger.info("push_succeeded", keys=len(keys))
            return PushOutcome(
                status=PushStatus.SUCCESS, message=response.message or "pushed", failed_keys=()
            )

        failed = response.failed_keys
        logger.warning("push_partial", keys=len(keys), failed=len(failed))
        return PushOutcome(
            status=PushStatus.PARTIAL,
            message=response.message or f"{len(failed)} of {len(keys)} keys rejected",
            failed_keys=failed,
        )
