"""
Key Pool Client - Hands validated keys to the downstream pool.

Request: POST {group_id, keys_text} with bearer auth, keys newline-joined.
A non-200 status is a failure of the whole batch. A 200 body may carry an
explicit split in success_keys / failed_keys.
"""

from dataclasses import dataclass

import httpx
from structlog import get_logger

from quota_bridge.exceptions import ExternalRejectionError, ExternalTransportError

logger = get_logger(__name__)

SERVICE_NAME = "key_pool"


@dataclass(frozen=True)
class PoolResponse:
    """Decoded push response. failed_keys is None when no split was reported."""

    message: str
    failed_keys: tuple[str, ...] | None


class KeyPoolClient:
    """HTTP client for the downstream key pool."""

    def __init__(
        self,
        timeout_seconds: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.timeout_seconds = timeout_seconds
        self._http_client = http_client

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._http_client

    async def aclose(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def push(
        self, endpoint: str, auth_token: str, group_id: int, keys: list[str]
    ) -> PoolResponse:
        """Push a batch of keys. Raises on transport failure or rejection."""
        try:
            response = await self.http_client.post(
                endpoint,
                json={"group_id": group_id, "keys_text": "\n".join(keys)},
                headers={"Authorization": f"Bearer {auth_token}"},
                timeout=self.timeout_seconds,
            )
        except httpx.HTTPError as e:
            logger.warning("key_pool_request_failed", error=str(e), keys=len(keys))
            raise ExternalTransportError(SERVICE_NAME, str(e) or type(e).__name__) from e

        if response.status_code != 200:
            raise ExternalRejectionError(
                SERVICE_NAME, f"push failed: HTTP {response.status_code} {response.reason_phrase}"
            )

        try:
            body = response.json()
        except ValueError:
            # Bare 200 with no JSON body counts as full success
            return PoolResponse(message="", failed_keys=None)

        if not isinstance(body, dict):
            return PoolResponse(message="", failed_keys=None)

        message = str(body.get("message") or "")
        if body.get("success") is False:
            raise ExternalRejectionError(SERVICE_NAME, message or "push rejected")

        failed = body.get("failed_keys")
        if not isinstance(failed, list):
            return PoolResponse(message=message, failed_keys=None)

        submitted = set(keys)
        # Only keys from this batch can be reported back as failed
        failed_keys = tuple(k for k in (str(f) for f in failed) if k in submitted)
        return PoolResponse(message=message, failed_keys=failed_keys)
