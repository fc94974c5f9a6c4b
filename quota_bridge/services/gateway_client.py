"""
Gateway Client - Directory search and quota mutation against the gateway.

Both endpoints authenticate with the operator's directory session cookie
plus the new-api-user header, and answer with a {success, message, ...}
envelope.
"""

from typing import Any

import httpx
from structlog import get_logger

from quota_bridge.exceptions import ExternalRejectionError, ExternalTransportError
from quota_bridge.models.domain import AccountSnapshot, DirectoryPage

logger = get_logger(__name__)

SERVICE_NAME = "gateway"


class GatewayClient:
    """HTTP client for the gateway's user administration API."""

    def __init__(
        self,
        base_url: str,
        api_user: str,
        timeout_seconds: float = 15.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_user = api_user
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

    def _headers(self, session_token: str) -> dict[str, str]:
        return {
            "Cookie": f"session={session_token}",
            "new-api-user": self.api_user,
        }

    async def _send(self, method: str, path: str, session_token: str, **kwargs: Any) -> Any:
        """Send a request and return the decoded envelope, raising on transport failure."""
        url = f"{self.base_url}{path}"
        try:
            response = await self.http_client.request(
                method,
                url,
                headers=self._headers(session_token),
                timeout=self.timeout_seconds,
                **kwargs,
            )
        except httpx.HTTPError as e:
            logger.warning("gateway_request_failed", method=method, path=path, error=str(e))
            raise ExternalTransportError(SERVICE_NAME, str(e) or type(e).__name__) from e

        try:
            body = response.json()
        except ValueError as e:
            logger.warning(
                "gateway_response_undecodable",
                method=method,
                path=path,
                status=response.status_code,
            )
            raise ExternalTransportError(
                SERVICE_NAME, f"undecodable response (HTTP {response.status_code})"
            ) from e

        if not isinstance(body, dict):
            raise ExternalTransportError(SERVICE_NAME, "unexpected response shape")

        if not body.get("success", False):
            message = body.get("message") or f"HTTP {response.status_code}"
            logger.info("gateway_request_rejected", method=method, path=path, message=message)
            raise ExternalRejectionError(SERVICE_NAME, message)

        return body

    async def search_users(
        self, keyword: str, page: int, page_size: int, session_token: str
    ) -> DirectoryPage:
        """
        Search the directory by username keyword.

        Pages are 1-based. The match is fuzzy on the gateway side; callers
        filter for exact matches.
        """
        body = await self._send(
            "GET",
            "/api/user/search",
            session_token,
            params={"keyword": keyword, "p": page, "page_size": page_size},
        )

        data = body.get("data") or {}
        try:
            items = tuple(
                AccountSnapshot(
                    account_id=int(item["id"]),
                    username=str(item.get("username", "")),
                    display_name=str(item.get("display_name") or ""),
                    external_auth_id=str(item.get("linux_do_id") or ""),
                    quota=int(item.get("quota", 0)),
                    used_quota=int(item.get("used_quota", 0)),
                    group=str(item.get("group") or ""),
                )
                for item in data.get("items") or []
            )
            total = int(data.get("total", 0))
        except (KeyError, TypeError, ValueError) as e:
            raise ExternalTransportError(SERVICE_NAME, f"malformed directory page: {e}") from e

        return DirectoryPage(items=items, total=total)

    async def update_quota(
        self,
        account_id: int,
        new_quota: int,
        username: str,
        group: str,
        session_token: str,
    ) -> None:
        """Set an account's absolute quota. Raises ExternalRejectionError on success=false."""
        await self._send(
            "PUT",
            "/api/user/",
            session_token,
            json={
                "id": account_id,
                "quota": new_quota,
                "username": username,
                "group": group,
            },
        )
        logger.info("gateway_quota_set", account_id=account_id, new_quota=new_quota)
