"""
Key Probe - Liveness check for a donated inference key.

Issues a one-token completion. HTTP 200 or 429 means the key is live;
any other status means it is dead.
"""

import httpx
from structlog import get_logger

from quota_bridge.observability.metrics import metrics

logger = get_logger(__name__)

LIVE_STATUS_CODES = frozenset({200, 429})


def key_fingerprint(key: str) -> str:
    """Short prefix for logs. Full keys are never logged."""
    return f"{key[:6]}..." if len(key) > 6 else "***"


class KeyProbe:
    """Probes keys against the inference endpoint."""

    def __init__(
        self,
        base_url: str,
        model: str,
        timeout_seconds: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
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

    async def is_live(self, key: str) -> bool:
        """
        Probe a single key.

        Transport failures (timeouts, resets) classify the key as dead.
        Cancellation propagates.
        """
        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": "test"}],
            "max_tokens": 1,
        }
        try:
            response = await self.http_client.post(
                f"{self.base_url}/chat/completions",
                json=payload,
                headers={"Authorization": f"Bearer {key}"},
                timeout=self.timeout_seconds,
            )
        except httpx.HTTPError as e:
            logger.info("key_probe_transport_error", key_fp=key_fingerprint(key), error=str(e))
            metrics.record_probe(live=False)
            return False

        live = response.status_code in LIVE_STATUS_CODES
        logger.debug(
            "key_probed", key_fp=key_fingerprint(key), status=response.status_code, live=live
        )
        metrics.record_probe(live=live)
        return live
