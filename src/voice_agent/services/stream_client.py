"""Async HTTP client wrapper for the Stream Video server-side REST API.

Provides StreamClient with retry logic (tenacity, 3 attempts, exponential
backoff 1-10s). Server requests are authenticated with a JWT signed by the
API secret (python-jose), the same secret that signs inbound webhooks.

Covers the calls the voice agent needs: participant identity upsert,
post-call artifact download, and webhook signature verification.
"""

from __future__ import annotations

import hashlib
import hmac
from urllib.parse import quote

import httpx
import structlog
from jose import jwt
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.voice_agent.errors import IntegrationFailure

logger = structlog.get_logger(__name__)

_stream_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((httpx.HTTPStatusError, httpx.ConnectError, httpx.TimeoutException)),
    reraise=True,
)

DICEBEAR_BASE_URL = "https://api.dicebear.com/9.x"


def generated_avatar_uri(seed: str, variant: str = "botttsNeutral") -> str:
    """DiceBear avatar URL used as the agent's participant image.

    Args:
        seed: Seed string, normally the agent name.
        variant: "botttsNeutral" for agents, "initials" for people.
    """
    style = "bottts-neutral" if variant == "botttsNeutral" else "initials"
    return f"{DICEBEAR_BASE_URL}/{style}/svg?seed={quote(seed)}"


class StreamClient:
    """Async client for Stream Video server-side operations.

    Args:
        api_key: Stream API key (public identifier, sent as query param).
        api_secret: Stream API secret (signs server tokens and webhooks).
        base_url: API base URL.
    """

    TIMEOUT_MUTATE = 15.0
    TIMEOUT_READ = 30.0

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        base_url: str = "https://video.stream-io-api.com",
    ) -> None:
        self._api_key = api_key
        self._api_secret = api_secret
        self._base_url = base_url.rstrip("/")

    def _server_token(self) -> str:
        return jwt.encode({"server": True}, self._api_secret, algorithm="HS256")

    def _client(self, timeout: float) -> httpx.AsyncClient:
        """Create a new httpx client with specified timeout."""
        return httpx.AsyncClient(
            headers={
                "Authorization": self._server_token(),
                "stream-auth-type": "jwt",
                "Content-Type": "application/json",
            },
            params={"api_key": self._api_key},
            timeout=timeout,
        )

    def _artifact_client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    def verify_webhook(self, body: bytes | str, signature: str) -> bool:
        """Check a webhook signature (hex HMAC-SHA256 of the raw body).

        Comparison is constant time. An unconfigured secret never verifies.
        """
        if not self._api_secret or not signature:
            return False
        raw = body.encode("utf-8") if isinstance(body, str) else body
        expected = hmac.new(
            self._api_secret.encode("utf-8"), raw, hashlib.sha256
        ).hexdigest()
        return hmac.compare_digest(expected, signature.strip().lower())

    async def upsert_users(self, users: list[dict]) -> dict:
        """Create or update call participants (idempotent).

        Args:
            users: Dicts with id, name, role and optional image.

        Raises:
            IntegrationFailure: If the request still fails after retries.
        """
        try:
            return await self._upsert_users(users)
        except httpx.HTTPError as exc:
            raise IntegrationFailure("stream", f"upsert_users failed: {exc}") from exc

    @_stream_retry
    async def _upsert_users(self, users: list[dict]) -> dict:
        async with self._client(self.TIMEOUT_MUTATE) as client:
            response = await client.post(
                f"{self._base_url}/api/v2/users",
                json={"users": {u["id"]: u for u in users}},
            )
            response.raise_for_status()
            logger.info(
                "stream.users_upserted",
                user_ids=[u["id"] for u in users],
            )
            return response.json()

    async def fetch_artifact(self, url: str) -> str:
        """Download a transcript or recording artifact as text.

        Artifact URLs are pre-signed, so no Stream auth headers are sent.

        Raises:
            IntegrationFailure: If the download fails after retries.
        """
        try:
            return await self._fetch_artifact(url)
        except httpx.HTTPError as exc:
            raise IntegrationFailure("stream", f"artifact fetch failed: {exc}") from exc

    @_stream_retry
    async def _fetch_artifact(self, url: str) -> str:
        async with self._artifact_client(self.TIMEOUT_READ) as client:
            response = await client.get(url)
            response.raise_for_status()
            logger.info(
                "stream.artifact_fetched",
                status_code=response.status_code,
                size_bytes=len(response.content),
            )
            return response.text
