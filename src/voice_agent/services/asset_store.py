"""Cloudinary asset store for synthesized reply audio.

Uploads go through Cloudinary's signed upload REST endpoint with
httpx.AsyncClient and tenacity retries; the returned secure_url is the
durable retrieval URL recorded on the voice session.
"""

from __future__ import annotations

import hashlib
import time

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.voice_agent.config import Settings
from src.voice_agent.errors import IntegrationFailure

logger = structlog.get_logger(__name__)

_upload_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((httpx.ConnectError, httpx.TimeoutException)),
    reraise=True,
)

ASSET_FOLDER = "voice_agent"


def sign_params(params: dict[str, str], api_secret: str) -> str:
    """Cloudinary request signature: SHA-1 of sorted key=value pairs + secret."""
    to_sign = "&".join(f"{k}={params[k]}" for k in sorted(params) if params[k] != "")
    return hashlib.sha1(f"{to_sign}{api_secret}".encode("utf-8")).hexdigest()


class CloudinaryAssetStore:
    """Publishes binary assets to Cloudinary.

    Args:
        cloud_name: Cloudinary cloud name.
        api_key: Cloudinary API key.
        api_secret: Cloudinary API secret used for request signing.
    """

    BASE_URL = "https://api.cloudinary.com/v1_1"
    TIMEOUT = 60.0

    def __init__(self, cloud_name: str, api_key: str, api_secret: str) -> None:
        self._cloud_name = cloud_name
        self._api_key = api_key
        self._api_secret = api_secret

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.TIMEOUT)

    async def upload_audio(self, audio: bytes, call_id: str) -> str:
        """Upload a WAV reply for a call and return its secure URL.

        Raises:
            IntegrationFailure: If the upload fails or returns no URL.
        """
        public_id = f"{ASSET_FOLDER}/{call_id}-{int(time.time() * 1000)}"
        params = {
            "format": "wav",
            "public_id": public_id,
            "timestamp": str(int(time.time())),
        }
        form = {
            **params,
            "api_key": self._api_key,
            "signature": sign_params(params, self._api_secret),
        }

        try:
            data = await self._upload(form, audio)
        except httpx.HTTPError as exc:
            raise IntegrationFailure("cloudinary", f"upload failed: {exc}") from exc

        secure_url = data.get("secure_url")
        if not secure_url:
            raise IntegrationFailure("cloudinary", "upload returned no secure_url")

        logger.info(
            "cloudinary.uploaded",
            call_id=call_id,
            public_id=public_id,
            size_bytes=len(audio),
        )
        return secure_url

    @_upload_retry
    async def _upload(self, form: dict[str, str], audio: bytes) -> dict:
        async with self._client() as client:
            response = await client.post(
                f"{self.BASE_URL}/{self._cloud_name}/auto/upload",
                data=form,
                files={"file": ("reply.wav", audio, "audio/wav")},
            )
            response.raise_for_status()
            return response.json()


def build_asset_store(settings: Settings) -> CloudinaryAssetStore | None:
    """CloudinaryAssetStore when fully configured, otherwise None."""
    if not settings.cloudinary_configured:
        logger.info("cloudinary.unconfigured")
        return None
    return CloudinaryAssetStore(
        cloud_name=settings.CLOUDINARY_CLOUD_NAME,
        api_key=settings.CLOUDINARY_API_KEY,
        api_secret=settings.CLOUDINARY_API_SECRET,
    )
