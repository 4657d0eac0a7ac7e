"""Inngest event sender for downstream meeting processing.

After a transcript is ready the meeting is handed to the background
processing pipeline (summaries and the like) by sending a
``meetings/processing`` event. Delivery is fire-and-forget from the
webhook's point of view: failures are logged by the caller, never retried
here.
"""

from __future__ import annotations

import httpx
import structlog

from src.voice_agent.errors import IntegrationFailure

logger = structlog.get_logger(__name__)

MEETING_PROCESSING_EVENT = "meetings/processing"


class InngestNotifier:
    """Sends events to the Inngest event API.

    Args:
        event_key: Inngest event key. Empty disables sending.
        base_url: Event API base URL (override for the local dev server).
    """

    TIMEOUT = 10.0

    def __init__(self, event_key: str, base_url: str = "https://inn.gs") -> None:
        self._event_key = event_key
        self._base_url = base_url.rstrip("/")

    @property
    def enabled(self) -> bool:
        return bool(self._event_key)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.TIMEOUT)

    async def send(self, name: str, data: dict) -> bool:
        """Send one event. Returns False when sending is disabled.

        Raises:
            IntegrationFailure: If the event API rejects or is unreachable.
        """
        if not self.enabled:
            logger.info("inngest.disabled", event_name=name)
            return False
        try:
            async with self._client() as client:
                response = await client.post(
                    f"{self._base_url}/e/{self._event_key}",
                    json={"name": name, "data": data},
                )
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise IntegrationFailure("inngest", f"send failed: {exc}") from exc

        logger.info("inngest.event_sent", event_name=name)
        return True

    async def meeting_processing(self, meeting_id: str, transcript_url: str | None) -> bool:
        return await self.send(
            MEETING_PROCESSING_EVENT,
            {"meetingId": meeting_id, "transcriptUrl": transcript_url},
        )
