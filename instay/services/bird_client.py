"""
Bird conversations API client.

Fetches recent message/contact events for the configured workspace channel.
Only the read side lives here; sending is handled elsewhere.
"""
import logging
from typing import Optional

import httpx

from config.settings import settings
from instay.services.resilience import (
    BIRD_API_RETRY,
    ServiceUnavailableError,
    TransientServiceError,
    is_retryable_status,
    retry_async,
)

logger = logging.getLogger(__name__)


class BirdError(ServiceUnavailableError):
    """Error communicating with the Bird API."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__("bird", message)


class BirdTransientError(BirdError, TransientServiceError):
    """Bird failure worth retrying."""
    pass


class BirdClient:
    """Client for the Bird channel messages endpoint."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        workspace_id: Optional[str] = None,
        channel_id: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.bird_api_key
        self.workspace_id = workspace_id if workspace_id is not None else settings.bird_workspace_id
        self.channel_id = channel_id if channel_id is not None else settings.bird_channel_id
        self.base_url = (base_url or settings.bird_api_url).rstrip("/")
        self.timeout = timeout or settings.bird_timeout

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.workspace_id and self.channel_id)

    @property
    def messages_url(self) -> str:
        return (
            f"{self.base_url}/workspaces/{self.workspace_id}"
            f"/channels/{self.channel_id}/messages"
        )

    def _headers(self) -> dict:
        return {
            "Authorization": f"AccessKey {self.api_key}",
            "Accept": "application/json",
        }

    async def fetch_recent_events(self, limit: Optional[int] = None) -> list[dict]:
        """
        Fetch the most recent channel messages.

        Args:
            limit: Maximum messages to request (default from settings)

        Returns:
            Raw Bird message dicts; [] when the client is not configured.

        Raises:
            BirdError: If the API cannot be reached after retries
        """
        if not self.configured:
            logger.debug("Bird API not configured; no messages fetched")
            return []
        return await self._fetch(limit or settings.message_fetch_limit)

    @retry_async(config=BIRD_API_RETRY)
    async def _fetch(self, limit: int) -> list[dict]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(
                    self.messages_url,
                    params={"limit": limit},
                    headers=self._headers(),
                )
        except httpx.TimeoutException as e:
            raise BirdTransientError(f"Timeout fetching messages: {e}")
        except httpx.HTTPError as e:
            raise BirdTransientError(f"Connection error fetching messages: {e}")

        if response.status_code != 200:
            message = f"Bird API returned {response.status_code}: {response.text[:200]}"
            if is_retryable_status(response.status_code):
                raise BirdTransientError(message, response.status_code)
            raise BirdError(message, response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            raise BirdError(f"Invalid JSON from Bird API: {e}", response.status_code)

        results = data.get("results") if isinstance(data, dict) else None
        if not isinstance(results, list):
            return []
        return [m for m in results if isinstance(m, dict)]


_bird_client: Optional[BirdClient] = None


def get_bird_client() -> BirdClient:
    global _bird_client
    if _bird_client is None:
        _bird_client = BirdClient()
    return _bird_client


def reset_bird_client() -> None:
    global _bird_client
    _bird_client = None
