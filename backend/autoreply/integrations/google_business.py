from __future__ import annotations

import abc

import httpx

from autoreply.services.sanitize import sanitize
from autoreply.settings import get_settings


class PublishError(Exception):
    """The review source rejected or never acknowledged a reply."""


class ReviewSourceClient(abc.ABC):
    """Boundary to the reputation platform that hosts the reviews."""

    @abc.abstractmethod
    async def post_reply(
        self,
        *,
        account_id: str,
        location_id: str,
        external_review_id: str,
        text: str,
    ) -> dict:
        """Publish (create or replace) the owner reply. Raises PublishError."""


class GoogleBusinessClient(ReviewSourceClient):
    def __init__(self, access_token: str | None, *, base_url: str, timeout: float = 20.0):
        self.access_token = access_token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _reply_url(self, account_id: str, location_id: str, external_review_id: str) -> str:
        account = account_id.removeprefix("accounts/")
        location = location_id.split("/")[-1]
        return f"{self.base_url}/accounts/{account}/locations/{location}/reviews/{external_review_id}/reply"

    async def post_reply(
        self,
        *,
        account_id: str,
        location_id: str,
        external_review_id: str,
        text: str,
    ) -> dict:
        if not self.access_token:
            raise PublishError("Google credentials not configured")

        url = self._reply_url(account_id, location_id, external_review_id)
        headers = {"Authorization": f"Bearer {self.access_token}"}
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.put(url, json={"comment": text}, headers=headers)
        except httpx.TimeoutException as e:
            raise PublishError(f"Google reply request timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise PublishError(f"Google connection error: {sanitize(str(e))}") from e

        if resp.status_code in (401, 403):
            raise PublishError("Google authentication failed: invalid or expired credentials")
        if resp.status_code == 429:
            raise PublishError("Google rate limit exceeded")
        if resp.status_code >= 400:
            raise PublishError(f"Google API {resp.status_code}: {sanitize(resp.text[:300])}")
        try:
            return resp.json()
        except ValueError:
            return {}


def get_review_source_client() -> ReviewSourceClient:
    s = get_settings()
    return GoogleBusinessClient(
        s.google_access_token,
        base_url=s.google_api_base_url,
        timeout=s.publish_timeout_sec,
    )
