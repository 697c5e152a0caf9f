"""Slack user directory - map Gerrit emails to Slack mentions."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol

import aiohttp
from slack_sdk.errors import SlackClientError
from slack_sdk.web.async_client import AsyncWebClient

from gerrit_notifier.utils.errors import DirectoryError
from gerrit_notifier.utils.logging import get_structured_logger, mask_email

logger = get_structured_logger(__name__)

USERS_PAGE_SIZE = 200
DEFAULT_MAX_AGE = timedelta(hours=1)


class MessageEnricher(Protocol):
    """Anything that can turn an identity into a mention string."""

    def mention_user(self, email: str, name: str) -> str:
        ...


class SlackDirectory:
    """
    Email to Slack user ID cache.

    The snapshot is replaced wholesale on refresh, so concurrent readers
    always see either the old or the new map. Without a token the
    directory is permanently empty and mentions fall back to names.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        client: Optional[AsyncWebClient] = None,
        timeout: float = 10.0,
    ):
        self._token = token or None
        self._client = client
        if self._client is None and self._token:
            self._client = AsyncWebClient(token=self._token, timeout=int(timeout))
        self._email_to_id: dict[str, str] = {}
        self.refreshed_at: Optional[datetime] = None
        self._refresh_task: Optional[asyncio.Task] = None

    def __repr__(self) -> str:
        return f"<SlackDirectory enabled={self.enabled} users={len(self._email_to_id)}>"

    @property
    def enabled(self) -> bool:
        return self._token is not None

    def mention_user(self, email: str, name: str) -> str:
        """Return a Slack mention for a known email, else the plain name."""
        user_id = self._email_to_id.get((email or "").lower())
        if user_id:
            return f"<@{user_id}>"
        logger.debug("No Slack user for email", email=mask_email(email))
        return name

    def is_stale(self, max_age: timedelta = DEFAULT_MAX_AGE) -> bool:
        if self.refreshed_at is None:
            return True
        return datetime.now(timezone.utc) - self.refreshed_at > max_age

    async def refresh(self) -> None:
        """
        Load the full user list and swap it in.

        Raises DirectoryError when Slack cannot be reached or rejects the
        request; the previous snapshot is kept in that case.
        """
        if not self.enabled:
            return

        email_to_id = {}
        async for member in self._iter_members():
            email = (member.get("profile") or {}).get("email", "")
            if email and not member.get("deleted"):
                email_to_id[email.lower()] = member["id"]

        self._email_to_id = email_to_id
        self.refreshed_at = datetime.now(timezone.utc)
        logger.info("Loaded users from Slack", user_count=len(email_to_id))

    def refresh_if_stale(self, max_age: timedelta = DEFAULT_MAX_AGE) -> Optional[asyncio.Task]:
        """
        Start a background refresh when the snapshot is older than max_age.

        Never blocks the caller and never raises; at most one refresh runs
        at a time. Returns the refresh task when one was started.
        """
        if not self.enabled or not self.is_stale(max_age):
            return None
        if self._refresh_task is not None and not self._refresh_task.done():
            return None

        self._refresh_task = asyncio.create_task(self._refresh_logged())
        return self._refresh_task

    async def _refresh_logged(self) -> None:
        try:
            await self.refresh()
        except DirectoryError as e:
            logger.error("Error refreshing Slack users", error=str(e))

    async def _iter_members(self):
        cursor = None
        while True:
            try:
                response = await self._client.users_list(limit=USERS_PAGE_SIZE, cursor=cursor)
            except SlackClientError as e:
                raise DirectoryError(f"Slack users.list failed: {e}") from e
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                raise DirectoryError(f"Failed to reach Slack: {e}") from e

            for member in response.get("members") or []:
                yield member

            cursor = (response.get("response_metadata") or {}).get("next_cursor")
            if not cursor:
                break
