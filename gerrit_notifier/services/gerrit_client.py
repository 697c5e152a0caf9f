"""Gerrit REST API client (the subset the notifier needs)."""

import base64
import json
from typing import Any, Optional
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ConfigDict, Field

from gerrit_notifier.models.event import change_id_with_project_number
from gerrit_notifier.utils.errors import GerritAPIError
from gerrit_notifier.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)

# Gerrit prefixes JSON responses with this line to defeat XSSI.
XSSI_PREFIX = ")]}'"

PROJECT_CONFIG_BRANCH = "refs/meta/config"
PROJECT_CONFIG_PATH = "project.config"


class ReviewerInfo(BaseModel):
    """Reviewer entry returned by the reviewers endpoint."""
    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    account_id: Optional[int] = Field(None, alias="_account_id")
    name: str = ""
    email: str = ""
    username: str = ""


def parse_json_response(text: str) -> Any:
    """Strip the XSSI guard and decode a Gerrit JSON body."""
    if text.startswith(XSSI_PREFIX):
        text = text[len(XSSI_PREFIX):]
    return json.loads(text)


class GerritClient:
    """
    Async Gerrit REST client using basic auth against the ``/a/`` prefix.

    The underlying httpx client may be injected (tests pass one backed by
    ``httpx.MockTransport``); otherwise one is created and owned here.
    """

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        timeout: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._owns_client = http_client is None
        self._auth = httpx.BasicAuth(username, password)
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    def __repr__(self) -> str:
        return f"<GerritClient {self.base_url}>"

    async def __aenter__(self) -> "GerritClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _get(self, path: str) -> httpx.Response:
        url = f"{self.base_url}/a/{path}"
        try:
            response = await self._client.get(url, auth=self._auth)
        except httpx.HTTPError as e:
            raise GerritAPIError(f"GET {path} failed: {e}") from e

        if response.status_code != 200:
            raise GerritAPIError(
                f"GET {path} returned {response.status_code}",
                status_code=response.status_code,
            )
        return response

    async def _get_json(self, path: str) -> Any:
        response = await self._get(path)
        try:
            return parse_json_response(response.text)
        except ValueError as e:
            raise GerritAPIError(f"GET {path} returned invalid JSON: {e}") from e

    async def get_account(self, account: str = "self") -> dict:
        """Fetch an account; used at startup to validate credentials."""
        return await self._get_json(f"accounts/{quote(account, safe='')}")

    async def get_project_parent(self, project: str) -> str:
        """Return the parent project name, or "" for the root project."""
        parent = await self._get_json(f"projects/{quote(project, safe='')}/parent")
        return parent or ""

    async def get_branch_file_content(self, project: str, branch: str, path: str) -> str:
        """Fetch a file from a branch; Gerrit returns it base64-encoded."""
        response = await self._get(
            f"projects/{quote(project, safe='')}"
            f"/branches/{quote(branch, safe='')}"
            f"/files/{quote(path, safe='')}/content"
        )
        try:
            return base64.b64decode(response.text).decode("utf-8")
        except ValueError as e:
            raise GerritAPIError(f"Invalid file content for {project}:{path}: {e}") from e

    async def get_project_config(self, project: str) -> str:
        """Fetch the raw project.config text from refs/meta/config."""
        return await self.get_branch_file_content(project, PROJECT_CONFIG_BRANCH, PROJECT_CONFIG_PATH)

    async def list_reviewers(self, project: str, number: int) -> list[ReviewerInfo]:
        """List reviewers on a change."""
        change_id = change_id_with_project_number(project, number)
        data = await self._get_json(f"changes/{change_id}/reviewers/")
        reviewers = [ReviewerInfo.model_validate(item) for item in data or []]
        logger.debug(
            "Fetched reviewers",
            project=project,
            change_number=number,
            reviewer_count=len(reviewers)
        )
        return reviewers
