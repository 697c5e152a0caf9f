"""Test helper functions."""

import base64
import json
from typing import Any, Callable, Dict, List, Optional

import httpx

from gerrit_notifier.services.gerrit_client import XSSI_PREFIX


def gerrit_json_response(data: Any, status_code: int = 200) -> httpx.Response:
    """Gerrit-style JSON response, XSSI guard included."""
    return httpx.Response(status_code, text=f"{XSSI_PREFIX}\n{json.dumps(data)}")


def gerrit_file_response(contents: str) -> httpx.Response:
    """Gerrit-style file content response (base64 body)."""
    return httpx.Response(200, text=base64.b64encode(contents.encode("utf-8")).decode("ascii"))


class FakeEnricher:
    """Mentions known emails as <@ID>, everything else by name."""

    def __init__(self, users: Optional[Dict[str, str]] = None):
        self.users = {email.lower(): user_id for email, user_id in (users or {}).items()}

    def mention_user(self, email: str, name: str) -> str:
        user_id = self.users.get((email or "").lower())
        return f"<@{user_id}>" if user_id else name


class RecordingTransport:
    """
    httpx.MockTransport wrapper that records requests.

    ``routes`` maps a URL path to a response or a callable returning one;
    unknown paths get a 404.
    """

    def __init__(self, routes: Optional[Dict[str, Any]] = None):
        self.routes = routes or {}
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(request.url.raw_path.decode("ascii").split("?")[0])
        if route is None:
            return httpx.Response(404, text="Not found")
        if callable(route):
            return route(request)
        # Fresh response per request; httpx closes the one it returns.
        return httpx.Response(route.status_code, headers=route.headers, content=route.content)

    def client(self, **kwargs) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self), **kwargs)

    @property
    def paths(self) -> List[str]:
        return [request.url.raw_path.decode("ascii").split("?")[0] for request in self.requests]


def status_sequence(*statuses: int) -> Callable[[httpx.Request], httpx.Response]:
    """Route answering with the given statuses in turn, repeating the last one."""
    remaining = list(statuses)

    def respond(request: httpx.Request) -> httpx.Response:
        status = remaining.pop(0) if len(remaining) > 1 else remaining[0]
        return httpx.Response(status, text="ok" if status == 200 else "error")

    return respond


def posted_payloads(transport: RecordingTransport) -> List[dict]:
    """JSON bodies of every POST the transport saw."""
    return [json.loads(request.content) for request in transport.requests if request.method == "POST"]
