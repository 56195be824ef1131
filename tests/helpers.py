"""Test doubles for the Graph API and asyncio.sleep."""

import json
from typing import Any, Dict, List

import httpx

from app.connectors.meta.client import MetaClient


class SleepRecorder:
    """Stands in for asyncio.sleep and remembers every delay requested."""

    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FakeGraph:
    """Routes Graph API requests by the last path segment.

    `routes[edge]` is either a JSON-able payload (served with 200) or a
    callable taking the request and returning an httpx.Response.
    """

    def __init__(self):
        self.routes: Dict[str, Any] = {}
        self.requests: List[httpx.Request] = []

    def edge(self, request: httpx.Request) -> str:
        path = request.url.path.rstrip("/")
        return path.rsplit("/", 1)[-1]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get(self.edge(request))
        if route is None:
            return httpx.Response(404, json={"error": {"code": 803, "message": "Unknown path"}})
        if callable(route):
            return route(request)
        return httpx.Response(200, json=route)

    def calls_to(self, edge: str) -> List[httpx.Request]:
        return [r for r in self.requests if self.edge(r) == edge]

    def client(self, sleep: SleepRecorder, account: str = "123") -> MetaClient:
        return MetaClient(
            access_token="tok",
            ad_account_id=account,
            transport=httpx.MockTransport(self),
            sleep=sleep,
            retry_delays=[5.0, 10.0],
            page_delay=0.5,
        )


def graph_error(code: int, message: str = "error", status: int = 400) -> httpx.Response:
    return httpx.Response(status, json={"error": {"code": code, "message": message}})


def batch_item(body: Any, code: int = 200) -> Dict[str, Any]:
    return {"code": code, "body": json.dumps(body)}


def batch_payload(request: httpx.Request) -> List[Dict[str, Any]]:
    """Decode the `batch` form field of a Graph batch POST."""
    form = httpx.QueryParams(request.content.decode())
    return json.loads(form["batch"])
