"""Pytest fixtures: a fake MAPI served through httpx.MockTransport."""

import json
from dataclasses import dataclass, field
from typing import Any

import httpx
import pytest
from loguru import logger

from mapi.client import MapiClient

BASE_URL = "http://mapi.test"


@dataclass
class Route:
    status: int = 200
    body: Any = None
    content: bytes | None = None
    headers: dict[str, str] = field(default_factory=dict)
    error: type[httpx.TransportError] | None = None


class FakeMapi:
    """Records requests and answers them from a (method, path) route table."""

    def __init__(self):
        self.routes: dict[tuple[str, str], Route] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, path: str, **kwargs) -> None:
        self.routes[(method, path)] = Route(**kwargs)

    def calls(self, method: str | None = None, path: str | None = None) -> list[httpx.Request]:
        return [
            r
            for r in self.requests
            if (method is None or r.method == method)
            and (path is None or r.url.path == path)
        ]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(
                404,
                json={"code": "NotFoundError", "messages": [f"{request.url.path} not found"]},
            )
        if route.error is not None:
            raise route.error("connection refused", request=request)
        if route.content is not None:
            content = route.content
        elif route.body is not None:
            content = json.dumps(route.body).encode()
        else:
            content = b""
        return httpx.Response(route.status, content=content, headers=route.headers)


@pytest.fixture
def fake_mapi() -> FakeMapi:
    return FakeMapi()


@pytest.fixture
async def client(fake_mapi):
    """MapiClient talking to the fake MAPI, cache enabled."""
    mapi = MapiClient(
        BASE_URL,
        "admin",
        "secret",
        transport=httpx.MockTransport(fake_mapi.handler),
    )
    yield mapi
    await mapi.close()


@pytest.fixture
async def uncached_client(fake_mapi):
    mapi = MapiClient(
        BASE_URL,
        "admin",
        "secret",
        cache=False,
        transport=httpx.MockTransport(fake_mapi.handler),
    )
    yield mapi
    await mapi.close()


@pytest.fixture
def log_messages():
    """Collect loguru messages emitted during a test."""
    messages: list[str] = []
    handler_id = logger.add(
        lambda message: messages.append(message.record["message"]), level="DEBUG"
    )
    yield messages
    logger.remove(handler_id)
