"""Shared fixtures: an event recorder and a scriptable aiohttp backend."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from whereami_gateway.client import WhereamiClient
from whereami_gateway.config import GatewayConfig
from whereami_gateway.events import EventBus


@dataclass
class RecordedRequest:
    method: str
    path: str
    query: Dict[str, str]
    body: str
    headers: Dict[str, str]

    def json(self) -> Any:
        return json.loads(self.body)


@dataclass
class Route:
    status: int = 200
    body: str = ""
    delay: float = 0.0
    content_type: str = "application/json"


class FakeBackend:
    """Minimal stand-in for the whereami HTTP API; routes are scripted per test."""

    def __init__(self) -> None:
        self.app = web.Application()
        self.app.router.add_route("*", "/{tail:.*}", self._handle)
        self.routes: Dict[Tuple[str, str], Route] = {}
        self.requests: List[RecordedRequest] = []
        self.completed: List[Tuple[str, str]] = []
        self.port: Optional[int] = None

    def respond(
        self,
        method: str,
        path: str,
        *,
        status: int = 200,
        json_body: Any = None,
        text: Optional[str] = None,
        delay: float = 0.0,
    ) -> None:
        if text is None:
            text = "" if json_body is None else json.dumps(json_body)
            content_type = "application/json"
        else:
            content_type = "text/plain"
        self.routes[(method, path)] = Route(status=status, body=text, delay=delay, content_type=content_type)

    async def _handle(self, request: web.Request) -> web.StreamResponse:
        body = await request.text()
        self.requests.append(RecordedRequest(
            method=request.method,
            path=request.path,
            query=dict(request.query),
            body=body,
            headers=dict(request.headers),
        ))
        route = self.routes.get((request.method, request.path))
        if route is None:
            return web.Response(status=404, text="not found")
        if route.delay:
            await asyncio.sleep(route.delay)
        self.completed.append((request.method, request.path))
        if route.status == 204:
            return web.Response(status=204)
        return web.Response(status=route.status, text=route.body, content_type=route.content_type)


class EventRecorder:
    def __init__(self, bus: EventBus) -> None:
        self.events: List[Tuple[str, tuple]] = []
        bus.subscribe_all(self._record)

    def _record(self, name: str, *args: Any) -> None:
        self.events.append((name, args))

    def names(self) -> List[str]:
        return [name for name, _ in self.events]

    def args_of(self, name: str) -> List[tuple]:
        return [args for event, args in self.events if event == name]

    def only(self, name: str) -> tuple:
        matches = self.args_of(name)
        assert len(matches) == 1, f"expected exactly one {name}, got {self.names()}"
        return matches[0]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    import os

    for key in list(os.environ):
        if key.startswith("WHEREAMI_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
async def backend():
    fake = FakeBackend()
    server = TestServer(fake.app)
    await server.start_server()
    fake.port = server.port
    yield fake
    await server.close()


@pytest.fixture
async def client(backend):
    config = GatewayConfig(api_port=backend.port, request_timeout_ms=2000)
    gateway = WhereamiClient(config)
    yield gateway
    await gateway.close()


@pytest.fixture
async def offline_client():
    gateway = WhereamiClient(GatewayConfig.offline_config())
    yield gateway
    await gateway.close()


@pytest.fixture
def recorder(client):
    return EventRecorder(client.events)


@pytest.fixture
def offline_recorder(offline_client):
    return EventRecorder(offline_client.events)
