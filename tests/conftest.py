"""Shared fixtures: a scripted fake Loki behind httpx.MockTransport."""

from __future__ import annotations

import datetime
from typing import Callable, Generator

import httpx
import pytest

from loki_check.verifier import IngestionVerifier

LOKI_URL = "http://loki.test:3100"
FIXED_NOW = datetime.datetime(2024, 3, 1, 12, 30, 45, 123456, tzinfo=datetime.timezone.utc)


def loki_body(*streams: list[list[str]], labels: dict[str, str] | None = None) -> dict:
    """query_range envelope with one stream per ``values`` list."""
    return {
        "status": "success",
        "data": {
            "resultType": "streams",
            "result": [
                {"stream": labels or {"level": "INFO"}, "values": values}
                for values in streams
            ],
        },
    }


class FakeLoki:
    """
    Serves a queue of scripted replies, one per request.

    Each item is an ``httpx.Response``, a dict (sent as a 200 JSON body) or an
    exception instance (raised as a transport error). The last item repeats.
    """

    def __init__(self, *replies):
        self.replies = list(replies)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        reply = self.replies[min(len(self.requests), len(self.replies)) - 1]
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, dict):
            return httpx.Response(200, json=reply)
        # fresh copy, a Response can only be sent once
        return httpx.Response(reply.status_code, headers=reply.headers, content=reply.content)

    @property
    def attempts(self) -> int:
        return len(self.requests)


@pytest.fixture
def fixed_now() -> Callable[[], datetime.datetime]:
    return lambda: FIXED_NOW


@pytest.fixture
def make_verifier(fixed_now) -> Generator[Callable[..., IngestionVerifier], None, None]:
    """Build an IngestionVerifier talking to the given FakeLoki."""
    clients: list[httpx.Client] = []

    def _make(fake: FakeLoki, **kwargs) -> IngestionVerifier:
        client = httpx.Client(transport=httpx.MockTransport(fake))
        clients.append(client)
        kwargs.setdefault("now", fixed_now)
        return IngestionVerifier(client, **kwargs)

    yield _make

    for client in clients:
        client.close()


def connect_error() -> httpx.ConnectError:
    return httpx.ConnectError("[Errno 111] Connection refused")


