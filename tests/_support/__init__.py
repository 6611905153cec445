"""
Test support utilities for dataspine tests.

Helpers that are not fixtures but are shared across test modules: canned
Data API envelopes and a recording fake server for ``httpx.MockTransport``.
"""

from __future__ import annotations

import inspect
import json
from typing import Any, Callable

import httpx

ENDPOINT = "https://01234567-89ab-cdef-0123-456789abcdef-us-east1.apps.example.com"
TOKEN = "AstraCS:test-token"


def envelope(status: Any = None, data: Any = None, errors: Any = None) -> httpx.Response:
    """200 response carrying a Data API envelope."""
    body: dict[str, Any] = {}
    if status is not None:
        body["status"] = status
    if data is not None:
        body["data"] = data
    if errors is not None:
        body["errors"] = errors
    return httpx.Response(200, json=body)


class FakeDataApi:
    """Records requests and answers through ``handler(request, body)``.

    The handler may be sync or async and returns an ``httpx.Response``.
    """

    def __init__(self, handler: Callable[[httpx.Request, Any], Any]):
        self.handler = handler
        self.requests: list[httpx.Request] = []
        self.bodies: list[Any] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        self.requests.append(request)
        self.bodies.append(body)
        result = self.handler(request, body)
        if inspect.isawaitable(result):
            result = await result
        return result

    @property
    def calls(self) -> int:
        return len(self.requests)


__all__ = ["ENDPOINT", "TOKEN", "envelope", "FakeDataApi"]
