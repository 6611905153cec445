"""
Shared pytest fixtures for dataspine tests.

This module provides:
- ``make_client``: builds DataApiClient instances wired to a FakeDataApi
- the ``unit`` marker on every collected test
- a reset of the ``dataspine`` stdlib logger after every test

Non-fixture helpers (``FakeDataApi``, ``envelope``) live in ``tests._support``.
"""

from __future__ import annotations

import logging

import httpx
import pytest

from dataspine.client import DataApiClient
from dataspine.core.logging import ROOT_LOGGER
from tests._support import ENDPOINT, TOKEN, FakeDataApi


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Everything here runs against fake transports."""
    for item in items:
        item.add_marker(pytest.mark.unit)


# =============================================================================
# Clients
# =============================================================================


@pytest.fixture
def make_client():
    """Factory: ``client, api = make_client(handler, **client_kwargs)``."""
    clients: list[DataApiClient] = []

    def factory(handler, **kwargs) -> tuple[DataApiClient, FakeDataApi]:
        api = FakeDataApi(handler)
        kwargs.setdefault("endpoint", ENDPOINT)
        client = DataApiClient(TOKEN, transport=httpx.MockTransport(api), **kwargs)
        clients.append(client)
        return client, api

    yield factory
    for client in clients:
        client.close()


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(autouse=True)
def _reset_library_logging():
    """Undo configure_logging so handlers never outlive a captured stream."""
    yield
    root = logging.getLogger(ROOT_LOGGER)
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(logging.NOTSET)
    root.propagate = True
