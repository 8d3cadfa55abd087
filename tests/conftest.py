"""
Shared pytest fixtures for hunter-settlement tests.
"""

from __future__ import annotations

import pytest
import pytest_asyncio

from fakes import MockTransport, RecordingWallet, Seller, make_http


@pytest.fixture
def transport() -> MockTransport:
    return MockTransport()


@pytest_asyncio.fixture
async def http(transport):
    client = make_http(transport)
    yield client
    await client.aclose()


@pytest.fixture
def seller_a() -> Seller:
    return Seller("svc-a", price=100)


@pytest.fixture
def seller_b() -> Seller:
    return Seller("svc-b", price=50)


@pytest.fixture
def wallet() -> RecordingWallet:
    return RecordingWallet()
