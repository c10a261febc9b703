# SPDX-License-Identifier: MIT
"""Pytest configuration and fixtures for group deduplication tests."""

import os
from datetime import datetime, timedelta, timezone

import pytest

# Keep the import-time stderr sink out of test output
os.environ.setdefault("DISABLE_LOGGING", "1")

import httpx
from loguru import logger

from groupdedup.connectors.directory import DirectoryClient
from groupdedup.connectors.types import GroupRecord

ORG_URL = "https://example.okta.com"
BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)
NOW_EPOCH = 1_700_000_000.0


@pytest.fixture
def log_messages():
    """Capture loguru messages emitted during a test."""
    messages = []
    handler_id = logger.add(lambda m: messages.append(m.record["message"]), level="DEBUG")
    yield messages
    logger.remove(handler_id)


@pytest.fixture
def make_group():
    """Factory for GroupRecords created `days` after a fixed base time."""

    def _make(group_id: str, name: str | None, days: int | None = 0, **kwargs) -> GroupRecord:
        created = BASE_TIME + timedelta(days=days) if days is not None else None
        return GroupRecord(
            id=group_id,
            display_name=name,
            group_type=kwargs.pop("group_type", "OKTA_GROUP"),
            created_at=created,
            **kwargs,
        )

    return _make


@pytest.fixture
def group_payload():
    """Factory for groups API JSON objects."""

    def _payload(group_id: str, name: str, created: str = "2024-01-01T00:00:00.000Z", users: int = 3) -> dict:
        return {
            "id": group_id,
            "created": created,
            "lastUpdated": created,
            "type": "OKTA_GROUP",
            "profile": {"name": name, "description": None},
            "_embedded": {"stats": {"usersCount": users}},
        }

    return _payload


@pytest.fixture
def sleeps() -> list:
    """Records every sleep the client asks for instead of sleeping."""
    return []


@pytest.fixture
def make_client(sleeps):
    """
    Build a DirectoryClient backed by an httpx.MockTransport.

    The handler receives each httpx.Request and returns an httpx.Response
    (or raises an httpx transport error).
    """
    clients = []

    def _make(handler, **kwargs) -> DirectoryClient:
        http_client = httpx.Client(transport=httpx.MockTransport(handler))
        kwargs.setdefault("max_attempts", 5)
        client = DirectoryClient(
            org_url=ORG_URL,
            api_token="test-token",
            http_client=http_client,
            sleep=sleeps.append,
            clock=lambda: NOW_EPOCH,
            **kwargs,
        )
        clients.append(http_client)
        return client

    yield _make

    for http_client in clients:
        http_client.close()
