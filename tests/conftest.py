"""Pytest configuration and fixtures for s3store tests.

This module provides common fixtures and configuration for all tests.
"""

from __future__ import annotations

import os
from collections.abc import Iterator

import pytest

from s3store.storage.encrypted_store import EncryptedObjectStore
from s3store.storage.memory_store import InMemoryObjectStore
from s3store.storage.object_store import ObjectStore
from s3store.storage.s3_store import S3ObjectStore
from s3store.testing.fake_s3 import DEFAULT_BUCKET_URL, FakeS3Server

TEST_AES_KEY = bytes(range(16))


@pytest.fixture(autouse=True)
def isolate_s3store_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove S3STORE_* variables so tests never pick up ambient configuration.

    Tests that need a variable set it explicitly with monkeypatch.
    """
    for name in list(os.environ):
        if name.startswith("S3STORE_") and not name.startswith("S3STORE_SMOKE_TEST_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def fake_s3() -> FakeS3Server:
    """Return a fresh fake S3 bucket with small list pages."""
    return FakeS3Server(page_size=2)


@pytest.fixture
def s3_store(fake_s3: FakeS3Server) -> Iterator[S3ObjectStore]:
    """Return an S3ObjectStore talking to the fake bucket."""
    client = fake_s3.client()
    yield S3ObjectStore(client, DEFAULT_BUCKET_URL)
    client.close()


@pytest.fixture
def memory_store() -> InMemoryObjectStore:
    """Return an empty in-memory store."""
    return InMemoryObjectStore()


@pytest.fixture(params=["memory", "s3", "encrypted-memory", "encrypted-s3"])
def any_store(request: pytest.FixtureRequest) -> Iterator[ObjectStore]:
    """Yield each contract implementation in turn, starting empty."""
    if request.param in ("memory", "encrypted-memory"):
        store: ObjectStore = InMemoryObjectStore()
        client = None
    else:
        client = FakeS3Server(page_size=2).client()
        store = S3ObjectStore(client, DEFAULT_BUCKET_URL)

    if request.param.startswith("encrypted-"):
        store = EncryptedObjectStore(store, TEST_AES_KEY)

    yield store

    if client is not None:
        client.close()


@pytest.fixture
def envelope_overhead(any_store: ObjectStore) -> int:
    """Bytes added to stored sizes by the store under test."""
    return 28 if isinstance(any_store, EncryptedObjectStore) else 0
