"""Pytest configuration and fixtures."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from xbridge.auth.storage import MemoryStorage, StorageArea, reset_storage
from xbridge.auth.token_store import TokenStore
from xbridge.config import clear_settings
from xbridge.types import IdentityProfile


if TYPE_CHECKING:
    from collections.abc import Generator
    from pathlib import Path


@pytest.fixture(autouse=True)
def _isolate_globals(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> Generator[None, None, None]:
    """Run each test from an empty directory with fresh singletons."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("APPDATA", str(tmp_path))
    monkeypatch.delenv("XBRIDGE_CONFIG_FILE", raising=False)
    reset_storage()
    clear_settings()
    yield
    reset_storage()
    clear_settings()


@pytest.fixture()
def area() -> StorageArea:
    """A shared storage area (one origin)."""
    return StorageArea()


@pytest.fixture()
def store(area: StorageArea) -> TokenStore:
    """A token store over in-memory storage."""
    return TokenStore(MemoryStorage(area))


@pytest.fixture()
def profile() -> IdentityProfile:
    """A sample identity profile."""
    return IdentityProfile(
        id="1234",
        username="Alice",
        name="Alice Example",
        profile_image_url="https://pbs.twimg.com/alice.jpg",
        verified=True,
        verified_type="blue",
        public_metrics={"followers_count": 10},
    )
