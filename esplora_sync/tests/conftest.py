"""
Pytest configuration and fixtures for esplora_sync tests.
"""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import pytest
from _esplora_sync_test_helpers import FakeEsplora, RecordingSleep

from esplora_sync.backends.retry import RateLimitRetry
from esplora_sync.settings import reset_settings


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Keep user config files and environment out of every test."""
    monkeypatch.setenv("ESPLORA_SYNC_DATA_DIR", str(tmp_path / ".esplora-sync"))
    monkeypatch.delenv("ESPLORA_SYNC_CONFIG_FILE", raising=False)
    for name in ("ESPLORA__BASE_URL", "ESPLORA__STOP_GAP", "LOGGING__LEVEL", "NETWORK"):
        monkeypatch.delenv(name, raising=False)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def fast_retry(recording_sleep: RecordingSleep) -> RateLimitRetry:
    """Retry policy with the real schedule but no real waiting."""
    return RateLimitRetry(sleep=recording_sleep)


@pytest.fixture
def fake_esplora() -> FakeEsplora:
    return FakeEsplora()
