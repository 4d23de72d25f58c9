# Copyright (c) 2025-2026 Luc Vincent. All Rights Reserved.
"""
Pytest configuration and shared fixtures for gyazocli tests.
"""

import json
import tempfile
from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from gyazocli.cache_manager import CacheManager
from gyazocli.config import GyazoConfig


def local_iso(year, month, day, hour=0, minute=0, second=0):
    """ISO timestamp with the local UTC offset, so it buckets where written."""
    return datetime(year, month, day, hour, minute, second).astimezone().isoformat()


class CacheFiles:
    """Writes raw cache files the way an earlier run would have left them."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def _write(self, path: Path, data) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
        return path

    def _fanout(self, store: str, image_id: str) -> Path:
        p1 = image_id[0] if image_id else "_"
        p2 = image_id[1] if len(image_id) > 1 else "_"
        return self.root / store / p1 / p2 / f"{image_id}.json"

    def hourly_path(self, key: str, dimension: str = None) -> Path:
        year, month, day, hour = key.split("-")
        name = f"{hour}-{dimension}.json" if dimension else f"{hour}.json"
        return self.root / "hourly" / year / month / day / name

    def index(self, key: str, ids) -> Path:
        return self._write(self.hourly_path(key), list(ids))

    def meta(self, key: str, dimension: str, mapping) -> Path:
        return self._write(self.hourly_path(key, dimension), mapping)

    def image(self, image_id: str, record) -> Path:
        return self._write(self._fanout("images", image_id), record)

    def search_image(self, image_id: str, record) -> Path:
        return self._write(self._fanout("search_images", image_id), record)

    def read_image(self, image_id: str):
        return json.loads(self._fanout("images", image_id).read_text(encoding="utf-8"))

    def read_hourly(self, key: str, dimension: str = None):
        return json.loads(self.hourly_path(key, dimension).read_text(encoding="utf-8"))

    def raw(self, path: Path, text: str) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def config(temp_dir):
    """Configuration pointing at a temporary cache, with no sync delay."""
    config = GyazoConfig()
    config.api.access_token = "test-token"
    config.cache.directory = str(temp_dir / "cache")
    config.sync.detail_delay_seconds = 0
    return config


@pytest.fixture
def cache(config):
    """CacheManager over the temporary cache directory."""
    return CacheManager(config)


@pytest.fixture
def cache_files(config):
    """Raw file writer over the temporary cache directory."""
    return CacheFiles(Path(config.cache.directory))


@pytest.fixture
def mock_client():
    """Remote API client double with empty listings by default."""
    client = MagicMock()
    client.list_images.return_value = []
    client.search_images.return_value = []
    client.get_image_detail.return_value = {}
    return client


@pytest.fixture
def cli_env(monkeypatch, temp_dir, config):
    """Isolate the CLI from the user's config, credentials and cache."""
    import gyazocli.credentials as credentials

    monkeypatch.setenv("GYAZO_CONFIG", str(temp_dir / "missing-config.yaml"))
    monkeypatch.setenv("GYAZO_CACHE_DIR", config.cache.directory)
    monkeypatch.setenv("GYAZO_ACCESS_TOKEN", "test-token")
    monkeypatch.setattr(credentials, "DEFAULT_CREDENTIALS_PATH", str(temp_dir / "credentials.json"))
    return CacheFiles(Path(config.cache.directory))
