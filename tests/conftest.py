"""Shared test configuration and fixtures."""

import json
from pathlib import Path

import pytest

from vulnsync.config import Settings
from vulnsync.store import VulnerabilityStore

FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture
def fixtures_dir():
    return FIXTURES_DIR


@pytest.fixture
def load_fixture():
    def _load(name: str) -> dict:
        return json.loads((FIXTURES_DIR / name).read_text())
    return _load


@pytest.fixture
def store(tmp_path):
    store = VulnerabilityStore(str(tmp_path / "vulnsync.db"))
    yield store
    store.close()


@pytest.fixture
def config():
    return Settings(
        api_token="test-token",
        org_id="test-org",
        api_base_url="https://api.snyk.test/rest",
        page_size=100,
        concurrency=4,
    )
