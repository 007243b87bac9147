#!/usr/bin/env python3
"""Shared pytest fixtures for the json-lens test suite."""

import pytest
import json
import pathlib
import sys
from typing import Any, Dict, List

# Add parent directory to path for imports
sys.path.insert(0, str(pathlib.Path(__file__).parent.parent))

from tests.fixtures.generate_test_data import (
    generate_corrupted_json,
    generate_dataset,
    generate_large_entity_file,
    write_entities,
)


# ============================================================================
# Entity Data
# ============================================================================

@pytest.fixture
def players() -> List[Dict[str, Any]]:
    """Three players with known levels, rosters and login histories."""
    return [
        {
            "entityId": "Player:a1",
            "$type": "Game.Models.PlayerModel",
            "payload": {
                "playerName": "alice",
                "level": 10,
                "isPremium": True,
                "characterRoster": {"characterIds": ["PlayerCharacter:c1", "PlayerCharacter:c2"]},
                "loginHistory": [
                    {"timestamp": "2024-01-01T00:00:00Z"},
                    {"timestamp": "2024-01-09T00:00:00Z"},
                ],
            },
        },
        {
            "entityId": "Player:b2",
            "$type": "Game.Models.PlayerModel",
            "payload": {
                "playerName": "bob",
                "level": 5,
                "isPremium": False,
                "characterRoster": {"characterIds": ["PlayerCharacter:c3"]},
                "loginHistory": [
                    {"timestamp": "2024-01-01T00:00:00Z"},
                    {"timestamp": "2024-01-02T12:00:00Z"},
                ],
            },
        },
        {
            "entityId": "Player:c3",
            "$type": "Game.Models.PlayerModel",
            "payload": {
                "playerName": "carol",
                "level": 20,
                "isPremium": False,
                "characterRoster": {"characterIds": []},
                "loginHistory": [],
            },
        },
    ]


@pytest.fixture
def characters() -> List[Dict[str, Any]]:
    """Characters owned by alice (two) and bob (one)."""
    return [
        {
            "entityId": "PlayerCharacter:c1",
            "$type": "Game.Models.PlayerCharacterModel",
            "payload": {
                "playerId": "Player:a1",
                "level": 12,
                "character": {"characterClassId": "Thor_Class"},
                "equippedItems": ["Item:01", "Item:02"],
            },
        },
        {
            "entityId": "PlayerCharacter:c2",
            "$type": "Game.Models.PlayerCharacterModel",
            "payload": {
                "playerId": "Player:a1",
                "level": 30,
                "character": {"characterClassId": "Loki_Class"},
                "equippedItems": ["Item:03"],
            },
        },
        {
            "entityId": "PlayerCharacter:c3",
            "$type": "Game.Models.PlayerCharacterModel",
            "payload": {
                "playerId": "Player:b2",
                "level": 7,
                "character": {"characterClassId": "Thor_Class"},
                "equippedItems": [],
            },
        },
    ]


# ============================================================================
# File Fixtures
# ============================================================================

@pytest.fixture
def dataset_dir(tmp_path, players, characters) -> pathlib.Path:
    """Directory holding only live.json and chars.json."""
    directory = tmp_path / "dataset"
    directory.mkdir()
    write_entities(players, str(directory / "live.json"))
    write_entities(characters, str(directory / "chars.json"))
    return directory


@pytest.fixture
def live_file(dataset_dir) -> pathlib.Path:
    return dataset_dir / "live.json"


@pytest.fixture
def chars_file(dataset_dir) -> pathlib.Path:
    return dataset_dir / "chars.json"


@pytest.fixture
def root_array_file(tmp_path, players) -> pathlib.Path:
    """The players written as a bare top-level array."""
    json_file = tmp_path / "root_array.json"
    write_entities(players, str(json_file), sub_path=None)
    return json_file


@pytest.fixture
def generated_dataset(tmp_path) -> pathlib.Path:
    """A bigger random (but seeded) live/chars pair."""
    return generate_dataset(str(tmp_path / "generated"), players=200)


@pytest.fixture
def corrupted_json_file(tmp_path) -> pathlib.Path:
    """An entity document that breaks off in the middle."""
    json_file = tmp_path / "corrupted.json"
    generate_corrupted_json(50, 1000, str(json_file))
    return json_file


@pytest.fixture
def large_entity_file(tmp_path) -> pathlib.Path:
    """Roughly 50MB of entities."""
    json_file = tmp_path / "large.json"
    generate_large_entity_file(200000, str(json_file))
    return json_file


@pytest.fixture
def write_json(tmp_path):
    """Write any JSON-serializable document and return its path."""
    def _write(document: Any, name: str = "doc.json") -> pathlib.Path:
        path = tmp_path / name
        path.write_text(json.dumps(document))
        return path
    return _write


# ============================================================================
# Async Fixtures
# ============================================================================

@pytest.fixture
async def async_temp_file(tmp_path):
    """An entity file written through aiofiles."""
    import aiofiles

    temp_path = tmp_path / "async.json"
    async with aiofiles.open(temp_path, 'w') as f:
        await f.write(json.dumps({"entities": [{"test": "data"}]}))
    return temp_path


# ============================================================================
# FastAPI Test Client
# ============================================================================

@pytest.fixture
def fastapi_client():
    """Create a FastAPI test client for the tool service."""
    from fastapi.testclient import TestClient
    from lens_api.app.simple_main import app

    return TestClient(app)


# ============================================================================
# Environment Fixtures
# ============================================================================

@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep json-lens environment variables from leaking into tests."""
    for var in ['JSONLENS_SUB_PATH', 'JSON_CHUNK_SIZE', 'JSONLENS_STRICT_FILTERS', 'DEBUG',
                'JSONLENS_KB_COMMAND', 'JSONLENS_KB_PROJECT']:
        monkeypatch.delenv(var, raising=False)
    yield


# ============================================================================
# Performance Testing Fixtures
# ============================================================================

@pytest.fixture
def memory_profiler():
    """Setup memory profiling for tests."""
    from memory_profiler import memory_usage

    def profile_memory(func, *args, **kwargs):
        """Profile memory usage (MiB) of a function."""
        mem_usage = memory_usage((func, args, kwargs), interval=0.05)
        return {
            "min": min(mem_usage),
            "max": max(mem_usage),
            "avg": sum(mem_usage) / len(mem_usage)
        }

    return profile_memory


# ============================================================================
# Test Markers
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow")
    config.addinivalue_line("markers", "integration: marks integration tests")
