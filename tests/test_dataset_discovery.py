#!/usr/bin/env python3
"""Directory overviews."""

import pytest
import pathlib
import sys

sys.path.append(str(pathlib.Path(__file__).parent.parent))
from lens_core.analyzer.dataset_discovery import describe_dataset, find_json_files
from shared.errors import SourceUnavailableError


class TestDescribeDataset:

    async def test_files(self, dataset_dir):
        description = await describe_dataset(dataset_dir)
        assert [f.name for f in description.files] == ["chars.json", "live.json"]
        chars, live = description.files

        assert live.entity_count == 3
        assert live.entity_type == "PlayerModel"
        assert live.key_fields == ["entityId", "payload.characterRoster.characterIds"]
        assert live.sample_values == {"payload.playerName": ["alice", "bob", "carol"]}
        assert live.metrics_available == ["payload.level", "payload.loginHistory"]

        assert chars.entity_type == "PlayerCharacterModel"
        assert "payload.playerId" in chars.key_fields
        assert chars.sample_values["payload.character.characterClassId"] == ["Thor_Class", "Loki_Class"]

    async def test_relationships(self, dataset_dir):
        description = await describe_dataset(dataset_dir)
        pairs = {(r.left_key, r.right_key) for r in description.relationships}
        assert pairs == {("entityId", "payload.characterRoster.characterIds[*]"), ("payload.playerId", "entityId")}
        assert all(r.coverage == "100%" for r in description.relationships)
        assert all(r.left_file == "chars.json" for r in description.relationships)

    async def test_suggestions(self, dataset_dir):
        suggestions = (await describe_dataset(dataset_dir)).suggested_queries
        assert len(suggestions) <= 5
        assert "Use payload.loginHistory for retention analysis" in suggestions

    async def test_broken_file_is_reported(self, dataset_dir, corrupted_json_file):
        (dataset_dir / "broken.json").write_bytes(corrupted_json_file.read_bytes())
        description = await describe_dataset(dataset_dir)
        broken = next(f for f in description.files if f.name == "broken.json")
        assert broken.entity_count == 0
        assert any("broken.json" in w for w in description.warnings)
        assert len([f for f in description.files if f.entity_count == 3]) == 2

    async def test_to_dict(self, dataset_dir):
        data = (await describe_dataset(dataset_dir)).to_dict()
        assert data["files"][1]["name"] == "live.json"
        assert data["warnings"] == []

    def test_find_json_files_ignores_other_files(self, dataset_dir):
        (dataset_dir / "notes.txt").write_text("hi")
        assert [p.name for p in find_json_files(dataset_dir)] == ["chars.json", "live.json"]

    def test_missing_directory(self, tmp_path):
        with pytest.raises(SourceUnavailableError):
            find_json_files(tmp_path / "missing")
