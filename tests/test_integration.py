#!/usr/bin/env python3
"""End-to-end tests for the json-lens CLI and the tool service."""

import pytest
import json
import pathlib
import sys

sys.path.append(str(pathlib.Path(__file__).parent.parent))
from lens_core.cli import main


@pytest.mark.integration
class TestCLI:
    """Runs ``main()`` the way the console script does."""

    def run(self, capsys, *argv):
        code = main([str(a) for a in argv])
        out, err = capsys.readouterr()
        return code, out, err

    def test_count(self, capsys, live_file):
        code, out, _ = self.run(capsys, "count", live_file, "--filter", "payload.level > 6")
        assert code == 0
        assert out.strip() == "Count: 2 (scanned 3)"

    def test_count_root_array(self, capsys, root_array_file):
        code, out, _ = self.run(capsys, "count", root_array_file, "--sub-path", "")
        assert code == 0
        assert "Count: 3" in out

    def test_query_json(self, capsys, live_file):
        code, out, _ = self.run(capsys, "query", live_file, "--select", "entityId, payload.level", "--limit", "2")
        assert code == 0
        assert json.loads(out) == [{"entityId": "Player:a1", "level": 10}, {"entityId": "Player:b2", "level": 5}]

    def test_query_table(self, capsys, live_file):
        code, out, _ = self.run(capsys, "query", live_file, "--select", "entityId", "--format", "table")
        assert code == 0
        assert out.startswith("# 3 results (3 total matches, 3 scanned)")
        assert "Player:c3" in out

    def test_group_and_stats(self, capsys, chars_file, live_file):
        code, out, _ = self.run(capsys, "group", chars_file, "--path", "payload.character.characterClassId")
        assert code == 0
        assert "Thor_Class" in out and "66.7%" in out

        code, out, _ = self.run(capsys, "stats", live_file, "--path", "payload.level")
        assert code == 0
        assert "Sum: 35.00" in out
        assert "Max: 20" in out

    def test_distribution(self, capsys, live_file):
        code, out, _ = self.run(capsys, "distribution", live_file, "--path", "payload.level", "--buckets", "3")
        assert code == 0
        assert "15.0-20.0" in out

    def test_schema(self, capsys, live_file):
        code, out, _ = self.run(capsys, "schema", live_file)
        assert code == 0
        assert "entityId: string (Player:xxx)" in out

        code, out, _ = self.run(capsys, "schema", live_file, "--format", "json", "--no-patterns")
        assert json.loads(out)["type"] == "object"

    def test_sample_json(self, capsys, live_file):
        code, out, _ = self.run(capsys, "sample", live_file, "--count", "2", "--seed", "1",
                                "--path", "entityId", "--format", "json")
        assert code == 0
        assert len(json.loads(out)) == 2

    def test_relationships(self, capsys, live_file, chars_file):
        code, out, _ = self.run(capsys, "relationships", live_file, chars_file, "--all-fields")
        assert code == 0
        assert "Type: one-to-many" in out
        assert "All ID fields in chars.json:" in out

    def test_relationships_verbose_logging_is_separate(self, capsys, live_file, chars_file):
        code, out, _ = self.run(capsys, "relationships", live_file, chars_file, "--verbose")
        assert code == 0
        assert "Type: one-to-many" in out
        assert "All ID fields" not in out

    def test_join(self, capsys, live_file, chars_file):
        code, out, _ = self.run(capsys, "join", live_file, chars_file, "--left-key", "entityId",
                                "--right-key", "payload.playerId", "--select", "a.payload.playerName,b.payload.level")
        assert code == 0
        assert "3 results (3 total matches)" in out

    def test_join_aggregate(self, capsys, live_file, chars_file):
        code, out, _ = self.run(capsys, "join", live_file, chars_file,
                                "--left-key", "entityId", "--right-key", "payload.playerId",
                                "--aggregate", "avg_level=AVG(b.payload.level)", "--aggregate", "n=COUNT(*)",
                                "--group-by", "b.payload.character.characterClassId")
        assert code == 0
        body = json.loads(out[out.index("{"):])
        assert body["groups"]["Thor_Class"] == {"avg_level": 9.5, "n": 2}
        assert body["totals"]["n"] == 3

    def test_describe(self, capsys, dataset_dir):
        code, out, _ = self.run(capsys, "describe", dataset_dir, "--format", "json")
        assert code == 0
        assert [f["name"] for f in json.loads(out)["files"]] == ["chars.json", "live.json"]

    def test_analyze(self, capsys, dataset_dir):
        code, out, _ = self.run(capsys, "analyze", dataset_dir, "--report", "retention")
        assert code == 0
        assert out.startswith("# Retention Report")

    def test_missing_file(self, capsys, tmp_path):
        code, out, err = self.run(capsys, "count", tmp_path / "missing.json")
        assert code == 1
        assert out == ""
        assert "Error: cannot read" in err

    def test_strict_filters(self, capsys, live_file):
        code, _, err = self.run(capsys, "count", live_file, "--filter", "nonsense", "--strict-filters")
        assert code == 1
        assert "Invalid filter expression: nonsense" in err

    def test_bad_aggregate_argument(self, capsys, live_file, chars_file):
        code, _, err = self.run(capsys, "join", live_file, chars_file, "--aggregate", "AVG(b.payload.level)")
        assert code == 1
        assert "NAME=EXPR" in err

    def test_type_needs_project(self, capsys):
        code, _, err = self.run(capsys, "type", "Game.Models.PlayerModel")
        assert code == 1
        assert "--project" in err

    def test_type_needs_server(self, capsys):
        code, _, err = self.run(capsys, "type", "Game.Models.PlayerModel", "--project", "game")
        assert code == 1
        assert "JSONLENS_KB_COMMAND" in err

    def test_unknown_report_rejected_by_parser(self, capsys, dataset_dir):
        with pytest.raises(SystemExit):
            main(["analyze", str(dataset_dir), "--report", "churn"])


@pytest.mark.integration
class TestToolService:
    """The FastAPI tool dispatcher."""

    def call(self, client, name, **arguments):
        return client.post(f"/tools/{name}", json=arguments)

    def test_health_endpoint(self, fastapi_client):
        response = fastapi_client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_list_tools(self, fastapi_client):
        tools = {t["name"]: t for t in fastapi_client.get("/tools").json()["tools"]}
        assert len(tools) == 11
        assert tools["group_by"]["required"] == ["file", "path"]
        assert "retention" in tools["run_report"]["reports"]

    def test_count(self, fastapi_client, live_file):
        response = self.call(fastapi_client, "count_entities", file=str(live_file), filter="payload.level > 6")
        assert response.status_code == 200
        assert response.json() == {"total": 2, "scanned": 3, "warnings": []}

    def test_query(self, fastapi_client, live_file):
        response = self.call(fastapi_client, "query_json", file=str(live_file), select=["entityId"], limit=1)
        body = response.json()
        assert body["items"] == [{"entityId": "Player:a1"}]
        assert body["total_matched"] == 3

    def test_schema_json(self, fastapi_client, live_file):
        response = self.call(fastapi_client, "get_schema", file=str(live_file), format="json")
        assert response.json()["schema"]["properties"]["entities"]["arrayLength"] == {"min": 3, "max": 3}

    def test_join_aggregate(self, fastapi_client, live_file, chars_file):
        response = self.call(fastapi_client, "join_files", left_file=str(live_file), right_file=str(chars_file),
                             aggregates={"n": "COUNT(*)"}, group_by="b.payload.character.characterClassId")
        body = response.json()
        assert body["groups"] == {"Thor_Class": {"n": 2}, "Loki_Class": {"n": 1}}
        assert body["join_keys"]["auto_detected"] is True

    def test_report(self, fastapi_client, dataset_dir):
        response = self.call(fastapi_client, "run_report", directory=str(dataset_dir), report="player-kpis")
        assert response.json()["data"]["total_players"] == 3

    def test_describe(self, fastapi_client, dataset_dir):
        response = self.call(fastapi_client, "describe_dataset", directory=str(dataset_dir))
        assert len(response.json()["relationships"]) == 2

    @pytest.mark.parametrize("name,arguments,status", [
        ("no_such_tool", {}, 404),
        ("count_entities", {}, 400),
        ("count_entities", {"file": "x.json", "colour": "red"}, 400),
        ("count_entities", {"file": "/nonexistent/x.json"}, 404),
        ("sample_data", {"file": "/nonexistent/x.json", "count": -1}, 400),
    ])
    def test_error_status(self, fastapi_client, name, arguments, status):
        assert fastapi_client.post(f"/tools/{name}", json=arguments).status_code == status

    def test_strict_filter_is_bad_request(self, fastapi_client, live_file):
        response = self.call(fastapi_client, "count_entities", file=str(live_file), filter="???", strict=True)
        assert response.status_code == 400
        assert "Invalid filter expression" in response.json()["detail"]

    def test_corrupted_file_is_unprocessable(self, fastapi_client, corrupted_json_file):
        response = self.call(fastapi_client, "count_entities", file=str(corrupted_json_file))
        assert response.status_code == 422

    def test_no_relationship_is_conflict(self, fastapi_client, live_file, write_json):
        other = write_json({"entities": [{"entityId": "Guild:ff"}]}, "guilds.json")
        response = self.call(fastapi_client, "join_files", left_file=str(live_file), right_file=str(other))
        assert response.status_code == 409

    def test_process_file_endpoint(self, fastapi_client, players):
        content = json.dumps({"entities": players}).encode()
        response = fastapi_client.post("/process/file", files={"file": ("live.json", content, "application/json")})
        assert response.status_code == 200
        result = response.json()
        assert result["filename"] == "live.json"
        assert result["records"] == 3
        assert result["bytes"] == len(content)
        assert "Player:xxx" in result["schema"]

    def test_process_root_array(self, fastapi_client):
        content = json.dumps([{"id": i} for i in range(100)]).encode()
        response = fastapi_client.post("/process/file", params={"sub_path": ""},
                                       files={"file": ("test.json", content, "application/json")})
        assert response.json()["records"] == 100

    def test_process_invalid_json(self, fastapi_client):
        response = fastapi_client.post("/process/file",
                                       files={"file": ("invalid.json", b'{"invalid": json', "application/json")})
        assert response.status_code == 422

    def test_prometheus_metrics_incremented(self, fastapi_client, live_file):
        self.call(fastapi_client, "count_entities", file=str(live_file))
        metrics = fastapi_client.get("/metrics").text
        assert 'jsonlens_tool_requests_total{tool="count_entities",status="200"}' in metrics
        assert "jsonlens_tool_seconds" in metrics
