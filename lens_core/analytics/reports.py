#!/usr/bin/env python3
"""Canned analytics reports over a game dataset directory.

The reports expect ``live.json`` (``Player:`` entities) and ``chars.json``
(``PlayerCharacter:`` entities) with their elements under ``entities``.
A missing file simply contributes nothing.
"""
import json
import logging
from contextlib import aclosing
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from lens_core.analyzer.dataset_discovery import find_json_files
from lens_core.analyzer.schema_extractor import extract_schema, format_schema_yaml
from lens_core.json_worker.filters import parse_timestamp
from lens_core.json_worker.paths import get_value_at_path, get_values_at_path
from lens_core.json_worker.streaming_parser import iter_values
from shared.errors import JsonLensError, SourceUnavailableError

logger = logging.getLogger(__name__)

PLAYER_PREFIX = "Player:"
CHARACTER_PREFIX = "PlayerCharacter:"
DAY_MS = 24 * 60 * 60 * 1000
RETENTION_DAYS = (1, 3, 7)
_DEVICE_TIME_FIELDS = ("firstLogin", "lastLogin", "firstSeenAt", "lastLoginAt")


@dataclass
class ReportResult:
    report: str
    data: Dict[str, Any]
    formatted: str

    def to_dict(self) -> Dict[str, Any]:
        return {"report": self.report, "data": self.data, "formatted": self.formatted}


def _dataset_file(directory, name: str) -> Optional[Path]:
    path = Path(directory) / name
    return path if path.is_file() else None


async def _entities(path: Optional[Path], prefix: str):
    if path is None:
        return
    async with aclosing(iter_values(path, "entities")) as values:
        async for value in values:
            entity_id = get_value_at_path(value, "entityId")
            if isinstance(entity_id, str) and entity_id.startswith(prefix):
                yield value


def _rate(part: int, whole: int) -> float:
    return round(part / whole * 100, 1) if whole else 0


def activity_span_days(player: Any) -> Optional[float]:
    """Days between a player's first and last recorded activity, None without any."""
    stamps: List[float] = []
    for device in get_values_at_path(player, "payload.deviceHistory[*]"):
        if isinstance(device, dict):
            for name in _DEVICE_TIME_FIELDS:
                if device.get(name):
                    stamps.append(parse_timestamp(device[name]))
    for login in get_values_at_path(player, "payload.loginHistory[*]"):
        if isinstance(login, dict) and login.get("timestamp"):
            stamps.append(parse_timestamp(login["timestamp"]))
    stamps = [s for s in stamps if s is not None]
    if not stamps:
        return None
    return (max(stamps) - min(stamps)) / DAY_MS


class _RetentionTally:
    def __init__(self):
        self.total = 0
        self.new_players = 0
        self.returning = 0
        self.retained = {days: 0 for days in RETENTION_DAYS}

    def add(self, span: Optional[float]) -> None:
        self.total += 1
        if span is None or span < 1:
            self.new_players += 1
        else:
            self.returning += 1
        for days in RETENTION_DAYS:
            if span is not None and span >= days:
                self.retained[days] += 1

    def rates(self) -> Dict[str, Dict[str, float]]:
        return {f"d{days}": {"count": n, "rate": _rate(n, self.total)} for days, n in self.retained.items()}


async def player_kpis(directory) -> ReportResult:
    characters_per_player: List[int] = []
    class_distribution: Dict[str, int] = {}
    total_characters = 0

    async with aclosing(_entities(_dataset_file(directory, "live.json"), PLAYER_PREFIX)) as entities:
        async for player in entities:
            characters_per_player.append(len(get_values_at_path(player, "payload.characterRoster.characterIds[*]")))

    async with aclosing(_entities(_dataset_file(directory, "chars.json"), CHARACTER_PREFIX)) as entities:
        async for character in entities:
            total_characters += 1
            class_id = get_value_at_path(character, "payload.character.characterClassId")
            if class_id:
                class_distribution[class_id] = class_distribution.get(class_id, 0) + 1

    spread = {"min": 0, "max": 0, "avg": 0}
    if characters_per_player:
        spread = {
            "min": min(characters_per_player),
            "max": max(characters_per_player),
            "avg": round(sum(characters_per_player) / len(characters_per_player), 2),
        }
    data = {
        "total_players": len(characters_per_player),
        "total_characters": total_characters,
        "characters_per_player": spread,
        "class_distribution": class_distribution,
    }

    lines = [
        "# Player KPIs Report",
        "",
        f"Total Players: {data['total_players']}",
        f"Total Characters: {total_characters}",
        "",
        "## Characters Per Player",
        f"  Min: {spread['min']}",
        f"  Max: {spread['max']}",
        f"  Avg: {spread['avg']}",
    ]
    if class_distribution:
        lines += ["", "## Character Class Distribution"]
        for name, n in sorted(class_distribution.items(), key=lambda kv: kv[1], reverse=True):
            lines.append(f"  {name}: {n}")
    return ReportResult("player-kpis", data, "\n".join(lines))


async def retention(directory) -> ReportResult:
    tally = _RetentionTally()
    async with aclosing(_entities(_dataset_file(directory, "live.json"), PLAYER_PREFIX)) as entities:
        async for player in entities:
            tally.add(activity_span_days(player))

    rates = tally.rates()
    data = {
        "total_players": tally.total,
        **{f"{key}_retention": value for key, value in rates.items()},
        "new_players": tally.new_players,
        "returning_players": tally.returning,
    }

    lines = ["# Retention Report", "", f"Total Players: {tally.total}", "", "## Retention Rates"]
    for key, value in rates.items():
        lines.append(f"  {key.upper()}: {value['rate']}% ({value['count']} players)")
    lines += ["", "## Player Status", f"  New Players: {tally.new_players}",
              f"  Returning Players: {tally.returning}"]
    return ReportResult("retention", data, "\n".join(lines))


async def retention_by_class(directory) -> ReportResult:
    player_classes: Dict[str, set] = {}
    async with aclosing(_entities(_dataset_file(directory, "chars.json"), CHARACTER_PREFIX)) as entities:
        async for character in entities:
            player_id = get_value_at_path(character, "payload.playerId")
            class_id = get_value_at_path(character, "payload.character.characterClassId")
            if player_id and class_id:
                player_classes.setdefault(player_id, set()).add(class_id)

    tallies: Dict[str, _RetentionTally] = {}
    async with aclosing(_entities(_dataset_file(directory, "live.json"), PLAYER_PREFIX)) as entities:
        async for player in entities:
            classes = player_classes.get(player.get("entityId"))
            if not classes:
                continue
            span = activity_span_days(player)
            # A player counts once for every class they play.
            for class_id in sorted(classes):
                tallies.setdefault(class_id, _RetentionTally()).add(span)

    by_class = {
        class_id: {
            "total_players": tally.total,
            **tally.rates(),
            "new_players": tally.new_players,
            "returning_players": tally.returning,
        }
        for class_id, tally in tallies.items()
    }
    data = {"by_class": by_class, "total_classes": len(by_class)}

    lines = ["# Retention by Character Class Report", ""]
    for class_id, stats in sorted(by_class.items(), key=lambda kv: kv[1]["total_players"], reverse=True):
        lines += [f"## {class_id.replace('_Class', '')}", f"Total Players: {stats['total_players']}", "",
                  "Retention Rates:"]
        for days in RETENTION_DAYS:
            entry = stats[f"d{days}"]
            lines.append(f"  D{days}: {entry['rate']}% ({entry['count']} players)")
        lines += ["", "Player Status:",
                  f"  New: {stats['new_players']} | Returning: {stats['returning_players']}", ""]
    return ReportResult("retention-by-class", data, "\n".join(lines))


async def progression(directory) -> ReportResult:
    levels: List[float] = []
    level_count: Dict[Any, int] = {}
    equipped_total = 0
    characters = 0

    async with aclosing(_entities(_dataset_file(directory, "chars.json"), CHARACTER_PREFIX)) as entities:
        async for character in entities:
            characters += 1
            level = get_value_at_path(character, "payload.level")
            if isinstance(level, (int, float)) and not isinstance(level, bool):
                levels.append(level)
                level_count[level] = level_count.get(level, 0) + 1
            for container in ("equippedItems", "equipment", "gear"):
                equipped_total += len(get_values_at_path(character, f"payload.{container}[*]"))

    data: Dict[str, Any] = {
        "total_characters": characters,
        "level_distribution": {},
        "max_level_characters": 0,
        "max_level": 0,
        "avg_level": 0,
        "equipment_stats": {"avg_equipped_items": 0, "total_equipped_items": 0},
    }
    if levels:
        top = max(levels)
        data["max_level"] = top
        data["avg_level"] = round(sum(levels) / len(levels), 2)
        data["max_level_characters"] = levels.count(top)
        data["level_distribution"] = {f"Level {lvl}": level_count[lvl] for lvl in sorted(level_count)}
    if characters:
        data["equipment_stats"] = {
            "avg_equipped_items": round(equipped_total / characters, 2),
            "total_equipped_items": equipped_total,
        }

    lines = [
        "# Progression Report",
        "",
        f"Total Characters: {characters}",
        "",
        "## Level Stats",
        f"  Max Level: {data['max_level']}",
        f"  Avg Level: {data['avg_level']}",
        f"  Characters at Max Level: {data['max_level_characters']}",
    ]
    if data["level_distribution"]:
        lines += ["", "## Level Distribution"]
        lines += [f"  {label}: {n}" for label, n in data["level_distribution"].items()]
    if equipped_total:
        lines += ["", "## Equipment Stats",
                  f"  Avg Equipped Items: {data['equipment_stats']['avg_equipped_items']}",
                  f"  Total Equipped Items: {equipped_total}"]
    return ReportResult("progression", data, "\n".join(lines))


async def schema_summary(directory) -> ReportResult:
    files = []
    for path in find_json_files(directory):
        size_mb = round(path.stat().st_size / (1024 * 1024), 2)
        try:
            schema = await extract_schema(path, max_depth=3, max_samples=2)
            entity_count = 0
            async with aclosing(iter_values(path, "entities")) as values:
                async for _ in values:
                    entity_count += 1
        except JsonLensError as e:
            logger.warning(f"schema-summary skipped {path.name}: {e}")
            files.append({"name": path.name, "size_mb": size_mb, "error": str(e)})
            continue
        files.append({"name": path.name, "size_mb": size_mb, "entity_count": entity_count,
                      "schema_yaml": format_schema_yaml(schema)})

    data = {"directory": str(directory), "file_count": len(files), "files": files}

    lines = ["# Schema Summary Report", "", f"Directory: {directory}", f"Files: {len(files)}", ""]
    for info in files:
        lines += [f"## {info['name']}", f"Size: {info['size_mb']} MB"]
        if "error" in info:
            lines.append(f"Error: {info['error']}")
        else:
            lines.append(f"Entities: {info['entity_count']}")
            lines += ["", "Schema:"] + [f"  {line}" for line in info["schema_yaml"].split("\n")]
        lines.append("")
    return ReportResult("schema-summary", data, "\n".join(lines))


REPORTS = {
    "player-kpis": player_kpis,
    "retention": retention,
    "retention-by-class": retention_by_class,
    "progression": progression,
    "schema-summary": schema_summary,
}
AVAILABLE_REPORTS = list(REPORTS)


async def run_report(directory, name: str, output_format: str = "text") -> ReportResult:
    """Run the report called ``name``; ``output_format="json"`` puts JSON in ``formatted``."""
    report = REPORTS.get(name)
    if report is None:
        raise ValueError(f"Unknown report: {name}. Available: {', '.join(AVAILABLE_REPORTS)}")
    if not Path(directory).is_dir():
        raise SourceUnavailableError(directory, NotADirectoryError(str(directory)))

    logger.debug(f"Running report: {name} on directory: {directory}")
    result = await report(directory)
    if output_format == "json":
        result.formatted = json.dumps(result.data, indent=2)
    return result
