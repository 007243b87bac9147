#!/usr/bin/env python3
"""Generate entity documents for testing json-lens components."""

import json
import random
import pathlib
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

CLASSES = ["Thor_Class", "Loki_Class", "Freya_Class", "Odin_Class"]
EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _iso(moment: datetime) -> str:
    return moment.strftime("%Y-%m-%dT%H:%M:%SZ")


def write_entities(entities: List[Dict[str, Any]], output_path: str, sub_path: Optional[str] = "entities") -> str:
    """Write ``entities`` under ``sub_path`` (or as a root array when None)."""
    document: Any = entities if not sub_path else {"version": 1, sub_path: entities}
    pathlib.Path(output_path).write_text(json.dumps(document, indent=2))
    return output_path


def generate_players(count: int, seed: int = 7, characters_per_player: int = 2) -> List[Dict[str, Any]]:
    """Player entities in the shape of a game's ``live.json``."""
    rng = random.Random(seed)
    players = []
    char_index = 0
    for i in range(count):
        char_ids = []
        for _ in range(rng.randint(0, characters_per_player)):
            char_ids.append(f"PlayerCharacter:{char_index:08x}")
            char_index += 1
        first = EPOCH + timedelta(hours=rng.randint(0, 24 * 30))
        logins = [{"timestamp": _iso(first + timedelta(hours=rng.randint(0, 24 * 10)))}
                  for _ in range(rng.randint(0, 4))]
        players.append({
            "entityId": f"Player:{i:08x}",
            "$type": "Game.Models.PlayerModel",
            "payload": {
                "playerName": f"player_{i}",
                "level": rng.randint(1, 60),
                "isPremium": rng.random() < 0.2,
                "characterRoster": {"characterIds": char_ids},
                "loginHistory": logins,
            },
        })
    return players


def generate_characters(players: List[Dict[str, Any]], seed: int = 11) -> List[Dict[str, Any]]:
    """One PlayerCharacter entity per roster entry of ``players``."""
    rng = random.Random(seed)
    characters = []
    for player in players:
        for char_id in player["payload"]["characterRoster"]["characterIds"]:
            characters.append({
                "entityId": char_id,
                "$type": "Game.Models.PlayerCharacterModel",
                "payload": {
                    "playerId": player["entityId"],
                    "level": rng.randint(1, 60),
                    "character": {"characterClassId": rng.choice(CLASSES)},
                    "equippedItems": [f"Item:{rng.randint(0, 0xffff):04x}" for _ in range(rng.randint(0, 5))],
                },
            })
    return characters


def generate_dataset(directory: str, players: int = 50, seed: int = 7) -> pathlib.Path:
    """Write a matching ``live.json``/``chars.json`` pair into ``directory``."""
    root = pathlib.Path(directory)
    root.mkdir(parents=True, exist_ok=True)
    live = generate_players(players, seed)
    write_entities(live, str(root / "live.json"))
    write_entities(generate_characters(live, seed + 1), str(root / "chars.json"))
    return root


def generate_large_entity_file(records: int, output_path: str, padding: int = 200) -> str:
    """
    Stream a large entity file to disk without holding it in memory.

    Args:
        records: Number of entities to write
        output_path: Where to write the file
        padding: Length of the filler string in each entity

    Returns:
        The output path
    """
    filler = "x" * padding
    with open(output_path, "w") as f:
        f.write('{"entities": [\n')
        for i in range(records):
            if i:
                f.write(",\n")
            f.write(json.dumps({
                "entityId": f"Player:{i:08x}",
                "payload": {"level": i % 60, "note": filler},
            }))
        f.write("\n]}")
    return output_path


def generate_corrupted_json(valid_records: int, corruption_point: int, output_path: Optional[str] = None) -> str:
    """
    Generate an entity document that becomes corrupted at a specific byte.

    Args:
        valid_records: Number of entities before corruption
        corruption_point: Character position where the document is cut
        output_path: Optional path to save the file

    Returns:
        Path to the generated file or the corrupted JSON string
    """
    data = {"entities": [{"entityId": f"Player:{i:x}", "valid": True} for i in range(valid_records)]}
    json_str = json.dumps(data, indent=2)
    if corruption_point < len(json_str):
        corrupted = json_str[:corruption_point] + '}}}"garbage'
    else:
        corrupted = json_str[:-10]

    if output_path:
        pathlib.Path(output_path).write_text(corrupted)
        return output_path
    return corrupted


if __name__ == "__main__":
    import sys
    target = sys.argv[1] if len(sys.argv) > 1 else "test_data"
    print(f"Dataset written to {generate_dataset(target, players=500)}")
