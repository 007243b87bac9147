#!/usr/bin/env python3
"""Environment driven settings."""
import os
from dataclasses import dataclass, field

DEFAULT_SUB_PATH = "entities"
DEFAULT_BUF_SIZE = 64 * 1024

# Coverage thresholds (percent) used when a join has to guess its keys.
JOIN_MIN_COVERAGE = 30.0
JOIN_RELAXED_COVERAGE = 10.0


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Settings:
    sub_path: str = DEFAULT_SUB_PATH
    buf_size: int = DEFAULT_BUF_SIZE
    strict_filters: bool = False
    debug: bool = False
    port: int = 8000
    kb_command: list = field(default_factory=list)
    kb_project: str = ""

    @classmethod
    def from_env(cls) -> "Settings":
        chunk = os.environ.get("JSON_CHUNK_SIZE")
        kb_command = os.environ.get("JSONLENS_KB_COMMAND", "")
        return cls(
            sub_path=os.environ.get("JSONLENS_SUB_PATH", DEFAULT_SUB_PATH),
            buf_size=int(chunk) if chunk else DEFAULT_BUF_SIZE,
            strict_filters=_env_flag("JSONLENS_STRICT_FILTERS"),
            debug=_env_flag("DEBUG"),
            port=int(os.environ.get("PORT", "8000")),
            kb_command=kb_command.split() if kb_command else [],
            kb_project=os.environ.get("JSONLENS_KB_PROJECT", ""),
        )


def get_settings() -> Settings:
    """Read settings fresh from the environment on every call."""
    return Settings.from_env()
