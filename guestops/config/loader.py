from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..services.import_analyzer import AnalyzerThresholds
from ..services.reallocation import ReallocationTiers

"""Import configuration loader.

Responsibilities:
- Load YAML config/import.yml
- Validate against guestops/config/config_schema.json (no unknown keys)
- Apply defaults (timezone=UTC, date_order=dmy, auto_map_strategy=optimal ...)
- Resolve reference_data relative to the config file (logs_directory stays CWD relative)
"""

__all__ = [
    "ConfigError",
    "DatabaseConfig",
    "ImportConfig",
    "SCHEMA_PATH",
    "load_config",
    "validate_against_schema",
]

SCHEMA_PATH = Path(__file__).parent / "config_schema.json"


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection fallback. Environment variables take precedence."""
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None
    dsn: str | None = None


@dataclass(frozen=True)
class ImportConfig:
    timezone: str = "UTC"
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    null_sentinels: frozenset[str] = frozenset()  # 大文字化済
    date_order: str = "dmy"  # dmy / mdy
    auto_map_strategy: str = "optimal"  # optimal / first_fit
    reference_data: Path | None = None
    logs_directory: Path = Path("logs")
    analyzer: AnalyzerThresholds = field(default_factory=AnalyzerThresholds)
    reallocation: ReallocationTiers = field(default_factory=ReallocationTiers)
    time_mismatch_threshold_minutes: int = 30


def validate_against_schema(data: Any, schema_path: Path, label: str) -> None:
    """Validate `data` against the JSON schema at `schema_path`.

    Raises:
        ConfigError: schema missing / not JSON, or the data fails validation
    """
    if not schema_path.exists():
        raise ConfigError(f"{label} schema not found: {schema_path}")
    try:
        schema = json.loads(schema_path.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        where = "/".join(str(p) for p in e.absolute_path)
        suffix = f" (at {where})" if where else ""
        raise ConfigError(f"{label} validation failed: {e.message}{suffix}") from e


def _resolve(base: Path, value: str | None) -> Path | None:
    if value is None:
        return None
    p = Path(value)
    return p if p.is_absolute() else base / p


def load_config(path: Path) -> ImportConfig:
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"config file not found: {path}")
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid yaml: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError("config validation failed: top level must be a mapping")

    validate_against_schema(data, SCHEMA_PATH, "config")

    base = path.parent
    db_raw = data.get("database") or {}
    analyzer_raw = data.get("analyzer") or {}
    realloc_raw = data.get("reallocation") or {}
    realloc = ReallocationTiers(**realloc_raw)
    if realloc.good_minutes > realloc.acceptable_minutes:
        raise ConfigError("config validation failed: reallocation.good_minutes exceeds acceptable_minutes")

    return ImportConfig(
        timezone=data.get("timezone", "UTC"),
        database=DatabaseConfig(
            host=db_raw.get("host"),
            port=db_raw.get("port"),
            user=db_raw.get("user"),
            password=db_raw.get("password"),
            database=db_raw.get("database"),
            dsn=db_raw.get("dsn"),
        ),
        null_sentinels=frozenset(s.strip().upper() for s in data.get("null_sentinels") or []),
        date_order=data.get("date_order", "dmy"),
        auto_map_strategy=data.get("auto_map_strategy", "optimal"),
        reference_data=_resolve(base, data.get("reference_data")),
        logs_directory=Path(data.get("logs_directory", "logs")),
        analyzer=AnalyzerThresholds(**analyzer_raw),
        reallocation=realloc,
        time_mismatch_threshold_minutes=data.get("time_mismatch_threshold_minutes", 30),
    )
