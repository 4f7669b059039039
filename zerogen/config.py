"""Generator configuration loaded from a declarative YAML file."""

from __future__ import annotations

import dataclasses
import logging
import os
from pathlib import Path

from .errors import ConfigurationError
from .model import PATTERN_KINDS

try:
    import yaml
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required. Install with: pip install pyyaml") from exc


logger = logging.getLogger(__name__)

# Sync, queue, cache and migration bookkeeping tables never reach the client.
DEFAULT_EXCLUDED_TABLES: tuple[str, ...] = (
    "solid_cache_entries",
    "solid_queue_jobs",
    "solid_queue_blocked_executions",
    "solid_queue_claimed_executions",
    "solid_queue_failed_executions",
    "solid_queue_paused_executions",
    "solid_queue_ready_executions",
    "solid_queue_recurring_executions",
    "solid_queue_scheduled_executions",
    "solid_queue_semaphores",
    "solid_queue_processes",
    "solid_queue_pauses",
    "solid_queue_recurring_tasks",
    "solid_cable_messages",
    "good_jobs",
    "good_job_batches",
    "good_job_executions",
    "good_job_processes",
    "good_job_settings",
    "refresh_tokens",
    "revoked_tokens",
    "unique_ids",
    "ar_internal_metadata",
    "schema_migrations",
    "versions",
    "alembic_version",
)

DEFAULT_POLYMORPHIC_FALLBACKS: dict[str, list[str]] = {
    "notable": ["jobs", "tasks", "clients"],
    "loggable": ["jobs", "tasks", "clients", "users", "people"],
    "schedulable": ["jobs", "tasks"],
    "author": ["front_contacts", "front_teammates"],
    "parseable": ["front_messages"],
}

DEFAULT_NAMING: dict[str, str] = {
    "softDelete": "delete",
    "restore": "restore",
    "moveBefore": "moveBefore",
    "moveAfter": "moveAfter",
    "moveToTop": "moveToTop",
    "moveToBottom": "moveToBottom",
}


@dataclasses.dataclass
class OutputPaths:
    schema_file: Path
    mutations_dir: Path
    discovery_file: Path
    manifest_file: Path
    declarations_dir: Path

    def directories(self) -> list[Path]:
        dirs = [
            self.schema_file.parent,
            self.mutations_dir,
            self.discovery_file.parent,
            self.manifest_file.parent,
        ]
        out: list[Path] = []
        for d in dirs:
            if d not in out:
                out.append(d)
        return out


@dataclasses.dataclass
class GeneratorConfig:
    output: OutputPaths
    database_url: str | None = None
    database_schema: str | None = None
    exclude_tables: list[str] = dataclasses.field(default_factory=list)
    mutation_exclude_tables: list[str] = dataclasses.field(default_factory=list)
    type_overrides: dict[str, str] = dataclasses.field(default_factory=dict)
    naming_overrides: dict[str, str] = dataclasses.field(default_factory=dict)
    exclude_patterns: dict[str, list[str]] = dataclasses.field(default_factory=dict)
    positioning_scopes: dict[str, list[str]] = dataclasses.field(default_factory=dict)
    polymorphic_fallbacks: dict[str, list[str]] = dataclasses.field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_POLYMORPHIC_FALLBACKS.items()}
    )
    sti_separator: str = "::"
    incremental: bool = True
    client_module: str = "./client"
    entities: dict = dataclasses.field(default_factory=dict)
    declarative_base: str | None = None

    def excluded_tables(self) -> set[str]:
        return set(DEFAULT_EXCLUDED_TABLES) | set(self.exclude_tables)

    def method_name(self, key: str) -> str:
        return self.naming_overrides.get(key, DEFAULT_NAMING[key])

    def excluded_patterns(self, table: str) -> set[str]:
        return set(self.exclude_patterns.get(table, []))


def default_output_paths(base_dir: Path, raw: dict | None = None) -> OutputPaths:
    raw = raw or {}
    root = base_dir / raw.get("directory", ".")
    mutations_dir = root / raw.get("mutations_dir", "frontend/src/lib/zero/models")
    manifest = raw.get("manifest_file")
    declarations = raw.get("declarations_dir")
    return OutputPaths(
        schema_file=root / raw.get("schema_file", "frontend/src/lib/zero/generated-schema.ts"),
        mutations_dir=mutations_dir,
        discovery_file=root / raw.get("discovery_file", "config/zero_polymorphic_types.yml"),
        manifest_file=root / manifest if manifest else mutations_dir / ".generation-manifest.json",
        declarations_dir=root / declarations if declarations else mutations_dir,
    )


def _string_list(raw, key: str) -> list[str]:
    if raw is None:
        return []
    if not isinstance(raw, list) or not all(isinstance(item, str) for item in raw):
        raise ConfigurationError(f"'{key}' must be a list of table names")
    return list(raw)


def _mapping(raw, key: str) -> dict:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigurationError(f"'{key}' must be a mapping")
    return raw


def _list_mapping(raw, key: str) -> dict[str, list[str]]:
    out: dict[str, list[str]] = {}
    for name, values in _mapping(raw, key).items():
        out[str(name)] = _string_list(values, f"{key}.{name}")
    return out


def parse_config(raw: dict | None, base_dir: Path) -> GeneratorConfig:
    raw = raw or {}
    if not isinstance(raw, dict):
        raise ConfigurationError("Configuration root must be a mapping")

    type_overrides = {str(k): str(v) for k, v in _mapping(raw.get("type_overrides"), "type_overrides").items()}
    for key in type_overrides:
        if "." not in key:
            raise ConfigurationError(f"type_overrides key must be 'table.column': {key}")

    naming: dict[str, str] = {}
    for key, value in _mapping(raw.get("naming_overrides"), "naming_overrides").items():
        if key not in DEFAULT_NAMING:
            logger.warning(f"Ignoring unknown naming override '{key}' (valid: {', '.join(DEFAULT_NAMING)})")
            continue
        naming[key] = str(value)

    exclude_patterns = _list_mapping(raw.get("exclude_patterns"), "exclude_patterns")
    for table, kinds in exclude_patterns.items():
        unknown = sorted(set(kinds) - set(PATTERN_KINDS))
        if unknown:
            raise ConfigurationError(f"exclude_patterns.{table}: unknown pattern kinds {unknown}")

    fallbacks = {k: list(v) for k, v in DEFAULT_POLYMORPHIC_FALLBACKS.items()}
    fallbacks.update(_list_mapping(raw.get("polymorphic_fallbacks"), "polymorphic_fallbacks"))

    separator = raw.get("sti_separator", "::")
    if not isinstance(separator, str) or not separator:
        raise ConfigurationError("'sti_separator' must be a non-empty string")

    return GeneratorConfig(
        output=default_output_paths(base_dir, _mapping(raw.get("output"), "output")),
        database_url=raw.get("database_url") or os.environ.get("DATABASE_URL"),
        database_schema=raw.get("database_schema"),
        exclude_tables=_string_list(raw.get("exclude_tables"), "exclude_tables"),
        mutation_exclude_tables=_string_list(raw.get("mutation_exclude_tables"), "mutation_exclude_tables"),
        type_overrides=type_overrides,
        naming_overrides=naming,
        exclude_patterns=exclude_patterns,
        positioning_scopes=_list_mapping(raw.get("positioning_scopes"), "positioning_scopes"),
        polymorphic_fallbacks=fallbacks,
        sti_separator=separator,
        incremental=bool(raw.get("incremental", True)),
        client_module=str(raw.get("client_module", "./client")),
        entities=_mapping(raw.get("entities"), "entities"),
        declarative_base=raw.get("declarative_base"),
    )


def load_config(path: Path) -> GeneratorConfig:
    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {path}")
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc
    return parse_config(raw, path.resolve().parent)


def ensure_writable_outputs(config: GeneratorConfig) -> None:
    for directory in config.output.directories():
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise ConfigurationError(f"Cannot create output directory {directory}: {exc}") from exc
        if not os.access(directory, os.W_OK):
            raise ConfigurationError(f"Output directory is not writable: {directory}")
