"""Incremental-generation manifest, read once per run and written once at the end."""

from __future__ import annotations

import dataclasses
import hashlib
import json
import logging
from pathlib import Path


logger = logging.getLogger(__name__)

MANIFEST_VERSION = 1


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


@dataclasses.dataclass
class TableEntry:
    pattern_hash: str
    inputs_hash: str
    generated_files: list[str] = dataclasses.field(default_factory=list)
    file_hashes: dict[str, str] = dataclasses.field(default_factory=dict)


@dataclasses.dataclass
class Manifest:
    tables: dict[str, TableEntry] = dataclasses.field(default_factory=dict)
    outputs: dict[str, str] = dataclasses.field(default_factory=dict)

    @classmethod
    def load(cls, path: Path) -> Manifest:
        if not path.exists():
            return cls()
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            logger.warning(f"Ignoring unreadable manifest {path}: {exc}")
            return cls()
        if raw.get("version") != MANIFEST_VERSION:
            logger.warning(f"Ignoring manifest {path} with version {raw.get('version')}")
            return cls()
        tables = {
            name: TableEntry(
                pattern_hash=entry.get("pattern_hash", ""),
                inputs_hash=entry.get("inputs_hash", ""),
                generated_files=list(entry.get("generated_files", [])),
                file_hashes=dict(entry.get("file_hashes", {})),
            )
            for name, entry in raw.get("tables", {}).items()
        }
        return cls(tables=tables, outputs=dict(raw.get("outputs", {})))

    def to_json(self) -> str:
        payload = {
            "version": MANIFEST_VERSION,
            "tables": {name: dataclasses.asdict(self.tables[name]) for name in sorted(self.tables)},
            "outputs": {path: self.outputs[path] for path in sorted(self.outputs)},
        }
        return json.dumps(payload, indent=2) + "\n"

    def is_unchanged(self, table: str, pattern_hash: str, inputs_hash: str, path: Path, key: str) -> bool:
        entry = self.tables.get(table)
        if entry is None or entry.pattern_hash != pattern_hash or entry.inputs_hash != inputs_hash:
            return False
        if not path.exists():
            return False
        recorded = entry.file_hashes.get(key)
        return recorded is not None and recorded == content_hash(path.read_text(encoding="utf-8"))

    def record_table(self, table: str, pattern_hash: str, inputs_hash: str, files: dict[str, str]) -> None:
        self.tables[table] = TableEntry(
            pattern_hash=pattern_hash,
            inputs_hash=inputs_hash,
            generated_files=sorted(files),
            file_hashes={key: content_hash(text) for key, text in sorted(files.items())},
        )

    def record_output(self, key: str, text: str) -> None:
        self.outputs[key] = content_hash(text)
