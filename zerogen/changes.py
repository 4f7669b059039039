"""Compare previous and fresh output and flag hand edits.

Nothing is merged: the report only tells the maintainer what changed and
which manual edits a regeneration would overwrite.
"""

from __future__ import annotations

import dataclasses
import logging
import re
from pathlib import Path
from typing import Callable

from .schema_gen import BEGIN_MARKER, END_MARKER, GENERATED_HEADER, SCHEMA_EXPORTS
from .mutation_gen import MUTATIONS_HEADER


logger = logging.getLogger(__name__)

TABLE_PATTERN = re.compile(r"const (\w+) = table\('([^']+)'\)")
RELATIONSHIP_MAP_PATTERN = re.compile(r"const (\w+Relationships) = relationships\(")
ACCESSOR_PATTERN = re.compile(r"^  (\w+): (?:one|many)\(", re.M)
IMPORT_PATTERN = re.compile(r"^import\s.*?from\s+['\"]([^'\"]+)['\"];?", re.M | re.S)
EXPORT_PATTERN = re.compile(r"^export\s+(?:async\s+)?(?:const|let|type|interface|function|class|enum)\s+(\w+)", re.M)
COMMENT_PATTERN = re.compile(r"^\s*(//.*|/\*.*|\*.*)$")

# Comments the generators write; anything else in a comment is a hand edit.
GENERATED_COMMENTS = [
    re.compile(r"^// .+ (table|relationships)$"),
    re.compile(r"^// SKIPPED: "),
    re.compile(r"^// \w+: (polymorphic|many-to-many) "),
    re.compile(r"^// (AUTO-GENERATED|Generated by zerogen|@zerogen:)"),
    re.compile(r"^/\*\*$|^\*/$|^\* "),
]

GENERATOR_HEADERS = (GENERATED_HEADER, MUTATIONS_HEADER)


@dataclasses.dataclass
class ChangeReport:
    new_tables: list[str] = dataclasses.field(default_factory=list)
    removed_tables: list[str] = dataclasses.field(default_factory=list)
    new_relationships: list[str] = dataclasses.field(default_factory=list)
    removed_relationships: list[str] = dataclasses.field(default_factory=list)
    customizations: dict[str, list[str]] = dataclasses.field(default_factory=dict)
    first_generation: bool = False

    def has_changes(self) -> bool:
        return bool(self.new_tables or self.removed_tables or self.new_relationships or self.removed_relationships)

    def migration_notes(self) -> list[str]:
        if self.first_generation:
            return ["First generation: no previous schema to compare against."]
        notes: list[str] = []
        if self.new_tables:
            notes.append(f"New tables: {', '.join(self.new_tables)}")
        if self.removed_tables:
            notes.append(f"Removed tables: {', '.join(self.removed_tables)}. Update client code that queries them.")
        if self.new_relationships:
            notes.append(f"New relationships: {', '.join(self.new_relationships)}")
        if self.removed_relationships:
            notes.append(
                f"Removed relationships: {', '.join(self.removed_relationships)}. "
                "Queries using .related() on them will fail."
            )
        for path, items in sorted(self.customizations.items()):
            notes.append(f"Manual edits in {path} will be overwritten: {'; '.join(items)}")
        if not notes:
            notes.append("No structural changes.")
        return notes


def extract_table_names(text: str) -> list[str]:
    return sorted({m.group(2) for m in TABLE_PATTERN.finditer(text)})


def extract_relationship_names(text: str) -> list[str]:
    names: set[str] = set()
    matches = list(RELATIONSHIP_MAP_PATTERN.finditer(text))
    for idx, match in enumerate(matches):
        end = matches[idx + 1].start() if idx + 1 < len(matches) else len(text)
        block_end = text.find("\n}));", match.end(), end)
        block = text[match.end(): block_end if block_end != -1 else end]
        for accessor in ACCESSOR_PATTERN.findall(block):
            names.add(f"{match.group(1)}.{accessor}")
    return sorted(names)


def is_generated_file(text: str) -> bool:
    head = "\n".join(text.splitlines()[:3])
    return any(header in head for header in GENERATOR_HEADERS)


def outside_markers(text: str) -> list[str]:
    lines = text.splitlines()
    begin = f"// {BEGIN_MARKER}"
    end = f"// {END_MARKER}"
    if begin not in lines or end not in lines:
        return []
    start = lines.index(begin)
    stop = len(lines) - 1 - lines[::-1].index(end)
    header = [line for line in lines[:start] if line.strip() and not line.startswith("// ")]
    trailer = [line for line in lines[stop + 1:] if line.strip()]
    return header + trailer


def detect_customizations(
    previous: str,
    fresh: str,
    generated_export: Callable[[str], bool] | None = None,
) -> list[str]:
    found: list[str] = []

    extra = outside_markers(previous)
    if extra:
        found.append(f"{len(extra)} line(s) outside the generated region")

    fresh_comments = {line.strip() for line in fresh.splitlines() if COMMENT_PATTERN.match(line)}
    custom_comments = []
    for line in previous.splitlines():
        stripped = line.strip()
        if not COMMENT_PATTERN.match(line) or stripped in fresh_comments:
            continue
        if any(p.match(stripped) for p in GENERATED_COMMENTS):
            continue
        custom_comments.append(stripped)
    if custom_comments:
        found.append(f"custom comments: {', '.join(custom_comments[:3])}" + (" ..." if len(custom_comments) > 3 else ""))

    # Builder lists change with the schema; only modules the generator never imports are edits.
    fresh_modules = {m.group(1) for m in IMPORT_PATTERN.finditer(fresh)}
    custom_imports = [
        " ".join(m.group(0).split())
        for m in IMPORT_PATTERN.finditer(previous)
        if m.group(1) not in fresh_modules
    ]
    if custom_imports:
        found.append(f"non-standard imports: {', '.join(custom_imports)}")

    fresh_exports = set(EXPORT_PATTERN.findall(fresh))
    is_generated = generated_export or (lambda name: name in SCHEMA_EXPORTS)
    custom_exports = [
        name for name in EXPORT_PATTERN.findall(previous)
        if name not in fresh_exports and not is_generated(name)
    ]
    if custom_exports:
        found.append(f"custom exports: {', '.join(sorted(set(custom_exports)))}")
    return found


def compare_schema(previous: str | None, fresh: str) -> ChangeReport:
    if previous is None:
        return ChangeReport(first_generation=True)
    old_tables, new_tables = set(extract_table_names(previous)), set(extract_table_names(fresh))
    old_rels, new_rels = set(extract_relationship_names(previous)), set(extract_relationship_names(fresh))
    return ChangeReport(
        new_tables=sorted(new_tables - old_tables),
        removed_tables=sorted(old_tables - new_tables),
        new_relationships=sorted(new_rels - old_rels),
        removed_relationships=sorted(old_rels - new_rels),
    )


def read_previous(path: Path) -> str | None:
    if not path.exists():
        return None
    return path.read_text(encoding="utf-8")
