"""Naming-convention pattern detection.

Each detector looks at a single table and is independent of the others.
Detection is best effort; the results are facts recorded next to the table
and never rewrite it.
"""

from __future__ import annotations

import hashlib
import json
import logging

from .model import (
    TIMESTAMP_KINDS,
    EnumPattern,
    NormalizedField,
    PolymorphicPair,
    Positioning,
    SoftDeletion,
    Table,
    TablePatterns,
    TimestampPair,
)


logger = logging.getLogger(__name__)

SOFT_DELETE_COLUMNS = (
    ("discarded_at", "discard"),
    ("deleted_at", "timestamp_delete"),
)


def detect_soft_deletion(table: Table) -> SoftDeletion | None:
    for column, convention in SOFT_DELETE_COLUMNS:
        col = table.column(column)
        if col is not None and col.nullable and col.kind in TIMESTAMP_KINDS:
            return SoftDeletion(column=column, convention=convention)
    return None


def detect_positioning(table: Table, scope: list[str] | None = None) -> Positioning | None:
    if not table.has_column("position"):
        return None
    if scope is None:
        candidates = [
            name for name in table.column_names
            if name.endswith("_id") and name != "id"
        ]
    else:
        candidates = [name for name in scope if table.has_column(name)]
    return Positioning(column="position", scope=tuple(candidates))


def detect_normalized_fields(table: Table) -> tuple[NormalizedField, ...]:
    found: list[NormalizedField] = []
    for name in table.column_names:
        if not name.endswith("_normalized"):
            continue
        source = name.removesuffix("_normalized")
        if table.has_column(source):
            found.append(NormalizedField(column=name, source=source))
    return tuple(found)


def detect_timestamp_pairs(table: Table) -> tuple[TimestampPair, ...]:
    found: list[TimestampPair] = []
    for col in table.columns:
        if col.kind != "boolean" or not col.name.endswith("_time_set"):
            continue
        base = col.name.removesuffix("_time_set")
        stamp = table.column(f"{base}_at")
        if stamp is not None and stamp.kind in TIMESTAMP_KINDS:
            found.append(TimestampPair(flag_column=col.name, timestamp_column=stamp.name))
    return tuple(found)


def detect_enums(table: Table) -> tuple[EnumPattern, ...]:
    return tuple(
        EnumPattern(column=col.name, values=tuple(col.enum_values))
        for col in table.columns
        if col.is_enum
    )


def detect_polymorphic(table: Table) -> tuple[PolymorphicPair, ...]:
    found: list[PolymorphicPair] = []
    for name in table.column_names:
        if not name.endswith("_type"):
            continue
        base = name.removesuffix("_type")
        if base and table.has_column(f"{base}_id"):
            found.append(PolymorphicPair(name=base, type_column=name, id_column=f"{base}_id"))
    return tuple(found)


def detect_patterns(table: Table, positioning_scope: list[str] | None = None) -> TablePatterns:
    patterns = TablePatterns(
        soft_deletion=detect_soft_deletion(table),
        positioning=detect_positioning(table, positioning_scope),
        normalized_fields=detect_normalized_fields(table),
        timestamp_pairs=detect_timestamp_pairs(table),
        enums=detect_enums(table),
        polymorphic=detect_polymorphic(table),
    )
    if not patterns.is_empty():
        logger.debug(f"{table.name}: detected {', '.join(patterns.kinds())}")
    return patterns


def pattern_hash(patterns: TablePatterns) -> str:
    payload = json.dumps(patterns.to_dict(), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def columns_hash(table: Table) -> str:
    payload = json.dumps(
        [[c.name, c.kind, c.nullable, c.default_kind, c.enum_values] for c in table.columns],
        separators=(",", ":"),
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def pattern_report(patterns: dict[str, TablePatterns]) -> str:
    lines: list[str] = ["Pattern detection report", "========================", ""]
    counts: dict[str, int] = {}
    for table_name in sorted(patterns):
        table_patterns = patterns[table_name]
        if table_patterns.is_empty():
            continue
        lines.append(f"{table_name}:")
        if table_patterns.soft_deletion:
            sd = table_patterns.soft_deletion
            lines.append(f"  - soft deletion via {sd.column} ({sd.convention})")
        if table_patterns.positioning:
            scope = ", ".join(table_patterns.positioning.scope) or "none"
            lines.append(f"  - positioning (scope candidates: {scope})")
        for nf in table_patterns.normalized_fields:
            lines.append(f"  - normalized field {nf.column} <- {nf.source}")
        for tp in table_patterns.timestamp_pairs:
            lines.append(f"  - timestamp pair {tp.flag_column} / {tp.timestamp_column}")
        for ep in table_patterns.enums:
            lines.append(f"  - enum {ep.column}: {', '.join(ep.values)}")
        for pp in table_patterns.polymorphic:
            lines.append(f"  - polymorphic {pp.name} ({pp.type_column}, {pp.id_column})")
        for kind in table_patterns.kinds():
            counts[kind] = counts.get(kind, 0) + 1
    lines.append("")
    lines.append("Tables per pattern:")
    if counts:
        for kind in sorted(counts):
            lines.append(f"  {kind}: {counts[kind]}")
    else:
        lines.append("  none")
    return "\n".join(lines) + "\n"
