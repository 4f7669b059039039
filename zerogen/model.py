"""Data model shared by introspection, pattern detection and generation."""

from __future__ import annotations

import dataclasses
from pathlib import Path
from typing import ClassVar


TIMESTAMP_KINDS = ("datetime", "timestamp", "timestamptz")
TEMPORAL_KINDS = ("date", "time") + TIMESTAMP_KINDS
STRING_KINDS = ("uuid", "string", "text")


@dataclasses.dataclass
class Column:
    name: str
    kind: str
    sql_type: str = ""
    nullable: bool = True
    primary_key: bool = False
    default: str | None = None
    default_kind: str = "none"
    comment: str | None = None
    enum_values: list[str] = dataclasses.field(default_factory=list)

    @property
    def is_enum(self) -> bool:
        return bool(self.enum_values)

    @property
    def has_default(self) -> bool:
        return self.default_kind != "none"


@dataclasses.dataclass
class ForeignKey:
    columns: list[str]
    target_table: str
    target_columns: list[str]
    name: str | None = None


@dataclasses.dataclass
class Index:
    name: str
    columns: list[str]
    unique: bool = False


@dataclasses.dataclass
class Constraint:
    name: str | None
    kind: str
    columns: list[str] = dataclasses.field(default_factory=list)
    expression: str | None = None


@dataclasses.dataclass
class Table:
    name: str
    columns: list[Column]
    primary_key: str | None = None
    foreign_keys: list[ForeignKey] = dataclasses.field(default_factory=list)
    indexes: list[Index] = dataclasses.field(default_factory=list)
    constraints: list[Constraint] = dataclasses.field(default_factory=list)

    def column(self, name: str) -> Column | None:
        for col in self.columns:
            if col.name == name:
                return col
        return None

    def has_column(self, name: str) -> bool:
        return self.column(name) is not None

    @property
    def column_names(self) -> list[str]:
        return [col.name for col in self.columns]

    @property
    def primary_key_column(self) -> Column | None:
        if self.primary_key:
            return self.column(self.primary_key)
        return self.column("id")


@dataclasses.dataclass
class Relationship:
    owner_table: str
    name: str
    kind: str
    foreign_key: str
    target_table: str | None = None
    through: str | None = None
    polymorphic: bool = False
    as_name: str | None = None

    @property
    def is_through(self) -> bool:
        return self.through is not None


@dataclasses.dataclass
class PolymorphicAssociation:
    table: str
    name: str
    type_column: str
    id_column: str
    targets: list[str] = dataclasses.field(default_factory=list)
    source: str = "unresolved"
    declared_types: list[str] = dataclasses.field(default_factory=list)
    inferred_types: list[str] = dataclasses.field(default_factory=list)
    observed_types: list[str] = dataclasses.field(default_factory=list)
    observed_tables: list[str] = dataclasses.field(default_factory=list)
    sti_groups: dict[str, list[str]] = dataclasses.field(default_factory=dict)
    record_count: int | None = None
    first_seen: str | None = None
    last_seen: str | None = None

    @property
    def key(self) -> str:
        return f"{self.table}.{self.name}"


# Patterns are facts about a table; they never change the Table they describe.


@dataclasses.dataclass(frozen=True)
class SoftDeletion:
    kind: ClassVar[str] = "soft_deletion"
    column: str
    convention: str


@dataclasses.dataclass(frozen=True)
class Positioning:
    kind: ClassVar[str] = "positioning"
    column: str
    scope: tuple[str, ...] = ()


@dataclasses.dataclass(frozen=True)
class NormalizedField:
    kind: ClassVar[str] = "normalized_field"
    column: str
    source: str


@dataclasses.dataclass(frozen=True)
class TimestampPair:
    kind: ClassVar[str] = "timestamp_pair"
    flag_column: str
    timestamp_column: str


@dataclasses.dataclass(frozen=True)
class EnumPattern:
    kind: ClassVar[str] = "enum"
    column: str
    values: tuple[str, ...]


@dataclasses.dataclass(frozen=True)
class PolymorphicPair:
    kind: ClassVar[str] = "polymorphic"
    name: str
    type_column: str
    id_column: str


PATTERN_KINDS = (
    SoftDeletion.kind,
    Positioning.kind,
    NormalizedField.kind,
    TimestampPair.kind,
    EnumPattern.kind,
    PolymorphicPair.kind,
)


@dataclasses.dataclass(frozen=True)
class TablePatterns:
    soft_deletion: SoftDeletion | None = None
    positioning: Positioning | None = None
    normalized_fields: tuple[NormalizedField, ...] = ()
    timestamp_pairs: tuple[TimestampPair, ...] = ()
    enums: tuple[EnumPattern, ...] = ()
    polymorphic: tuple[PolymorphicPair, ...] = ()

    def kinds(self) -> list[str]:
        present = {
            SoftDeletion.kind: self.soft_deletion is not None,
            Positioning.kind: self.positioning is not None,
            NormalizedField.kind: bool(self.normalized_fields),
            TimestampPair.kind: bool(self.timestamp_pairs),
            EnumPattern.kind: bool(self.enums),
            PolymorphicPair.kind: bool(self.polymorphic),
        }
        return [kind for kind in PATTERN_KINDS if present[kind]]

    def is_empty(self) -> bool:
        return not self.kinds()

    def enum(self, column: str) -> EnumPattern | None:
        for pattern in self.enums:
            if pattern.column == column:
                return pattern
        return None

    def without(self, kinds: set[str]) -> TablePatterns:
        return TablePatterns(
            soft_deletion=None if SoftDeletion.kind in kinds else self.soft_deletion,
            positioning=None if Positioning.kind in kinds else self.positioning,
            normalized_fields=() if NormalizedField.kind in kinds else self.normalized_fields,
            timestamp_pairs=() if TimestampPair.kind in kinds else self.timestamp_pairs,
            enums=() if EnumPattern.kind in kinds else self.enums,
            polymorphic=() if PolymorphicPair.kind in kinds else self.polymorphic,
        )

    def to_dict(self) -> dict:
        out: dict = {}
        if self.soft_deletion:
            out[SoftDeletion.kind] = dataclasses.asdict(self.soft_deletion)
        if self.positioning:
            out[Positioning.kind] = {
                "column": self.positioning.column,
                "scope": list(self.positioning.scope),
            }
        if self.normalized_fields:
            out[NormalizedField.kind] = [dataclasses.asdict(p) for p in self.normalized_fields]
        if self.timestamp_pairs:
            out[TimestampPair.kind] = [dataclasses.asdict(p) for p in self.timestamp_pairs]
        if self.enums:
            out[EnumPattern.kind] = [{"column": p.column, "values": list(p.values)} for p in self.enums]
        if self.polymorphic:
            out[PolymorphicPair.kind] = [dataclasses.asdict(p) for p in self.polymorphic]
        return out


@dataclasses.dataclass
class SchemaModel:
    tables: dict[str, Table]
    relationships: dict[str, list[Relationship]]
    patterns: dict[str, TablePatterns]

    @property
    def indexes(self) -> dict[str, list[Index]]:
        return {name: table.indexes for name, table in self.tables.items()}

    @property
    def constraints(self) -> dict[str, list[Constraint]]:
        return {name: table.constraints for name, table in self.tables.items()}

    def table_names(self) -> list[str]:
        return sorted(self.tables)


@dataclasses.dataclass
class GeneratedArtifact:
    path: Path
    content: str
    kind: str
    table: str | None = None
    customizations: list[str] = dataclasses.field(default_factory=list)
