"""Resolve the target tables of polymorphic associations.

Sources, highest confidence first:

1. declared: ``declarePolymorphicRelationships({...})`` calls found in
   hand-maintained TypeScript next to the generated modules
2. inferred: entity descriptors that declare ``has_many ..., as: <name>``
3. observed: distinct values in the ``<name>_type`` column (statistics only)
4. fallback: the configured association-name table

Observed values are recorded in the discovery document and never produce
relationship accessors.
"""

from __future__ import annotations

import dataclasses
import logging
import re
from pathlib import Path

from sqlalchemy import text
from sqlalchemy.engine import Engine

from .inflection import pluralize, singularize
from .model import PolymorphicAssociation, SchemaModel
from .registry import EntityRegistry

try:
    import yaml
except ImportError as exc:  # pragma: no cover
    raise SystemExit("PyYAML is required. Install with: pip install pyyaml") from exc


logger = logging.getLogger(__name__)

DECLARATION_FUNCTION = "declarePolymorphicRelationships"
CALL_PATTERN = re.compile(rf"\b{DECLARATION_FUNCTION}\s*\(")


@dataclasses.dataclass
class PolymorphicDeclaration:
    table: str
    association: str
    type_field: str
    id_field: str
    allowed_types: list[str]
    source_path: str = "<memory>"


def mask_source(source: str) -> str:
    """Blank out string contents and comments, keeping offsets and newlines."""
    out = list(source)
    i, n = 0, len(source)

    def blank(start: int, end: int) -> None:
        for k in range(start, min(end, n)):
            if out[k] != "\n":
                out[k] = " "

    while i < n:
        ch = source[i]
        if ch in "'\"`":
            j = i + 1
            while j < n and source[j] != ch:
                if source[j] == "\\":
                    j += 1
                j += 1
            blank(i + 1, j)
            i = j + 1
        elif source.startswith("//", i):
            j = source.find("\n", i)
            j = n if j == -1 else j
            blank(i, j)
            i = j
        elif source.startswith("/*", i):
            j = source.find("*/", i + 2)
            j = n if j == -1 else j + 2
            blank(i, j)
            i = j
        else:
            i += 1
    return "".join(out)


def matching_close(masked: str, open_idx: int) -> int | None:
    depth = 0
    for i in range(open_idx, len(masked)):
        ch = masked[i]
        if ch in "([{":
            depth += 1
        elif ch in ")]}":
            depth -= 1
            if depth == 0:
                return i
    return None


def extract_declaration_arguments(source: str) -> list[str]:
    masked = mask_source(source)
    arguments: list[str] = []
    for m in CALL_PATTERN.finditer(masked):
        if masked[: m.start()].rstrip().endswith("function"):
            continue
        close = matching_close(masked, m.end() - 1)
        if close is None:
            raise ValueError(f"Unbalanced {DECLARATION_FUNCTION} call at offset {m.start()}")
        arguments.append(source[m.end():close])
    return arguments


class LiteralParser:
    """Parse the subset of JavaScript literals used by declaration calls."""

    def __init__(self, source: str) -> None:
        self.source = source
        self.pos = 0

    def parse(self):
        value = self.value()
        self.skip()
        if self.peek() == ",":
            self.pos += 1
            self.skip()
        if self.pos < len(self.source):
            raise ValueError(f"Unexpected trailing input at offset {self.pos}")
        return value

    def peek(self) -> str:
        return self.source[self.pos] if self.pos < len(self.source) else ""

    def skip(self) -> None:
        while self.pos < len(self.source):
            if self.source[self.pos].isspace():
                self.pos += 1
            elif self.source.startswith("//", self.pos):
                end = self.source.find("\n", self.pos)
                self.pos = len(self.source) if end == -1 else end
            elif self.source.startswith("/*", self.pos):
                end = self.source.find("*/", self.pos + 2)
                self.pos = len(self.source) if end == -1 else end + 2
            else:
                break

    def expect(self, ch: str) -> None:
        self.skip()
        if self.peek() != ch:
            raise ValueError(f"Expected '{ch}' at offset {self.pos}")
        self.pos += 1

    def value(self):
        self.skip()
        ch = self.peek()
        if ch == "{":
            value = self.obj()
        elif ch == "[":
            value = self.arr()
        elif ch and ch in "'\"`":
            value = self.string()
        else:
            value = self.word()
        self.skip_type_suffix()
        return value

    def skip_type_suffix(self) -> None:
        self.skip()
        start = self.pos
        if self.word_ahead() == "as":
            self.word()
            self.word()
        else:
            self.pos = start

    def word_ahead(self) -> str:
        m = re.compile(r"[A-Za-z_$][\w$]*").match(self.source, self.pos)
        return m.group(0) if m else ""

    def word(self):
        self.skip()
        m = re.compile(r"-?[\w$.]+").match(self.source, self.pos)
        if not m:
            raise ValueError(f"Unexpected character {self.peek()!r} at offset {self.pos}")
        self.pos = m.end()
        token = m.group(0)
        if token == "true":
            return True
        if token == "false":
            return False
        if token in ("null", "undefined"):
            return None
        if re.fullmatch(r"-?\d+(\.\d+)?", token):
            return float(token) if "." in token else int(token)
        # Bare identifiers reference runtime values we cannot evaluate.
        return None

    def string(self) -> str:
        quote = self.source[self.pos]
        self.pos += 1
        chars: list[str] = []
        while self.pos < len(self.source):
            ch = self.source[self.pos]
            if ch == "\\" and self.pos + 1 < len(self.source):
                chars.append(self.source[self.pos + 1])
                self.pos += 2
                continue
            if ch == quote:
                self.pos += 1
                return "".join(chars)
            chars.append(ch)
            self.pos += 1
        raise ValueError("Unterminated string literal")

    def key(self) -> str:
        self.skip()
        if self.peek() and self.peek() in "'\"`":
            return self.string()
        m = re.compile(r"[A-Za-z_$][\w$]*").match(self.source, self.pos)
        if not m:
            raise ValueError(f"Expected property name at offset {self.pos}")
        self.pos = m.end()
        return m.group(0)

    def obj(self) -> dict:
        self.expect("{")
        result: dict = {}
        while True:
            self.skip()
            if self.peek() == "}":
                self.pos += 1
                return result
            name = self.key()
            self.skip()
            if self.peek() == ":":
                self.pos += 1
                result[name] = self.value()
            else:
                result[name] = None
            self.skip()
            if self.peek() == ",":
                self.pos += 1
            elif self.peek() != "}":
                raise ValueError(f"Expected ',' or '}}' at offset {self.pos}")

    def arr(self) -> list:
        self.expect("[")
        result: list = []
        while True:
            self.skip()
            if self.peek() == "]":
                self.pos += 1
                return result
            result.append(self.value())
            self.skip()
            if self.peek() == ",":
                self.pos += 1
            elif self.peek() != "]":
                raise ValueError(f"Expected ',' or ']' at offset {self.pos}")


def parse_declarations(source: str, source_path: str = "<memory>") -> list[PolymorphicDeclaration]:
    declarations: list[PolymorphicDeclaration] = []
    for argument in extract_declaration_arguments(source):
        literal = LiteralParser(argument).parse()
        if not isinstance(literal, dict) or not isinstance(literal.get("tableName"), str):
            raise ValueError(f"{DECLARATION_FUNCTION} call without a literal tableName")
        belongs_to = literal.get("belongsTo") or {}
        if not isinstance(belongs_to, dict):
            raise ValueError(f"belongsTo must be an object literal in {literal['tableName']}")
        for association, body in belongs_to.items():
            body = body or {}
            allowed = [str(v) for v in body.get("allowedTypes") or [] if isinstance(v, str)]
            declarations.append(PolymorphicDeclaration(
                table=literal["tableName"],
                association=association,
                type_field=body.get("typeField") or f"{association}_type",
                id_field=body.get("idField") or f"{association}_id",
                allowed_types=allowed,
                source_path=source_path,
            ))
    return declarations


def collect_declarations(directory: Path) -> tuple[list[PolymorphicDeclaration], list[str]]:
    declarations: list[PolymorphicDeclaration] = []
    problems: list[str] = []
    if not directory.exists():
        return declarations, problems
    seen: dict[tuple[str, str], str] = {}
    for path in sorted(directory.rglob("*.ts")):
        if "node_modules" in path.parts or path.name.endswith(".generated.ts"):
            continue
        source = path.read_text(encoding="utf-8")
        if DECLARATION_FUNCTION not in source:
            continue
        try:
            found = parse_declarations(source, str(path))
        except ValueError as exc:
            message = f"Could not parse polymorphic declarations in {path}: {exc}"
            logger.warning(message)
            problems.append(message)
            continue
        for decl in found:
            key = (decl.table, decl.association)
            if key in seen:
                message = f"Duplicate declaration for {decl.table}.{decl.association} in {path} (keeping {seen[key]})"
                logger.warning(message)
                problems.append(message)
                continue
            seen[key] = decl.source_path
            declarations.append(decl)
    logger.info(f"Collected {len(declarations)} polymorphic declarations from {directory}")
    return declarations, problems


def quote_identifier(engine: Engine, name: str) -> str:
    return engine.dialect.identifier_preparer.quote(name)


def fetch_type_statistics(engine: Engine, table: str, type_column: str, columns: list[str]) -> dict:
    empty = {"types": [], "count": None, "first_seen": None, "last_seen": None}
    q_table = quote_identifier(engine, table)
    q_type = quote_identifier(engine, type_column)
    try:
        with engine.connect() as conn:
            types = conn.execute(text(
                f"SELECT DISTINCT {q_type} FROM {q_table} WHERE {q_type} IS NOT NULL ORDER BY {q_type}"
            )).scalars().all()
            count = conn.execute(text(
                f"SELECT COUNT(*) FROM {q_table} WHERE {q_type} IS NOT NULL"
            )).scalar()
            first_seen = last_seen = None
            if "created_at" in columns:
                first_seen = conn.execute(text(
                    f"SELECT MIN({quote_identifier(engine, 'created_at')}) FROM {q_table} WHERE {q_type} IS NOT NULL"
                )).scalar()
            stamp = "updated_at" if "updated_at" in columns else ("created_at" if "created_at" in columns else None)
            if stamp:
                last_seen = conn.execute(text(
                    f"SELECT MAX({quote_identifier(engine, stamp)}) FROM {q_table} WHERE {q_type} IS NOT NULL"
                )).scalar()
    except Exception as e:
        logger.warning(f"Could not read polymorphic statistics for {table}.{type_column}: {e}")
        return empty
    return {
        "types": [str(t) for t in types],
        "count": int(count or 0),
        "first_seen": str(first_seen) if first_seen is not None else None,
        "last_seen": str(last_seen) if last_seen is not None else None,
    }


class PolymorphicResolver:
    def __init__(
        self,
        schema: SchemaModel,
        registry: EntityRegistry,
        declarations: list[PolymorphicDeclaration] | None = None,
        fallbacks: dict[str, list[str]] | None = None,
        sti_separator: str = "::",
        engine: Engine | None = None,
    ) -> None:
        self.schema = schema
        self.registry = registry
        self.declarations = {(d.table, d.association): d for d in declarations or []}
        self.fallbacks = fallbacks or {}
        self.sti_separator = sti_separator
        self.engine = engine
        self.warnings: list[str] = []

    def _warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)

    def type_to_table(self, value: str) -> tuple[str, str | None]:
        """Return (table, STI base class) for a stored or declared type value."""
        if self.sti_separator in value:
            base = value.split(self.sti_separator, 1)[0]
            return self.registry.table_for_type(base), base
        if value[:1].isupper():
            return self.registry.table_for_type(value), None
        if singularize(value) == value:
            return pluralize(value), None
        return value, None

    def _tables_for(self, values: list[str], sti_groups: dict[str, list[str]]) -> list[str]:
        tables: list[str] = []
        for value in values:
            table, base = self.type_to_table(value)
            if base is not None:
                group = sti_groups.setdefault(base, [])
                if value not in group:
                    group.append(value)
            if table not in tables:
                tables.append(table)
        return tables

    def _known(self, tables: list[str], context: str) -> list[str]:
        known: list[str] = []
        for table in tables:
            if table in self.schema.tables:
                known.append(table)
            else:
                logger.info(f"{context}: dropping target {table}, not an introspected table")
        return known

    def associations(self) -> list[tuple[str, str, str, str]]:
        found: dict[tuple[str, str], tuple[str, str, str, str]] = {}
        for table_name in self.schema.table_names():
            for pair in self.schema.patterns[table_name].polymorphic:
                found[(table_name, pair.name)] = (table_name, pair.name, pair.type_column, pair.id_column)
            table = self.schema.tables[table_name]
            for rel in self.schema.relationships.get(table_name, []):
                if not rel.polymorphic or (table_name, rel.name) in found:
                    continue
                type_column = f"{rel.name}_type"
                if not table.has_column(type_column) or not table.has_column(rel.foreign_key):
                    self._warn(
                        f"Polymorphic {table_name}.{rel.name} needs both {type_column} and {rel.foreign_key}, skipping"
                    )
                    continue
                found[(table_name, rel.name)] = (table_name, rel.name, type_column, rel.foreign_key)
        return [found[key] for key in sorted(found)]

    def resolve(self) -> dict[str, PolymorphicAssociation]:
        resolved: dict[str, PolymorphicAssociation] = {}
        for table, name, type_column, id_column in self.associations():
            association = self.resolve_one(table, name, type_column, id_column)
            resolved[association.key] = association
        return resolved

    def resolve_one(self, table: str, name: str, type_column: str, id_column: str) -> PolymorphicAssociation:
        association = PolymorphicAssociation(table=table, name=name, type_column=type_column, id_column=id_column)
        context = f"{table}.{name}"

        declaration = self.declarations.get((table, name))
        if declaration:
            association.declared_types = list(declaration.allowed_types)
        declared = self._known(self._tables_for(association.declared_types, association.sti_groups), context)

        inferred = self._known(self.registry.reverse_polymorphic(name, target_table=table), context)
        association.inferred_types = [
            self.registry.for_table(t).name for t in inferred if self.registry.for_table(t) is not None
        ]

        if self.engine is not None:
            columns = self.schema.tables[table].column_names
            stats = fetch_type_statistics(self.engine, table, type_column, columns)
            association.observed_types = stats["types"]
            association.record_count = stats["count"]
            association.first_seen = stats["first_seen"]
            association.last_seen = stats["last_seen"]
            association.observed_tables = self._tables_for(association.observed_types, association.sti_groups)

        fallback = self._known(list(self.fallbacks.get(name, [])), context)

        if declared:
            association.targets, association.source = declared, "declared"
        elif inferred:
            association.targets, association.source = inferred, "inferred"
        elif fallback:
            association.targets, association.source = fallback, "fallback"
        elif association.observed_types:
            association.source = "observed"
        else:
            self._warn(f"No target tables found for polymorphic association {context}")

        extra = [t for t in association.observed_tables if t not in association.targets]
        if association.targets and extra:
            logger.info(f"{context}: observed types outside resolved targets: {', '.join(extra)}")
        return association


def build_discovery_document(
    associations: dict[str, PolymorphicAssociation],
    dialect: str,
    schema_version: str | None,
) -> dict:
    sti_patterns: dict[str, list[str]] = {}
    details: dict[str, dict] = {}
    for key in sorted(associations):
        a = associations[key]
        for base, subclasses in a.sti_groups.items():
            merged = sti_patterns.setdefault(base, [])
            merged.extend(s for s in subclasses if s not in merged)
        details[key] = {
            "table": a.table,
            "association": a.name,
            "type_column": a.type_column,
            "id_column": a.id_column,
            "source": a.source,
            "targets": list(a.targets),
            "declared_types": list(a.declared_types),
            "inferred_types": list(a.inferred_types),
            "observed_types": list(a.observed_types),
            "observed_tables": list(a.observed_tables),
            "sti_groups": {k: list(v) for k, v in sorted(a.sti_groups.items())},
            "statistics": {
                "total_records": a.record_count,
                "unique_observed_types": len(a.observed_types),
                "first_seen": a.first_seen,
                "last_seen": a.last_seen,
            },
        }

    values = list(associations.values())
    return {
        "metadata": {
            "database_dialect": dialect,
            "schema_version": schema_version,
        },
        "statistics": {
            "total_associations": len(values),
            "associations_with_data": sum(1 for a in values if a.observed_types),
            "resolved_associations": sum(1 for a in values if a.targets),
            "total_target_tables": sum(len(a.targets) for a in values),
            "total_observed_types": sum(len(a.observed_types) for a in values),
            "sti_patterns": len(sti_patterns),
        },
        "sti_patterns": {k: sti_patterns[k] for k in sorted(sti_patterns)},
        "polymorphic_associations": details,
    }


def render_discovery_document(document: dict) -> str:
    header = [
        "# Polymorphic association discovery",
        "# Generated by zerogen. Observed types are informational; relationships",
        "# are generated only for declared, inferred or fallback targets.",
        "",
    ]
    body = yaml.safe_dump(document, sort_keys=False, default_flow_style=False, allow_unicode=True)
    return "\n".join(header) + body
