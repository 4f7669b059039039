"""Read table structure from a live database and join it with the entity registry.

Usage:
    introspector = SchemaIntrospector(get_engine(url), registry)
    schema = introspector.extract_schema()
"""

from __future__ import annotations

import logging
import re
import warnings

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SAWarning
from sqlalchemy.types import (
    ARRAY,
    JSON,
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Enum,
    Float,
    Integer,
    LargeBinary,
    Numeric,
    String,
    Text,
    Time,
    Uuid,
)

from .config import DEFAULT_EXCLUDED_TABLES
from .errors import EnumStorageError, SchemaError
from .model import Column, Constraint, ForeignKey, Index, Relationship, SchemaModel, Table
from .patterns import detect_patterns
from .registry import EntityDescriptor, EntityRegistry


logger = logging.getLogger(__name__)

# Checked in order; subclasses before their parents.
SQLALCHEMY_KINDS: list[tuple[type, str]] = [
    (Enum, "string"),
    (ARRAY, "array"),
    (Uuid, "uuid"),
    (JSON, "json"),
    (Boolean, "boolean"),
    (Date, "date"),
    (Time, "time"),
    (BigInteger, "bigint"),
    (Integer, "integer"),
    (Float, "float"),
    (Numeric, "decimal"),
    (Text, "text"),
    (String, "string"),
    (LargeBinary, "binary"),
]

# Fallback for dialect-specific types SQLAlchemy does not model generically.
SQL_NAME_KINDS: list[tuple[str, str]] = [
    ("uuid", "uuid"),
    ("jsonb", "jsonb"),
    ("json", "json"),
    ("[]", "array"),
    ("bool", "boolean"),
    ("timestamptz", "timestamptz"),
    ("timestamp", "timestamp"),
    ("datetime", "datetime"),
    ("bigint", "bigint"),
    ("int", "integer"),
    ("serial", "integer"),
    ("numeric", "decimal"),
    ("decimal", "decimal"),
    ("double", "float"),
    ("real", "float"),
    ("float", "float"),
    ("citext", "text"),
    ("text", "text"),
    ("char", "string"),
    ("bytea", "binary"),
    ("blob", "binary"),
]

FUNCTION_DEFAULT = re.compile(r"^\(*\s*[A-Za-z_][\w.]*\s*\(.*\)\s*\)*$", re.S)
KEYWORD_DEFAULTS = {"current_timestamp", "current_date", "current_time", "localtimestamp", "now"}
CAST_SUFFIX = re.compile(r"::[\w\s\"\[\].]+$")


def get_engine(database_url: str) -> Engine:
    return create_engine(database_url, pool_pre_ping=True)


SCHEMA_VERSION_QUERIES = (
    "SELECT MAX(version) FROM schema_migrations",
    "SELECT version_num FROM alembic_version",
)


def fetch_schema_version(engine: Engine) -> str | None:
    for sql in SCHEMA_VERSION_QUERIES:
        try:
            with engine.connect() as conn:
                value = conn.execute(text(sql)).scalar()
        except Exception as e:
            logger.debug(f"Schema version query failed ({sql}): {e}")
            continue
        if value is not None:
            return str(value)
    return None


def render_sql_type(sa_type, engine: Engine) -> str:
    try:
        return str(sa_type.compile(dialect=engine.dialect))
    except Exception:
        return type(sa_type).__name__.upper()


def column_kind(sa_type, sql_type: str) -> str:
    lowered = sql_type.lower()
    if isinstance(sa_type, JSON) and "jsonb" in lowered:
        return "jsonb"
    if isinstance(sa_type, DateTime):
        if getattr(sa_type, "timezone", False) or "with time zone" in lowered or "timestamptz" in lowered:
            return "timestamptz"
        return "timestamp" if "timestamp" in lowered else "datetime"
    for sa_class, kind in SQLALCHEMY_KINDS:
        if isinstance(sa_type, sa_class):
            return kind
    for needle, kind in SQL_NAME_KINDS:
        if needle in lowered:
            return kind
    return "unknown"


def categorize_default(raw) -> tuple[str | None, str]:
    """Return the cleaned default and its kind: function, literal or none."""
    if raw is None:
        return None, "none"
    text_value = str(raw).strip()
    if not text_value or text_value.upper() == "NULL":
        return None, "none"
    stripped = CAST_SUFFIX.sub("", text_value).strip()
    if stripped.upper() == "NULL":
        return None, "none"
    if stripped.lower() in KEYWORD_DEFAULTS or (
        not stripped.startswith("'") and FUNCTION_DEFAULT.match(stripped)
    ):
        return stripped, "function"
    if len(stripped) >= 2 and stripped[0] == stripped[-1] == "'":
        stripped = stripped[1:-1].replace("''", "'")
    return stripped, "literal"


class SchemaIntrospector:
    def __init__(
        self,
        engine: Engine,
        registry: EntityRegistry,
        excluded_tables: set[str] | None = None,
        schema: str | None = None,
        positioning_scopes: dict[str, list[str]] | None = None,
    ) -> None:
        self.engine = engine
        self.registry = registry
        self.excluded_tables = set(DEFAULT_EXCLUDED_TABLES) if excluded_tables is None else set(excluded_tables)
        self.schema = schema
        self.positioning_scopes = positioning_scopes or {}
        self.warnings: list[str] = []

    def _warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)

    def list_tables(self) -> list[str]:
        inspector = inspect(self.engine)
        names = inspector.get_table_names(schema=self.schema)
        return sorted(name for name in names if name not in self.excluded_tables)

    def extract_schema(self) -> SchemaModel:
        inspector = inspect(self.engine)
        table_names = self.list_tables()
        logger.info(f"Introspecting {len(table_names)} tables")

        tables: dict[str, Table] = {}
        with warnings.catch_warnings():
            warnings.filterwarnings("ignore", category=SAWarning, message="Did not recognize type")
            for name in table_names:
                tables[name] = self._read_table(inspector, name)

        for descriptor in self.registry:
            if descriptor.table not in tables and descriptor.table not in self.excluded_tables:
                self._warn(f"Entity {descriptor.name} maps to table {descriptor.table}, which was not found")

        relationships: dict[str, list[Relationship]] = {}
        for name, table in tables.items():
            descriptor = self.registry.for_table(name)
            self._apply_enums(table, descriptor)
            if descriptor is None:
                logger.info(f"No entity declared for {name}, skipping relationship extraction")
                relationships[name] = []
                continue
            relationships[name] = self.extract_relationships(table, descriptor)

        patterns = {
            name: detect_patterns(table, self.positioning_scopes.get(name))
            for name, table in tables.items()
        }
        return SchemaModel(tables=tables, relationships=relationships, patterns=patterns)

    def _read_table(self, inspector, name: str) -> Table:
        columns: list[Column] = []
        seen: set[str] = set()
        pk = inspector.get_pk_constraint(name, schema=self.schema) or {}
        pk_columns = pk.get("constrained_columns") or []

        for info in inspector.get_columns(name, schema=self.schema):
            col_name = info["name"]
            if col_name in seen:
                raise SchemaError(f"Duplicate column {col_name} in table {name}")
            seen.add(col_name)
            sa_type = info["type"]
            sql_type = render_sql_type(sa_type, self.engine)
            default, default_kind = categorize_default(info.get("default"))
            enum_values = list(sa_type.enums) if isinstance(sa_type, Enum) else []
            columns.append(Column(
                name=col_name,
                kind=column_kind(sa_type, sql_type),
                sql_type=sql_type,
                nullable=bool(info.get("nullable", True)) and col_name not in pk_columns,
                primary_key=col_name in pk_columns,
                default=default,
                default_kind=default_kind,
                comment=info.get("comment"),
                enum_values=enum_values,
            ))

        if len(pk_columns) > 1:
            self._warn(f"Table {name} has a composite primary key {pk_columns}; using {pk_columns[0]}")
        primary_key = pk_columns[0] if pk_columns else ("id" if "id" in seen else None)

        foreign_keys = [
            ForeignKey(
                columns=list(fk.get("constrained_columns") or []),
                target_table=fk.get("referred_table", ""),
                target_columns=list(fk.get("referred_columns") or []),
                name=fk.get("name"),
            )
            for fk in inspector.get_foreign_keys(name, schema=self.schema)
        ]
        indexes = [
            Index(name=ix.get("name") or "", columns=[c for c in ix.get("column_names") or [] if c], unique=bool(ix.get("unique")))
            for ix in inspector.get_indexes(name, schema=self.schema)
        ]
        return Table(
            name=name,
            columns=columns,
            primary_key=primary_key,
            foreign_keys=foreign_keys,
            indexes=indexes,
            constraints=self._read_constraints(inspector, name),
        )

    def _read_constraints(self, inspector, name: str) -> list[Constraint]:
        constraints: list[Constraint] = []
        try:
            for uc in inspector.get_unique_constraints(name, schema=self.schema):
                constraints.append(Constraint(name=uc.get("name"), kind="unique", columns=list(uc.get("column_names") or [])))
        except NotImplementedError:
            pass
        try:
            for cc in inspector.get_check_constraints(name, schema=self.schema):
                constraints.append(Constraint(name=cc.get("name"), kind="check", expression=cc.get("sqltext")))
        except NotImplementedError:
            pass
        return constraints

    def _apply_enums(self, table: Table, descriptor: EntityDescriptor | None) -> None:
        if descriptor is None:
            return
        for decl in descriptor.enums:
            if decl.is_integer_backed:
                raise EnumStorageError(descriptor.name, decl.column, decl.as_dict())
            column = table.column(decl.column)
            if column is None:
                self._warn(f"{descriptor.name} declares enum {decl.column}, but {table.name} has no such column")
                continue
            column.enum_values = list(decl.values)
        for declared in descriptor.columns:
            if not table.has_column(declared):
                self._warn(f"{descriptor.name} declares column {declared}, missing from {table.name}")

    def extract_relationships(self, table: Table, descriptor: EntityDescriptor) -> list[Relationship]:
        relationships: list[Relationship] = []
        for decl in descriptor.relationships:
            relationships.append(Relationship(
                owner_table=table.name,
                name=decl.name,
                kind=decl.kind,
                foreign_key=decl.foreign_key or f"{decl.name}_id",
                target_table=decl.target,
                through=decl.through,
                polymorphic=decl.polymorphic,
                as_name=decl.as_name,
            ))
        return relationships
