"""Explicit entity-descriptor registry.

Entities are declared up front, either in the ``entities`` section of the
configuration file or by handing a SQLAlchemy declarative base to
``registry_from_declarative``. Nothing is discovered by scanning modules at
runtime.

YAML shape::

    entities:
      Task:
        table: tasks
        enums:
          status: [open, done]
        belongs_to:
          job: {}
          parent: {target: tasks}
        has_many:
          notes: {as: notable}
          users: {through: job_assignments}
      Note:
        table: notes
        belongs_to:
          notable: {polymorphic: true}
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Iterable, Iterator

from sqlalchemy import Enum
from sqlalchemy.orm.interfaces import MANYTOMANY, MANYTOONE

from .errors import ConfigurationError
from .inflection import pluralize, singularize, tableize


logger = logging.getLogger(__name__)

RELATIONSHIP_KINDS = ("belongs_to", "has_many", "has_one")


@dataclasses.dataclass(frozen=True)
class RelationshipDecl:
    name: str
    kind: str
    target: str | None = None
    foreign_key: str | None = None
    through: str | None = None
    polymorphic: bool = False
    as_name: str | None = None


@dataclasses.dataclass(frozen=True)
class EnumDecl:
    column: str
    mapping: tuple[tuple[str, str | int], ...]

    @property
    def values(self) -> tuple[str, ...]:
        return tuple(str(stored) for _, stored in self.mapping)

    @property
    def is_integer_backed(self) -> bool:
        return any(isinstance(stored, int) and not isinstance(stored, bool) for _, stored in self.mapping)

    def as_dict(self) -> dict[str, str | int]:
        return dict(self.mapping)


@dataclasses.dataclass(frozen=True)
class EntityDescriptor:
    name: str
    table: str
    columns: tuple[str, ...] = ()
    relationships: tuple[RelationshipDecl, ...] = ()
    enums: tuple[EnumDecl, ...] = ()

    def enum(self, column: str) -> EnumDecl | None:
        for decl in self.enums:
            if decl.column == column:
                return decl
        return None

    def relationship(self, name: str) -> RelationshipDecl | None:
        for decl in self.relationships:
            if decl.name == name:
                return decl
        return None


class EntityRegistry:
    def __init__(self, descriptors: Iterable[EntityDescriptor] = ()) -> None:
        self._by_name: dict[str, EntityDescriptor] = {}
        self._by_table: dict[str, EntityDescriptor] = {}
        for descriptor in descriptors:
            self.register(descriptor)

    def register(self, descriptor: EntityDescriptor) -> None:
        if descriptor.name in self._by_name:
            raise ConfigurationError(f"Entity declared twice: {descriptor.name}")
        if descriptor.table in self._by_table:
            other = self._by_table[descriptor.table].name
            raise ConfigurationError(f"Table {descriptor.table} declared by both {other} and {descriptor.name}")
        self._by_name[descriptor.name] = descriptor
        self._by_table[descriptor.table] = descriptor

    def __iter__(self) -> Iterator[EntityDescriptor]:
        return iter(self._by_name.values())

    def __len__(self) -> int:
        return len(self._by_name)

    def for_table(self, table: str) -> EntityDescriptor | None:
        return self._by_table.get(table)

    def for_name(self, name: str) -> EntityDescriptor | None:
        return self._by_name.get(name)

    def table_for_type(self, type_name: str) -> str:
        descriptor = self._by_name.get(type_name)
        if descriptor:
            return descriptor.table
        return tableize(type_name)

    def reverse_polymorphic(self, as_name: str, target_table: str | None = None) -> list[str]:
        """Tables whose entities declare ``has_many ..., as: <as_name>`` pointing at ``target_table``."""
        tables: list[str] = []
        for descriptor in self._by_name.values():
            for decl in descriptor.relationships:
                if decl.kind not in ("has_many", "has_one") or decl.as_name != as_name:
                    continue
                if target_table is None or decl.target == target_table:
                    if descriptor.table not in tables:
                        tables.append(descriptor.table)
        return sorted(tables)

    @classmethod
    def from_config(cls, entities: dict | None) -> EntityRegistry:
        if not entities:
            return cls()
        if not isinstance(entities, dict):
            raise ConfigurationError("'entities' must be a mapping of entity name to declaration")
        return cls(parse_entity(name, body or {}) for name, body in entities.items())


def _normalize_decls(raw, kind: str, entity: str) -> list[tuple[str, dict]]:
    if raw is None:
        return []
    if isinstance(raw, list):
        out: list[tuple[str, dict]] = []
        for item in raw:
            if isinstance(item, str):
                out.append((item, {}))
            elif isinstance(item, dict) and "name" in item:
                out.append((str(item["name"]), {k: v for k, v in item.items() if k != "name"}))
            else:
                raise ConfigurationError(f"{entity}.{kind}: entries must be names or mappings with 'name'")
        return out
    if isinstance(raw, dict):
        return [(str(name), opts or {}) for name, opts in raw.items()]
    raise ConfigurationError(f"{entity}.{kind} must be a list or mapping")


def build_relationship(owner_table: str, kind: str, name: str, opts: dict) -> RelationshipDecl:
    polymorphic = bool(opts.get("polymorphic", False))
    as_name = opts.get("as")
    through = opts.get("through")

    if kind == "belongs_to":
        foreign_key = opts.get("foreign_key") or f"{name}_id"
        target = None if polymorphic else (opts.get("target") or pluralize(name))
    else:
        owner_key = as_name or singularize(owner_table)
        foreign_key = opts.get("foreign_key") or f"{owner_key}_id"
        default_target = name if kind == "has_many" else pluralize(name)
        target = opts.get("target") or default_target

    return RelationshipDecl(
        name=name,
        kind=kind,
        target=target,
        foreign_key=foreign_key,
        through=through,
        polymorphic=polymorphic,
        as_name=as_name,
    )


def _parse_enum(entity: str, column: str, raw) -> EnumDecl:
    if isinstance(raw, list):
        return EnumDecl(column=column, mapping=tuple((str(v), str(v)) for v in raw))
    if isinstance(raw, dict):
        mapping: list[tuple[str, str | int]] = []
        for key, stored in raw.items():
            if not isinstance(stored, (str, int)) or isinstance(stored, bool):
                raise ConfigurationError(f"{entity}.enums.{column}: unsupported stored value {stored!r}")
            mapping.append((str(key), stored))
        return EnumDecl(column=column, mapping=tuple(mapping))
    raise ConfigurationError(f"{entity}.enums.{column} must be a list or mapping")


def parse_entity(name: str, body: dict) -> EntityDescriptor:
    if not isinstance(body, dict):
        raise ConfigurationError(f"Entity {name} must be a mapping")
    table = body.get("table") or tableize(name)

    relationships: list[RelationshipDecl] = []
    for kind in RELATIONSHIP_KINDS:
        for rel_name, opts in _normalize_decls(body.get(kind), kind, name):
            relationships.append(build_relationship(table, kind, rel_name, opts))

    enums = tuple(_parse_enum(name, column, raw) for column, raw in (body.get("enums") or {}).items())
    columns = tuple(str(c) for c in body.get("columns") or [])
    return EntityDescriptor(
        name=name,
        table=table,
        columns=columns,
        relationships=tuple(relationships),
        enums=enums,
    )


def registry_from_declarative(base) -> EntityRegistry:
    """Build a registry from an explicitly supplied SQLAlchemy declarative base.

    Polymorphic belongs-to associations are read from ``__table__.info["polymorphic"]``
    and the reverse side from ``relationship(..., info={"as": "<name>"})``.
    Integer-backed enums are declared with ``Column(..., info={"enum": {...}})``.
    """
    registry = EntityRegistry()
    base.registry.configure()
    for mapper in sorted(base.registry.mappers, key=lambda m: m.class_.__name__):
        if mapper.inherits is not None:
            continue
        table = mapper.local_table
        relationships: list[RelationshipDecl] = []

        for rel in mapper.relationships:
            target = rel.mapper.local_table.name
            as_name = rel.info.get("as")
            if rel.direction is MANYTOONE:
                local = sorted(c.name for c in rel.local_columns)
                relationships.append(RelationshipDecl(
                    name=rel.key, kind="belongs_to", target=target, foreign_key=local[0],
                ))
            elif rel.direction is MANYTOMANY:
                relationships.append(RelationshipDecl(
                    name=rel.key, kind="has_many", target=target,
                    foreign_key=f"{singularize(table.name)}_id", through=rel.secondary.name,
                ))
            else:
                remote = sorted(c.name for c in rel.remote_side)
                relationships.append(RelationshipDecl(
                    name=rel.key,
                    kind="has_many" if rel.uselist else "has_one",
                    target=target,
                    foreign_key=remote[0] if remote else f"{singularize(table.name)}_id",
                    as_name=as_name,
                ))

        for poly_name in table.info.get("polymorphic", []):
            relationships.append(RelationshipDecl(
                name=poly_name, kind="belongs_to", foreign_key=f"{poly_name}_id", polymorphic=True,
            ))

        enums: list[EnumDecl] = []
        for col in table.columns:
            declared = col.info.get("enum")
            if declared:
                enums.append(_parse_enum(mapper.class_.__name__, col.name, declared))
            elif isinstance(col.type, Enum):
                enums.append(EnumDecl(column=col.name, mapping=tuple((v, v) for v in col.type.enums)))

        registry.register(EntityDescriptor(
            name=mapper.class_.__name__,
            table=table.name,
            columns=tuple(c.name for c in table.columns),
            relationships=tuple(relationships),
            enums=tuple(enums),
        ))
    logger.info(f"Registered {len(registry)} entities from declarative base")
    return registry
