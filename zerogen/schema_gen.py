"""Build the Zero schema definition module."""

from __future__ import annotations

import logging
import re

from . import ts
from .inflection import camelize, classify, humanize, singularize
from .model import PolymorphicAssociation, Relationship, SchemaModel, Table
from .type_mapper import TypeMapper


logger = logging.getLogger(__name__)

ZERO_PACKAGE = "@rocicorp/zero"
GENERATED_HEADER = "AUTO-GENERATED ZERO SCHEMA - DO NOT EDIT"
GENERATED_NOTICE = "Generated by zerogen from the database schema. Regenerate instead of editing."
BEGIN_MARKER = "@zerogen:begin"
END_MARKER = "@zerogen:end"

SCHEMA_EXPORTS = ("schema", "ZeroClient", "TableName")

RESERVED_WORDS = {
    "break", "case", "catch", "class", "const", "continue", "debugger", "default", "delete",
    "do", "else", "enum", "export", "extends", "false", "finally", "for", "function", "if",
    "import", "in", "instanceof", "new", "null", "return", "super", "switch", "this", "throw",
    "true", "try", "typeof", "var", "void", "while", "with", "yield", "let", "static",
}
IDENTIFIER = re.compile(r"^[A-Za-z_$][\w$]*$")


def table_variable(table_name: str) -> str:
    name = table_name if IDENTIFIER.match(table_name) else re.sub(r"\W", "_", table_name)
    if name in RESERVED_WORDS:
        return f"{name}Table"
    return name


def property_key(name: str) -> str:
    return name if IDENTIFIER.match(name) else ts.ts_string(name)


def accessor_name(name: str) -> str:
    return camelize(name, upper=False)


def polymorphic_accessor(association: str, target_table: str) -> str:
    return camelize(association, upper=False) + classify(target_table)


def header_nodes() -> list:
    return [ts.Comment(GENERATED_HEADER), ts.Comment(GENERATED_NOTICE), ts.Comment(BEGIN_MARKER), ts.Blank()]


def field_list(*names: str) -> ts.ArrayLiteral:
    return ts.ArrayLiteral([ts.Raw(ts.ts_string(n)) for n in names])


def link(call: str, source: str, dest: str, dest_table: str) -> ts.Call:
    return ts.Call(call, [ts.ObjectLiteral([
        ts.Property("sourceField", field_list(source)),
        ts.Property("destField", field_list(dest)),
        ts.Property("destSchema", ts.Raw(table_variable(dest_table))),
    ])])


def build_table(table: Table, mapper: TypeMapper) -> ts.ConstDecl:
    columns = ts.ObjectLiteral([
        ts.Property(property_key(col.name), ts.Raw(mapper.map_column(col, table.name)))
        for col in table.columns
    ])
    chain = [ts.Call("columns", [columns])]
    if table.primary_key:
        chain.append(ts.Call("primaryKey", [ts.Raw(ts.ts_string(table.primary_key))]))
    value = ts.ChainCall(ts.Call("table", [ts.Raw(ts.ts_string(table.name))]), chain)
    return ts.ConstDecl(table_variable(table.name), value)


class RelationshipBuilder:
    """Collect the relationship entries for one table."""

    def __init__(self, schema: SchemaModel, table: Table, associations: list[PolymorphicAssociation]) -> None:
        self.schema = schema
        self.table = table
        self.associations = {a.name: a for a in associations}
        self.entries: list = []
        self.used: set[str] = set()
        self.accessors: set[str] = set()

    def pk(self, table_name: str) -> str:
        return self.schema.tables[table_name].primary_key or "id"

    def add(self, accessor: str, call: ts.Call, origin: str) -> None:
        if accessor in self.accessors:
            self.entries.append(ts.Comment(f"SKIPPED: {origin} - accessor '{accessor}' already defined"))
            return
        self.accessors.add(accessor)
        self.used.add(call.callee)
        self.entries.append(ts.Property(accessor, call))

    def skip(self, reason: str) -> None:
        self.entries.append(ts.Comment(f"SKIPPED: {reason}"))

    def build(self, relationships: list[Relationship]) -> list:
        expanded: set[str] = set()
        for rel in relationships:
            if rel.polymorphic and rel.kind == "belongs_to":
                self.add_polymorphic(rel.name)
                expanded.add(rel.name)
            elif rel.kind == "belongs_to":
                self.add_belongs_to(rel)
            elif rel.is_through:
                self.add_through(rel, relationships)
            else:
                self.add_has(rel)
        for name in sorted(self.associations):
            if name not in expanded:
                self.add_polymorphic(name)
        self.add_children(relationships)
        return self.entries

    def add_belongs_to(self, rel: Relationship) -> None:
        target = rel.target_table
        if target not in self.schema.tables:
            self.skip(f"{rel.name} - target table {target} is not part of the schema")
            return
        if not self.table.has_column(rel.foreign_key):
            self.skip(f"{rel.name} - foreign key '{rel.foreign_key}' does not exist in {self.table.name} table")
            return
        self.add(accessor_name(rel.name), link("one", rel.foreign_key, self.pk(target), target), rel.name)

    def add_has(self, rel: Relationship) -> None:
        target = rel.target_table
        if target not in self.schema.tables:
            self.skip(f"{rel.name} - target table {target} is not part of the schema")
            return
        if not self.schema.tables[target].has_column(rel.foreign_key):
            self.skip(f"{rel.name} - foreign key '{rel.foreign_key}' does not exist in {target} table")
            return
        if rel.as_name:
            self.entries.append(ts.Comment(
                f"{rel.name}: polymorphic, filter {target}.{rel.as_name}_type when querying"
            ))
        call = "many" if rel.kind == "has_many" else "one"
        self.add(accessor_name(rel.name), link(call, self.pk(self.table.name), rel.foreign_key, target), rel.name)

    def add_through(self, rel: Relationship, relationships: list[Relationship]) -> None:
        join = next((r for r in relationships if r.name == rel.through), None)
        join_table = join.target_table if join and join.target_table else rel.through
        if join_table not in self.schema.tables:
            self.skip(f"{rel.name} - through table {join_table} is not part of the schema")
            return
        related = accessor_name(singularize(rel.name))
        self.entries.append(ts.Comment(
            f"{rel.name}: many-to-many through {join_table}. "
            f"Use {accessor_name(rel.through)}.related('{related}')"
        ))

    def add_polymorphic(self, name: str) -> None:
        association = self.associations.get(name)
        if association is None:
            self.skip(f"{name} - polymorphic association has no type column")
            return
        if not association.targets:
            self.skip(f"{name} - no target tables resolved for polymorphic association")
            return
        for target in association.targets:
            accessor = polymorphic_accessor(name, target)
            self.add(accessor, link("one", association.id_column, self.pk(target), target), name)

    def add_children(self, relationships: list[Relationship]) -> None:
        if "children" in self.accessors:
            return
        for rel in relationships:
            if rel.kind != "belongs_to" or rel.polymorphic or rel.target_table != self.table.name:
                continue
            if "parent" in rel.name and self.table.has_column(rel.foreign_key):
                self.add("children", link("many", self.pk(self.table.name), rel.foreign_key, self.table.name), rel.name)
                return


def build_relationships(
    schema: SchemaModel,
    table: Table,
    associations: list[PolymorphicAssociation],
) -> tuple[list, ts.ConstDecl | None]:
    builder = RelationshipBuilder(schema, table, associations)
    entries = builder.build(schema.relationships.get(table.name, []))
    if not builder.used:
        return [e for e in entries if isinstance(e, ts.Comment)], None
    params = ", ".join(name for name in ("one", "many") if name in builder.used)
    value = ts.Call("relationships", [
        ts.Raw(table_variable(table.name)),
        ts.ArrowFunction(f"{{ {params} }}", ts.ObjectLiteral(entries)),
    ])
    return [], ts.ConstDecl(f"{table_variable(table.name)}Relationships", value)


def build_schema_module(
    schema: SchemaModel,
    associations: dict[str, PolymorphicAssociation],
    mapper: TypeMapper,
) -> ts.Module:
    body: list = header_nodes()
    names = schema.table_names()

    table_nodes: list = []
    uses_json = False
    for name in names:
        table = schema.tables[name]
        decl = build_table(table, mapper)
        uses_json = uses_json or any(mapper.base_type(c, name) == "json()" for c in table.columns)
        table_nodes.extend([ts.Comment(f"{humanize(name)} table"), decl, ts.Blank()])

    relationship_nodes: list = []
    relationship_vars: list[str] = []
    for name in names:
        table_associations = [a for a in associations.values() if a.table == name]
        comments, decl = build_relationships(schema, schema.tables[name], table_associations)
        if decl is None and not comments:
            continue
        relationship_nodes.append(ts.Comment(f"{humanize(name)} relationships"))
        relationship_nodes.extend(comments)
        if decl is not None:
            relationship_nodes.append(decl)
            relationship_vars.append(decl.name)
        relationship_nodes.append(ts.Blank())

    imports = ["createSchema", "table", "string", "number", "boolean"]
    if uses_json:
        imports.append("json")
    if relationship_vars:
        imports.append("relationships")
    imports.append("type Zero")
    body.extend([ts.Import(imports, ZERO_PACKAGE), ts.Blank()])
    body.extend(table_nodes)
    body.extend(relationship_nodes)

    body.append(ts.ConstDecl("schema", ts.Call("createSchema", [ts.ObjectLiteral([
        ts.Property("tables", ts.ArrayLiteral([ts.Raw(table_variable(n)) for n in names], multiline=True)),
        ts.Property("relationships", ts.ArrayLiteral([ts.Raw(v) for v in relationship_vars], multiline=True)),
    ])]), exported=True))
    body.append(ts.Blank())
    body.append(ts.TypeAlias("ZeroClient", "Zero<typeof schema>"))
    body.append(ts.TypeAlias("TableName", " | ".join(ts.ts_string(n) for n in names) or "never"))
    body.append(ts.Blank())
    body.append(ts.Comment(END_MARKER))
    return ts.Module(body)


def generate_schema(
    schema: SchemaModel,
    associations: dict[str, PolymorphicAssociation],
    mapper: TypeMapper,
) -> str:
    return ts.render(build_schema_module(schema, associations, mapper))
