"""Build per-table mutation and query modules.

Every table with a string primary key gets ``<entity>.generated.ts`` with
typed create/update/delete/upsert functions, the extras its patterns call
for (soft deletion, positioning, status transitions) and a small query
facade. A ``<entity>.custom.ts`` scaffold is created once for hand-written
additions and is never regenerated.
"""

from __future__ import annotations

import dataclasses
import logging
from pathlib import Path

from . import ts
from .config import DEFAULT_NAMING, GeneratorConfig
from .inflection import classify, humanize, underscore
from .model import STRING_KINDS, Column, PolymorphicAssociation, Table, TablePatterns
from .registry import EntityRegistry
from .schema_gen import BEGIN_MARKER, END_MARKER, IDENTIFIER
from .type_mapper import TypeMapper, is_primary_key


logger = logging.getLogger(__name__)

MUTATIONS_HEADER = "AUTO-GENERATED ZERO MUTATIONS - DO NOT EDIT"
SUPPORT_STEM = "zero-support"
POSITION_GAP = 1000
MAX_RETRIES = 3
TIMESTAMP_COLUMNS = ("created_at", "updated_at")


@dataclasses.dataclass
class EntityContext:
    table: Table
    patterns: TablePatterns
    entity: str
    associations: list[PolymorphicAssociation]
    mapper: TypeMapper
    config: GeneratorConfig

    @property
    def label(self) -> str:
        return humanize(self.entity).lower()

    @property
    def pk(self) -> str:
        return self.table.primary_key or "id"

    @property
    def mutate(self) -> str:
        name = self.table.name
        return f"zero.mutate.{name}" if IDENTIFIER.match(name) else f"zero.mutate[{ts.ts_string(name)}]"

    @property
    def query(self) -> str:
        name = self.table.name
        return f"getZero().query.{name}" if IDENTIFIER.match(name) else f"getZero().query[{ts.ts_string(name)}]"

    def has(self, column: str) -> bool:
        return self.table.has_column(column)

    def constant(self, suffix: str) -> str:
        return f"{underscore(self.entity).upper()}_{suffix.upper()}"

    def ts_type(self, column: Column) -> str:
        return self.mapper.map_typescript(column, self.table.name)

    def auto_columns(self) -> set[str]:
        auto = {nf.column for nf in self.patterns.normalized_fields}
        auto |= {tp.flag_column for tp in self.patterns.timestamp_pairs}
        if self.patterns.positioning:
            auto.add(self.patterns.positioning.column)
        return auto

    def excluded_from_update(self) -> set[str]:
        return {self.pk, *TIMESTAMP_COLUMNS}

    def excluded_from_create(self) -> set[str]:
        excluded = self.excluded_from_update()
        if self.patterns.soft_deletion:
            excluded.add(self.patterns.soft_deletion.column)
        return excluded

    def required_columns(self) -> list[Column]:
        skip = self.excluded_from_create() | self.auto_columns()
        return [
            col for col in self.table.columns
            if col.name not in skip and not col.nullable and not col.has_default and not is_primary_key(col)
        ]


def touch_entries(ctx: EntityContext, create: bool = False) -> list[str]:
    entries: list[str] = []
    if create and ctx.has("created_at"):
        entries.append("created_at: now,")
    if ctx.has("updated_at"):
        entries.append("updated_at: now,")
    return entries


def ensure_block(condition: str, message: str) -> ts.Block:
    return ts.Block(f"if ({condition}) {{", [ts.Line(f"throw new Error({message});")])


class MutationGenerator:
    def __init__(self, config: GeneratorConfig, mapper: TypeMapper, registry: EntityRegistry) -> None:
        self.config = config
        self.mapper = mapper
        self.registry = registry
        self.warnings: list[str] = []

    def _warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)

    def entity_name(self, table_name: str) -> str:
        descriptor = self.registry.for_table(table_name)
        return descriptor.name if descriptor else classify(table_name)

    def type_name(self, table_name: str) -> str:
        return self.entity_name(table_name)

    def file_stem(self, table_name: str) -> str:
        return underscore(self.entity_name(table_name))

    def generated_path(self, table_name: str) -> Path:
        return self.config.output.mutations_dir / f"{self.file_stem(table_name)}.generated.ts"

    def custom_path(self, table_name: str) -> Path:
        return self.config.output.mutations_dir / f"{self.file_stem(table_name)}.custom.ts"

    def support_path(self) -> Path:
        return self.config.output.mutations_dir / f"{SUPPORT_STEM}.generated.ts"

    def supports(self, table: Table) -> bool:
        pk = table.primary_key_column
        if pk is None:
            self._warn(f"Skipping mutations for {table.name}: no primary key")
            return False
        if pk.kind not in STRING_KINDS:
            self._warn(f"Skipping mutations for {table.name}: primary key {pk.name} is {pk.kind}, not a string id")
            return False
        return True

    def context(self, table: Table, patterns: TablePatterns, associations: list[PolymorphicAssociation]) -> EntityContext:
        return EntityContext(
            table=table,
            patterns=patterns.without(self.config.excluded_patterns(table.name)),
            entity=self.entity_name(table.name),
            associations=[a for a in associations if a.table == table.name],
            mapper=self.mapper,
            config=self.config,
        )

    # Module assembly.

    def build_module(
        self,
        table: Table,
        patterns: TablePatterns,
        associations: list[PolymorphicAssociation],
    ) -> ts.Module:
        ctx = self.context(table, patterns, associations)
        body: list = [
            ts.Comment(MUTATIONS_HEADER),
            ts.Comment(f"Generated by zerogen for table {table.name}. Put hand-written code in {self.file_stem(table.name)}.custom.ts."),
            ts.Comment(BEGIN_MARKER),
            ts.Blank(),
            ts.Import(self.support_imports(ctx), f"./{SUPPORT_STEM}.generated"),
            ts.Blank(),
        ]
        body.extend(self.build_types(ctx))
        body.extend(self.build_constants(ctx))
        body.extend(self.build_validation(ctx))
        body.extend(self.build_crud(ctx))
        body.extend(self.build_soft_deletion(ctx))
        body.extend(self.build_positioning(ctx))
        body.extend(self.build_status(ctx))
        body.extend(self.build_queries(ctx))
        body.append(ts.Comment(END_MARKER))
        return ts.Module(body)

    def support_imports(self, ctx: EntityContext) -> list[str]:
        names = ["getZero", "assertValidId"]
        if ctx.patterns.normalized_fields:
            names.append("normalizeText")
        if ctx.patterns.positioning:
            names.append("positionBetween")
        return names + ["createReactiveQuery", "type ReactiveQuery"]

    def generate(self, table: Table, patterns: TablePatterns, associations: list[PolymorphicAssociation]) -> str:
        return ts.render(self.build_module(table, patterns, associations))

    # Types.

    def build_types(self, ctx: EntityContext) -> list:
        e = ctx.entity
        record = [
            ts.Field(col.name, f"{ctx.ts_type(col)} | null" if col.nullable else ctx.ts_type(col), optional=col.nullable)
            for col in ctx.table.columns
        ]

        required = {col.name for col in ctx.required_columns()}
        auto = ctx.auto_columns()
        position = ctx.patterns.positioning.column if ctx.patterns.positioning else None
        create: list[ts.Field] = []
        update: list[ts.Field] = []
        for col in ctx.table.columns:
            if col.name in ctx.excluded_from_update():
                continue
            value_type = f"{ctx.ts_type(col)} | null" if col.nullable else ctx.ts_type(col)
            update.append(ts.Field(col.name, value_type, optional=True))
            if col.name in ctx.excluded_from_create():
                continue
            comment = None
            if col.name == position:
                comment = "Auto-calculated if not provided"
            elif col.name in auto:
                comment = "Auto-populated if not provided"
            create.append(ts.Field(col.name, value_type, optional=col.name not in required, comment=comment))

        return [
            ts.Interface(e, record, doc=[f"A row of the {ctx.table.name} table."]),
            ts.Blank(),
            ts.Interface(f"Create{e}Data", create),
            ts.Blank(),
            ts.Interface(f"Update{e}Data", update),
            ts.Blank(),
            ts.Interface(f"{e}MutationResult", [ts.Field("id", "string")]),
            ts.Blank(),
        ]

    def build_constants(self, ctx: EntityContext) -> list:
        nodes: list = []
        for pattern in ctx.patterns.enums:
            values = ts.ArrayLiteral([ts.Raw(ts.ts_string(v)) for v in pattern.values])
            nodes.append(ts.ConstDecl(ctx.constant(f"{pattern.column}_values"), ts.Raw(f"{ts.render_expr(values)} as const"), exported=True))
        for association in ctx.associations:
            if not association.targets:
                continue
            types = ts.ArrayLiteral([ts.Raw(ts.ts_string(self.type_name(t))) for t in association.targets])
            nodes.append(ts.ConstDecl(ctx.constant(f"{association.name}_types"), ts.Raw(f"{ts.render_expr(types)} as const"), exported=True))
        if nodes:
            nodes.append(ts.Blank())
        return nodes

    def build_validation(self, ctx: EntityContext) -> list:
        checks: list = []
        for pattern in ctx.patterns.enums:
            const = ctx.constant(f"{pattern.column}_values")
            field = f"data.{pattern.column}"
            checks.append(ensure_block(
                f"{field} != null && !({const} as readonly string[]).includes({field})",
                f"`Invalid {pattern.column}: ${{{field}}}. Expected one of: ${{{const}.join(', ')}}`",
            ))
        for association in ctx.associations:
            if not association.targets:
                continue
            const = ctx.constant(f"{association.name}_types")
            field = f"data.{association.type_column}"
            checks.append(ensure_block(
                f"{field} != null && !({const} as readonly string[]).includes({field})",
                f"`Invalid {association.type_column}: ${{{field}}}`",
            ))
        if not checks:
            return []
        return [
            ts.Function(f"validate{ctx.entity}Data", [ts.Param("data", f"Update{ctx.entity}Data")], "void", checks, exported=False),
            ts.Blank(),
        ]

    # Create / update / delete / upsert.

    def derived_entries(self, ctx: EntityContext, creating: bool) -> list[str]:
        entries: list[str] = []
        for nf in ctx.patterns.normalized_fields:
            if creating:
                entries.append(f"{nf.column}: data.{nf.column} ?? normalizeText(data.{nf.source}),")
            else:
                entries.append(
                    f"...(data.{nf.source} !== undefined && data.{nf.column} === undefined"
                    f" ? {{ {nf.column}: normalizeText(data.{nf.source}) }} : {{}}),"
                )
        for tp in ctx.patterns.timestamp_pairs:
            if creating:
                entries.append(f"{tp.flag_column}: data.{tp.flag_column} ?? data.{tp.timestamp_column} != null,")
            else:
                entries.append(
                    f"...(data.{tp.timestamp_column} !== undefined && data.{tp.flag_column} === undefined"
                    f" ? {{ {tp.flag_column}: data.{tp.timestamp_column} !== null }} : {{}}),"
                )
        return entries

    def required_checks(self, ctx: EntityContext) -> list:
        checks: list = []
        for col in ctx.required_columns():
            message = ts.ts_string(f"{humanize(col.name)} is required")
            if col.kind in STRING_KINDS and not col.is_enum:
                checks.append(ensure_block(f"!data.{col.name}?.trim()", message))
            else:
                checks.append(ensure_block(f"data.{col.name} === undefined || data.{col.name} === null", message))
        return checks

    def build_crud(self, ctx: EntityContext) -> list:
        e, label = ctx.entity, ctx.label
        validate = [ts.Line(f"validate{e}Data(data);")] if self.build_validation(ctx) else []
        result = f"Promise<{e}MutationResult>"

        insert_body: list = [ts.Line("...data,"), ts.Line(f"{ctx.pk}: id,")]
        insert_body += [ts.Line(entry) for entry in self.derived_entries(ctx, creating=True)]
        if ctx.patterns.positioning:
            insert_body.append(ts.Line(f"{ctx.patterns.positioning.column}: position,"))
        insert_body += [ts.Line(entry) for entry in touch_entries(ctx, create=True)]

        create_body: list = self.required_checks(ctx) + validate + [
            ts.Line("const zero = getZero();"),
            ts.Line("const id = crypto.randomUUID();"),
            ts.Line("const now = Date.now();"),
        ]
        if ctx.patterns.positioning:
            col = ctx.patterns.positioning.column
            create_body.append(ts.Line(
                f"const position = data.{col} ?? positionBetween(lastPosition(await load{e}Siblings(data)), null);"
            ))
        create_body += [
            ts.Block(f"await {ctx.mutate}.insert({{", insert_body, "});"),
            ts.Line("return { id };"),
        ]

        update_body: list = [
            ts.Line(f"assertValidId(id, {ts.ts_string(label)});"),
            ensure_block("Object.keys(data).length === 0", ts.ts_string("No fields to update")),
        ] + validate + [
            ts.Line("const zero = getZero();"),
            ts.Line("const now = Date.now();"),
            ts.Block(f"await {ctx.mutate}.update({{", [
                ts.Line("...data,"),
                *[ts.Line(entry) for entry in self.derived_entries(ctx, creating=False)],
                ts.Line(f"{ctx.pk}: id,"),
                *[ts.Line(entry) for entry in touch_entries(ctx)],
            ], "});"),
            ts.Line("return { id };"),
        ]

        upsert_body: list = [
            ts.Line("const zero = getZero();"),
            ts.Line(f"const id = data.{ctx.pk} ?? crypto.randomUUID();"),
            ts.Line(f"assertValidId(id, {ts.ts_string(label)});"),
        ] + self.required_checks(ctx) + validate + [
            ts.Line("const now = Date.now();"),
            ts.Block(f"await {ctx.mutate}.upsert({{", [
                ts.Line("...data,"),
                *[ts.Line(entry) for entry in self.derived_entries(ctx, creating=True)],
                ts.Line(f"{ctx.pk}: id,"),
                *[ts.Line(entry) for entry in touch_entries(ctx, create=True)],
            ], "});"),
            ts.Line("return { id };"),
        ]

        nodes: list = [
            ts.Function(f"create{e}", [ts.Param("data", f"Create{e}Data")], result, create_body,
                        is_async=True, doc=[f"Create a {label}. The id is generated client-side."]),
            ts.Blank(),
            ts.Function(f"update{e}", [ts.Param("id", "string"), ts.Param("data", f"Update{e}Data")], result,
                        update_body, is_async=True),
            ts.Blank(),
            ts.Function(f"upsert{e}", [ts.Param("data", f"Create{e}Data & {{ {ctx.pk}?: string }}")], result,
                        upsert_body, is_async=True),
            ts.Blank(),
        ]
        if ctx.patterns.soft_deletion is None:
            nodes += [
                ts.Function(f"delete{e}", [ts.Param("id", "string")], result, [
                    ts.Line(f"assertValidId(id, {ts.ts_string(label)});"),
                    ts.Line("const zero = getZero();"),
                    ts.Line(f"await {ctx.mutate}.delete({{ {ctx.pk}: id }});"),
                    ts.Line("return { id };"),
                ], is_async=True),
                ts.Blank(),
            ]
        return nodes

    # Pattern extras.

    def soft_delete_names(self, ctx: EntityContext) -> tuple[str, str] | None:
        sd = ctx.patterns.soft_deletion
        if sd is None:
            return None
        if sd.convention == "discard":
            return f"discard{ctx.entity}", f"undiscard{ctx.entity}"
        return (
            f"{self.config.method_name('softDelete')}{ctx.entity}",
            f"{self.config.method_name('restore')}{ctx.entity}",
        )

    def build_soft_deletion(self, ctx: EntityContext) -> list:
        names = self.soft_delete_names(ctx)
        if names is None:
            return []
        column = ctx.patterns.soft_deletion.column
        remove, restore = names
        result = f"Promise<{ctx.entity}MutationResult>"
        return [
            ts.Function(remove, [ts.Param("id", "string")], result, [
                ts.Line(f"return update{ctx.entity}(id, {{ {column}: Date.now() }});"),
            ], is_async=True, doc=[f"Soft delete: sets {column} instead of removing the row."]),
            ts.Blank(),
            ts.Function(restore, [ts.Param("id", "string")], result, [
                ts.Line(f"return update{ctx.entity}(id, {{ {column}: null }});"),
            ], is_async=True),
            ts.Blank(),
        ]

    def scope_filters(self, ctx: EntityContext, source: str) -> list:
        lines: list = []
        for column in ctx.patterns.positioning.scope:
            lines.append(ts.Line(
                f"query = {source}.{column} == null ? query.where({ts.ts_string(column)}, 'IS', null)"
                f" : query.where({ts.ts_string(column)}, {source}.{column});"
            ))
        if ctx.patterns.soft_deletion:
            lines.append(ts.Line(f"query = query.where({ts.ts_string(ctx.patterns.soft_deletion.column)}, 'IS', null);"))
        return lines

    def build_positioning(self, ctx: EntityContext) -> list:
        positioning = ctx.patterns.positioning
        if positioning is None:
            return []
        e, label = ctx.entity, ctx.label
        col = positioning.column
        scope_type = " & ".join(
            [f"Pick<Create{e}Data, {' | '.join(ts.ts_string(c) for c in positioning.scope)}>"] if positioning.scope else ["object"]
        )
        result = f"Promise<{e}MutationResult>"
        nodes: list = [
            ts.Function(f"load{e}Siblings", [ts.Param("scope", scope_type)], f"Promise<{e}[]>", [
                ts.Line(f"let query = {ctx.query}.orderBy({ts.ts_string(col)}, 'asc');"),
                *self.scope_filters(ctx, "scope"),
                ts.Line(f"return (await query.run()) as {e}[];"),
            ], exported=False, is_async=True),
            ts.Blank(),
            ts.Function("lastPosition", [ts.Param("rows", f"{e}[]")], "number | null", [
                ts.Line(f"return rows.length > 0 ? rows[rows.length - 1].{col} ?? null : null;"),
            ], exported=False),
            ts.Blank(),
            ts.Function(f"load{e}", [ts.Param("id", "string")], f"Promise<{e}>", [
                ts.Line(f"assertValidId(id, {ts.ts_string(label)});"),
                ts.Line(f"const row = await {ctx.query}.where({ts.ts_string(ctx.pk)}, id).one().run();"),
                ensure_block("!row", f"`{e} not found: ${{id}}`"),
                ts.Line(f"return row as {e};"),
            ], exported=False, is_async=True),
            ts.Blank(),
        ]

        def relative(key: str, before: bool) -> ts.Function:
            neighbour = "index > 0 ? siblings[index - 1]" if before else "index < siblings.length - 1 ? siblings[index + 1]"
            between = (
                f"positionBetween(neighbour, siblings[index].{col} ?? null)" if before
                else f"positionBetween(siblings[index].{col} ?? null, neighbour)"
            )
            return ts.Function(f"{self.config.method_name(key)}{e}", [ts.Param("id", "string"), ts.Param("targetId", "string")], result, [
                ts.Line(f"assertValidId(targetId, {ts.ts_string('target ' + label)});"),
                ts.Line(f"const record = await load{e}(id);"),
                ts.Line(f"const siblings = (await load{e}Siblings(record)).filter((row) => row.{ctx.pk} !== id);"),
                ts.Line(f"const index = siblings.findIndex((row) => row.{ctx.pk} === targetId);"),
                ensure_block("index === -1", f"`Target {label} ${{targetId}} is not in the same list`"),
                ts.Line(f"const neighbour = {neighbour}.{col} ?? null : null;"),
                ts.Line(f"return update{e}(id, {{ {col}: {between} }});"),
            ], is_async=True)

        def edge(key: str, top: bool) -> ts.Function:
            pick = f"siblings.length > 0 ? siblings[0].{col} ?? null : null" if top else "lastPosition(siblings)"
            between = "positionBetween(null, edge)" if top else "positionBetween(edge, null)"
            return ts.Function(f"{self.config.method_name(key)}{e}", [ts.Param("id", "string")], result, [
                ts.Line(f"const record = await load{e}(id);"),
                ts.Line(f"const siblings = (await load{e}Siblings(record)).filter((row) => row.{ctx.pk} !== id);"),
                ts.Line(f"const edge = {pick};"),
                ts.Line(f"return update{e}(id, {{ {col}: {between} }});"),
            ], is_async=True)

        nodes += [
            relative("moveBefore", before=True), ts.Blank(),
            relative("moveAfter", before=False), ts.Blank(),
            edge("moveToTop", top=True), ts.Blank(),
            edge("moveToBottom", top=False), ts.Blank(),
        ]
        return nodes

    def build_status(self, ctx: EntityContext) -> list:
        status = ctx.patterns.enum("status")
        if status is None:
            return []
        const = ctx.constant("status_values")
        union = " | ".join(ts.ts_string(v) for v in status.values)
        return [
            ts.Function(f"update{ctx.entity}Status", [ts.Param("id", "string"), ts.Param("status", union)],
                        f"Promise<{ctx.entity}MutationResult>", [
                ensure_block(f"!{const}.includes(status)", "`Invalid status: ${status}`"),
                ts.Line(f"return update{ctx.entity}(id, {{ status }});"),
            ], is_async=True),
            ts.Blank(),
        ]

    # Query facade.

    def build_queries(self, ctx: EntityContext) -> list:
        e = ctx.entity
        order = ""
        if ctx.patterns.positioning:
            order = f".orderBy({ts.ts_string(ctx.patterns.positioning.column)}, 'asc')"
        base = f"{ctx.query}{order}"

        def method(signature: str, returns: str, expr: str, fallback: str, pre: list | None = None) -> ts.Block:
            body = list(pre or [])
            body.append(ts.Line(f"return createReactiveQuery(() => {expr}, {fallback}, {MAX_RETRIES});"))
            return ts.Block(f"{signature}: ReactiveQuery<{returns}> {{", body, "},")

        methods: list = [
            method("find(id: string)", f"{e} | null", f"{ctx.query}.where({ts.ts_string(ctx.pk)}, id).one()", "null",
                   pre=[ts.Line(f"assertValidId(id, {ts.ts_string(ctx.label)});")]),
            method("all()", f"{e}[]", base, "[]"),
            method(f"where<K extends keyof {e} & string>(field: K, value: NonNullable<{e}[K]>)", f"{e}[]",
                   f"{base}.where(field, value as never)", "[]"),
        ]
        sd = ctx.patterns.soft_deletion
        if sd is not None:
            column = ts.ts_string(sd.column)
            kept, removed = ("kept", "discarded") if sd.convention == "discard" else ("active", "deleted")
            methods.append(method(f"{kept}()", f"{e}[]", f"{base}.where({column}, 'IS', null)", "[]"))
            methods.append(method(f"{removed}()", f"{e}[]", f"{base}.where({column}, 'IS NOT', null)", "[]"))

        return [
            ts.DocComment([f"Reactive queries over {ctx.table.name}; each retries up to {MAX_RETRIES} times before giving up."]),
            ts.Block(f"export const {e}Query = {{", methods, "};"),
            ts.Blank(),
        ]

    # Names used for customization detection.

    def generated_export_names(self, table_name: str) -> set[str]:
        e = self.entity_name(table_name)
        names = {e, f"Create{e}Data", f"Update{e}Data", f"{e}MutationResult", f"{e}Query", f"update{e}Status"}
        verbs = {"create", "update", "upsert", "delete", "discard", "undiscard"}
        verbs |= set(DEFAULT_NAMING.values()) | set(self.config.naming_overrides.values())
        names |= {f"{verb}{e}" for verb in verbs}
        return names

    def is_generated_export(self, table_name: str, name: str) -> bool:
        prefix = f"{underscore(self.entity_name(table_name)).upper()}_"
        if name.startswith(prefix) and name.endswith(("_VALUES", "_TYPES")):
            return True
        return name in self.generated_export_names(table_name)

    # Hand-edit scaffold and shared support module.

    def build_custom_scaffold(self, table: Table, patterns: TablePatterns, associations: list[PolymorphicAssociation]) -> str:
        ctx = self.context(table, patterns, associations)
        stem = self.file_stem(table.name)
        resolved = [a for a in ctx.associations if a.targets]
        body: list = [
            ts.Comment(f"Custom code for {table.name}. zerogen creates this file once and never overwrites it."),
            ts.Blank(),
            ts.Import(["getZero"], f"./{SUPPORT_STEM}.generated"),
            ts.Line(f"export * from './{stem}.generated';"),
            ts.Blank(),
        ]
        if ctx.patterns.soft_deletion:
            body += [
                ts.Comment("Permanently remove a row that is normally soft deleted:"),
                ts.Comment(f"export async function destroy{ctx.entity}(id: string): Promise<void> {{"),
                ts.Comment(f"  await getZero().mutate.{table.name}.delete({{ {ctx.pk}: id }});"),
                ts.Comment("}"),
                ts.Blank(),
            ]
        status = ctx.patterns.enum("status")
        if status and len(status.values) > 1:
            first, second = status.values[0], status.values[1]
            body += [
                ts.Comment("Guarded status transition:"),
                ts.Comment(f"export async function complete{ctx.entity}(id: string) {{"),
                ts.Comment(f"  // only move from '{first}' to '{second}'"),
                ts.Comment("}"),
                ts.Blank(),
            ]
        if resolved:
            belongs_to = ts.ObjectLiteral([
                ts.Property(a.name, ts.ObjectLiteral([
                    ts.Property("typeField", ts.Raw(ts.ts_string(a.type_column))),
                    ts.Property("idField", ts.Raw(ts.ts_string(a.id_column))),
                    ts.Property("allowedTypes", ts.ArrayLiteral([ts.Raw(ts.ts_string(self.type_name(t))) for t in a.targets])),
                ]))
                for a in resolved
            ])
            declaration = ts.Call("declarePolymorphicRelationships", [ts.ObjectLiteral([
                ts.Property("tableName", ts.Raw(ts.ts_string(table.name))),
                ts.Property("belongsTo", belongs_to),
            ])])
            body += [
                ts.Comment("Pin polymorphic targets: uncomment, check allowedTypes and regenerate."),
                ts.Comment(f"import {{ declarePolymorphicRelationships }} from './{SUPPORT_STEM}.generated';"),
                ts.Comment(f"{ts.render_expr(declaration)};"),
            ]
        return ts.render(ts.Module(body))

    def build_support_module(self) -> str:
        client = self.config.client_module
        body: list = [
            ts.Comment(MUTATIONS_HEADER),
            ts.Comment("Shared helpers for the generated model modules."),
            ts.Comment(BEGIN_MARKER),
            ts.Blank(),
            ts.Import(["getZero"], client),
            ts.Blank(),
            ts.Line("export { getZero };"),
            ts.Blank(),
            ts.ConstDecl("UUID_PATTERN", ts.Raw("/^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$/i"), exported=True),
            ts.ConstDecl("POSITION_GAP", ts.Raw(str(POSITION_GAP)), exported=True),
            ts.Blank(),
            ts.Function("assertValidId", [ts.Param("id", "string"), ts.Param("label", "string")], "void", [
                ensure_block("!id || !UUID_PATTERN.test(id)", "`Invalid ${label} ID: ${id}`"),
            ]),
            ts.Blank(),
            ts.Function("normalizeText", [ts.Param("value", "string | null | undefined")], "string | null | undefined", [
                ts.Line("return value == null ? value : value.toString().toLowerCase().trim();"),
            ]),
            ts.Blank(),
            ts.Function("positionBetween", [ts.Param("before", "number | null"), ts.Param("after", "number | null")], "number", [
                ts.Line("if (before === null && after === null) return POSITION_GAP;"),
                ts.Line("if (before === null) return (after as number) - POSITION_GAP;"),
                ts.Line("if (after === null) return before + POSITION_GAP;"),
                ts.Line("return (before + after) / 2;"),
            ], doc=["Fractional order key between two neighbours; null means the list edge."]),
            ts.Blank(),
            ts.Interface("ReactiveQuery<T>", [
                ts.Field("readonly current", "T"),
                ts.Field("subscribe", "(listener: (value: T) => void) => () => void"),
                ts.Field("destroy", "() => void"),
            ]),
            ts.Blank(),
            ts.Function("createReactiveQuery<T>", [
                ts.Param("build", "() => { materialize(): any }"),
                ts.Param("fallback", "T"),
                ts.Param("maxRetries", "number"),
            ], "ReactiveQuery<T>", [
                ts.Line("let current = fallback;"),
                ts.Line("let view: any = null;"),
                ts.Line("let attempts = 0;"),
                ts.Line("let timer: ReturnType<typeof setTimeout> | null = null;"),
                ts.Line("const listeners = new Set<(value: T) => void>();"),
                ts.Blank(),
                ts.Block("const connect = (): void => {", [
                    ts.Block("try {", [
                        ts.Line("view = build().materialize();"),
                        ts.Block("view.addListener((data: T) => {", [
                            ts.Line("current = data;"),
                            ts.Line("listeners.forEach((listener) => listener(data));"),
                        ], "});"),
                    ], "} catch (error) {"),
                    ts.Block("", [
                        ts.Line("attempts += 1;"),
                        ts.Block("if (attempts > maxRetries) {", [
                            ts.Line("console.error('Reactive query failed after retries', error);"),
                            ts.Line("return;"),
                        ]),
                        ts.Line("timer = setTimeout(connect, 100 * attempts);"),
                    ]),
                ], "};"),
                ts.Line("connect();"),
                ts.Blank(),
                ts.Block("return {", [
                    ts.Block("get current() {", [ts.Line("return current;")], "},"),
                    ts.Block("subscribe(listener: (value: T) => void) {", [
                        ts.Line("listeners.add(listener);"),
                        ts.Line("listener(current);"),
                        ts.Line("return () => listeners.delete(listener);"),
                    ], "},"),
                    ts.Block("destroy() {", [
                        ts.Line("if (timer) clearTimeout(timer);"),
                        ts.Line("view?.destroy();"),
                        ts.Line("listeners.clear();"),
                    ], "},"),
                ], "};"),
            ]),
            ts.Blank(),
            ts.Interface("PolymorphicDeclaration", [
                ts.Field("tableName", "string"),
                ts.Field("belongsTo", "Record<string, { typeField: string; idField: string; allowedTypes: readonly string[] }>"),
            ]),
            ts.Blank(),
            ts.ConstDecl("polymorphicDeclarations", ts.Raw("new Map<string, PolymorphicDeclaration>()")),
            ts.Blank(),
            ts.Function("declarePolymorphicRelationships", [ts.Param("declaration", "PolymorphicDeclaration")], "void", [
                ts.Line("polymorphicDeclarations.set(declaration.tableName, declaration);"),
            ]),
            ts.Blank(),
            ts.Function("getPolymorphicDeclaration", [ts.Param("tableName", "string")], "PolymorphicDeclaration | undefined", [
                ts.Line("return polymorphicDeclarations.get(tableName);"),
            ]),
            ts.Blank(),
            ts.Comment(END_MARKER),
        ]
        return ts.render(ts.Module(body))
