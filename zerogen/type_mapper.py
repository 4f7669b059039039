"""Map database column kinds to Zero column builders and TypeScript types."""

from __future__ import annotations

import logging
import re

from .model import Column


logger = logging.getLogger(__name__)

KIND_TO_ZERO: dict[str, str] = {
    "uuid": "string()",
    "string": "string()",
    "text": "string()",
    "binary": "string()",
    "integer": "number()",
    "bigint": "number()",
    "float": "number()",
    "decimal": "number()",
    "datetime": "number()",
    "timestamp": "number()",
    "timestamptz": "number()",
    "date": "number()",
    "time": "number()",
    "boolean": "boolean()",
    "json": "json()",
    "jsonb": "json()",
    "array": "json()",
}

# Stored as numbers on the client regardless of database kind.
COLUMN_NAME_OVERRIDES: dict[str, str] = {
    "created_at": "number()",
    "updated_at": "number()",
    "lock_version": "number()",
    "position": "number()",
    "sort_order": "number()",
}

ZERO_TO_TYPESCRIPT: dict[str, str] = {
    "string()": "string",
    "number()": "number",
    "boolean()": "boolean",
    "json()": "unknown",
}

VALID_EXPRESSION = re.compile(r"^(string|number|boolean|json)\(\)(\.optional\(\))?$")


def is_valid_type_expression(expr: str) -> bool:
    return bool(VALID_EXPRESSION.match(expr))


def is_primary_key(column: Column) -> bool:
    return column.primary_key


class TypeMapper:
    def __init__(self, overrides: dict[str, str] | None = None) -> None:
        # Invalid expressions are reported by the pipeline and fall back to the kind default.
        self.overrides = {key: expr for key, expr in (overrides or {}).items() if is_valid_type_expression(expr)}
        self.warnings: list[str] = []

    def base_type(self, column: Column, table_name: str | None = None) -> str:
        if table_name:
            override = self.overrides.get(f"{table_name}.{column.name}")
            if override:
                return override.removesuffix(".optional()")
        if column.name in COLUMN_NAME_OVERRIDES:
            return COLUMN_NAME_OVERRIDES[column.name]
        mapped = KIND_TO_ZERO.get(column.kind)
        if mapped:
            return mapped
        where = f"{table_name}.{column.name}" if table_name else column.name
        message = f"Unknown column kind '{column.kind}' ({column.sql_type or 'no sql type'}) for {where}, using string()"
        logger.warning(message)
        self.warnings.append(message)
        return "string()"

    def map_column(self, column: Column, table_name: str | None = None) -> str:
        base = self.base_type(column, table_name)
        if column.nullable and not is_primary_key(column):
            return f"{base}.optional()"
        return base

    def map_typescript(self, column: Column, table_name: str | None = None) -> str:
        if column.is_enum:
            return " | ".join(f"'{value}'" for value in column.enum_values)
        return ZERO_TO_TYPESCRIPT[self.base_type(column, table_name)]
