"""Checks run on generated text before anything is written."""

from __future__ import annotations

import logging
import re

from .polymorphic import mask_source
from .type_mapper import is_valid_type_expression


logger = logging.getLogger(__name__)

REQUIRED_SCHEMA_IMPORTS = ("createSchema", "table", "string", "number", "boolean")
INVALID_PATTERNS = {
    "inferZodType": "inferZodType is not part of the Zero API",
}
SUSPICIOUS_PATTERNS = {
    ".offset(": "Zero queries do not support offset()",
    ".value": "'.value' access on query results; use '.current' or '.data'",
}
TABLE_DEFINITION = re.compile(r"const (\w+) = table\('([^']+)'\)")
COLUMN_EXPRESSION = re.compile(r"^\s+['\w$]+: ((?:string|number|boolean|json|[a-z]+)\(\)(?:\.[a-z]+\(\))?),$", re.M)
RELATIONSHIP_MAP = re.compile(r"relationships\(\w+, \(\{ [\w, ]+ \}\) =>")


def check_balanced(text: str) -> str | None:
    masked = mask_source(text)
    pairs = {")": "(", "]": "[", "}": "{"}
    stack: list[str] = []
    for idx, ch in enumerate(masked):
        if ch in "([{":
            stack.append(ch)
        elif ch in pairs:
            if not stack or stack[-1] != pairs[ch]:
                line = masked.count("\n", 0, idx) + 1
                return f"unbalanced '{ch}' on line {line}"
            stack.pop()
    if stack:
        return f"{len(stack)} unclosed bracket(s)"
    return None


def validate_schema_text(text: str) -> tuple[list[str], list[str]]:
    errors: list[str] = []
    warnings: list[str] = []

    import_match = re.search(r"import \{(.*?)\} from '@rocicorp/zero';", text, re.S)
    imported = set()
    if import_match:
        imported = {name.strip().removeprefix("type ").strip() for name in import_match.group(1).split(",")}
    for name in REQUIRED_SCHEMA_IMPORTS:
        if name not in imported:
            errors.append(f"missing import '{name}' from @rocicorp/zero")

    if "export const schema" not in text:
        errors.append("missing 'export const schema'")
    if "export type ZeroClient" not in text:
        errors.append("missing 'export type ZeroClient'")
    if not TABLE_DEFINITION.search(text):
        errors.append("no table definitions generated")

    for needle, reason in INVALID_PATTERNS.items():
        if needle in text:
            errors.append(reason)
    for expr in COLUMN_EXPRESSION.findall(text):
        if not is_valid_type_expression(expr):
            errors.append(f"invalid column type expression '{expr}'")

    for needle, reason in SUSPICIOUS_PATTERNS.items():
        if needle in text:
            warnings.append(reason)
    if not RELATIONSHIP_MAP.search(text):
        warnings.append("no relationships generated")

    problem = check_balanced(text)
    if problem:
        errors.append(problem)
    return errors, warnings


def validate_module_text(text: str) -> list[str]:
    errors: list[str] = []
    problem = check_balanced(text)
    if problem:
        errors.append(problem)
    for needle, reason in INVALID_PATTERNS.items():
        if needle in text:
            errors.append(reason)
    return errors
