"""A small TypeScript syntax tree and the one printer that renders it.

Generators build trees of these nodes; ``render`` is the only place that
decides indentation, separators and line breaks.
"""

from __future__ import annotations

import dataclasses
from typing import Iterator, Union

INDENT = "  "


def ts_string(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace("'", "\\'").replace("\n", "\\n")
    return f"'{escaped}'"


# Expressions.


@dataclasses.dataclass
class Raw:
    text: str


@dataclasses.dataclass
class Call:
    callee: str
    args: list[Expr] = dataclasses.field(default_factory=list)


@dataclasses.dataclass
class Property:
    key: str
    value: Expr


@dataclasses.dataclass
class ObjectLiteral:
    entries: list[Union[Property, Comment]] = dataclasses.field(default_factory=list)


@dataclasses.dataclass
class ArrayLiteral:
    items: list[Expr] = dataclasses.field(default_factory=list)
    multiline: bool = False


@dataclasses.dataclass
class ChainCall:
    target: Expr
    chain: list[Call]


@dataclasses.dataclass
class ArrowFunction:
    params: str
    body: Expr


Expr = Union[Raw, Call, ObjectLiteral, ArrayLiteral, ChainCall, ArrowFunction]


# Statements and declarations.


@dataclasses.dataclass
class Line:
    text: str


@dataclasses.dataclass
class Blank:
    pass


@dataclasses.dataclass
class Comment:
    text: str


@dataclasses.dataclass
class DocComment:
    lines: list[str]


@dataclasses.dataclass
class Import:
    names: list[str]
    module: str


@dataclasses.dataclass
class Block:
    opener: str
    body: list[Node]
    closer: str = "}"


@dataclasses.dataclass
class ConstDecl:
    name: str
    value: Expr
    exported: bool = False
    annotation: str | None = None


@dataclasses.dataclass
class TypeAlias:
    name: str
    value: str
    exported: bool = True


@dataclasses.dataclass
class Field:
    name: str
    type: str
    optional: bool = False
    comment: str | None = None


@dataclasses.dataclass
class Interface:
    name: str
    fields: list[Field]
    exported: bool = True
    doc: list[str] | None = None


@dataclasses.dataclass
class Param:
    name: str
    type: str
    optional: bool = False


@dataclasses.dataclass
class Function:
    name: str
    params: list[Param]
    returns: str | None
    body: list[Node]
    exported: bool = True
    is_async: bool = False
    doc: list[str] | None = None


@dataclasses.dataclass
class Module:
    body: list[Node]


Node = Union[Line, Blank, Comment, DocComment, Import, Block, ConstDecl, TypeAlias, Interface, Function]


def render_expr(expr: Expr, level: int = 0) -> str:
    pad = INDENT * level
    inner = INDENT * (level + 1)
    if isinstance(expr, Raw):
        return expr.text
    if isinstance(expr, Call):
        return f"{expr.callee}({', '.join(render_expr(a, level) for a in expr.args)})"
    if isinstance(expr, ObjectLiteral):
        if not expr.entries:
            return "{}"
        lines = ["{"]
        for entry in expr.entries:
            if isinstance(entry, Comment):
                lines.extend(f"{inner}// {text}".rstrip() for text in entry.text.splitlines())
            else:
                lines.append(f"{inner}{entry.key}: {render_expr(entry.value, level + 1)},")
        lines.append(f"{pad}}}")
        return "\n".join(lines)
    if isinstance(expr, ArrayLiteral):
        if not expr.multiline:
            return "[" + ", ".join(render_expr(item, level) for item in expr.items) + "]"
        if not expr.items:
            return "[]"
        lines = ["["]
        lines.extend(f"{inner}{render_expr(item, level + 1)}," for item in expr.items)
        lines.append(f"{pad}]")
        return "\n".join(lines)
    if isinstance(expr, ChainCall):
        out = render_expr(expr.target, level)
        for call in expr.chain:
            out += f"\n{inner}.{render_expr(call, level + 1)}"
        return out
    if isinstance(expr, ArrowFunction):
        return f"({expr.params}) => ({render_expr(expr.body, level)})"
    raise TypeError(f"Unsupported expression node: {type(expr).__name__}")


def _doc_lines(doc: list[str] | None, pad: str) -> list[str]:
    if not doc:
        return []
    lines = [f"{pad}/**"]
    lines.extend(f"{pad} * {line}".rstrip() for line in doc)
    lines.append(f"{pad} */")
    return lines


def render_node(node: Node, level: int = 0) -> list[str]:
    pad = INDENT * level
    if isinstance(node, Line):
        return [f"{pad}{node.text}"]
    if isinstance(node, Blank):
        return [""]
    if isinstance(node, Comment):
        return [f"{pad}// {text}".rstrip() for text in node.text.splitlines()] or [f"{pad}//"]
    if isinstance(node, DocComment):
        return _doc_lines(node.lines, pad)
    if isinstance(node, Import):
        if len(node.names) <= 3:
            return [f"{pad}import {{ {', '.join(node.names)} }} from {ts_string(node.module)};"]
        lines = [f"{pad}import {{"]
        lines.extend(f"{pad}{INDENT}{name}," for name in node.names)
        lines.append(f"{pad}}} from {ts_string(node.module)};")
        return lines
    if isinstance(node, Block):
        lines = [f"{pad}{node.opener}"] if node.opener else []
        for child in node.body:
            lines.extend(render_node(child, level + 1))
        lines.append(f"{pad}{node.closer}")
        return lines
    if isinstance(node, ConstDecl):
        export = "export " if node.exported else ""
        annotation = f": {node.annotation}" if node.annotation else ""
        return f"{pad}{export}const {node.name}{annotation} = {render_expr(node.value, level)};".split("\n")
    if isinstance(node, TypeAlias):
        export = "export " if node.exported else ""
        return [f"{pad}{export}type {node.name} = {node.value};"]
    if isinstance(node, Interface):
        export = "export " if node.exported else ""
        lines = _doc_lines(node.doc, pad)
        lines.append(f"{pad}{export}interface {node.name} {{")
        for field in node.fields:
            marker = "?" if field.optional else ""
            comment = f" // {field.comment}" if field.comment else ""
            lines.append(f"{pad}{INDENT}{field.name}{marker}: {field.type};{comment}")
        lines.append(f"{pad}}}")
        return lines
    if isinstance(node, Function):
        export = "export " if node.exported else ""
        is_async = "async " if node.is_async else ""
        params = ", ".join(f"{p.name}{'?' if p.optional else ''}: {p.type}" for p in node.params)
        returns = f": {node.returns}" if node.returns else ""
        lines = _doc_lines(node.doc, pad)
        lines.append(f"{pad}{export}{is_async}function {node.name}({params}){returns} {{")
        for child in node.body:
            lines.extend(render_node(child, level + 1))
        lines.append(f"{pad}}}")
        return lines
    raise TypeError(f"Unsupported node: {type(node).__name__}")


def render(module: Module) -> str:
    lines: list[str] = []
    for node in module.body:
        lines.extend(render_node(node))
    while lines and lines[-1] == "":
        lines.pop()
    return "\n".join(lines) + "\n"


def walk(nodes: list) -> Iterator:
    for node in nodes:
        yield node
        if isinstance(node, (Block, Function)):
            yield from walk(node.body)


def functions(module: Module) -> dict[str, Function]:
    return {node.name: node for node in walk(module.body) if isinstance(node, Function)}


def interfaces(module: Module) -> dict[str, Interface]:
    return {node.name: node for node in walk(module.body) if isinstance(node, Interface)}


def exported_names(module: Module) -> list[str]:
    names: list[str] = []
    for node in module.body:
        if isinstance(node, (ConstDecl, TypeAlias, Interface, Function)) and node.exported:
            names.append(node.name)
    return names
