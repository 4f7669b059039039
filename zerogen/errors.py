"""Exception hierarchy for schema introspection and code generation."""

from __future__ import annotations


class ZeroGenError(Exception):
    pass


class ConfigurationError(ZeroGenError):
    pass


class SchemaError(ZeroGenError):
    pass


class EnumStorageError(ZeroGenError):
    """Raised when an enumeration is stored as integers instead of strings."""

    def __init__(self, entity: str, column: str, values: dict[str, int]) -> None:
        self.entity = entity
        self.column = column
        self.values = dict(values)
        expected = ", ".join(f"{name}: {name}" for name in values)
        super().__init__(
            f"Enum '{column}' on {entity} is backed by integer values {self.values}. "
            f"Zero clients only sync string-backed enums: migrate the column to a string type "
            f"and declare it as {{{expected}}} before generating."
        )


class GenerationValidationError(ZeroGenError):
    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        joined = "\n".join(f"  - {error}" for error in self.errors)
        super().__init__(f"Generated output failed validation:\n{joined}")
