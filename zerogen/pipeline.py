"""Run introspection, resolution, generation, validation and writes in order."""

from __future__ import annotations

import dataclasses
import difflib
import hashlib
import importlib
import json
import logging
import os
import sys
import tempfile
from pathlib import Path

from sqlalchemy.engine import Engine

from .changes import ChangeReport, compare_schema, detect_customizations, is_generated_file, read_previous
from .config import GeneratorConfig, ensure_writable_outputs
from .errors import ConfigurationError, GenerationValidationError
from .introspect import SchemaIntrospector, fetch_schema_version, get_engine
from .manifest import Manifest
from .model import GeneratedArtifact, PolymorphicAssociation, SchemaModel
from .mutation_gen import MutationGenerator
from .patterns import columns_hash, pattern_hash, pattern_report
from .polymorphic import PolymorphicResolver, build_discovery_document, collect_declarations, render_discovery_document
from .registry import EntityRegistry, registry_from_declarative
from .schema_gen import SCHEMA_EXPORTS, generate_schema
from .type_mapper import TypeMapper, is_valid_type_expression
from .validate import validate_module_text, validate_schema_text


logger = logging.getLogger(__name__)


@dataclasses.dataclass
class GenerationReport:
    artifacts: list[GeneratedArtifact] = dataclasses.field(default_factory=list)
    written: list[Path] = dataclasses.field(default_factory=list)
    skipped_tables: list[str] = dataclasses.field(default_factory=list)
    protected: list[Path] = dataclasses.field(default_factory=list)
    drift: list[Path] = dataclasses.field(default_factory=list)
    changes: ChangeReport = dataclasses.field(default_factory=ChangeReport)
    associations: dict[str, PolymorphicAssociation] = dataclasses.field(default_factory=dict)
    pattern_report: str = ""
    warnings: list[str] = dataclasses.field(default_factory=list)


def build_registry(config: GeneratorConfig) -> EntityRegistry:
    """Registry from an optional ``module:Base`` reference plus the config's ``entities``."""
    registry = EntityRegistry()
    declarative_base = config.declarative_base
    if declarative_base:
        module_name, _, attr = declarative_base.partition(":")
        if not attr:
            raise ConfigurationError(f"Declarative base must look like 'package.module:Base', got {declarative_base}")
        try:
            base = getattr(importlib.import_module(module_name), attr)
        except (ImportError, AttributeError) as exc:
            raise ConfigurationError(f"Cannot load declarative base {declarative_base}: {exc}") from exc
        registry = registry_from_declarative(base)
    for descriptor in EntityRegistry.from_config(config.entities):
        registry.register(descriptor)
    return registry


def inputs_hash(schema: SchemaModel, table: str, config: GeneratorConfig, associations: list[PolymorphicAssociation], entity: str) -> str:
    payload = {
        "columns": columns_hash(schema.tables[table]),
        "entity": entity,
        "naming": sorted(config.naming_overrides.items()),
        "excluded_patterns": sorted(config.excluded_patterns(table)),
        "client_module": config.client_module,
        "type_overrides": {k: v for k, v in sorted(config.type_overrides.items()) if k.startswith(f"{table}.")},
        "polymorphic": {a.name: a.targets for a in associations if a.table == table},
    }
    return hashlib.sha256(json.dumps(payload, sort_keys=True).encode("utf-8")).hexdigest()


def write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(content)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


def check_equal(path: Path, generated: str) -> bool:
    if not path.exists():
        print(f"[check] missing file: {path}", file=sys.stderr)
        return False

    existing = path.read_text(encoding="utf-8")
    if existing == generated:
        return True

    print(f"[check] drift detected: {path}", file=sys.stderr)
    diff = difflib.unified_diff(
        existing.splitlines(),
        generated.splitlines(),
        fromfile=str(path),
        tofile=f"generated:{path}",
        lineterm="",
    )
    for idx, line in enumerate(diff):
        if idx > 200:
            print("... (diff truncated)", file=sys.stderr)
            break
        print(line, file=sys.stderr)
    return False


def manifest_key(config: GeneratorConfig, path: Path) -> str:
    return Path(os.path.relpath(path, config.output.manifest_file.parent)).as_posix()


class Generator:
    def __init__(self, config: GeneratorConfig, registry: EntityRegistry, engine: Engine) -> None:
        self.config = config
        self.registry = registry
        self.engine = engine
        self.mutations = MutationGenerator(config, TypeMapper(config.type_overrides), registry)
        self.warnings: list[str] = []

    def _warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)

    def introspect(self) -> SchemaModel:
        introspector = SchemaIntrospector(
            self.engine,
            self.registry,
            excluded_tables=self.config.excluded_tables(),
            schema=self.config.database_schema,
            positioning_scopes=self.config.positioning_scopes,
        )
        schema = introspector.extract_schema()
        self.warnings.extend(introspector.warnings)
        return schema

    def resolve(self, schema: SchemaModel) -> dict[str, PolymorphicAssociation]:
        declarations, problems = collect_declarations(self.config.output.declarations_dir)
        self.warnings.extend(problems)
        resolver = PolymorphicResolver(
            schema,
            self.registry,
            declarations=declarations,
            fallbacks=self.config.polymorphic_fallbacks,
            sti_separator=self.config.sti_separator,
            engine=self.engine,
        )
        associations = resolver.resolve()
        self.warnings.extend(resolver.warnings)
        return associations

    def build(
        self,
        schema: SchemaModel,
        associations: dict[str, PolymorphicAssociation],
        manifest: Manifest,
        force: bool,
    ) -> tuple[list[GeneratedArtifact], list[str], Manifest]:
        mutations = self.mutations
        mapper = mutations.mapper
        artifacts: list[GeneratedArtifact] = [
            GeneratedArtifact(self.config.output.schema_file, generate_schema(schema, associations, mapper), "schema"),
        ]
        artifacts.append(GeneratedArtifact(mutations.support_path(), mutations.build_support_module(), "generated"))

        associations_list = list(associations.values())
        next_manifest = Manifest()
        skipped: list[str] = []
        excluded = set(self.config.mutation_exclude_tables)
        for name in schema.table_names():
            table = schema.tables[name]
            if name in excluded or not mutations.supports(table):
                continue
            patterns = schema.patterns[name]
            p_hash = pattern_hash(patterns)
            i_hash = inputs_hash(schema, name, self.config, associations_list, mutations.entity_name(name))
            path = mutations.generated_path(name)
            key = manifest_key(self.config, path)

            incremental = self.config.incremental and not force
            if incremental and manifest.is_unchanged(name, p_hash, i_hash, path, key):
                skipped.append(name)
                next_manifest.tables[name] = manifest.tables[name]
            else:
                text = mutations.generate(table, patterns, associations_list)
                artifacts.append(GeneratedArtifact(path, text, "generated", table=name))
                next_manifest.record_table(name, p_hash, i_hash, {key: text})

            custom = mutations.custom_path(name)
            if not custom.exists():
                artifacts.append(GeneratedArtifact(
                    custom, mutations.build_custom_scaffold(table, patterns, associations_list), "custom", table=name,
                ))

        document = build_discovery_document(associations, self.engine.dialect.name, fetch_schema_version(self.engine))
        artifacts.append(GeneratedArtifact(self.config.output.discovery_file, render_discovery_document(document), "discovery"))

        self.warnings.extend(mapper.warnings)
        self.warnings.extend(mutations.warnings)
        return artifacts, skipped, next_manifest

    def validate(self, artifacts: list[GeneratedArtifact]) -> None:
        errors: list[str] = []
        for artifact in artifacts:
            if artifact.kind == "schema":
                schema_errors, schema_warnings = validate_schema_text(artifact.content)
                errors.extend(f"{artifact.path.name}: {e}" for e in schema_errors)
                for warning in schema_warnings:
                    self._warn(f"{artifact.path.name}: {warning}")
            elif artifact.kind in ("generated", "custom"):
                errors.extend(f"{artifact.path.name}: {e}" for e in validate_module_text(artifact.content))
        if errors:
            raise GenerationValidationError(errors)

    def detect_changes(self, artifacts: list[GeneratedArtifact], force: bool) -> tuple[ChangeReport, list[Path]]:
        report = ChangeReport()
        protected: list[Path] = []
        for artifact in artifacts:
            if artifact.kind == "custom":
                continue
            previous = read_previous(artifact.path)
            if artifact.kind == "schema":
                customizations = report.customizations
                report = compare_schema(previous, artifact.content)
                report.customizations = customizations
            if previous is None or artifact.kind == "discovery":
                continue
            if not is_generated_file(previous):
                if force:
                    self._warn(f"Overwriting {artifact.path}, which was not written by zerogen (--force)")
                else:
                    self._warn(f"Not overwriting {artifact.path}: it was not written by zerogen (use --force)")
                    protected.append(artifact.path)
                    continue
            if artifact.table is not None:
                table = artifact.table
                found = detect_customizations(
                    previous, artifact.content, lambda name: self.mutations.is_generated_export(table, name),
                )
            else:
                found = detect_customizations(previous, artifact.content, lambda name: name in SCHEMA_EXPORTS)
            if found:
                artifact.customizations = found
                report.customizations[str(artifact.path)] = found
                for item in found:
                    self._warn(f"{artifact.path}: {item}")
        return report, protected


def run(
    config: GeneratorConfig,
    registry: EntityRegistry,
    engine: Engine | None = None,
    force: bool = False,
    dry_run: bool = False,
    check: bool = False,
) -> GenerationReport:
    if not (dry_run or check):
        ensure_writable_outputs(config)
    owns_engine = engine is None
    if engine is None:
        if not config.database_url:
            raise ConfigurationError("No database_url configured (set it in the config file or DATABASE_URL)")
        engine = get_engine(config.database_url)

    try:
        generator = Generator(config, registry, engine)
        for key, expr in sorted(config.type_overrides.items()):
            if not is_valid_type_expression(expr):
                generator._warn(f"type_overrides.{key}: '{expr}' is not a valid Zero column type, using the column kind default")

        manifest = Manifest.load(config.output.manifest_file)
        schema = generator.introspect()
        associations = generator.resolve(schema)
        artifacts, skipped, next_manifest = generator.build(schema, associations, manifest, force)
        generator.validate(artifacts)
        changes, protected = generator.detect_changes(artifacts, force)
    finally:
        if owns_engine:
            engine.dispose()

    report = GenerationReport(
        artifacts=artifacts,
        skipped_tables=skipped,
        protected=protected,
        changes=changes,
        associations=associations,
        pattern_report=pattern_report(schema.patterns),
        warnings=generator.warnings,
    )

    if check:
        for artifact in artifacts:
            if artifact.kind != "custom" and not check_equal(artifact.path, artifact.content):
                report.drift.append(artifact.path)
        return report
    if dry_run:
        return report

    for artifact in artifacts:
        if artifact.path in protected:
            continue
        if artifact.kind == "custom" and artifact.path.exists():
            continue
        if artifact.path.exists() and artifact.path.read_text(encoding="utf-8") == artifact.content:
            continue
        write_text(artifact.path, artifact.content)
        report.written.append(artifact.path)

    for artifact in artifacts:
        if artifact.kind in ("schema", "discovery") or (artifact.kind == "generated" and artifact.table is None):
            next_manifest.record_output(manifest_key(config, artifact.path), artifact.content)
    manifest_text = next_manifest.to_json()
    if read_previous(config.output.manifest_file) != manifest_text:
        write_text(config.output.manifest_file, manifest_text)
    return report
