import re
import tempfile
import unittest
from pathlib import Path

from zerogen import ts
from zerogen.introspect import SchemaIntrospector
from zerogen.mutation_gen import MUTATIONS_HEADER, MutationGenerator
from zerogen.polymorphic import PolymorphicResolver, parse_declarations
from zerogen.registry import EntityRegistry
from zerogen.type_mapper import TypeMapper
from zerogen.validate import validate_module_text

from tests.support import SCENARIO_ENTITIES, create_database, scenario_config


class TestMutationGeneration(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(self.tmp.name)
        self.engine = create_database(self.root / "app.db")
        self.registry = EntityRegistry.from_config(SCENARIO_ENTITIES)
        self.schema = SchemaIntrospector(self.engine, self.registry).extract_schema()
        self.associations = list(PolymorphicResolver(self.schema, self.registry).resolve().values())

    def tearDown(self) -> None:
        self.engine.dispose()
        self.tmp.cleanup()

    def generator(self, **overrides) -> MutationGenerator:
        config = scenario_config(self.root, **overrides)
        return MutationGenerator(config, TypeMapper(config.type_overrides), self.registry)

    def module(self, table: str, **overrides) -> ts.Module:
        return self.generator(**overrides).build_module(self.schema.tables[table], self.schema.patterns[table], self.associations)

    def test_tasks_operations(self) -> None:
        names = set(ts.functions(self.module("tasks")))
        for expected in (
            "createTask", "updateTask", "upsertTask", "discardTask", "undiscardTask",
            "moveBeforeTask", "moveAfterTask", "moveToTopTask", "moveToBottomTask", "updateTaskStatus",
        ):
            self.assertIn(expected, names)
        # Soft-deleted tables get discard instead of a hard delete.
        self.assertNotIn("deleteTask", names)

    def test_create_input_for_tasks(self) -> None:
        create = ts.interfaces(self.module("tasks"))["CreateTaskData"]
        fields = {field.name: field for field in create.fields}
        self.assertEqual(sorted(fields), ["job_id", "parent_id", "position", "status", "title"])
        self.assertFalse(fields["title"].optional)
        self.assertTrue(all(fields[name].optional for name in ("status", "position", "job_id", "parent_id")))
        self.assertEqual(fields["status"].type, "'open' | 'done'")
        for excluded in ("id", "created_at", "updated_at", "discarded_at"):
            self.assertNotIn(excluded, fields)

    def test_status_update_is_restricted(self) -> None:
        status = ts.functions(self.module("tasks"))["updateTaskStatus"]
        self.assertEqual([(p.name, p.type) for p in status.params], [("id", "string"), ("status", "'open' | 'done'")])
        text = self.generator().generate(self.schema.tables["tasks"], self.schema.patterns["tasks"], self.associations)
        self.assertIn("export const TASK_STATUS_VALUES = ['open', 'done'] as const;", text)
        self.assertIn("if (!data.title?.trim()) {", text)
        self.assertIn("throw new Error('Title is required');", text)

    def test_soft_delete_marker_is_updatable_but_not_creatable(self) -> None:
        types = ts.interfaces(self.module("tasks"))
        update = {field.name: field for field in types["UpdateTaskData"].fields}
        self.assertEqual(update["discarded_at"].type, "number | null")
        self.assertNotIn("discarded_at", {field.name for field in types["CreateTaskData"].fields})
        for excluded in ("id", "created_at", "updated_at"):
            self.assertNotIn(excluded, update)

    def test_wrappers_only_pass_declared_update_fields(self) -> None:
        module = self.module("tasks")
        declared = {field.name for field in ts.interfaces(module)["UpdateTaskData"].fields}
        call = re.compile(r"updateTask\(id, \{ (.*) \}\);$")
        checked = set()
        for name, function in ts.functions(module).items():
            for node in ts.walk(function.body):
                match = call.search(getattr(node, "text", ""))
                if not match:
                    continue
                keys = set(re.findall(r"(?:^|, )(\w+)(?::|$)", match.group(1)))
                self.assertTrue(keys, name)
                self.assertLessEqual(keys, declared, name)
                checked.add(name)
        self.assertEqual(checked, {
            "discardTask", "undiscardTask", "moveBeforeTask", "moveAfterTask",
            "moveToTopTask", "moveToBottomTask", "updateTaskStatus",
        })

    def test_exported_names(self) -> None:
        exported = ts.exported_names(self.module("tasks"))
        self.assertIn("Task", exported)
        self.assertNotIn("loadTaskSiblings", exported)
        self.assertNotIn("validateTaskData", exported)

    def test_hard_delete_without_soft_deletion(self) -> None:
        names = set(ts.functions(self.module("notes")))
        self.assertIn("deleteNote", names)
        self.assertNotIn("discardNote", names)

    def test_polymorphic_type_constants(self) -> None:
        text = self.generator().generate(self.schema.tables["notes"], self.schema.patterns["notes"], self.associations)
        self.assertIn("export const NOTE_NOTABLE_TYPES = ['Task'] as const;", text)

    def test_naming_overrides(self) -> None:
        names = set(ts.functions(self.module("tasks", naming_overrides={"moveBefore": "placeBefore"})))
        self.assertIn("placeBeforeTask", names)
        self.assertNotIn("moveBeforeTask", names)

    def test_excluded_patterns(self) -> None:
        names = set(ts.functions(self.module("tasks", exclude_patterns={"tasks": ["positioning", "soft_deletion"]})))
        self.assertNotIn("moveToTopTask", names)
        self.assertNotIn("discardTask", names)
        self.assertIn("deleteTask", names)

    def test_non_string_primary_key_is_skipped(self) -> None:
        generator = self.generator()
        self.assertFalse(generator.supports(self.schema.tables["counters"]))
        self.assertTrue(any("counters" in w for w in generator.warnings))
        self.assertTrue(generator.supports(self.schema.tables["tasks"]))

    def test_paths(self) -> None:
        generator = self.generator()
        models = self.root / "frontend" / "models"
        self.assertEqual(generator.generated_path("tasks"), models / "task.generated.ts")
        self.assertEqual(generator.custom_path("tasks"), models / "task.custom.ts")
        self.assertEqual(generator.support_path(), models / "zero-support.generated.ts")

    def test_modules_validate(self) -> None:
        generator = self.generator()
        for table in ("tasks", "notes", "jobs", "clients"):
            text = generator.generate(self.schema.tables[table], self.schema.patterns[table], self.associations)
            self.assertTrue(text.startswith(f"// {MUTATIONS_HEADER}\n"))
            self.assertEqual(validate_module_text(text), [], table)
        self.assertEqual(validate_module_text(generator.build_support_module()), [])

    def test_custom_scaffold(self) -> None:
        generator = self.generator()
        scaffold = generator.build_custom_scaffold(self.schema.tables["notes"], self.schema.patterns["notes"], self.associations)
        self.assertIn("export * from './note.generated';", scaffold)
        self.assertIn("// declarePolymorphicRelationships({", scaffold)
        self.assertIn("allowedTypes: ['Task'],", scaffold)
        # The template stays commented until someone pins it by hand.
        self.assertEqual(parse_declarations(scaffold), [])

        uncommented = "\n".join(line.removeprefix("// ") for line in scaffold.splitlines() if "import {" not in line)
        declarations = parse_declarations(uncommented)
        self.assertEqual([(d.table, d.association, d.allowed_types) for d in declarations], [("notes", "notable", ["Task"])])

    def test_generated_export_names(self) -> None:
        generator = self.generator()
        self.assertTrue(generator.is_generated_export("tasks", "createTask"))
        self.assertTrue(generator.is_generated_export("tasks", "TASK_STATUS_VALUES"))
        self.assertFalse(generator.is_generated_export("tasks", "archiveOldTasks"))


if __name__ == "__main__":
    unittest.main()
