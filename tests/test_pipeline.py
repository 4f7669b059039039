import json
import tempfile
import unittest
from pathlib import Path

from zerogen.errors import ConfigurationError, EnumStorageError
from zerogen.introspect import SchemaIntrospector
from zerogen.pipeline import build_registry, inputs_hash, run, write_text

from tests.support import NOTE_ROWS, SCENARIO_ENTITIES, create_database, scenario_config


NOTE_DECLARATION = """export * from './note.generated';

declarePolymorphicRelationships({
  tableName: 'notes',
  belongsTo: {
    notable: {
      typeField: 'notable_type',
      idField: 'notable_id',
      allowedTypes: ['Task', 'Job'],
    },
  },
});
"""


class TestPipeline(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(self.tmp.name)
        self.engine = create_database(self.root / "app.db", rows=NOTE_ROWS)
        self.models = self.root / "frontend" / "models"
        self.schema_file = self.root / "frontend" / "generated-schema.ts"

    def tearDown(self) -> None:
        self.engine.dispose()
        self.tmp.cleanup()

    def run_generator(self, config=None, **kwargs):
        config = config or scenario_config(self.root)
        return run(config, build_registry(config), engine=self.engine, **kwargs)

    def test_first_run_writes_every_artifact(self) -> None:
        report = self.run_generator()
        written = {p.relative_to(self.root).as_posix() for p in report.written}
        expected = {
            "frontend/generated-schema.ts",
            "frontend/models/zero-support.generated.ts",
            "config/zero_polymorphic_types.yml",
        }
        for stem in ("task", "job", "note", "client"):
            expected.add(f"frontend/models/{stem}.generated.ts")
            expected.add(f"frontend/models/{stem}.custom.ts")
        self.assertEqual(written, expected)
        self.assertFalse((self.models / "counter.generated.ts").exists())
        self.assertTrue(report.changes.first_generation)

        manifest = json.loads((self.models / ".generation-manifest.json").read_text(encoding="utf-8"))
        self.assertEqual(sorted(manifest["tables"]), ["clients", "jobs", "notes", "tasks"])
        self.assertIn("task.generated.ts", manifest["tables"]["tasks"]["generated_files"])
        self.assertIn("../generated-schema.ts", manifest["outputs"])

    def test_second_run_is_a_no_op(self) -> None:
        self.run_generator()
        manifest_path = self.models / ".generation-manifest.json"
        manifest_before = manifest_path.read_text(encoding="utf-8")

        report = self.run_generator()
        self.assertEqual(report.written, [])
        self.assertEqual(report.skipped_tables, ["clients", "jobs", "notes", "tasks"])
        self.assertFalse(report.changes.has_changes())
        self.assertEqual(manifest_path.read_text(encoding="utf-8"), manifest_before)

        forced = self.run_generator(force=True)
        self.assertEqual(forced.written, [])
        self.assertEqual(forced.skipped_tables, [])

    def test_check_mode(self) -> None:
        self.run_generator()
        self.assertEqual(self.run_generator(check=True).drift, [])

        self.schema_file.write_text(self.schema_file.read_text(encoding="utf-8").replace("jobs", "gigs"), encoding="utf-8")
        report = self.run_generator(check=True)
        self.assertEqual(report.drift, [self.schema_file])
        self.assertEqual(report.written, [])

    def test_dry_run_writes_nothing(self) -> None:
        report = self.run_generator(dry_run=True)
        self.assertEqual(report.written, [])
        self.assertTrue(report.artifacts)
        self.assertFalse(self.root.joinpath("frontend").exists())

    def test_integer_enum_aborts_before_writing(self) -> None:
        entities = json.loads(json.dumps(SCENARIO_ENTITIES))
        entities["Task"]["enums"] = {"status": {"open": 0, "done": 1}}
        with self.assertRaises(EnumStorageError):
            self.run_generator(scenario_config(self.root, entities=entities))
        self.assertEqual(list(self.root.rglob("*.ts")), [])

    def test_foreign_schema_file_is_protected(self) -> None:
        self.schema_file.parent.mkdir(parents=True)
        self.schema_file.write_text("export const mine = 1;\n", encoding="utf-8")

        report = self.run_generator()
        self.assertEqual(report.protected, [self.schema_file])
        self.assertNotIn(self.schema_file, report.written)
        self.assertEqual(self.schema_file.read_text(encoding="utf-8"), "export const mine = 1;\n")

        forced = self.run_generator(force=True)
        self.assertIn(self.schema_file, forced.written)

    def test_manual_edits_are_reported(self) -> None:
        self.run_generator()
        generated = self.models / "task.generated.ts"
        generated.write_text(
            generated.read_text(encoding="utf-8") + "export const archiveOldTasks = () => null;\n",
            encoding="utf-8",
        )

        report = self.run_generator()
        found = report.changes.customizations[str(generated)]
        self.assertIn("custom exports: archiveOldTasks", found)
        self.assertIn(generated, report.written)
        self.assertNotIn("archiveOldTasks", generated.read_text(encoding="utf-8"))

    def test_declared_targets_drive_the_schema(self) -> None:
        self.run_generator()
        (self.models / "note.custom.ts").write_text(NOTE_DECLARATION, encoding="utf-8")

        report = self.run_generator()
        self.assertEqual(report.associations["notes.notable"].source, "declared")
        text = self.schema_file.read_text(encoding="utf-8")
        self.assertIn("  notableJob: one({", text)
        self.assertIn("  notableTask: one({", text)
        self.assertNotIn("notableClient", text)
        self.assertIn("notesRelationships.notableJob", report.changes.new_relationships)
        # Hand-written files are never rewritten.
        self.assertNotIn(self.models / "note.custom.ts", report.written)
        self.assertEqual((self.models / "note.custom.ts").read_text(encoding="utf-8"), NOTE_DECLARATION)

    def test_inputs_hash_tracks_naming(self) -> None:
        config = scenario_config(self.root)
        schema = SchemaIntrospector(self.engine, build_registry(config)).extract_schema()
        renamed = scenario_config(self.root, naming_overrides={"moveBefore": "placeBefore"})
        self.assertNotEqual(
            inputs_hash(schema, "tasks", config, [], "Task"),
            inputs_hash(schema, "tasks", renamed, [], "Task"),
        )
        self.assertEqual(inputs_hash(schema, "tasks", config, [], "Task"), inputs_hash(schema, "tasks", config, [], "Task"))

        overridden = scenario_config(self.root, type_overrides={"tasks.title": "json()"})
        self.assertNotEqual(
            inputs_hash(schema, "tasks", config, [], "Task"),
            inputs_hash(schema, "tasks", overridden, [], "Task"),
        )
        # Overrides for other tables leave this module alone.
        other = scenario_config(self.root, type_overrides={"jobs.title": "json()"})
        self.assertEqual(
            inputs_hash(schema, "tasks", config, [], "Task"),
            inputs_hash(schema, "tasks", other, [], "Task"),
        )

    def test_type_override_change_regenerates_module(self) -> None:
        self.run_generator()
        generated = self.models / "task.generated.ts"
        self.assertIn("  title: string;", generated.read_text(encoding="utf-8"))

        report = self.run_generator(scenario_config(self.root, type_overrides={"tasks.title": "json()"}))
        self.assertIn(generated, report.written)
        self.assertNotIn("tasks", report.skipped_tables)
        self.assertIn("  title: unknown;", generated.read_text(encoding="utf-8"))
        self.assertEqual(report.changes.customizations, {})

    def test_invalid_type_override_warns_and_uses_kind_default(self) -> None:
        config = scenario_config(self.root, type_overrides={"tasks.title": "enumeration<Status>()"})
        report = self.run_generator(config)
        self.assertTrue(any("tasks.title" in w and "kind default" in w for w in report.warnings))
        self.assertIn("    title: string(),", self.schema_file.read_text(encoding="utf-8"))
        self.assertIn("  title: string;", (self.models / "task.generated.ts").read_text(encoding="utf-8"))

    def test_bad_declarative_base(self) -> None:
        with self.assertRaises(ConfigurationError):
            build_registry(scenario_config(self.root, declarative_base="no_colon_here"))
        with self.assertRaises(ConfigurationError):
            build_registry(scenario_config(self.root, declarative_base="zerogen_missing_module:Base"))

    def test_missing_database_url(self) -> None:
        config = scenario_config(self.root, database_url=None)
        config.database_url = None
        with self.assertRaises(ConfigurationError):
            run(config, build_registry(config), dry_run=True)

    def test_write_text_replaces_atomically(self) -> None:
        target = self.root / "nested" / "out.ts"
        write_text(target, "one\n")
        write_text(target, "two\n")
        self.assertEqual(target.read_text(encoding="utf-8"), "two\n")
        self.assertEqual([p.name for p in target.parent.iterdir()], ["out.ts"])


if __name__ == "__main__":
    unittest.main()
