import tempfile
import unittest
from pathlib import Path

from zerogen.config import DEFAULT_EXCLUDED_TABLES
from zerogen.errors import EnumStorageError
from zerogen.introspect import SchemaIntrospector, categorize_default, fetch_schema_version
from zerogen.registry import EntityRegistry

from tests.support import NOTE_ROWS, SCENARIO_ENTITIES, create_database


class TestCategorizeDefault(unittest.TestCase):
    def test_defaults(self) -> None:
        self.assertEqual(categorize_default(None), (None, "none"))
        self.assertEqual(categorize_default("NULL::character varying"), (None, "none"))
        self.assertEqual(categorize_default("'open'::character varying"), ("open", "literal"))
        self.assertEqual(categorize_default("gen_random_uuid()"), ("gen_random_uuid()", "function"))
        self.assertEqual(categorize_default("CURRENT_TIMESTAMP"), ("CURRENT_TIMESTAMP", "function"))
        self.assertEqual(categorize_default("0"), ("0", "literal"))
        self.assertEqual(categorize_default("'it''s'"), ("it's", "literal"))


class TestSchemaIntrospector(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.engine = create_database(Path(self.tmp.name) / "app.db", rows=NOTE_ROWS)
        self.registry = EntityRegistry.from_config(SCENARIO_ENTITIES)

    def tearDown(self) -> None:
        self.engine.dispose()
        self.tmp.cleanup()

    def test_tables_and_exclusions(self) -> None:
        introspector = SchemaIntrospector(self.engine, self.registry, excluded_tables=set(DEFAULT_EXCLUDED_TABLES))
        self.assertEqual(introspector.list_tables(), ["clients", "counters", "jobs", "notes", "tasks"])

        introspector = SchemaIntrospector(self.engine, self.registry, excluded_tables={"counters", "schema_migrations"})
        self.assertNotIn("counters", introspector.list_tables())

    def test_columns(self) -> None:
        schema = SchemaIntrospector(self.engine, self.registry).extract_schema()
        tasks = schema.tables["tasks"]
        self.assertEqual(tasks.primary_key, "id")
        self.assertEqual(tasks.column_names[:3], ["id", "title", "status"])
        self.assertFalse(tasks.column("id").nullable)
        self.assertFalse(tasks.column("title").nullable)
        self.assertTrue(tasks.column("position").nullable)
        self.assertEqual(tasks.column("title").kind, "string")
        self.assertEqual(tasks.column("position").kind, "integer")
        self.assertEqual(tasks.column("discarded_at").kind, "datetime")
        self.assertEqual(tasks.column("status").default, "open")
        self.assertEqual(tasks.column("status").default_kind, "literal")
        self.assertEqual(schema.tables["notes"].column("body").kind, "text")
        self.assertEqual({fk.target_table for fk in tasks.foreign_keys}, {"jobs", "tasks"})

    def test_indexes_and_constraints(self) -> None:
        schema = SchemaIntrospector(self.engine, self.registry).extract_schema()
        indexes = {ix.name: ix for ix in schema.indexes["tasks"]}
        self.assertEqual(indexes["index_tasks_on_job_id"].columns, ["job_id"])
        self.assertFalse(indexes["index_tasks_on_job_id"].unique)
        self.assertIn("check", [c.kind for c in schema.constraints["counters"]])

    def test_declared_enums_and_patterns(self) -> None:
        schema = SchemaIntrospector(self.engine, self.registry).extract_schema()
        self.assertEqual(schema.tables["tasks"].column("status").enum_values, ["open", "done"])
        patterns = schema.patterns["tasks"]
        self.assertEqual(patterns.soft_deletion.convention, "discard")
        self.assertEqual(patterns.positioning.scope, ("job_id", "parent_id"))
        self.assertEqual(patterns.enum("status").values, ("open", "done"))
        self.assertEqual([p.name for p in schema.patterns["notes"].polymorphic], ["notable"])

    def test_relationships_from_registry(self) -> None:
        schema = SchemaIntrospector(self.engine, self.registry).extract_schema()
        names = {r.name: r for r in schema.relationships["tasks"]}
        self.assertEqual(sorted(names), ["children", "job", "notes", "parent"])
        self.assertEqual(names["parent"].target_table, "tasks")
        self.assertTrue(schema.relationships["notes"][0].polymorphic)
        # No entity declared for counters.
        self.assertEqual(schema.relationships["counters"], [])

    def test_integer_backed_enum_is_fatal(self) -> None:
        registry = EntityRegistry.from_config({"Task": {"table": "tasks", "enums": {"status": {"open": 0, "done": 1}}}})
        with self.assertRaises(EnumStorageError) as ctx:
            SchemaIntrospector(self.engine, registry).extract_schema()
        self.assertEqual(ctx.exception.column, "status")
        self.assertIn("migrate the column to a string type", str(ctx.exception))

    def test_missing_entity_table_warns(self) -> None:
        registry = EntityRegistry.from_config({"Invoice": {"table": "invoices"}})
        introspector = SchemaIntrospector(self.engine, registry)
        introspector.extract_schema()
        self.assertTrue(any("invoices" in w for w in introspector.warnings))

    def test_schema_version(self) -> None:
        self.assertEqual(fetch_schema_version(self.engine), "20240201000000")


if __name__ == "__main__":
    unittest.main()
