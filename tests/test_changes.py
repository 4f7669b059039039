import unittest

from zerogen.changes import (
    compare_schema,
    detect_customizations,
    extract_relationship_names,
    extract_table_names,
    is_generated_file,
    outside_markers,
)


PREVIOUS = """// AUTO-GENERATED ZERO SCHEMA - DO NOT EDIT
// Generated by zerogen from the database schema. Regenerate instead of editing.
// @zerogen:begin

import { createSchema, table, string, relationships } from '@rocicorp/zero';

// Tasks table
const tasks = table('tasks')
  .columns({
    id: string(),
  })
  .primaryKey('id');

// Jobs table
const jobs = table('jobs')
  .columns({
    id: string(),
  })
  .primaryKey('id');

// Tasks relationships
const tasksRelationships = relationships(tasks, ({ one }) => ({
  job: one({
    sourceField: ['job_id'],
    destField: ['id'],
    destSchema: jobs,
  }),
}));

export const schema = createSchema({});
// @zerogen:end
"""

FRESH = PREVIOUS.replace(
    "  job: one({",
    "  owner: one({\n    sourceField: ['owner_id'],\n    destField: ['id'],\n    destSchema: jobs,\n  }),\n  job: one({",
).replace(
    "// Tasks table\nconst tasks = table('tasks')",
    "// Clients table\nconst clients = table('clients')\n  .columns({\n    id: string(),\n  })\n  .primaryKey('id');\n\n"
    "// Tasks table\nconst tasks = table('tasks')",
)


class TestChangeDetection(unittest.TestCase):
    def test_extract_names(self) -> None:
        self.assertEqual(extract_table_names(PREVIOUS), ["jobs", "tasks"])
        self.assertEqual(extract_relationship_names(PREVIOUS), ["tasksRelationships.job"])

    def test_compare_schema(self) -> None:
        report = compare_schema(PREVIOUS, FRESH)
        self.assertEqual(report.new_tables, ["clients"])
        self.assertEqual(report.removed_tables, [])
        self.assertEqual(report.new_relationships, ["tasksRelationships.owner"])
        self.assertTrue(report.has_changes())

        removed = compare_schema(FRESH, PREVIOUS)
        self.assertEqual(removed.removed_tables, ["clients"])
        notes = removed.migration_notes()
        self.assertTrue(any(note.startswith("Removed relationships: tasksRelationships.owner") for note in notes))

    def test_first_generation(self) -> None:
        report = compare_schema(None, FRESH)
        self.assertTrue(report.first_generation)
        self.assertEqual(report.migration_notes(), ["First generation: no previous schema to compare against."])

    def test_identical_output_has_no_changes(self) -> None:
        report = compare_schema(PREVIOUS, PREVIOUS)
        self.assertFalse(report.has_changes())
        self.assertEqual(report.migration_notes(), ["No structural changes."])
        self.assertEqual(detect_customizations(PREVIOUS, PREVIOUS), [])

    def test_detects_manual_edits(self) -> None:
        edited = PREVIOUS.replace(
            "import { createSchema",
            "import { formatDate } from './dates';\nimport { createSchema",
        ).replace(
            "// Tasks table",
            "// Tasks table\n// keep in sync with the billing service",
        ) + "export const helper = 1;\n"

        found = detect_customizations(edited, PREVIOUS)
        self.assertEqual(len(found), 4)
        self.assertEqual(found[0], "1 line(s) outside the generated region")
        self.assertIn("keep in sync with the billing service", found[1])
        self.assertIn("import { formatDate } from './dates';", found[2])
        self.assertEqual(found[3], "custom exports: helper")

    def test_generator_import_changes_are_not_custom(self) -> None:
        fresh = PREVIOUS.replace(
            "import { createSchema, table, string, relationships } from '@rocicorp/zero';",
            "import {\n  createSchema,\n  table,\n  string,\n  json,\n  relationships,\n} from '@rocicorp/zero';",
        )
        self.assertEqual(detect_customizations(PREVIOUS, fresh), [])
        self.assertEqual(detect_customizations(fresh, PREVIOUS), [])

    def test_generated_exports_are_not_custom(self) -> None:
        edited = PREVIOUS.replace("// @zerogen:end", "export type ZeroClient = unknown;\n// @zerogen:end")
        self.assertEqual(detect_customizations(edited, PREVIOUS), [])

    def test_outside_markers_without_markers(self) -> None:
        self.assertEqual(outside_markers("export const x = 1;\n"), [])

    def test_is_generated_file(self) -> None:
        self.assertTrue(is_generated_file(PREVIOUS))
        self.assertTrue(is_generated_file("// AUTO-GENERATED ZERO MUTATIONS - DO NOT EDIT\n"))
        self.assertFalse(is_generated_file("export const mine = 1;\n"))


if __name__ == "__main__":
    unittest.main()
