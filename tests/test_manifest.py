import json
import tempfile
import unittest
from pathlib import Path

from zerogen.manifest import MANIFEST_VERSION, Manifest, content_hash


class TestManifest(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(self.tmp.name)

    def tearDown(self) -> None:
        self.tmp.cleanup()

    def test_missing_or_unreadable_manifest_is_empty(self) -> None:
        self.assertEqual(Manifest.load(self.root / "missing.json"), Manifest())

        broken = self.root / "broken.json"
        broken.write_text("{not json", encoding="utf-8")
        self.assertEqual(Manifest.load(broken), Manifest())

        stale = self.root / "stale.json"
        stale.write_text(json.dumps({"version": MANIFEST_VERSION + 1, "tables": {"tasks": {}}}), encoding="utf-8")
        self.assertEqual(Manifest.load(stale).tables, {})

    def test_unchanged_requires_matching_hashes_and_file(self) -> None:
        generated = self.root / "task.generated.ts"
        generated.write_text("export const x = 1;\n", encoding="utf-8")

        manifest = Manifest()
        manifest.record_table("tasks", "p1", "i1", {"task.generated.ts": "export const x = 1;\n"})
        self.assertTrue(manifest.is_unchanged("tasks", "p1", "i1", generated, "task.generated.ts"))
        self.assertFalse(manifest.is_unchanged("tasks", "p2", "i1", generated, "task.generated.ts"))
        self.assertFalse(manifest.is_unchanged("tasks", "p1", "i2", generated, "task.generated.ts"))
        self.assertFalse(manifest.is_unchanged("jobs", "p1", "i1", generated, "task.generated.ts"))

        # Hand edits on disk invalidate the entry.
        generated.write_text("export const x = 2;\n", encoding="utf-8")
        self.assertFalse(manifest.is_unchanged("tasks", "p1", "i1", generated, "task.generated.ts"))

        generated.unlink()
        self.assertFalse(manifest.is_unchanged("tasks", "p1", "i1", generated, "task.generated.ts"))

    def test_json_is_sorted_and_loads_back(self) -> None:
        manifest = Manifest()
        manifest.record_table("tasks", "p1", "i1", {"b.ts": "b", "a.ts": "a"})
        manifest.record_table("jobs", "p2", "i2", {"job.generated.ts": "j"})
        manifest.record_output("schema.ts", "schema")

        text = manifest.to_json()
        raw = json.loads(text)
        self.assertEqual(raw["version"], MANIFEST_VERSION)
        self.assertEqual(list(raw["tables"]), ["jobs", "tasks"])
        self.assertEqual(raw["tables"]["tasks"]["generated_files"], ["a.ts", "b.ts"])
        self.assertEqual(raw["outputs"]["schema.ts"], content_hash("schema"))

        path = self.root / "manifest.json"
        path.write_text(text, encoding="utf-8")
        loaded = Manifest.load(path)
        self.assertEqual(loaded, manifest)
        self.assertEqual(loaded.to_json(), text)


if __name__ == "__main__":
    unittest.main()
