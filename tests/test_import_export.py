import io
import json
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from PIL import Image

from erdvault.db import ERDVaultStore
from erdvault.errors import InvalidBundle
from erdvault.model import MANY_TO_MANY, Field, Model


class ERDVaultImportExportTests(unittest.TestCase):
    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.db_path = str(Path(self.temp_dir.name) / "erdvault.db")
        patcher = mock.patch("erdvault.db.get_db_path", return_value=self.db_path)
        self.addCleanup(patcher.stop)
        patcher.start()
        self.store = ERDVaultStore()

    def tearDown(self):
        self.temp_dir.cleanup()

    def _seed_data(self):
        model = Model()
        orders = model.create_table("orders")
        products = model.create_table("products")
        model.add_field(products.id, Field("sku", "VARCHAR(64)", is_unique=True, is_not_null=True))
        model.create_relation(orders.id, products.id, MANY_TO_MANY, name="order lines")

        buf = io.BytesIO()
        Image.new("RGB", (64, 32), (10, 120, 200)).save(buf, format="PNG")
        diagram_id = self.store.save_diagram(
            model,
            id="diagram_demo",
            name="Shop",
            description="orders and products",
            tags=["shop"],
            thumbnail=buf.getvalue(),
            history_description="first",
        )["id"]
        model.create_table("customers")
        self.store.save_diagram(
            model,
            id=diagram_id,
            name="Shop",
            description="orders and products",
            tags=["shop"],
            thumbnail=buf.getvalue(),
            history_description="second",
        )
        return diagram_id, model

    def test_export_bundle_contains_diagram(self):
        diagram_id, model = self._seed_data()

        exported = self.store.export_diagram(diagram_id)

        self.assertEqual(exported["version"], "1.0")
        self.assertIn("exportedAt", exported)
        self.assertNotIn("history", exported)
        diagram = exported["diagram"]
        self.assertEqual(diagram["id"], "diagram_demo")
        self.assertEqual(diagram["name"], "Shop")
        self.assertEqual(diagram["tags"], ["shop"])
        self.assertEqual(diagram["data"], model.to_dict())
        self.assertTrue(diagram["thumbnail"])

    def test_export_with_history_lists_newest_first(self):
        diagram_id, _model = self._seed_data()

        exported = self.store.export_diagram(diagram_id, include_history=True)

        self.assertEqual([h["description"] for h in exported["history"]], ["second", "first"])
        self.assertEqual(set(exported["history"][0]), {"id", "data", "createdAt", "description"})

    def test_import_into_other_store_replays_history(self):
        diagram_id, model = self._seed_data()
        text = self.store.export_diagram_json(diagram_id, include_history=True)

        with tempfile.TemporaryDirectory() as other_dir:
            other_db_path = str(Path(other_dir) / "other.db")
            with mock.patch("erdvault.db.get_db_path", return_value=other_db_path):
                other_store = ERDVaultStore()
                result = other_store.import_diagram(text)
                loaded = other_store.load_diagram(result["id"])
                history = other_store.diagram_history(result["id"])
                thumb = other_store.get_diagram_thumbnail(result["id"])

        self.assertNotEqual(result["id"], diagram_id)
        self.assertEqual(result["history_imported"], 2)
        self.assertEqual(loaded["name"], "Shop")
        self.assertEqual(loaded["model"], model)
        self.assertEqual([h["description"] for h in history], ["second", "first"])
        self.assertEqual(history[0]["model"], model)
        self.assertEqual((thumb["width"], thumb["height"]), (64, 32))

    def test_import_can_keep_bundle_id(self):
        diagram_id, _model = self._seed_data()
        bundle = self.store.export_diagram(diagram_id)
        self.store.delete_diagram(diagram_id)

        result = self.store.import_diagram(bundle, generate_new_id=False)

        self.assertEqual(result["id"], diagram_id)
        self.assertEqual(result["history_imported"], 0)
        self.assertEqual(self.store.diagram_history(diagram_id), [])

    def test_bare_model_is_imported_with_default_name(self):
        model = Model()
        model.create_table("legacy")

        result = self.store.import_diagram(json.dumps(model.to_dict()))

        loaded = self.store.load_diagram(result["id"])
        self.assertEqual(loaded["name"], "Imported diagram")
        self.assertEqual(loaded["model"], model)

    def test_malformed_bundles_are_rejected(self):
        bad_bundles = [
            "{not json",
            "[1, 2]",
            {"version": "1.0"},
            {"version": "1.0", "diagram": {"name": "x"}},
            {"version": "1.0", "diagram": {"name": "", "data": {"tables": []}}},
            {"version": "1.0", "diagram": {"name": "x", "data": {"tables": [{"fields": ["oops"]}]}}},
            {"version": "1.0", "diagram": {"name": "x", "data": {}}, "history": {"not": "a list"}},
            {"version": "1.0", "diagram": {"name": "x", "data": {}}, "history": [{"id": "h1"}]},
            {"version": "1.0", "diagram": {"name": "x", "data": {}, "thumbnail": "%%%"}},
            {"version": "1.0", "diagram": {"name": "x", "data": {"tables": 5}}},
            {"version": "1.0", "diagram": {"name": "x", "data": {"relations": True}}},
            {"version": "1.0", "diagram": {"name": "x", "data": {"tables": [{"name": "t", "fields": 5}]}}},
            {"version": "1.0", "diagram": {"name": "x", "data": {}, "tags": 5}},
            {"diagram": {"name": "x", "data": {}, "tags": {"a": 1}}},
        ]
        for bundle in bad_bundles:
            with self.subTest(bundle=bundle), self.assertRaises(InvalidBundle):
                self.store.import_diagram(bundle)

        self.assertEqual(self.store.list_diagrams(), [])

    def test_imported_relations_with_missing_tables_are_purged(self):
        bundle = {
            "version": "1.0",
            "diagram": {
                "name": "Broken",
                "data": {
                    "tables": [{"id": "t1", "name": "a", "fields": []}],
                    "relations": [{"id": "r1", "fromTable": "t1", "toTable": "t9", "type": "one-to-one"}],
                },
            },
        }

        with self.assertLogs("ERDVault", level="WARNING"):
            result = self.store.import_diagram(bundle)

        self.assertEqual(self.store.load_diagram(result["id"])["model"].relations, [])


if __name__ == "__main__":
    unittest.main()
