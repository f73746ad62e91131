import tempfile
import unittest
from pathlib import Path
from unittest import mock

from erdvault.db import ERDVaultStore
from erdvault.model import Model


class DiagramSearchTests(unittest.TestCase):
    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.db_path = str(Path(self.temp_dir.name) / "erdvault.db")
        patcher = mock.patch("erdvault.db.get_db_path", return_value=self.db_path)
        self.addCleanup(patcher.stop)
        patcher.start()
        self.store = ERDVaultStore()

    def tearDown(self):
        self.temp_dir.cleanup()

    def _save(self, name, description="", tags=None):
        model = Model()
        model.create_table("t")
        return self.store.save_diagram(model, name=name, description=description, tags=tags or [])["id"]

    def test_query_and_tag_must_both_match(self):
        wanted = self._save("Invoice schema", tags=["billing", "finance"])
        by_description = self._save("Accounts", description="Monthly INVOICE runs", tags=["Billing"])
        self._save("Invoice sketch", tags=["draft"])
        self._save("Customers", tags=["billing"])

        items = self.store.search_diagrams("invoice", tags=["billing"])

        self.assertEqual({item["id"] for item in items}, {wanted, by_description})

    def test_tag_match_is_exact_not_substring(self):
        self._save("Ledger", tags=["billing-archive"])

        self.assertEqual(self.store.search_diagrams("", tags=["billing"]), [])

    def test_every_requested_tag_is_required(self):
        both = self._save("A", tags=["billing", "eu"])
        self._save("B", tags=["billing"])

        items = self.store.search_diagrams(tags=["EU", "billing"])

        self.assertEqual([item["id"] for item in items], [both])

    def test_query_uses_unicode_case_folding(self):
        street = self._save("STRASSE Verzeichnis")
        self._save("Weg Verzeichnis")

        items = self.store.search_diagrams("straße")

        self.assertEqual([item["id"] for item in items], [street])

    def test_empty_query_lists_everything_by_recency_with_limit(self):
        ids = [self._save(f"d{i}") for i in range(5)]

        items = self.store.search_diagrams("", limit=3)

        self.assertEqual([item["id"] for item in items], list(reversed(ids))[:3])
        self.assertNotIn("model", items[0])

    def test_comma_separated_tags_are_accepted(self):
        wanted = self._save("X", tags="billing, eu")

        self.assertEqual([item["id"] for item in self.store.search_diagrams(tags="eu,billing")], [wanted])
        self.assertEqual(self.store.list_diagrams()[0]["tags"], ["billing", "eu"])


if __name__ == "__main__":
    unittest.main()
