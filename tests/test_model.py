import unittest

from erdvault.errors import ConstraintViolation, NotFound
from erdvault.model import (
    MANY_TO_MANY,
    ONE_TO_MANY,
    ONE_TO_ONE,
    Field,
    Model,
    Relation,
    Table,
)


class ModelTableTests(unittest.TestCase):
    def test_create_table_uses_defaults(self):
        model = Model()

        table = model.create_table()

        self.assertEqual(table.name, "Table1")
        self.assertTrue(table.id.startswith("table_"))
        self.assertEqual(table.color, "#4A9EFF")
        self.assertEqual(len(table.fields), 1)
        pk = table.fields[0]
        self.assertEqual((pk.name, pk.type), ("id", "INT"))
        self.assertTrue(pk.is_primary_key and pk.is_auto_increment and pk.is_not_null)

    def test_table_may_have_zero_fields(self):
        model = Model()
        table = model.create_table("empty", fields=[])
        self.assertEqual(model.get_table(table.id).fields, [])

    def test_remove_table_cascades_to_relations(self):
        model = Model()
        users = model.create_table("users")
        posts = model.create_table("posts")
        tags = model.create_table("tags")
        r1 = model.create_relation(users.id, posts.id)
        r2 = model.create_relation(tags.id, posts.id, MANY_TO_MANY)
        r3 = model.create_relation(users.id, tags.id, ONE_TO_ONE)

        removed = model.remove_table(posts.id)

        self.assertEqual(sorted(removed), sorted([r1.id, r2.id]))
        self.assertEqual([r.id for r in model.relations], [r3.id])
        for relation in model.relations:
            self.assertTrue(model.has_table(relation.from_table))
            self.assertTrue(model.has_table(relation.to_table))

    def test_remove_unknown_table_raises_not_found(self):
        with self.assertRaises(NotFound):
            Model().remove_table("table_missing")

    def test_duplicate_table_copies_fields_with_offset(self):
        model = Model()
        source = model.create_table("users", x=100, y=50)

        copy = model.duplicate_table(source.id)

        self.assertNotEqual(copy.id, source.id)
        self.assertEqual(copy.name, "users_copy")
        self.assertEqual((copy.x, copy.y), (120, 70))
        self.assertEqual(copy.fields, source.fields)

    def test_rename_rejects_empty_name(self):
        model = Model()
        table = model.create_table("users")
        with self.assertRaises(ConstraintViolation):
            model.rename_table(table.id, "   ")
        self.assertEqual(model.get_table(table.id).name, "users")


class ModelFieldTests(unittest.TestCase):
    def setUp(self):
        self.model = Model()
        self.table = self.model.create_table("users")

    def test_add_field_appends_in_order(self):
        self.model.add_field(self.table.id, Field("email", "VARCHAR(255)", is_unique=True))
        self.model.add_field(self.table.id, Field("nick", "VARCHAR(20)"), index=1)

        names = [f.name for f in self.model.get_table(self.table.id).fields]

        self.assertEqual(names, ["id", "nick", "email"])

    def test_field_name_collision_after_sanitizing_is_rejected(self):
        self.model.add_field(self.table.id, Field("user_name", "TEXT"))

        with self.assertRaises(ConstraintViolation):
            self.model.add_field(self.table.id, Field("User Name", "TEXT"))

        self.assertEqual(len(self.model.get_table(self.table.id).fields), 2)

    def test_empty_field_name_is_rejected(self):
        with self.assertRaises(ConstraintViolation):
            self.model.add_field(self.table.id, Field("  ", "TEXT"))

    def test_update_field_by_index(self):
        updated = self.model.update_field(self.table.id, 0, type="BIGINT", comment="surrogate key")

        self.assertEqual(updated.type, "BIGINT")
        self.assertEqual(self.model.get_table(self.table.id).fields[0].comment, "surrogate key")
        self.assertTrue(self.model.get_table(self.table.id).fields[0].is_primary_key)

    def test_field_index_out_of_range(self):
        with self.assertRaises(ConstraintViolation):
            self.model.update_field(self.table.id, 5, type="TEXT")
        with self.assertRaises(ConstraintViolation):
            self.model.remove_field(self.table.id, -1)

    def test_remove_field_returns_removed(self):
        removed = self.model.remove_field(self.table.id, 0)
        self.assertEqual(removed.name, "id")
        self.assertEqual(self.model.get_table(self.table.id).fields, [])


class ModelRelationTests(unittest.TestCase):
    def setUp(self):
        self.model = Model()
        self.a = self.model.create_table("a")
        self.b = self.model.create_table("b")

    def test_cardinalities_follow_type(self):
        relation = self.model.create_relation(self.a.id, self.b.id, ONE_TO_MANY)
        self.assertEqual((relation.from_cardinality, relation.to_cardinality), ("1", "M"))
        self.assertEqual(relation.color, "#888")
        self.assertEqual(relation.name, "Relation 1")

        relation = self.model.set_relation_type(relation.id, MANY_TO_MANY)
        self.assertEqual((relation.from_cardinality, relation.to_cardinality), ("M", "M"))
        self.assertEqual(self.model.get_relation(relation.id).type, MANY_TO_MANY)

    def test_missing_endpoint_is_rejected_and_model_unchanged(self):
        before = self.model.to_dict()

        with self.assertRaises(ConstraintViolation):
            self.model.add_relation(Relation(id="rel_x", from_table=self.a.id, to_table="table_nope"))

        self.assertEqual(self.model.to_dict(), before)

    def test_one_relation_per_unordered_pair(self):
        self.model.create_relation(self.a.id, self.b.id)

        self.assertFalse(self.model.can_create_relation(self.b.id, self.a.id))
        with self.assertRaises(ConstraintViolation):
            self.model.create_relation(self.b.id, self.a.id, ONE_TO_ONE)

    def test_self_relation_is_rejected(self):
        self.assertFalse(self.model.can_create_relation(self.a.id, self.a.id))
        with self.assertRaises(ConstraintViolation):
            self.model.create_relation(self.a.id, self.a.id)

    def test_unknown_type_is_rejected(self):
        with self.assertRaises(ConstraintViolation):
            self.model.create_relation(self.a.id, self.b.id, "many-to-one")

    def test_relation_stats(self):
        c = self.model.create_table("c")
        self.model.create_relation(self.a.id, self.b.id, ONE_TO_ONE)
        self.model.create_relation(self.a.id, c.id, MANY_TO_MANY)

        stats = self.model.relation_stats()

        self.assertEqual(stats["total"], 2)
        self.assertEqual(stats[ONE_TO_ONE], 1)
        self.assertEqual(stats[ONE_TO_MANY], 0)
        self.assertEqual(stats[MANY_TO_MANY], 1)
        self.assertEqual(self.model.stats(), {"tables": 3, "relations": 2, "fields": 3})


class ModelSerializationTests(unittest.TestCase):
    def test_to_dict_uses_camel_case_keys(self):
        model = Model()
        model.add_table(
            Table(
                id="table_users",
                name="users",
                fields=[Field("status", "TEXT", is_not_null=True, default_value="active")],
                x=10,
                y=20,
            )
        )

        data = model.to_dict()

        table = data["tables"][0]
        self.assertEqual(table["position"], {"x": 10, "y": 20})
        self.assertEqual(
            table["fields"][0],
            {
                "name": "status",
                "type": "TEXT",
                "isPrimaryKey": False,
                "isForeignKey": False,
                "isAutoIncrement": False,
                "isUnique": False,
                "isNotNull": True,
                "defaultValue": "active",
            },
        )
        self.assertEqual(Model.from_dict(data), model)

    def test_from_dict_purges_relations_with_missing_endpoints(self):
        data = {
            "tables": [{"id": "t1", "name": "t1", "fields": []}],
            "relations": [
                {"id": "rel_dangling", "fromTable": "t1", "toTable": "t_gone", "type": "one-to-many"},
            ],
        }

        with self.assertLogs("ERDVault", level="WARNING"):
            model = Model.from_dict(data)

        self.assertEqual(model.relations, [])
        self.assertTrue(model.has_table("t1"))

    def test_from_dict_reads_legacy_pair_lists(self):
        data = {
            "tables": [
                ["t1", {"name": "orders", "fields": [{"name": "id", "type": "INT", "isPrimaryKey": True}]}],
                ["t2", {"name": "items", "fields": []}],
            ],
            "relations": [["r1", {"fromTable": "t1", "toTable": "t2", "type": "one-to-one"}]],
        }

        model = Model.from_dict(data)

        self.assertEqual([t.id for t in model.tables], ["t1", "t2"])
        self.assertEqual(model.get_relation("r1").type, ONE_TO_ONE)
        self.assertTrue(model.get_table("t1").fields[0].is_primary_key)

    def test_from_dict_rejects_non_object(self):
        with self.assertRaises(ConstraintViolation):
            Model.from_dict(["not", "a", "model"])

    def test_from_dict_rejects_scalar_collections(self):
        bad = [
            {"tables": 5},
            {"relations": True},
            {"tables": [{"id": "t1", "name": "t", "fields": 5}]},
        ]
        for data in bad:
            with self.subTest(data=data), self.assertRaises(ConstraintViolation):
                Model.from_dict(data)

    def test_from_dict_accepts_missing_collections(self):
        model = Model.from_dict({"tables": None, "relations": None})
        self.assertEqual((model.tables, model.relations), ([], []))

    def test_copy_is_independent(self):
        model = Model()
        table = model.create_table("users")
        other = model.copy()

        other.rename_table(table.id, "accounts")
        other.add_field(table.id, Field("email", "TEXT"))

        self.assertEqual(model.get_table(table.id).name, "users")
        self.assertEqual(len(model.get_table(table.id).fields), 1)


if __name__ == "__main__":
    unittest.main()
