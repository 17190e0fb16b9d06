import unittest

import psycopg

from tagperf.domain import Tag
from tagperf.errors import DuplicateTag, IDResolutionFailure
from tagperf.ids import SurrogateIdResolver, tag_value_key
from tests.fakes import FakeConnection

TAGS = [Tag("color", ("brown", "black")), Tag("age", (1, 2, 3))]


def _schema(conn):
    with conn.cursor() as cursor:
        cursor.execute("CREATE TABLE tag_defs_a(id SERIAL PRIMARY KEY, name VARCHAR NOT NULL)")
        cursor.execute("CREATE TABLE tag_values_a(id SERIAL PRIMARY KEY, tag_id INTEGER NOT NULL, value VARCHAR NOT NULL)")


class _ScriptedCursor:
    def __init__(self, rows):
        self._rows = rows
        self.executed = []

    def execute(self, query, params=None):
        self.executed.append((query, params))

    def fetchall(self):
        return list(self._rows)


class TestSurrogateIdResolver(unittest.TestCase):
    def setUp(self):
        self.conn = FakeConnection()
        _schema(self.conn)
        self.cursor = self.conn.cursor()
        self.resolver = SurrogateIdResolver(
            self.cursor,
            backend="array_column",
            tags_table="tag_defs_a",
            values_table="tag_values_a",
        )

    def test_resolve_tags_returns_database_ids(self):
        tag_ids = self.resolver.resolve_tags(TAGS)
        self.assertEqual(tag_ids, {"color": 1, "age": 2})
        stored = self.conn.rows("tag_defs_a")
        self.assertEqual([(row["id"], row["name"]) for row in stored], [(1, "color"), (2, "age")])
        # One round trip for the whole tag set.
        self.assertEqual(len(self.conn.statements("INSERT INTO tag_defs_a")), 1)

    def test_resolve_tag_values_covers_every_domain_value(self):
        tag_ids = self.resolver.resolve_tags(TAGS)
        value_ids = self.resolver.resolve_tag_values(TAGS, tag_ids)
        expected_keys = {tag_value_key(tag.name, value) for tag in TAGS for value in tag.values}
        self.assertEqual(set(value_ids), expected_keys)
        self.assertEqual(len(set(value_ids.values())), len(expected_keys))
        stored = {(row["tag_id"], row["value"]): row["id"] for row in self.conn.rows("tag_values_a")}
        for (name, value), ident in value_ids.items():
            self.assertEqual(stored[(tag_ids[name], value)], ident)

    def test_numeric_values_are_keyed_as_text(self):
        tag_ids = self.resolver.resolve_tags(TAGS)
        value_ids = self.resolver.resolve_tag_values(TAGS, tag_ids)
        self.assertIn(("age", "2"), value_ids)
        self.assertEqual(tag_value_key("age", 2), ("age", "2"))

    def test_duplicate_in_input_raises_before_any_write(self):
        with self.assertRaises(DuplicateTag) as ctx:
            self.resolver.resolve_tags([Tag("color", ("a",)), Tag("color", ("b",))])
        self.assertEqual(ctx.exception.tag_name, "color")
        self.assertEqual(ctx.exception.backend, "array_column")
        self.assertEqual(self.conn.statements("INSERT"), [])

    def test_stale_registration_surfaces_as_duplicate_tag(self):
        self.resolver.resolve_tags(TAGS)
        with self.assertRaises(DuplicateTag) as ctx:
            self.resolver.resolve_tags(TAGS)
        self.assertIsInstance(ctx.exception.cause, psycopg.errors.UniqueViolation)
        self.assertEqual(ctx.exception.phase, "setup")

    def test_driver_error_becomes_id_resolution_failure(self):
        self.conn.fail_when("INSERT INTO tag_defs_a", psycopg.OperationalError("connection lost"))
        with self.assertRaises(IDResolutionFailure) as ctx:
            self.resolver.resolve_tags(TAGS)
        self.assertNotIsInstance(ctx.exception, DuplicateTag)

    def test_empty_tag_set(self):
        self.assertEqual(self.resolver.resolve_tags([]), {})
        self.assertEqual(self.resolver.resolve_tag_values([], {}), {})

    def test_lookup_reloads_registered_values(self):
        self.conn.script("SELECT v.id", [(10, "color", "brown"), (11, "age", "3")])
        self.assertEqual(self.resolver.lookup_tag_value_ids(), {("color", "brown"): 10, ("age", "3"): 11})

    def test_values_need_a_table(self):
        resolver = SurrogateIdResolver(self.cursor, backend="join_table", tags_table="tag_defs_a")
        with self.assertRaises(IDResolutionFailure):
            resolver.resolve_tag_values(TAGS, {"color": 1, "age": 2})


class TestResolverConsistencyChecks(unittest.TestCase):
    def test_short_returning_set_is_rejected(self):
        resolver = SurrogateIdResolver(_ScriptedCursor([(1, "color")]), backend="join_table", tags_table="tag_defs")
        with self.assertRaises(IDResolutionFailure):
            resolver.resolve_tags(TAGS)

    def test_shared_identifier_is_rejected(self):
        resolver = SurrogateIdResolver(
            _ScriptedCursor([(1, "color"), (1, "age")]),
            backend="join_table",
            tags_table="tag_defs",
        )
        with self.assertRaises(IDResolutionFailure):
            resolver.resolve_tags(TAGS)

    def test_unknown_value_pair_is_rejected(self):
        resolver = SurrogateIdResolver(
            _ScriptedCursor([(1, 1, "purple")]),
            backend="array_column",
            tags_table="tag_defs_a",
            values_table="tag_values_a",
        )
        with self.assertRaises(IDResolutionFailure):
            resolver.resolve_tag_values([Tag("color", ("brown",))], {"color": 1})
