import re
import unittest

import psycopg
import pytest

from tagperf.backends.array_column import ArrayColumnBackend, ArrayMatch, compile_array_match, encode_entity
from tagperf.domain import Entity, Tag, TagValue, generate_entities, generate_tags
from tagperf.errors import IDResolutionFailure, QueryExecutionFailure
from tagperf.predicate import Operator, Predicate, TagCondition, eq, ge, single_tag_predicate, three_tag_predicate
from tests.fakes import FakeConnection


def _loaded_backend(entities, tags, **kwargs):
    conn = FakeConnection()
    backend = ArrayColumnBackend(conn, **kwargs)
    backend.setup(entities, tags)
    return conn, backend


def _stored_matches(conn, backend, predicate):
    match = compile_array_match(predicate, backend.tag_value_ids)
    return sum(1 for row in conn.rows("entities_a") if match.matches(row["tag_ids"]))


_ARRAY_SELECT_RE = re.compile(r"SELECT name FROM entities_a WHERE (.*?)(?: LIMIT %s)?(?:\) AS matched)?$")


def _answer_from_stored_arrays(conn):
    """Evaluate rendered ``@>`` / ``&&`` / ``FALSE`` selects against the stored rows."""

    def answer(sql, params):
        bound = list(params)
        checks = []
        for clause in _ARRAY_SELECT_RE.search(sql).group(1).split(" AND "):
            if clause == "FALSE":
                checks.append(lambda ids: False)
            elif "@>" in clause:
                checks.append(lambda ids, wanted=set(bound.pop(0)): wanted.issubset(ids))
            else:
                checks.append(lambda ids, group=set(bound.pop(0)): bool(group.intersection(ids)))
        names = [row["name"] for row in conn.rows("entities_a") if all(check(row["tag_ids"]) for check in checks)]
        if bound:
            names = names[: bound.pop(0)]
        if sql.startswith("SELECT COUNT(*)"):
            return [(len(names),)]
        return [(name,) for name in names]

    return answer


def _queryable_backend(entities, tags):
    conn, backend = _loaded_backend(entities, tags)
    conn.script("FROM entities_a WHERE", _answer_from_stored_arrays(conn))
    return conn, backend


def _boundary_cats(threshold):
    return [
        Entity("cat-0", [TagValue("color", "brown"), TagValue("age", threshold), TagValue("demeanor", "grumpy")]),
        Entity("cat-1", [TagValue("color", "brown"), TagValue("age", threshold - 1), TagValue("demeanor", "grumpy")]),
        Entity("cat-2", [TagValue("color", "brown"), TagValue("age", threshold), TagValue("demeanor", "friendly")]),
    ]


@pytest.mark.parametrize("seed", [1, 2, 3, 4])
@pytest.mark.parametrize("threshold", [1, 9, 10, 15, 16])
def test_stored_arrays_answer_like_the_reference(seed, threshold):
    tags = generate_tags()
    entities = generate_entities(tags, 400, seed=seed)
    conn, backend = _loaded_backend(entities, tags)

    for predicate in (single_tag_predicate(), three_tag_predicate(threshold)):
        assert _stored_matches(conn, backend, predicate) == predicate.count_matches(entities)


def test_arrays_hold_one_id_per_carried_tag():
    tags = generate_tags()
    entities = generate_entities(tags, 60, seed=12)
    conn, backend = _loaded_backend(entities, tags)
    ids_to_pair = {ident: pair for pair, ident in backend.tag_value_ids.items()}

    stored = {row["name"]: row["tag_ids"] for row in conn.rows("entities_a")}
    for entity in entities:
        pairs = {ids_to_pair[ident] for ident in stored[entity.name]}
        assert pairs == {(tag.name, str(tag.value)) for tag in entity.tags}
        assert stored[entity.name] == sorted(stored[entity.name])


@pytest.mark.parametrize("count_mode", ["rows", "server"])
@pytest.mark.parametrize(
    "predicate",
    [Predicate("purple", (eq("color", "purple"),)), three_tag_predicate(16)],
    ids=["unregistered-value", "empty-range"],
)
def test_predicate_matching_nothing_counts_zero(predicate, count_mode):
    tags = generate_tags()
    conn, backend = _queryable_backend(generate_entities(tags, 200, seed=5), tags)

    result = backend.run_query(predicate, count_mode=count_mode)

    assert result.count == 0
    assert any("WHERE FALSE" in sql for sql, _params in conn.executed)


@pytest.mark.parametrize("count_mode", ["rows", "server"])
@pytest.mark.parametrize("threshold", [2, 10, 15])
def test_threshold_is_inclusive(threshold, count_mode):
    _conn, backend = _queryable_backend(_boundary_cats(threshold), generate_tags())

    assert backend.run_query(three_tag_predicate(threshold), count_mode=count_mode).count == 1
    assert backend.run_query(three_tag_predicate(threshold - 1), count_mode=count_mode).count == 2
    assert backend.run_query(three_tag_predicate(threshold + 1), count_mode=count_mode).count == 0


class TestCompileArrayMatch(unittest.TestCase):
    VALUE_IDS = {
        ("color", "brown"): 1,
        ("color", "black"): 2,
        ("age", "9"): 3,
        ("age", "10"): 4,
        ("age", "11"): 5,
        ("demeanor", "grumpy"): 6,
    }

    def test_equalities_become_containment(self):
        match = compile_array_match(single_tag_predicate(), self.VALUE_IDS)
        self.assertEqual(match, ArrayMatch(contains=(1,), overlaps=()))

    def test_range_becomes_overlap_group(self):
        match = compile_array_match(three_tag_predicate(10), self.VALUE_IDS)
        self.assertEqual(match.contains, (1, 6))
        self.assertEqual(match.overlaps, ((4, 5),))
        self.assertTrue(match.matches([1, 4, 6]))
        self.assertFalse(match.matches([1, 3, 6]))
        self.assertFalse(match.matches([1, 4]))

    def test_unregistered_equality_is_unsatisfiable(self):
        predicate = Predicate("purple", (eq("color", "purple"),))
        match = compile_array_match(predicate, self.VALUE_IDS)
        self.assertFalse(match.satisfiable)
        self.assertFalse(match.matches([1, 2, 3, 4, 5, 6]))

    def test_empty_range_is_unsatisfiable(self):
        predicate = Predicate("old", (ge("age", 100),))
        self.assertFalse(compile_array_match(predicate, self.VALUE_IDS).satisfiable)

    def test_range_skips_non_numeric_values(self):
        value_ids = dict(self.VALUE_IDS)
        value_ids[("age", "unknown")] = 9
        predicate = Predicate("young", (TagCondition("age", Operator.LT, 10),))
        self.assertEqual(compile_array_match(predicate, value_ids).overlaps, ((3,),))


class TestRender(unittest.TestCase):
    def test_unsatisfiable_renders_false(self):
        query = ArrayColumnBackend.render(ArrayMatch(satisfiable=False))
        self.assertEqual(query.text, "SELECT name FROM entities_a WHERE FALSE")
        self.assertEqual(query.params, ())

    def test_contains_and_overlaps(self):
        query = ArrayColumnBackend.render(ArrayMatch(contains=(1, 6), overlaps=((4, 5),)), limit=10)
        self.assertEqual(
            query.text,
            "SELECT name FROM entities_a WHERE tag_ids @> %s::integer[] AND tag_ids && %s::integer[] LIMIT %s",
        )
        self.assertEqual(query.params, ([1, 6], [4, 5], 10))

    def test_range_only_never_emits_empty_containment(self):
        query = ArrayColumnBackend.render(ArrayMatch(overlaps=((4,),)))
        self.assertNotIn("@>", query.text)


class TestArrayColumnBackend(unittest.TestCase):
    def test_encode_rejects_unregistered_value(self):
        entity = Entity("cat-0", [TagValue("color", "purple")])
        with self.assertRaises(IDResolutionFailure) as ctx:
            encode_entity(entity, {("color", "brown"): 1}, backend="array_column")
        self.assertEqual(ctx.exception.backend, "array_column")

    def test_setup_with_value_outside_domain_fails(self):
        tags = [Tag("color", ("brown",))]
        conn = FakeConnection()
        backend = ArrayColumnBackend(conn)
        with self.assertRaises(IDResolutionFailure):
            backend.setup([Entity("cat-0", [TagValue("color", "purple")])], tags)
        self.assertIsNone(backend.tag_value_ids)

    def test_query_without_setup_reloads_ids(self):
        conn = FakeConnection()
        conn.script("SELECT v.id", [(1, "color", "brown")])
        conn.script("FROM entities_a", [("cat-0",), ("cat-3",)])
        backend = ArrayColumnBackend(conn)

        result = backend.run_query(single_tag_predicate())

        self.assertEqual(result.count, 2)
        self.assertEqual(backend.tag_value_ids, {("color", "brown"): 1})
        self.assertIn(("SELECT name FROM entities_a WHERE tag_ids @> %s::integer[]", ([1],)), conn.executed)

    def test_lookup_failure_is_a_query_failure(self):
        conn = FakeConnection()
        conn.fail_when("SELECT v.id", psycopg.errors.UndefinedTable("relation does not exist"))
        with self.assertRaises(QueryExecutionFailure) as ctx:
            ArrayColumnBackend(conn).run_query(single_tag_predicate())
        self.assertEqual(ctx.exception.backend, "array_column")

    def test_setup_creates_gin_index(self):
        tags = generate_tags()
        conn, _backend = _loaded_backend(generate_entities(tags, 5, seed=1), tags)
        self.assertEqual(conn.indexes["entities_a_tag_ids"], "entities_a")
        self.assertIn(
            "CREATE INDEX entities_a_tag_ids ON entities_a USING GIN(tag_ids)",
            conn.statements("CREATE INDEX"),
        )
