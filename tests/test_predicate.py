import unittest

import pytest

from tagperf.domain import Entity, TagValue
from tagperf.predicate import (
    DEFAULT_AGE_THRESHOLD,
    NUMERIC_TEXT_PATTERN,
    SINGLE_TAG_LABEL,
    THREE_TAG_LABEL,
    Operator,
    Predicate,
    TagCondition,
    as_number,
    eq,
    ge,
    is_numeric,
    single_tag_predicate,
    standard_predicates,
    three_tag_predicate,
)


def _cat(name="cat-0", **tags):
    return Entity(name, [TagValue(key, value) for key, value in tags.items()])


class TestOperators(unittest.TestCase):
    def test_symbols(self):
        self.assertEqual(Operator.EQ.symbol, "=")
        self.assertEqual(Operator.GE.symbol, ">=")
        self.assertFalse(Operator.EQ.is_range)
        self.assertTrue(Operator.LT.is_range)

    def test_condition_accepts_operator_value(self):
        cond = TagCondition("age", "ge", 3)
        self.assertIs(cond.op, Operator.GE)

    def test_range_condition_needs_number(self):
        with self.assertRaises(ValueError):
            TagCondition("age", Operator.GT, "ten")
        with self.assertRaises(ValueError):
            TagCondition("age", Operator.GT, True)

    def test_range_never_matches_non_numeric_value(self):
        cond = ge("age", 3)
        self.assertFalse(cond.accepts("12"))
        self.assertFalse(cond.accepts(None))
        self.assertTrue(cond.accepts(3))
        self.assertTrue(cond.accepts(3.5))


class TestNumbers(unittest.TestCase):
    def test_is_numeric(self):
        self.assertTrue(is_numeric(1))
        self.assertTrue(is_numeric(1.5))
        self.assertFalse(is_numeric(True))
        self.assertFalse(is_numeric("1"))

    def test_as_number(self):
        self.assertEqual(as_number("12"), 12)
        self.assertEqual(as_number("1.5"), 1.5)
        self.assertEqual(as_number("1e-05"), 1e-05)
        self.assertEqual(as_number("1e+16"), 1e16)
        self.assertEqual(as_number(7), 7)
        self.assertIsNone(as_number("brown"))
        self.assertIsNone(as_number(None))

    def test_as_number_only_reads_numeric_text(self):
        for text in (" 12 ", "1_000", "+5", "inf", "nan", "1.", ".5", "12\n"):
            with self.subTest(text=text):
                self.assertIsNone(as_number(text))

    def test_float_text_is_numeric_text(self):
        for value in (1e-05, 2.5, 1e16, -3.25e-7, 0.0, 10.0):
            with self.subTest(value=value):
                self.assertRegex(str(value), NUMERIC_TEXT_PATTERN)
                self.assertEqual(as_number(str(value)), value)


class TestPredicate(unittest.TestCase):
    def test_empty_predicate_rejected(self):
        with self.assertRaises(ValueError):
            Predicate("nothing", ())

    def test_single_tag_shape(self):
        predicate = single_tag_predicate()
        self.assertEqual(predicate.label, SINGLE_TAG_LABEL)
        self.assertEqual(predicate.conditions, (eq("color", "brown"),))

    def test_three_tag_shape(self):
        predicate = three_tag_predicate()
        self.assertEqual(predicate.label, THREE_TAG_LABEL)
        self.assertEqual(predicate.tag_names(), ("color", "age", "demeanor"))
        self.assertEqual(len(predicate.equalities), 2)
        self.assertEqual(predicate.ranges, (ge("age", DEFAULT_AGE_THRESHOLD),))

    def test_missing_tag_never_matches(self):
        predicate = three_tag_predicate()
        self.assertFalse(predicate.matches(_cat(color="brown", demeanor="grumpy")))

    def test_describe(self):
        self.assertEqual(three_tag_predicate(12).describe(), "color = 'brown' AND age >= 12 AND demeanor = 'grumpy'")

    def test_tag_names_deduplicated(self):
        predicate = Predicate("band", (ge("age", 3), TagCondition("age", Operator.LT, 9)))
        self.assertEqual(predicate.tag_names(), ("age",))
        self.assertTrue(predicate.matches(_cat(age=5)))
        self.assertFalse(predicate.matches(_cat(age=9)))


@pytest.mark.parametrize(
    ("age", "expected"),
    [(DEFAULT_AGE_THRESHOLD - 1, False), (DEFAULT_AGE_THRESHOLD, True), (DEFAULT_AGE_THRESHOLD + 1, True)],
)
def test_age_threshold_is_inclusive(age, expected):
    cat = _cat(color="brown", age=age, demeanor="grumpy")
    assert three_tag_predicate().matches(cat) is expected


def test_count_matches():
    cats = [
        _cat("cat-0", color="brown", age=12, demeanor="grumpy"),
        _cat("cat-1", color="brown", age=2, demeanor="grumpy"),
        _cat("cat-2", color="black", age=12, demeanor="grumpy"),
        _cat("cat-3", color="brown"),
    ]
    single, three = standard_predicates()
    assert single.count_matches(cats) == 3
    assert three.count_matches(cats) == 1
