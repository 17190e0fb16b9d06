from __future__ import annotations

import enum
import operator
import re
from dataclasses import dataclass
from numbers import Real
from typing import Iterable

from tagperf.domain import Entity

DEFAULT_AGE_THRESHOLD = 10
SINGLE_TAG_LABEL = "1 tag"
THREE_TAG_LABEL = "3 tags"


class Operator(enum.Enum):
    EQ = "eq"
    GT = "gt"
    GE = "ge"
    LT = "lt"
    LE = "le"

    @property
    def is_range(self) -> bool:
        return self is not Operator.EQ

    @property
    def symbol(self) -> str:
        return _SYMBOLS[self]

    def compare(self, left, right) -> bool:
        return _COMPARATORS[self](left, right)


_SYMBOLS = {
    Operator.EQ: "=",
    Operator.GT: ">",
    Operator.GE: ">=",
    Operator.LT: "<",
    Operator.LE: "<=",
}
_COMPARATORS = {
    Operator.EQ: operator.eq,
    Operator.GT: operator.gt,
    Operator.GE: operator.ge,
    Operator.LT: operator.lt,
    Operator.LE: operator.le,
}


# Text a value must match to be read as a number. Shared by every layout that
# stores tag values as text, in Python and as a PostgreSQL regex.
NUMERIC_TEXT_PATTERN = r"^-?[0-9]+([.][0-9]+)?([eE][-+]?[0-9]+)?$"
_NUMERIC_TEXT = re.compile(NUMERIC_TEXT_PATTERN)


def is_numeric(value) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def as_number(value):
    """Return ``value`` as an int/float, or None when it is not numeric.

    Backends that persist tag values as text hand them back as strings, so
    ``"12"``, ``"1.5"`` and ``"1e-05"`` are accepted as well. Only text that
    matches ``NUMERIC_TEXT_PATTERN`` counts; ``" 12 "``, ``"+5"`` and
    ``"inf"`` do not.
    """
    if is_numeric(value):
        return value
    if isinstance(value, str) and _NUMERIC_TEXT.fullmatch(value):
        try:
            return int(value)
        except ValueError:
            return float(value)
    return None


@dataclass(frozen=True)
class TagCondition:
    name: str
    op: Operator
    value: object

    def __post_init__(self):
        if not isinstance(self.op, Operator):
            object.__setattr__(self, "op", Operator(self.op))
        if self.op.is_range and not is_numeric(self.value):
            raise ValueError(f"range condition on {self.name!r} needs a numeric value, got {self.value!r}")

    def accepts(self, value) -> bool:
        if self.op is Operator.EQ:
            return value == self.value
        return is_numeric(value) and self.op.compare(value, self.value)

    def describe(self) -> str:
        return f"{self.name} {self.op.symbol} {self.value!r}"


@dataclass(frozen=True)
class Predicate:
    """A conjunction of tag conditions, all of which must hold."""

    label: str
    conditions: tuple[TagCondition, ...]

    def __post_init__(self):
        conditions = tuple(self.conditions)
        if not conditions:
            raise ValueError("a predicate needs at least one condition")
        object.__setattr__(self, "conditions", conditions)

    @property
    def equalities(self) -> tuple[TagCondition, ...]:
        return tuple(cond for cond in self.conditions if cond.op is Operator.EQ)

    @property
    def ranges(self) -> tuple[TagCondition, ...]:
        return tuple(cond for cond in self.conditions if cond.op.is_range)

    def tag_names(self) -> tuple[str, ...]:
        seen: dict[str, None] = {}
        for cond in self.conditions:
            seen.setdefault(cond.name, None)
        return tuple(seen)

    def matches(self, entity: Entity) -> bool:
        values = entity.tag_map()
        for cond in self.conditions:
            if cond.name not in values:
                return False
            if not cond.accepts(values[cond.name]):
                return False
        return True

    def count_matches(self, entities: Iterable[Entity]) -> int:
        return sum(1 for entity in entities if self.matches(entity))

    def describe(self) -> str:
        return " AND ".join(cond.describe() for cond in self.conditions)


def eq(name: str, value) -> TagCondition:
    return TagCondition(name, Operator.EQ, value)


def ge(name: str, value) -> TagCondition:
    return TagCondition(name, Operator.GE, value)


def single_tag_predicate() -> Predicate:
    return Predicate(SINGLE_TAG_LABEL, (eq("color", "brown"),))


def three_tag_predicate(age_threshold: int = DEFAULT_AGE_THRESHOLD) -> Predicate:
    return Predicate(
        THREE_TAG_LABEL,
        (
            eq("color", "brown"),
            ge("age", age_threshold),
            eq("demeanor", "grumpy"),
        ),
    )


def standard_predicates(age_threshold: int = DEFAULT_AGE_THRESHOLD) -> tuple[Predicate, Predicate]:
    return single_tag_predicate(), three_tag_predicate(age_threshold)
