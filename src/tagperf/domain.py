"""Tagged entities and the synthetic dataset they are generated from."""

from __future__ import annotations

import math
import random
from dataclasses import dataclass
from typing import Iterable, Sequence

TagScalar = str | int | float

ENTITY_NAME_PREFIX = "cat"
DEFAULT_COLOR_VALUES = ("brown", "orange", "black")
DEFAULT_AGE_RANGE = (1, 15)
DEFAULT_DEMEANOR_VALUES = ("grumpy", "friendly")


@dataclass(frozen=True)
class Tag:
    """A named attribute together with the domain of values it may take."""

    name: str
    values: tuple[TagScalar, ...]

    def __post_init__(self):
        if not str(self.name).strip():
            raise ValueError("tag name must be non-empty")
        object.__setattr__(self, "values", tuple(self.values))
        for value in self.values:
            if isinstance(value, float) and not math.isfinite(value):
                raise ValueError(f"tag {self.name!r} has non-finite value {value!r}")


@dataclass(frozen=True)
class TagValue:
    name: str
    value: TagScalar


@dataclass(frozen=True)
class Entity:
    name: str
    tags: tuple[TagValue, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "tags", tuple(self.tags))

    def tag_map(self) -> dict[str, TagScalar]:
        return {tag.name: tag.value for tag in self.tags}

    def value_of(self, name: str, default=None):
        for tag in self.tags:
            if tag.name == name:
                return tag.value
        return default


def entity_name(index: int) -> str:
    return f"{ENTITY_NAME_PREFIX}-{int(index)}"


def generate_tags() -> list[Tag]:
    low, high = DEFAULT_AGE_RANGE
    return [
        Tag("color", DEFAULT_COLOR_VALUES),
        Tag("age", tuple(range(low, high + 1))),
        Tag("demeanor", DEFAULT_DEMEANOR_VALUES),
    ]


def _pick_tag_values(tags: Sequence[Tag], rng: random.Random) -> tuple[TagValue, ...]:
    picked: list[TagValue] = []
    for tag in tags:
        if not tag.values:
            continue
        # One extra slot stands for "entity does not carry this tag".
        choice = rng.randrange(len(tag.values) + 1)
        if choice == len(tag.values):
            continue
        picked.append(TagValue(tag.name, tag.values[choice]))
    return tuple(picked)


def iter_entities(
    tags: Sequence[Tag],
    count: int,
    *,
    seed: int | None = None,
    rng: random.Random | None = None,
) -> Iterable[Entity]:
    if count < 0:
        raise ValueError("count must be >= 0")
    names = [tag.name for tag in tags]
    if len(set(names)) != len(names):
        raise ValueError("tag names must be unique")
    generator = rng if rng is not None else random.Random(seed)
    for index in range(count):
        yield Entity(entity_name(index), _pick_tag_values(tags, generator))


def generate_entities(
    tags: Sequence[Tag],
    count: int,
    *,
    seed: int | None = None,
    rng: random.Random | None = None,
) -> list[Entity]:
    return list(iter_entities(tags, count, seed=seed, rng=rng))
