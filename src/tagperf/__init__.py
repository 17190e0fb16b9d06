from tagperf._version import VERSION, __version__
from tagperf.domain import Entity, Tag, TagValue, generate_entities, generate_tags, iter_entities
from tagperf.errors import (
    BatchWriteFailure,
    DuplicateTag,
    IDResolutionFailure,
    PredicateTranslationMismatch,
    QueryExecutionFailure,
    SchemaTeardownFailure,
    SetupFailure,
    TagPerfError,
)
from tagperf.predicate import Operator, Predicate, TagCondition, single_tag_predicate, three_tag_predicate

__all__ = [
    "VERSION",
    "__version__",
    "BatchWriteFailure",
    "DuplicateTag",
    "Entity",
    "IDResolutionFailure",
    "Operator",
    "Predicate",
    "PredicateTranslationMismatch",
    "QueryExecutionFailure",
    "SchemaTeardownFailure",
    "SetupFailure",
    "Tag",
    "TagCondition",
    "TagPerfError",
    "TagValue",
    "generate_entities",
    "generate_tags",
    "iter_entities",
    "single_tag_predicate",
    "three_tag_predicate",
]
