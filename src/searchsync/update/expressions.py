"""Portable description of the search-token transform.

Update pipelines run inside the store, so the tokenizer has to travel with
them as data. ``SearchTextExpression`` spells the transform out as a small
sequence of steps that can be compiled to a store's native expression
language (``to_mongo``) or interpreted host-side (``evaluate``).
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Mapping, Tuple, Union

from searchsync.utils.paths import MISSING, deep_get
from searchsync.utils.text import (
    ELISION_PATTERN,
    LOWERCASE_PAIRS,
    MIN_PREFIX_LENGTH,
    PUNCTUATION,
    STOP_WORDS,
    WORD_PATTERN,
)


@dataclass(frozen=True, slots=True)
class Lowercase:
    """ASCII lower-casing plus the given non-ASCII letter pairs."""

    pairs: Tuple[Tuple[str, str], ...] = LOWERCASE_PAIRS


@dataclass(frozen=True, slots=True)
class SplitWhitespace:
    pattern: str = WORD_PATTERN


@dataclass(frozen=True, slots=True)
class DropWords:
    words: FrozenSet[str]


@dataclass(frozen=True, slots=True)
class StripChars:
    chars: str


@dataclass(frozen=True, slots=True)
class StripElision:
    pattern: str


@dataclass(frozen=True, slots=True)
class Prefixes:
    min_length: int


@dataclass(frozen=True, slots=True)
class Dedupe:
    pass


@dataclass(frozen=True, slots=True)
class Join:
    separator: str = " "


Step = Union[Lowercase, SplitWhitespace, DropWords, StripChars, StripElision, Prefixes, Dedupe, Join]

DEFAULT_STEPS: Tuple[Step, ...] = (
    Lowercase(),
    SplitWhitespace(),
    DropWords(STOP_WORDS),
    StripChars(PUNCTUATION),
    StripElision(ELISION_PATTERN),
    Prefixes(MIN_PREFIX_LENGTH),
    DropWords(STOP_WORDS),
    Dedupe(),
    Join(" "),
)


@dataclass(frozen=True, slots=True)
class SearchTextExpression:
    """Search tokens of the value referenced by ``source``.

    ``source`` is a field reference (``"$details.comment"``) or a variable
    reference (``"$$elemt.description"``).
    """

    source: str
    steps: Tuple[Step, ...] = field(default=DEFAULT_STEPS)


def search_text_expression(source: str) -> SearchTextExpression:
    if not source.startswith("$"):
        source = f"${source}"
    return SearchTextExpression(source=source)


# ---------------------------------------------------------------------------
# MongoDB aggregation expression compiler
# ---------------------------------------------------------------------------


def to_mongo(expression: SearchTextExpression) -> Dict[str, Any]:
    """Compile ``expression`` to a MongoDB aggregation expression."""
    value: Any = expression.source
    for step in expression.steps:
        value = _compile_step(step, value)
    return {
        "$cond": {
            "if": {"$eq": [{"$type": expression.source}, "string"]},
            "then": value,
            "else": "",
        }
    }


def _map_words(value: Any, body: Any) -> Dict[str, Any]:
    return {"$map": {"input": value, "as": "word", "in": body}}


def _compile_step(step: Step, value: Any) -> Any:
    if isinstance(step, Lowercase):
        # $toLower only folds ASCII
        return {
            "$reduce": {
                "input": {"$literal": [list(pair) for pair in step.pairs]},
                "initialValue": {"$toLower": value},
                "in": {
                    "$replaceAll": {
                        "input": "$$value",
                        "find": {"$arrayElemAt": ["$$this", 0]},
                        "replacement": {"$arrayElemAt": ["$$this", 1]},
                    }
                },
            }
        }
    if isinstance(step, SplitWhitespace):
        return {
            "$map": {
                "input": {"$regexFindAll": {"input": value, "regex": step.pattern}},
                "as": "match",
                "in": "$$match.match",
            }
        }
    if isinstance(step, DropWords):
        return {
            "$filter": {
                "input": value,
                "as": "word",
                "cond": {"$not": [{"$in": ["$$word", sorted(step.words)]}]},
            }
        }
    if isinstance(step, StripChars):
        return _map_words(value, {"$trim": {"input": "$$word", "chars": step.chars}})
    if isinstance(step, StripElision):
        return _map_words(
            value,
            {
                "$let": {
                    "vars": {
                        "elision": {
                            "$regexFind": {"input": "$$word", "regex": step.pattern, "options": "i"}
                        }
                    },
                    "in": {
                        "$cond": [
                            {"$eq": ["$$elision", None]},
                            "$$word",
                            {
                                "$substrCP": [
                                    "$$word",
                                    {"$strLenCP": "$$elision.match"},
                                    {"$strLenCP": "$$word"},
                                ]
                            },
                        ]
                    },
                }
            },
        )
    if isinstance(step, Prefixes):
        return {
            "$reduce": {
                "input": value,
                "initialValue": [],
                "in": {
                    "$concatArrays": [
                        "$$value",
                        {
                            "$map": {
                                "input": {"$range": [step.min_length, {"$strLenCP": "$$this"}]},
                                "as": "end",
                                "in": {"$substrCP": ["$$this", 0, "$$end"]},
                            }
                        },
                    ]
                },
            }
        }
    if isinstance(step, Dedupe):
        return {
            "$reduce": {
                "input": value,
                "initialValue": [],
                "in": {
                    "$cond": [
                        {"$in": ["$$this", "$$value"]},
                        "$$value",
                        {"$concatArrays": ["$$value", ["$$this"]]},
                    ]
                },
            }
        }
    if isinstance(step, Join):
        return {
            "$reduce": {
                "input": value,
                "initialValue": "",
                "in": {
                    "$cond": [
                        {"$eq": ["$$value", ""]},
                        "$$this",
                        {"$concat": ["$$value", step.separator, "$$this"]},
                    ]
                },
            }
        }
    raise TypeError(f"Unsupported expression step: {step!r}")


# ---------------------------------------------------------------------------
# Host-side interpreter
# ---------------------------------------------------------------------------


def resolve_reference(
    source: str, document: Any, variables: Mapping[str, Any] | None = None
) -> Any:
    """Resolve a ``$field`` or ``$$variable.field`` reference."""
    if source.startswith("$$"):
        name, _, rest = source[2:].partition(".")
        if variables is None or name not in variables:
            return MISSING
        scope = variables[name]
        return deep_get(scope, rest) if rest else scope
    return deep_get(document, source[1:])


def evaluate(
    expression: SearchTextExpression,
    document: Any = None,
    variables: Mapping[str, Any] | None = None,
) -> str:
    """Run ``expression`` against an in-memory document."""
    value = resolve_reference(expression.source, document, variables)
    if not isinstance(value, str):
        return ""
    for step in expression.steps:
        value = _apply_step(step, value)
    return value


def _apply_step(step: Step, value: Any) -> Any:
    if isinstance(step, Lowercase):
        value = "".join(char.lower() if char.isascii() else char for char in value)
        for upper, lower in step.pairs:
            value = value.replace(upper, lower)
        return value
    if isinstance(step, SplitWhitespace):
        return re.findall(step.pattern, value)
    if isinstance(step, DropWords):
        return [word for word in value if word not in step.words]
    if isinstance(step, StripChars):
        return [word.strip(step.chars) for word in value]
    if isinstance(step, StripElision):
        pattern = re.compile(step.pattern, re.IGNORECASE)
        return [pattern.sub("", word) for word in value]
    if isinstance(step, Prefixes):
        prefixes: List[str] = []
        for word in value:
            prefixes.extend(word[:end] for end in range(step.min_length, len(word)))
        return prefixes
    if isinstance(step, Dedupe):
        return list(dict.fromkeys(value))
    if isinstance(step, Join):
        return step.separator.join(value)
    raise TypeError(f"Unsupported expression step: {step!r}")
