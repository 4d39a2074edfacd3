"""Shared fixtures: a product schema, and a host-side aggregation evaluator."""

from __future__ import annotations

import copy
import re

import pytest

from searchsync.index.catalog import build_catalog

PRODUCT_FIELDS = [
    {"name": "reference", "type": "scalar"},
    {"name": "description", "type": "scalar", "trackable": True},
]

SAMPLE_SCHEMA = {
    "name": "parent",
    "version": 1,
    "fields": [
        {"name": "code", "trackable": True},
        {"name": "reference", "trackable": {"weight": 10}},
        {"name": "description", "trackable": True},
        {"name": "email", "trackable": {"unchanged": True}},
        {
            "name": "details",
            "type": "object",
            "children": [
                {"name": "type"},
                {"name": "status"},
                {"name": "commentaire", "trackable": True},
            ],
        },
        {"name": "produit", "type": "object", "children": PRODUCT_FIELDS},
        {"name": "produits", "type": "array", "children": PRODUCT_FIELDS},
    ],
}


@pytest.fixture
def sample_schema() -> dict:
    return SAMPLE_SCHEMA


@pytest.fixture
def catalog():
    return build_catalog(SAMPLE_SCHEMA)


# Host-side evaluation of the aggregation operators searchsync emits. Follows
# the server's rules where they differ from Python: $toLower only folds ASCII,
# missing and null fields are distinct for $type.

_MISSING = object()


def _get(value, path):
    for part in path.split(".") if path else []:
        if isinstance(value, dict) and part in value:
            value = value[part]
        else:
            return _MISSING
    return value


def _type_name(value):
    if value is _MISSING:
        return "missing"
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return "int" if isinstance(value, int) else "double"


def _nullish(value):
    return value is None or value is _MISSING


def _scoped(variables, **extra):
    scope = dict(variables)
    scope.update(extra)
    return scope


def _op_map(arg, doc, variables):
    items = evaluate_expression(arg["input"], doc, variables)
    if _nullish(items):
        return None
    name = arg.get("as", "this")
    return [evaluate_expression(arg["in"], doc, _scoped(variables, **{name: item})) for item in items]


def _op_filter(arg, doc, variables):
    items = evaluate_expression(arg["input"], doc, variables)
    name = arg.get("as", "this")
    return [
        item for item in items
        if evaluate_expression(arg["cond"], doc, _scoped(variables, **{name: item}))
    ]


def _op_reduce(arg, doc, variables):
    result = evaluate_expression(arg["initialValue"], doc, variables)
    for item in evaluate_expression(arg["input"], doc, variables):
        result = evaluate_expression(arg["in"], doc, _scoped(variables, value=result, this=item))
    return result


def _op_let(arg, doc, variables):
    bound = {name: evaluate_expression(expr, doc, variables) for name, expr in arg["vars"].items()}
    return evaluate_expression(arg["in"], doc, _scoped(variables, **bound))


def _op_cond(arg, doc, variables):
    if isinstance(arg, dict):
        arg = [arg["if"], arg["then"], arg["else"]]
    test, then, otherwise = arg
    return evaluate_expression(then if evaluate_expression(test, doc, variables) else otherwise, doc, variables)


def _op_regex_find_all(arg, doc, variables):
    text = evaluate_expression(arg["input"], doc, variables)
    flags = re.IGNORECASE if "i" in arg.get("options", "") else 0
    return [{"match": match.group(0), "idx": match.start(), "captures": []} for match in re.finditer(arg["regex"], text, flags)]


def _op_regex_find(arg, doc, variables):
    matches = _op_regex_find_all(arg, doc, variables)
    return matches[0] if matches else None


def _op_trim(arg, doc, variables):
    return evaluate_expression(arg["input"], doc, variables).strip(arg["chars"])


def _op_replace_all(arg, doc, variables):
    text = evaluate_expression(arg["input"], doc, variables)
    find = evaluate_expression(arg["find"], doc, variables)
    return text.replace(find, evaluate_expression(arg["replacement"], doc, variables))


def _op_merge_objects(arg, doc, variables):
    merged = {}
    for value in evaluate_expression(arg, doc, variables):
        if isinstance(value, dict):
            merged.update(value)
    return merged


def _args(fn):
    def operator(arg, doc, variables):
        values = evaluate_expression(arg if isinstance(arg, list) else [arg], doc, variables)
        return fn(*values)

    return operator


_OPERATORS = {
    "$literal": lambda arg, doc, variables: arg,
    "$map": _op_map,
    "$filter": _op_filter,
    "$reduce": _op_reduce,
    "$let": _op_let,
    "$cond": _op_cond,
    "$regexFindAll": _op_regex_find_all,
    "$regexFind": _op_regex_find,
    "$trim": _op_trim,
    "$replaceAll": _op_replace_all,
    "$mergeObjects": _op_merge_objects,
    "$add": _args(lambda *values: sum(values)),
    "$multiply": _args(lambda a, b: a * b),
    "$and": lambda arg, doc, variables: all(evaluate_expression(arg, doc, variables)),
    "$not": _args(lambda value: not value),
    "$eq": _args(lambda a, b: a == b),
    "$ne": _args(lambda a, b: a != b),
    "$gt": _args(lambda a, b: a > b),
    "$gte": _args(lambda a, b: a >= b),
    "$lt": _args(lambda a, b: a < b),
    "$lte": _args(lambda a, b: a <= b),
    "$in": _args(lambda value, items: value in items),
    "$ifNull": _args(lambda value, default: default if _nullish(value) else value),
    "$isArray": _args(lambda value: isinstance(value, list)),
    "$type": _args(_type_name),
    "$size": _args(len),
    "$range": _args(lambda start, end: list(range(start, end))),
    "$arrayElemAt": _args(lambda items, index: items[index]),
    "$indexOfArray": _args(lambda items, value: items.index(value) if value in items else -1),
    "$concatArrays": _args(lambda *items: [item for part in items for item in part]),
    "$concat": _args(lambda *parts: "".join(parts)),
    "$strLenCP": _args(len),
    "$substrCP": _args(lambda text, start, count: text[start : start + count]),
    "$toLower": _args(lambda text: "".join(c.lower() if c.isascii() else c for c in text)),
}


def evaluate_expression(expr, doc, variables=None):
    variables = variables or {}
    if isinstance(expr, str):
        if expr.startswith("$$"):
            name, _, rest = expr[2:].partition(".")
            scope = doc if name in ("ROOT", "CURRENT") else variables.get(name, _MISSING)
            return _get(scope, rest)
        if expr.startswith("$"):
            return _get(doc, expr[1:])
        return expr
    if isinstance(expr, list):
        return [evaluate_expression(item, doc, variables) for item in expr]
    if isinstance(expr, dict):
        if len(expr) == 1:
            ((key, arg),) = expr.items()
            if key.startswith("$"):
                return _OPERATORS[key](arg, doc, variables)
        return {key: evaluate_expression(value, doc, variables) for key, value in expr.items()}
    return expr


def _assign(doc, path, value):
    *parents, leaf = path.split(".")
    for part in parents:
        doc = doc.setdefault(part, {})
    if value is _MISSING:
        doc.pop(leaf, None)
    else:
        doc[leaf] = value


def run_pipeline(pipeline, document):
    """Apply ``$set`` / ``$unset`` / ``$replaceWith`` stages to a copy of ``document``."""
    doc = copy.deepcopy(document)
    for stage in pipeline:
        ((name, spec),) = stage.items()
        if name in ("$set", "$addFields"):
            values = {path: evaluate_expression(expr, doc) for path, expr in spec.items()}
            for path, value in values.items():
                _assign(doc, path, value)
        elif name == "$unset":
            for path in [spec] if isinstance(spec, str) else spec:
                _assign(doc, path, _MISSING)
        elif name == "$replaceWith":
            doc = evaluate_expression(spec, doc)
        else:
            raise NotImplementedError(name)
    return doc


@pytest.fixture
def mongo_eval():
    return evaluate_expression


@pytest.fixture
def mongo_pipeline():
    return run_pipeline
