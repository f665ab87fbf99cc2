"""Uniform introspection over the Python values handed to a render.

Templates see every value through one of a fixed set of kinds. Plain Python
data maps onto them directly: ``None`` is nil, lists and tuples are
sequences, dicts are mappings, and anything with attributes (dataclasses,
pydantic models, named tuples, ordinary objects) is a record.
"""

import dataclasses
import functools
import inspect
import math
import numbers
from collections.abc import Iterable, Mapping, Sequence, Set
from enum import Enum
from typing import Any, Iterator, List, Tuple

NO_VALUE = "<no value>"


class Kind(Enum):
    """Kind tag of a runtime value."""

    NIL = "nil"
    BOOL = "bool"
    INTEGER = "integer"
    FLOAT = "float"
    STRING = "string"
    SEQUENCE = "sequence"
    MAPPING = "mapping"
    RECORD = "record"
    FUNCTION = "function"


class AccessError(Exception):
    """A value was accessed in a way its kind does not support."""

    pass


def kind_of(value: Any) -> Kind:
    """Classify a value into one of the template kinds."""
    if value is None:
        return Kind.NIL
    if isinstance(value, bool):
        return Kind.BOOL
    if isinstance(value, numbers.Integral):
        return Kind.INTEGER
    if isinstance(value, numbers.Real):
        return Kind.FLOAT
    if isinstance(value, str):
        return Kind.STRING
    if isinstance(value, Mapping):
        return Kind.MAPPING
    if _is_named_tuple(value):
        return Kind.RECORD
    if isinstance(value, (Sequence, Set, bytes, bytearray)):
        return Kind.SEQUENCE
    if inspect.isroutine(value) or isinstance(value, functools.partial):
        return Kind.FUNCTION
    return Kind.RECORD


def type_name(value: Any) -> str:
    """Short type name used in error messages."""
    if value is None:
        return "nil"
    return type(value).__name__


def _is_named_tuple(value: Any) -> bool:
    return isinstance(value, tuple) and hasattr(value, "_fields")


def is_true(value: Any) -> bool:
    """Template truthiness.

    nil and false are false, numeric zero is false, empty strings,
    sequences and mappings are false; everything else is true.
    """
    kind = kind_of(value)
    if kind is Kind.NIL:
        return False
    if kind is Kind.BOOL:
        return value
    if kind in (Kind.INTEGER, Kind.FLOAT):
        return value != 0
    if kind in (Kind.STRING, Kind.SEQUENCE, Kind.MAPPING):
        return len(value) > 0
    return True


def field_of(value: Any, name: str) -> Any:
    """Look up a named field on a record.

    Raises:
        AccessError: If the value is not a record or has no such field
    """
    if name.startswith("_"):
        raise AccessError(f"{name} is an unexported field of type {type_name(value)}")
    kind = kind_of(value)
    if kind is Kind.NIL:
        raise AccessError(f"nil pointer evaluating {type_name(value)}.{name}")
    if kind is not Kind.RECORD:
        raise AccessError(f"can't evaluate field {name} in type {type_name(value)}")
    try:
        return getattr(value, name)
    except AttributeError:
        raise AccessError(f"can't evaluate field {name} in type {type_name(value)}")


def key_of(value: Mapping, key: Any) -> Tuple[Any, bool]:
    """Look up a key on a mapping.

    Returns:
        Tuple of (value, found). Absent keys yield ``(None, False)``.
    """
    try:
        return value[key], True
    except KeyError:
        return None, False
    except TypeError:
        raise AccessError(f"value has type {type_name(key)}; should be a hashable key")


def index_of(value: Any, index: Any) -> Any:
    """Index a sequence or string by position, or a mapping by key.

    Strings are indexed by character. Negative and out-of-range positions are
    errors; absent mapping keys yield nil.

    Raises:
        AccessError: If the value cannot be indexed with the given index
    """
    kind = kind_of(value)
    if kind is Kind.MAPPING:
        return key_of(value, index)[0]
    if kind is Kind.NIL:
        raise AccessError("index of untyped nil")
    if kind not in (Kind.SEQUENCE, Kind.STRING) or isinstance(value, Set):
        raise AccessError(f"can't index item of type {type_name(value)}")
    if kind_of(index) is not Kind.INTEGER:
        raise AccessError(f"cannot index slice/array with type {type_name(index)}")
    if index < 0 or index >= len(value):
        raise AccessError(f"index out of range: {index}")
    return value[index]


def length_of(value: Any) -> int:
    """Length of a string, sequence or mapping.

    Raises:
        AccessError: For every other kind
    """
    if kind_of(value) in (Kind.STRING, Kind.SEQUENCE, Kind.MAPPING):
        return len(value)
    raise AccessError(f"len of type {type_name(value)}")


def _sorted_keys(mapping: Mapping) -> List[Any]:
    keys = list(mapping.keys())
    try:
        return sorted(keys)
    except TypeError:
        return keys


def iterate(value: Any) -> Iterator[Tuple[Any, Any]]:
    """Yield (index-or-key, element) pairs for ranging over a value.

    Mapping keys are visited in sorted order when they are mutually
    orderable, insertion order otherwise. A non-negative integer ``n``
    yields ``0 .. n-1``; nil yields nothing.

    Raises:
        AccessError: If the value cannot be iterated
    """
    kind = kind_of(value)
    if kind is Kind.NIL:
        return iter(())
    if kind is Kind.MAPPING:
        return ((key, value[key]) for key in _sorted_keys(value))
    if kind is Kind.SEQUENCE:
        if isinstance(value, Set):
            try:
                return enumerate(sorted(value))
            except TypeError:
                return enumerate(value)
        return enumerate(value)
    if kind is Kind.INTEGER:
        return ((i, i) for i in range(max(int(value), 0)))
    if kind is Kind.RECORD and isinstance(value, Iterable):
        return enumerate(value)
    raise AccessError(f"range can't iterate over {stringify(value)}")


def format_float(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    return repr(value)


def _record_fields(value: Any) -> List[Any]:
    if dataclasses.is_dataclass(value):
        return [getattr(value, f.name) for f in dataclasses.fields(value)]
    model_fields = getattr(type(value), "model_fields", None)
    if isinstance(model_fields, Mapping):
        return [getattr(value, name) for name in model_fields]
    if _is_named_tuple(value):
        return list(value)
    return [v for k, v in vars(value).items() if not k.startswith("_")]


def _has_custom_str(value: Any) -> bool:
    return type(value).__str__ is not object.__str__


def _format(value: Any, nested: bool) -> str:
    kind = kind_of(value)
    if kind is Kind.NIL:
        return "<nil>" if nested else NO_VALUE
    if kind is Kind.BOOL:
        return "true" if value else "false"
    if kind is Kind.INTEGER:
        return str(int(value))
    if kind is Kind.FLOAT:
        return format_float(float(value))
    if kind is Kind.STRING:
        return value
    if kind is Kind.SEQUENCE:
        items = value
        if isinstance(value, Set):
            items = [item for _, item in iterate(value)]
        return "[" + " ".join(_format(item, True) for item in items) + "]"
    if kind is Kind.MAPPING:
        pairs = (
            f"{_format(key, True)}:{_format(value[key], True)}"
            for key in _sorted_keys(value)
        )
        return "map[" + " ".join(pairs) + "]"
    if kind is Kind.RECORD:
        structured = (
            dataclasses.is_dataclass(value)
            or hasattr(type(value), "model_fields")
            or _is_named_tuple(value)
        )
        if not structured and _has_custom_str(value):
            return str(value)
        try:
            fields = _record_fields(value)
        except TypeError:
            return str(value)
        return "{" + " ".join(_format(item, True) for item in fields) + "}"
    return str(value)


def stringify(value: Any) -> str:
    """Canonical text rendering of a value, as emitted by an action.

    nil renders as ``<no value>``; booleans as ``true``/``false``; floats with
    an integral value print without a fraction; sequences as ``[a b c]``;
    mappings as ``map[k:v]`` in key order; records as ``{v1 v2}`` unless
    the object defines its own ``__str__``.
    """
    return _format(value, nested=False)


def format_value(value: Any) -> str:
    """Render a value the way the print family formats an operand.

    Identical to :func:`stringify` except that nil prints as ``<nil>``.
    """
    return _format(value, nested=True)
