"""Function registry: built-in operators and user-supplied helpers.

Every callable reachable from a template is wrapped in a :class:`Helper`,
which knows the callable's arity and the kinds its parameters accept. The
evaluator asks the helper to check a call before making it: a wrong number
of arguments is a hard error, while an argument of the wrong kind is a
:class:`KindMismatch` that the evaluator turns into a soft diagnostic.
"""

import inspect
import logging
import re
import types
import typing
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Tuple

from .errors import HelperRegistrationError
from .escape import html_escape, js_escape, url_query_escape
from .formatting import sprint, sprintf, sprintln
from .parse.lexer import KEYWORDS
from .values import (
    AccessError,
    Kind,
    field_of,
    index_of,
    is_true,
    kind_of,
    length_of,
    type_name,
)

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"[^\W\d]\w*")
_RESERVED = set(KEYWORDS) | {"true", "false", "nil"}


class FuncError(Exception):
    """A built-in function rejected its arguments."""

    pass


class KindMismatch(Exception):
    """An argument's kind does not match the parameter's declared type."""

    pass


def _accepts(annotation: Any, value: Any) -> bool:
    """Whether a value may be passed to a parameter with this annotation."""
    if annotation is inspect.Parameter.empty or annotation is Any:
        return True
    if annotation is None or annotation is type(None):
        return value is None
    origin = typing.get_origin(annotation)
    if origin is typing.Union or origin is getattr(types, "UnionType", None):
        return any(_accepts(arg, value) for arg in typing.get_args(annotation))
    if origin is not None:
        annotation = origin
    if not isinstance(annotation, type):
        return True
    kind = kind_of(value)
    if annotation is float:
        return kind in (Kind.INTEGER, Kind.FLOAT)
    if annotation is int:
        return kind is Kind.INTEGER
    if annotation is bool:
        return kind is Kind.BOOL
    if annotation is str:
        return kind is Kind.STRING
    try:
        return isinstance(value, annotation)
    except TypeError:
        return True


class Helper:
    """A callable together with its call signature.

    Args:
        name: Name the callable is registered under
        func: The callable itself
        lazy: Pass arguments as zero-argument thunks instead of values, so
            the callable decides which of them get evaluated
    """

    def __init__(self, name: str, func: Callable[..., Any], lazy: bool = False):
        self.name = name
        self.func = func
        self.lazy = lazy
        self.params: List[inspect.Parameter] = []
        self.variadic: Optional[inspect.Parameter] = None
        self.required = 0
        self.hints: Dict[str, Any] = {}
        self._introspect()

    def _introspect(self) -> None:
        try:
            signature = inspect.signature(self.func)
        except (TypeError, ValueError):
            # Some builtins expose no signature; accept any arguments
            self.variadic = inspect.Parameter("args", inspect.Parameter.VAR_POSITIONAL)
            return
        positional = (
            inspect.Parameter.POSITIONAL_ONLY,
            inspect.Parameter.POSITIONAL_OR_KEYWORD,
        )
        for param in signature.parameters.values():
            if param.kind in positional:
                self.params.append(param)
                if param.default is inspect.Parameter.empty:
                    self.required += 1
            elif param.kind is inspect.Parameter.VAR_POSITIONAL:
                self.variadic = param
        try:
            self.hints = typing.get_type_hints(self.func)
        except Exception:
            self.hints = {
                p.name: p.annotation
                for p in signature.parameters.values()
                if not isinstance(p.annotation, str)
            }

    def check_arity(self, count: int) -> None:
        """Reject a call with the wrong number of arguments.

        Raises:
            FuncError: If the callable cannot take ``count`` arguments
        """
        if self.variadic is not None:
            if count < self.required:
                raise FuncError(
                    f"wrong number of args for {self.name}: "
                    f"want at least {self.required} got {count}"
                )
            return
        if count < self.required or count > len(self.params):
            want = (
                str(self.required)
                if self.required == len(self.params)
                else f"{self.required} to {len(self.params)}"
            )
            raise FuncError(
                f"wrong number of args for {self.name}: want {want} got {count}"
            )

    def check_kinds(self, args: List[Any]) -> List[Any]:
        """Validate argument kinds against the parameter annotations.

        Integers passed to ``float`` parameters are converted.

        Returns:
            The arguments, converted where needed

        Raises:
            KindMismatch: If an argument's kind does not fit its parameter
        """
        checked = []
        for position, value in enumerate(args):
            if position < len(self.params):
                param = self.params[position]
            else:
                param = self.variadic
            annotation = self.hints.get(param.name, param.annotation)
            if not _accepts(annotation, value):
                expected = getattr(annotation, "__name__", str(annotation))
                raise KindMismatch(
                    f"wrong type for value; expected {expected}; "
                    f"got {type_name(value)} in argument {position + 1} to {self.name}"
                )
            if annotation is float and kind_of(value) is Kind.INTEGER:
                value = float(value)
            checked.append(value)
        return checked

    def __call__(self, *args: Any) -> Any:
        return self.func(*args)

    def __repr__(self) -> str:
        return f"Helper({self.name!r})"


# Built-in functions


def _and(first: Callable[[], Any], *rest: Callable[[], Any]) -> Any:
    value = first()
    for thunk in rest:
        if not is_true(value):
            return value
        value = thunk()
    return value


def _or(first: Callable[[], Any], *rest: Callable[[], Any]) -> Any:
    value = first()
    for thunk in rest:
        if is_true(value):
            return value
        value = thunk()
    return value


def _not(arg):
    return not is_true(arg)


def _len(item):
    try:
        return length_of(item)
    except AccessError as e:
        raise FuncError(str(e))


def _index(item, index, *more):
    for key in (index,) + more:
        try:
            if kind_of(item) is Kind.RECORD and isinstance(key, str):
                item = field_of(item, key)
            else:
                item = index_of(item, key)
        except AccessError as e:
            raise FuncError(str(e))
    return item


def _slice(item, *indices):
    kind = kind_of(item)
    if kind is Kind.NIL:
        raise FuncError("slice of untyped nil")
    if kind not in (Kind.SEQUENCE, Kind.STRING):
        raise FuncError(f"can't slice item of type {type_name(item)}")
    if len(indices) > 2:
        raise FuncError(f"too many slice indexes: {len(indices)}")
    bounds = [0, len(item)]
    for position, index in enumerate(indices):
        if kind_of(index) is not Kind.INTEGER:
            raise FuncError(f"cannot index slice/array with type {type_name(index)}")
        if index < 0 or index > len(item):
            raise FuncError(f"index out of range: {index}")
        bounds[position] = index
    if bounds[0] > bounds[1]:
        raise FuncError(f"invalid slice index: {bounds[0]} > {bounds[1]}")
    return item[bounds[0] : bounds[1]]


def _call(fn, *args):
    if fn is None:
        raise FuncError("call of nil")
    if not callable(fn):
        raise FuncError(f"non-function of type {type_name(fn)}")
    helper = Helper("call", fn)
    helper.check_arity(len(args))
    return fn(*helper.check_kinds(list(args)))


_BASIC_KINDS = (Kind.NIL, Kind.BOOL, Kind.INTEGER, Kind.FLOAT, Kind.STRING)
_NUMERIC_KINDS = (Kind.INTEGER, Kind.FLOAT)


def _basic_kind(value: Any) -> Kind:
    kind = kind_of(value)
    if kind not in _BASIC_KINDS:
        raise FuncError(f"invalid type for comparison: {type_name(value)}")
    return kind


def _equal(left: Any, right: Any) -> bool:
    left_kind, right_kind = _basic_kind(left), _basic_kind(right)
    if left_kind is Kind.NIL or right_kind is Kind.NIL:
        return left_kind is right_kind
    if left_kind in _NUMERIC_KINDS and right_kind in _NUMERIC_KINDS:
        return left == right
    if left_kind is not right_kind:
        raise FuncError("incompatible types for comparison")
    return left == right


def _eq(arg1, *args):
    if not args:
        raise FuncError("missing argument for comparison")
    return any(_equal(arg1, arg) for arg in args)


def _ne(arg1, arg2):
    return not _equal(arg1, arg2)


def _less(left: Any, right: Any) -> bool:
    left_kind, right_kind = _basic_kind(left), _basic_kind(right)
    if left_kind in (Kind.NIL, Kind.BOOL) or right_kind in (Kind.NIL, Kind.BOOL):
        raise FuncError(f"invalid type for comparison: {type_name(left)}")
    if left_kind in _NUMERIC_KINDS and right_kind in _NUMERIC_KINDS:
        return left < right
    if left_kind is not right_kind:
        raise FuncError("incompatible types for comparison")
    return left < right


def _lt(arg1, arg2):
    return _less(arg1, arg2)


def _le(arg1, arg2):
    return _less(arg1, arg2) or _equal(arg1, arg2)


def _gt(arg1, arg2):
    return _less(arg2, arg1)


def _ge(arg1, arg2):
    return _less(arg2, arg1) or _equal(arg1, arg2)


BUILTINS: Dict[str, Helper] = {
    "and": Helper("and", _and, lazy=True),
    "or": Helper("or", _or, lazy=True),
    "not": Helper("not", _not),
    "len": Helper("len", _len),
    "index": Helper("index", _index),
    "slice": Helper("slice", _slice),
    "call": Helper("call", _call),
    "eq": Helper("eq", _eq),
    "ne": Helper("ne", _ne),
    "lt": Helper("lt", _lt),
    "le": Helper("le", _le),
    "gt": Helper("gt", _gt),
    "ge": Helper("ge", _ge),
    "print": Helper("print", sprint),
    "printf": Helper("printf", sprintf),
    "println": Helper("println", sprintln),
    "html": Helper("html", html_escape),
    "js": Helper("js", js_escape),
    "urlquery": Helper("urlquery", url_query_escape),
}

BUILTIN_DESCRIPTIONS: List[Tuple[str, str, str]] = [
    ("and", "First empty argument or the last one; short-circuits", "and .A .B"),
    ("or", "First non-empty argument or the last one; short-circuits", "or .A .B"),
    ("not", "Boolean negation of its single argument", "not .Done"),
    ("len", "Length of a string, sequence or mapping", "len .Items"),
    ("index", "Successive index, key or field lookup", "index .Rows 1 \"Name\""),
    ("slice", "Sub-slice of a sequence or string", "slice .Name 0 3"),
    ("call", "Call a function value with arguments", "call .Format 2"),
    ("eq", "True if arg1 equals any later argument", "eq .Kind \"a\" \"b\""),
    ("ne", "arg1 != arg2", "ne .Count 0"),
    ("lt", "arg1 < arg2", "lt .Age 18"),
    ("le", "arg1 <= arg2", "le .Age 18"),
    ("gt", "arg1 > arg2", "gt .Age 10"),
    ("ge", "arg1 >= arg2", "ge .Age 10"),
    ("print", "Operands joined, spaces between non-strings", "print .A .B"),
    ("printf", "Formatted output with % directives", "printf \"%05.1f\" .X"),
    ("println", "Operands joined with spaces plus newline", "println .A"),
    ("html", "Escape text for HTML", "html .Comment"),
    ("js", "Escape text for a JavaScript string", "js .Name"),
    ("urlquery", "Escape text for a URL query", "urlquery .Search"),
]


class FuncRegistry:
    """Name to helper mapping for one template set.

    User helpers shadow built-ins of the same name.
    """

    def __init__(self, helpers: Optional[Mapping[str, Callable[..., Any]]] = None):
        self._helpers: Dict[str, Helper] = {}
        if helpers:
            self.add(helpers)

    def add(self, helpers: Mapping[str, Callable[..., Any]]) -> None:
        """Register helpers by name.

        Raises:
            HelperRegistrationError: If a name is not a valid identifier or a
                value is not callable
        """
        wrapped = {}
        for name, func in helpers.items():
            if not isinstance(name, str) or not _IDENTIFIER.fullmatch(name):
                raise HelperRegistrationError(
                    f"function name {name!r} is not a valid identifier"
                )
            if name in _RESERVED:
                raise HelperRegistrationError(f"function name {name!r} is reserved")
            if not callable(func):
                raise HelperRegistrationError(
                    f"value for {name} not a function: {type_name(func)}"
                )
            wrapped[name] = Helper(name, func)
        self._helpers.update(wrapped)
        logger.debug(f"Registered helpers: {', '.join(sorted(wrapped))}")

    def lookup(self, name: str) -> Optional[Helper]:
        """Find a helper, falling back to the built-ins."""
        helper = self._helpers.get(name)
        if helper is None:
            helper = BUILTINS.get(name)
        return helper

    def __contains__(self, name: object) -> bool:
        return name in self._helpers or name in BUILTINS

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(set(self._helpers) | set(BUILTINS)))

    def helper_names(self) -> List[str]:
        """Names of user-registered helpers."""
        return sorted(self._helpers)

    def copy(self) -> "FuncRegistry":
        """Shallow copy; later registrations on either side are independent."""
        clone = FuncRegistry()
        clone._helpers = dict(self._helpers)
        return clone
