"""Print-family formatting: ``print``, ``println`` and ``printf``."""

import json
import re
from typing import Any, Optional, Sequence

from .values import Kind, format_float, format_value, kind_of, type_name

_DIRECTIVE = re.compile(r"%([-+# 0]*)(\d+)?(?:\.(\d*))?([a-zA-Z%])")

_NUMERIC_VERBS = set("dboxXcfFeEgG")


def sprint(*args: Any) -> str:
    """Concatenate operands, adding a space between two non-string operands."""
    parts = []
    for i, arg in enumerate(args):
        if i > 0 and not isinstance(arg, str) and not isinstance(args[i - 1], str):
            parts.append(" ")
        parts.append(format_value(arg))
    return "".join(parts)


def sprintln(*args: Any) -> str:
    """Join operands with single spaces and append a newline."""
    return " ".join(format_value(arg) for arg in args) + "\n"


def sprintf(fmt: str, *args: Any) -> str:
    """Format operands according to a ``%`` directive string.

    Supported verbs: ``v s q d b o x X c f F e E g G t T`` and ``%%``, with
    the flags ``- + # 0`` and space, a width and a precision. A directive
    without an operand renders as ``%!v(MISSING)``; surplus operands are
    reported at the end as ``%!(EXTRA type=value, ...)``.
    """
    out = []
    pos = 0
    used = 0
    for match in _DIRECTIVE.finditer(fmt):
        out.append(fmt[pos : match.start()])
        pos = match.end()
        flags, width, precision, verb = match.groups()
        if verb == "%":
            out.append("%")
            continue
        if used >= len(args):
            out.append(f"%!{verb}(MISSING)")
            continue
        arg = args[used]
        used += 1
        prec = int(precision) if precision else (0 if precision == "" else None)
        text = _format_verb(verb, flags, prec, arg)
        out.append(_pad(text, flags, int(width) if width else 0, verb))
    out.append(fmt[pos:])
    if used < len(args):
        extra = ", ".join(f"{type_name(a)}={format_value(a)}" for a in args[used:])
        out.append(f"%!(EXTRA {extra})")
    return "".join(out)


def _bad_verb(verb: str, arg: Any) -> str:
    return f"%!{verb}({type_name(arg)}={format_value(arg)})"


def _sign(text: str, value: Any, flags: str) -> str:
    if value >= 0:
        if "+" in flags:
            return "+" + text
        if " " in flags:
            return " " + text
    return text


def _format_verb(verb: str, flags: str, precision: Optional[int], arg: Any) -> str:
    kind = kind_of(arg)
    if verb == "v":
        return format_value(arg)
    if verb == "T":
        return type_name(arg)
    if verb == "s":
        text = arg if kind is Kind.STRING else format_value(arg)
        return text if precision is None else text[:precision]
    if verb == "q":
        if kind is Kind.STRING:
            return json.dumps(arg, ensure_ascii=False)
        if kind is Kind.INTEGER:
            return repr(chr(arg))
        return _bad_verb(verb, arg)
    if verb == "t":
        if kind is Kind.BOOL:
            return "true" if arg else "false"
        return _bad_verb(verb, arg)
    if kind is Kind.INTEGER:
        value = int(arg)
        if verb == "c":
            return chr(value)
        codes = {"d": "d", "b": "b", "o": "o", "x": "x", "X": "X"}
        if verb in codes:
            text = format(abs(value), codes[verb])
            if "#" in flags and verb in "boxX":
                text = {"b": "0b", "o": "0", "x": "0x", "X": "0X"}[verb] + text
            if value < 0:
                text = "-" + text
            return _sign(text, value, flags)
        if verb in "fFeEgG":
            return _format_real(verb, flags, precision, float(value))
        return _bad_verb(verb, arg)
    if kind is Kind.FLOAT and verb in "fFeEgG":
        return _format_real(verb, flags, precision, float(arg))
    if kind is Kind.STRING and verb in "xX":
        text = arg.encode("utf-8").hex()
        return text.upper() if verb == "X" else text
    return _bad_verb(verb, arg)


def _format_real(verb: str, flags: str, precision: Optional[int], value: float) -> str:
    if verb in "gG" and precision is None:
        text = format_float(value)
    else:
        spec = f".{6 if precision is None else precision}{verb}"
        text = format(value, spec)
    return _sign(text, value, flags)


def _pad(text: str, flags: str, width: int, verb: str) -> str:
    if len(text) >= width:
        return text
    if "-" in flags:
        return text.ljust(width)
    if "0" in flags and verb in _NUMERIC_VERBS:
        sign = text[0] if text[:1] in ("+", "-", " ") else ""
        return sign + text[len(sign) :].rjust(width - len(sign), "0")
    return text.rjust(width)


def join_args(args: Sequence[Any]) -> str:
    """Text form of a list of operands, as the escaping built-ins see it."""
    if len(args) == 1 and isinstance(args[0], str):
        return args[0]
    return sprint(*args)
