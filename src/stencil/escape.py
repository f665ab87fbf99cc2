"""Escaping built-ins: ``html``, ``js`` and ``urlquery``."""

from typing import Any
from urllib.parse import quote_plus

from markupsafe import escape

from .formatting import join_args

_JS_REPLACEMENTS = {
    "\\": "\\\\",
    "'": "\\'",
    '"': '\\"',
    "<": "\\u003C",
    ">": "\\u003E",
    "&": "\\u0026",
    "=": "\\u003D",
}


def html_escape(*args: Any) -> str:
    """Escape the text form of the arguments for safe inclusion in HTML.

    NUL characters are replaced with U+FFFD.
    """
    text = join_args(args).replace("\0", "�")
    return str(escape(text))


def js_escape(*args: Any) -> str:
    """Escape the text form of the arguments for a JavaScript string literal."""
    out = []
    for ch in join_args(args):
        if ch in _JS_REPLACEMENTS:
            out.append(_JS_REPLACEMENTS[ch])
        elif ord(ch) < 0x20:
            out.append(f"\\u{ord(ch):04X}")
        else:
            out.append(ch)
    return "".join(out)


def url_query_escape(*args: Any) -> str:
    """Escape the text form of the arguments for use in a URL query."""
    return quote_plus(join_args(args))
