"""Lexer splitting template source into text runs and action tokens."""

from bisect import bisect_left
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from ..errors import ParseError


class TokenType(Enum):
    """Kinds of lexical tokens produced by the lexer."""

    TEXT = "text"
    LEFT_DELIM = "left delim"
    RIGHT_DELIM = "right delim"
    SPACE = "space"
    IDENTIFIER = "identifier"
    FIELD = "field"
    VARIABLE = "variable"
    DOT = "."
    NUMBER = "number"
    STRING = "string"
    BOOL = "bool"
    NIL = "nil"
    LEFT_PAREN = "("
    RIGHT_PAREN = ")"
    PIPE = "|"
    ASSIGN = "="
    DECLARE = ":="
    COMMA = ","
    EOF = "EOF"
    # Keywords
    IF = "if"
    ELSE = "else"
    END = "end"
    RANGE = "range"
    WITH = "with"
    TEMPLATE = "template"
    DEFINE = "define"
    BLOCK = "block"
    BREAK = "break"
    CONTINUE = "continue"


KEYWORDS = {
    "if": TokenType.IF,
    "else": TokenType.ELSE,
    "end": TokenType.END,
    "range": TokenType.RANGE,
    "with": TokenType.WITH,
    "template": TokenType.TEMPLATE,
    "define": TokenType.DEFINE,
    "block": TokenType.BLOCK,
    "break": TokenType.BREAK,
    "continue": TokenType.CONTINUE,
}

SPACE_CHARS = " \t\r\n"
LEFT_COMMENT = "/*"
RIGHT_COMMENT = "*/"

_SIMPLE_ESCAPES = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "\\": "\\",
    '"': '"',
    "'": "'",
    "a": "\a",
    "b": "\b",
    "f": "\f",
    "v": "\v",
    "0": "\0",
}
_HEX_ESCAPES = {"x": 2, "u": 4, "U": 8}


@dataclass(frozen=True)
class Token:
    """A single lexical token with its 1-based source position."""

    type: TokenType
    value: str
    line: int
    column: int

    def __str__(self) -> str:
        if self.type is TokenType.EOF:
            return "EOF"
        if self.type in (TokenType.TEXT, TokenType.STRING):
            return repr(self.value)
        return self.value


def _is_alnum(ch: str) -> bool:
    return ch == "_" or ch.isalnum()


class Lexer:
    """Scan a template source into a flat token list.

    Text outside delimiters becomes TEXT tokens. Inside an action, tokens are
    emitted until the closing delimiter. Trim markers (``{{- `` and `` -}}``)
    strip whitespace from the neighbouring text runs, and ``{{/* */}}``
    comments produce no tokens at all.
    """

    def __init__(
        self,
        name: str,
        source: str,
        left_delim: str = "{{",
        right_delim: str = "}}",
    ) -> None:
        self.name = name
        self.source = source
        self.left_delim = left_delim or "{{"
        self.right_delim = right_delim or "}}"
        self.pos = 0
        self.tokens: List[Token] = []
        self._paren_depth = 0
        self._trim_next_text = False
        self._newlines = [i for i, ch in enumerate(source) if ch == "\n"]

    def position(self, offset: int) -> Tuple[int, int]:
        """Translate a character offset into a 1-based (line, column) pair."""
        # newlines before offset
        index = bisect_left(self._newlines, offset)
        line_start = self._newlines[index - 1] + 1 if index else 0
        return index + 1, offset - line_start + 1

    def error(self, message: str, offset: Optional[int] = None) -> ParseError:
        line, column = self.position(self.pos if offset is None else offset)
        return ParseError(self.name, line, column, message)

    def emit(self, token_type: TokenType, value: str, start: int) -> None:
        line, column = self.position(start)
        self.tokens.append(Token(token_type, value, line, column))

    def tokenize(self) -> List[Token]:
        """Run the lexer over the whole source.

        Returns:
            Token list terminated by an EOF token

        Raises:
            ParseError: On unterminated actions or strings and unknown characters
        """
        while self.pos < len(self.source):
            self._lex_text()
        self.emit(TokenType.EOF, "", len(self.source))
        return self.tokens

    def _lex_text(self) -> None:
        start = self.pos
        source = self.source
        if self._trim_next_text:
            while start < len(source) and source[start] in SPACE_CHARS:
                start += 1
            self._trim_next_text = False

        delim_at = source.find(self.left_delim, start)
        end = len(source) if delim_at < 0 else delim_at

        trim_left = False
        if delim_at >= 0:
            after = delim_at + len(self.left_delim)
            trim_left = (
                source.startswith("-", after)
                and after + 1 < len(source)
                and source[after + 1] in SPACE_CHARS
            )

        text = source[start:end]
        if trim_left:
            text = text.rstrip(SPACE_CHARS)
        if text:
            self.emit(TokenType.TEXT, text, start)

        if delim_at < 0:
            self.pos = len(source)
            return

        self.pos = delim_at + len(self.left_delim)
        if trim_left:
            self.pos += 2
        if source.startswith(LEFT_COMMENT, self.pos):
            self._lex_comment(delim_at)
            return
        self.emit(TokenType.LEFT_DELIM, self.left_delim, delim_at)
        self._lex_inside_action(delim_at)

    def _lex_comment(self, delim_at: int) -> None:
        close = self.source.find(RIGHT_COMMENT, self.pos + len(LEFT_COMMENT))
        if close < 0:
            raise self.error("unclosed comment", delim_at)
        self.pos = close + len(RIGHT_COMMENT)
        trimmed = self._at_right_trim()
        if trimmed:
            self.pos += 2
        if not self.source.startswith(self.right_delim, self.pos):
            raise self.error("comment ends before closing delimiter")
        self.pos += len(self.right_delim)
        self._trim_next_text = trimmed

    def _at_right_trim(self) -> bool:
        source = self.source
        return (
            self.pos < len(source)
            and source[self.pos] in SPACE_CHARS
            and source.startswith("-" + self.right_delim, self.pos + 1)
        )

    def _lex_inside_action(self, delim_at: int) -> None:
        source = self.source
        while True:
            if self._at_right_trim() or source.startswith(self.right_delim, self.pos):
                trimmed = self._at_right_trim()
                if self._paren_depth:
                    raise self.error("unclosed left paren")
                if trimmed:
                    self.pos += 2
                self.emit(TokenType.RIGHT_DELIM, self.right_delim, self.pos)
                self.pos += len(self.right_delim)
                self._trim_next_text = trimmed
                return

            if self.pos >= len(source):
                raise self.error("unclosed action", delim_at)

            ch = source[self.pos]
            start = self.pos
            if ch in SPACE_CHARS:
                while self.pos < len(source) and source[self.pos] in SPACE_CHARS:
                    if self._at_right_trim():
                        break
                    self.pos += 1
                if self.pos > start:
                    self.emit(TokenType.SPACE, source[start : self.pos], start)
            elif ch == "=":
                self.pos += 1
                self.emit(TokenType.ASSIGN, "=", start)
            elif ch == ":":
                if not source.startswith(":=", self.pos):
                    raise self.error("expected :=")
                self.pos += 2
                self.emit(TokenType.DECLARE, ":=", start)
            elif ch == "|":
                self.pos += 1
                self.emit(TokenType.PIPE, "|", start)
            elif ch == ",":
                self.pos += 1
                self.emit(TokenType.COMMA, ",", start)
            elif ch == "(":
                self.pos += 1
                self._paren_depth += 1
                self.emit(TokenType.LEFT_PAREN, "(", start)
            elif ch == ")":
                if self._paren_depth == 0:
                    raise self.error("unexpected right paren")
                self.pos += 1
                self._paren_depth -= 1
                self.emit(TokenType.RIGHT_PAREN, ")", start)
            elif ch == '"':
                self._lex_quote()
            elif ch == "`":
                self._lex_raw_quote()
            elif ch == "$":
                self._lex_variable()
            elif ch == ".":
                if self.pos + 1 < len(source) and source[self.pos + 1].isdigit():
                    self._lex_number()
                else:
                    self._lex_field()
            elif ch in "+-" or ch.isdigit():
                self._lex_number()
            elif _is_alnum(ch):
                self._lex_identifier()
            else:
                raise self.error(f"unrecognized character in action: {ch!r}")

    def _at_terminator(self) -> bool:
        if self.pos >= len(self.source):
            return True
        ch = self.source[self.pos]
        if ch in SPACE_CHARS or ch in ".,|:()=":
            return True
        return self.source.startswith(self.right_delim, self.pos)

    def _scan_word(self) -> str:
        start = self.pos
        while self.pos < len(self.source) and _is_alnum(self.source[self.pos]):
            self.pos += 1
        return self.source[start : self.pos]

    def _lex_identifier(self) -> None:
        start = self.pos
        word = self._scan_word()
        if not self._at_terminator():
            raise self.error(f"bad character {self.source[self.pos]!r}")
        if word in KEYWORDS:
            self.emit(KEYWORDS[word], word, start)
        elif word in ("true", "false"):
            self.emit(TokenType.BOOL, word, start)
        elif word == "nil":
            self.emit(TokenType.NIL, word, start)
        else:
            self.emit(TokenType.IDENTIFIER, word, start)

    def _lex_variable(self) -> None:
        start = self.pos
        self.pos += 1
        word = self._scan_word()
        if not self._at_terminator():
            raise self.error(f"bad character {self.source[self.pos]!r}")
        self.emit(TokenType.VARIABLE, "$" + word, start)

    def _lex_field(self) -> None:
        start = self.pos
        self.pos += 1
        word = self._scan_word()
        if not word:
            self.emit(TokenType.DOT, ".", start)
            return
        if not self._at_terminator():
            raise self.error(f"bad character {self.source[self.pos]!r}")
        self.emit(TokenType.FIELD, "." + word, start)

    def _lex_number(self) -> None:
        source = self.source
        start = self.pos
        if source[self.pos] in "+-":
            self.pos += 1
        decimal = "0123456789_"
        if source.startswith(("0x", "0X"), self.pos):
            self.pos += 2
            self._accept_run("0123456789abcdefABCDEF_")
        elif source.startswith(("0o", "0O", "0b", "0B"), self.pos):
            self.pos += 2
            self._accept_run(decimal)
        else:
            self._accept_run(decimal)
            if self.pos < len(source) and source[self.pos] == ".":
                self.pos += 1
                self._accept_run(decimal)
            if self.pos < len(source) and source[self.pos] in "eE":
                self.pos += 1
                if self.pos < len(source) and source[self.pos] in "+-":
                    self.pos += 1
                self._accept_run(decimal)
        text = source[start : self.pos]
        trailing = self.pos < len(source) and _is_alnum(source[self.pos])
        if trailing or text in ("+", "-", "."):
            self.pos += 1
            raise self.error(f"bad number syntax: {source[start:self.pos]!r}", start)
        self.emit(TokenType.NUMBER, text, start)

    def _accept_run(self, valid: str) -> None:
        while self.pos < len(self.source) and self.source[self.pos] in valid:
            self.pos += 1

    def _lex_quote(self) -> None:
        source = self.source
        start = self.pos
        self.pos += 1
        chars: List[str] = []
        while True:
            if self.pos >= len(source) or source[self.pos] == "\n":
                raise self.error("unterminated quoted string", start)
            ch = source[self.pos]
            if ch == '"':
                self.pos += 1
                break
            if ch == "\\":
                chars.append(self._read_escape(start))
                continue
            chars.append(ch)
            self.pos += 1
        self.emit(TokenType.STRING, "".join(chars), start)

    def _read_escape(self, start: int) -> str:
        source = self.source
        self.pos += 1
        if self.pos >= len(source) or source[self.pos] == "\n":
            raise self.error("unterminated quoted string", start)
        code = source[self.pos]
        self.pos += 1
        if code in _SIMPLE_ESCAPES:
            return _SIMPLE_ESCAPES[code]
        if code in _HEX_ESCAPES:
            width = _HEX_ESCAPES[code]
            digits = source[self.pos : self.pos + width]
            if len(digits) != width or any(
                d not in "0123456789abcdefABCDEF" for d in digits
            ):
                raise self.error(f"invalid escape sequence \\{code}{digits}")
            value = int(digits, 16)
            if value > 0x10FFFF:
                raise self.error("escape sequence is invalid Unicode code point")
            self.pos += width
            return chr(value)
        raise self.error(f"unknown escape sequence \\{code}")

    def _lex_raw_quote(self) -> None:
        start = self.pos
        close = self.source.find("`", self.pos + 1)
        if close < 0:
            raise self.error("unterminated raw quoted string", start)
        self.pos = close + 1
        self.emit(TokenType.STRING, self.source[start + 1 : close], start)


def lex(
    name: str, source: str, left_delim: str = "{{", right_delim: str = "}}"
) -> List[Token]:
    """Tokenize template source.

    Args:
        name: Template name used in error messages
        source: Template source text
        left_delim: Opening action delimiter
        right_delim: Closing action delimiter

    Returns:
        List of tokens ending with an EOF token
    """
    return Lexer(name, source, left_delim, right_delim).tokenize()
