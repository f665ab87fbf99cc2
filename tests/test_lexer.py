"""Tests for the template lexer."""

import time

import pytest

from stencil.errors import ParseError
from stencil.parse import TokenType, lex


def kinds(source, **kwargs):
    return [t.type for t in lex("t", source, **kwargs) if t.type is not TokenType.SPACE]


def values(source):
    return [t.value for t in lex("t", source) if t.type is not TokenType.SPACE]


class TestText:
    """Test text outside of actions."""

    def test_plain_text_is_single_token(self):
        """Test that source without delimiters is one text token."""
        tokens = lex("t", "just some text")
        assert [t.type for t in tokens] == [TokenType.TEXT, TokenType.EOF]
        assert tokens[0].value == "just some text"

    def test_empty_source(self):
        """Test that empty source yields only EOF."""
        assert kinds("") == [TokenType.EOF]

    def test_text_around_action(self):
        """Test text before and after an action."""
        assert kinds("a{{.}}b") == [
            TokenType.TEXT,
            TokenType.LEFT_DELIM,
            TokenType.DOT,
            TokenType.RIGHT_DELIM,
            TokenType.TEXT,
            TokenType.EOF,
        ]


class TestTrimMarkers:
    """Test whitespace trimming markers."""

    def test_left_trim(self):
        """Test that {{- strips whitespace before the action."""
        tokens = lex("t", "a  \n {{- .}}")
        assert tokens[0].value == "a"

    def test_right_trim(self):
        """Test that -}} strips whitespace after the action."""
        tokens = lex("t", "{{. -}} \n\t b")
        texts = [t.value for t in tokens if t.type is TokenType.TEXT]
        assert texts == ["b"]

    def test_trim_removes_whitespace_only_text(self):
        """Test that a whitespace-only run between trims disappears."""
        tokens = lex("t", "{{1 -}}   {{- 2}}")
        assert TokenType.TEXT not in [t.type for t in tokens]

    def test_negative_number_is_not_trim(self):
        """Test that {{-3}} lexes a negative number."""
        tokens = [t for t in lex("t", "x {{-3}}") if t.type is TokenType.NUMBER]
        assert tokens[0].value == "-3"
        assert lex("t", "x {{-3}}")[0].value == "x "


class TestComments:
    """Test comment handling."""

    def test_comment_produces_no_tokens(self):
        """Test that comments vanish from the stream."""
        assert kinds("a{{/* hidden */}}b") == [TokenType.TEXT, TokenType.TEXT, TokenType.EOF]

    def test_comment_with_trim(self):
        """Test trimming around comments."""
        tokens = lex("t", "a \n{{- /* c */ -}}\n b")
        assert [t.value for t in tokens if t.type is TokenType.TEXT] == ["a", "b"]

    def test_unclosed_comment(self):
        """Test that an unclosed comment is an error."""
        with pytest.raises(ParseError, match="unclosed comment"):
            lex("t", "{{/* oops }}")


class TestActionTokens:
    """Test tokens inside actions."""

    def test_keywords(self):
        """Test keyword recognition."""
        assert kinds("{{if}}{{else}}{{end}}{{range}}{{with}}")[1::3] == [
            TokenType.IF,
            TokenType.ELSE,
            TokenType.END,
            TokenType.RANGE,
            TokenType.WITH,
        ]

    def test_fields_and_variables(self):
        """Test field chains and variables keep their sigils."""
        assert values("{{$x.Name .A.B}}")[1:-2] == ["$x", ".Name", ".A", ".B"]

    def test_bool_and_nil(self):
        """Test literal keywords."""
        assert kinds("{{true false nil}}")[1:4] == [
            TokenType.BOOL,
            TokenType.BOOL,
            TokenType.NIL,
        ]

    def test_declaration_tokens(self):
        """Test := , and = tokens."""
        assert kinds("{{$i, $v := .}}")[1:6] == [
            TokenType.VARIABLE,
            TokenType.COMMA,
            TokenType.VARIABLE,
            TokenType.DECLARE,
            TokenType.DOT,
        ]
        assert TokenType.ASSIGN in kinds("{{$x = 1}}")

    def test_pipe_and_parens(self):
        """Test pipes and parentheses."""
        assert kinds("{{(len .) | print}}")[1:7] == [
            TokenType.LEFT_PAREN,
            TokenType.IDENTIFIER,
            TokenType.DOT,
            TokenType.RIGHT_PAREN,
            TokenType.PIPE,
            TokenType.IDENTIFIER,
        ]

    @pytest.mark.parametrize(
        "literal", ["42", "-7", "3.5", ".5", "1e3", "0x1F", "0o17", "0b101", "1_000"]
    )
    def test_numbers(self, literal):
        """Test number literal forms."""
        tokens = [t for t in lex("t", "{{" + literal + "}}") if t.type is TokenType.NUMBER]
        assert tokens[0].value == literal

    def test_bad_number(self):
        """Test that trailing letters make a bad number."""
        with pytest.raises(ParseError, match="bad number syntax"):
            lex("t", "{{12abc}}")

    def test_quoted_string_escapes(self):
        """Test backslash escapes in quoted strings."""
        tokens = [t for t in lex("t", r'{{"a\tb\n\x41é\"q"}}') if t.type is TokenType.STRING]
        assert tokens[0].value == 'a\tb\nAé"q'

    def test_raw_string(self):
        """Test raw strings are taken literally, newlines included."""
        tokens = [t for t in lex("t", "{{`a\\n\nb`}}") if t.type is TokenType.STRING]
        assert tokens[0].value == "a\\n\nb"

    def test_custom_delimiters(self):
        """Test alternative delimiters."""
        tokens = lex("t", "{{x}} <<.Name>>", left_delim="<<", right_delim=">>")
        assert tokens[0].value == "{{x}} "
        assert [t.value for t in tokens][1:4] == ["<<", ".Name", ">>"]


class TestLexErrors:
    """Test lexical errors and positions."""

    def test_unclosed_action(self):
        """Test an action missing its right delimiter."""
        with pytest.raises(ParseError, match="unclosed action"):
            lex("t", "hello {{ .Name ")

    def test_unterminated_string(self):
        """Test an unterminated quoted string."""
        with pytest.raises(ParseError, match="unterminated quoted string"):
            lex("t", '{{"abc}}')

    def test_unterminated_raw_string(self):
        """Test an unterminated raw string."""
        with pytest.raises(ParseError, match="unterminated raw quoted string"):
            lex("t", "{{`abc}}")

    def test_unrecognized_character(self):
        """Test an unknown character inside an action."""
        with pytest.raises(ParseError, match="unrecognized character"):
            lex("t", "{{ # }}")

    def test_unbalanced_parens(self):
        """Test parenthesis balance checks."""
        with pytest.raises(ParseError, match="unexpected right paren"):
            lex("t", "{{ ) }}")
        with pytest.raises(ParseError, match="unclosed left paren"):
            lex("t", "{{ (len . }}")

    def test_error_location_is_one_based(self):
        """Test the reported line and column."""
        with pytest.raises(ParseError) as exc_info:
            lex("page", "line one\nab {{ # }}")
        error = exc_info.value
        assert error.name == "page"
        assert (error.line, error.column) == (2, 7)
        assert str(error).startswith("template: page:2:7:")


class TestPositions:
    """Test token positions."""

    def test_positions_across_lines(self):
        """Test each token records its own line and column."""
        tokens = lex("t", "a\n\nbc{{.X}}\n{{ .Y }}")
        fields = [(t.value, t.line, t.column) for t in tokens if t.type is TokenType.FIELD]
        assert fields == [(".X", 3, 5), (".Y", 4, 4)]

    def test_large_source_lexes_in_linear_time(self):
        """Test a source of a few hundred kilobytes lexes quickly."""
        source = "ab\n{{.}}" * 40000
        start = time.perf_counter()
        tokens = lex("big", source)
        elapsed = time.perf_counter() - start

        assert elapsed < 5.0
        assert tokens[-1].type is TokenType.EOF
        assert tokens[-1].line == 40001
