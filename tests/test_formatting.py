"""Tests for the print-family formatting functions."""

import pytest

from stencil.formatting import sprint, sprintf, sprintln


class TestSprintf:
    """Test printf directives."""

    @pytest.mark.parametrize(
        "fmt,args,expected",
        [
            ("%d", (42,), "42"),
            ("%5d|", (42,), "   42|"),
            ("%-5d|", (42,), "42   |"),
            ("%05d", (-42,), "-0042"),
            ("%+d", (5,), "+5"),
            ("%x %X %o %b", (255, 255, 8, 5), "ff FF 10 101"),
            ("%#x", (255,), "0xff"),
            ("%c", (65,), "A"),
            ("%.2f", (3.14159,), "3.14"),
            ("%8.3f|", (2.5,), "   2.500|"),
            ("%e", (1234.5,), "1.234500e+03"),
            ("%g", (0.5,), "0.5"),
            ("%s and %v", ("a", [1, 2]), "a and [1 2]"),
            ("%.3s", ("abcdef",), "abc"),
            ("%q", ("hi",), '"hi"'),
            ("%t", (True,), "true"),
            ("%T", (1.5,), "float"),
            ("%x", ("hi",), "6869"),
            ("100%%", (), "100%"),
            ("%v", (None,), "<nil>"),
            ("%v", ({"b": 1, "a": 2},), "map[a:2 b:1]"),
        ],
    )
    def test_directives(self, fmt, args, expected):
        """Test supported verbs, flags, width and precision."""
        assert sprintf(fmt, *args) == expected

    def test_missing_operand(self):
        """Test a directive without an operand."""
        assert sprintf("%s and %d", "a") == "a and %!d(MISSING)"

    def test_extra_operands(self):
        """Test surplus operands are reported."""
        assert sprintf("x", 1, "y") == "x%!(EXTRA int=1, str=y)"

    def test_bad_verb_for_operand(self):
        """Test a verb that does not fit the operand's kind."""
        assert sprintf("%d", "seven") == "%!d(str=seven)"


class TestSprint:
    """Test print and println."""

    def test_spaces_between_non_strings(self):
        """Test spacing rules of print."""
        assert sprint(1, 2) == "1 2"
        assert sprint("a", "b") == "ab"
        assert sprint("a", 1, "b") == "a1b"
        assert sprint(None) == "<nil>"

    def test_println(self):
        """Test println always separates and terminates."""
        assert sprintln("a", "b", 3) == "a b 3\n"
        assert sprintln() == "\n"
