"""Error types and soft diagnostics for the stencil template engine."""

from dataclasses import dataclass
from typing import Optional


class TemplateError(Exception):
    """Base exception for all template engine errors."""

    pass


class ParseError(TemplateError):
    """Malformed template source: lexical, structural or scoping problem."""

    def __init__(self, name: str, line: int, column: int, message: str):
        self.name = name
        self.line = line
        self.column = column
        self.message = message
        super().__init__(f"template: {name}:{line}:{column}: {message}")


class ExecError(TemplateError):
    """Hard failure while rendering; the render is aborted."""

    def __init__(
        self,
        name: str,
        message: str,
        line: Optional[int] = None,
        column: Optional[int] = None,
    ):
        self.name = name
        self.message = message
        self.line = line
        self.column = column
        if line is None:
            location = name
        else:
            location = f"{name}:{line}:{column}"
        super().__init__(f"template: {location}: {message}")


class RenderCancelled(ExecError):
    """The caller's cancellation signal was observed during a render."""

    pass


class HelperRegistrationError(TemplateError):
    """Helper functions were registered too late or are invalid."""

    pass


@dataclass(frozen=True)
class Diagnostic:
    """A non-fatal condition recorded during a render."""

    kind: str
    template: str
    line: int
    column: int
    message: str

    def __str__(self) -> str:
        return f"{self.template}:{self.line}:{self.column}: {self.kind}: {self.message}"


# Diagnostic kinds
HELPER_TYPE_MISMATCH = "helper-type-mismatch"
MISSING_KEY = "missing-key"
NIL_OUTPUT = "nil-output"
