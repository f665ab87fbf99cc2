"""Engine settings with environment overrides."""

import os
from typing import Any, Literal, Mapping, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

MAX_DEPTH_ENV = "TEMPLATE_MAX_DEPTH"

DEFAULT_MAX_DEPTH = 100000


class EngineSettings(BaseModel):
    """Settings shared by every template in a set.

    Attributes:
        max_depth: Maximum nesting of ``{{template}}`` invocations before a
            render fails.
        left_delim: Opening action delimiter.
        right_delim: Closing action delimiter.
        missing_key: What a field lookup on a mapping does when the key is
            absent. "default" yields nil and records a diagnostic, "zero"
            yields nil silently, "error" fails the render.

    Example:
        EngineSettings(max_depth=50, left_delim="<<", right_delim=">>")
    """

    max_depth: int = Field(default=DEFAULT_MAX_DEPTH, ge=1)
    left_delim: str = "{{"
    right_delim: str = "}}"
    missing_key: Literal["default", "zero", "error"] = "default"

    @field_validator("left_delim", "right_delim")
    @classmethod
    def validate_delim(cls, v: str) -> str:
        if not v or any(c.isspace() for c in v):
            raise ValueError("delimiters must be non-empty and contain no whitespace")
        return v

    @model_validator(mode="after")
    def validate_distinct_delims(self) -> "EngineSettings":
        if self.left_delim == self.right_delim:
            raise ValueError("left and right delimiters must differ")
        return self

    @classmethod
    def from_env(
        cls, environ: Optional[Mapping[str, str]] = None, **overrides: Any
    ) -> "EngineSettings":
        """Build settings, honouring ``TEMPLATE_MAX_DEPTH``.

        Explicit overrides win over the environment. Overrides given as
        ``None`` are ignored so CLI options can be passed straight through.

        Raises:
            ValueError: If the environment value is not an integer
        """
        if environ is None:
            environ = os.environ
        values = {}
        raw = environ.get(MAX_DEPTH_ENV)
        if raw is not None and raw.strip():
            try:
                values["max_depth"] = int(raw.strip())
            except ValueError:
                raise ValueError(
                    f"Environment variable {MAX_DEPTH_ENV} must be an integer, got {raw!r}"
                )
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
