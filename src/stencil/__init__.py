"""Stencil: a text template engine with pipelines and named templates."""

from .config import EngineSettings
from .errors import (
    Diagnostic,
    ExecError,
    HelperRegistrationError,
    ParseError,
    RenderCancelled,
    TemplateError,
)
from .funcs import FuncRegistry, Helper
from .loader import DataFileError, load_data_file
from .renderer import BatchRenderer, BatchResult, RenderResult
from .template import Template, TemplateSet
from .validator import TemplateValidator, ValidationResult
from .values import Kind, is_true, kind_of, stringify

__version__ = "0.1.0"

__all__ = [
    "BatchRenderer",
    "BatchResult",
    "DataFileError",
    "Diagnostic",
    "EngineSettings",
    "ExecError",
    "FuncRegistry",
    "Helper",
    "HelperRegistrationError",
    "Kind",
    "ParseError",
    "RenderCancelled",
    "RenderResult",
    "Template",
    "TemplateError",
    "TemplateSet",
    "TemplateValidator",
    "ValidationResult",
    "is_true",
    "kind_of",
    "load_data_file",
    "stringify",
]
