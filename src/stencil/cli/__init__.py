"""Command-line interface for stencil."""

from .main import stencil

__all__ = ["stencil"]
