import importlib
import json
import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from ..config import EngineSettings
from ..errors import ParseError, TemplateError
from ..funcs import BUILTIN_DESCRIPTIONS
from ..loader import DataFileError, collect_template_paths, load_data_file, read_template_files
from ..template import TemplateSet
from ..validator import TemplateValidator

console = Console()
err_console = Console(stderr=True)

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_PARSE_ERROR = 1
EXIT_RENDER_ERROR = 2
EXIT_IO_ERROR = 3


class HelperLoadError(Exception):
    """A ``--helper`` reference could not be imported."""

    pass


class _EchoSink:
    """Sink writing rendered output straight to stdout."""

    def write(self, text: str) -> None:
        click.echo(text, nl=False)


def load_helpers(references: Sequence[str]) -> Dict[str, Callable[..., Any]]:
    """Import helpers named as ``module:attr``.

    The attribute may be a mapping of name to callable, registered as-is, or
    a single callable, registered under the attribute's name.

    Raises:
        HelperLoadError: If a reference is malformed or cannot be imported
    """
    helpers: Dict[str, Callable[..., Any]] = {}
    for reference in references:
        module_path, sep, attr = reference.partition(":")
        if not sep or not module_path or not attr:
            raise HelperLoadError(
                f"Invalid helper reference {reference!r}. "
                f"Suggestion: Use the form 'package.module:attribute'"
            )
        try:
            module = importlib.import_module(module_path)
        except ImportError as e:
            raise HelperLoadError(f"Cannot import helper module {module_path!r}: {e}")
        try:
            value = getattr(module, attr)
        except AttributeError:
            raise HelperLoadError(f"Module {module_path!r} has no attribute {attr!r}")
        if isinstance(value, Mapping):
            helpers.update(value)
        elif callable(value):
            helpers[attr] = value
        else:
            raise HelperLoadError(
                f"Helper {reference!r} is neither a callable nor a mapping of callables"
            )
    return helpers


def _fail(message: str, code: int) -> None:
    err_console.print(f"❌ [red]{escape(message)}[/red]")
    raise SystemExit(code)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def stencil(verbose: bool) -> None:
    """Stencil - render text templates against structured data."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


@stencil.command()
@click.argument("template_root", type=click.Path(path_type=Path))
@click.argument("data_file", type=click.Path(path_type=Path))
@click.option("--name", "-n", help="Template to render (default: first template file)")
@click.option(
    "--helper",
    "helper_refs",
    multiple=True,
    metavar="MODULE:ATTR",
    help="Helper function or mapping of helpers to register",
)
@click.option("--output", "-o", type=click.Path(path_type=Path), help="Write output to file")
@click.option("--pattern", default="*", show_default=True, help="File glob for directories")
@click.option("--max-depth", type=int, help="Maximum template invocation depth")
@click.option("--left-delim", help="Opening action delimiter")
@click.option("--right-delim", help="Closing action delimiter")
@click.option(
    "--missing-key",
    type=click.Choice(["default", "zero", "error"]),
    help="Behaviour for absent mapping keys",
)
@click.option(
    "--diagnostics/--no-diagnostics",
    default=True,
    help="Report soft render diagnostics on stderr",
)
def render(
    template_root: Path,
    data_file: Path,
    name: Optional[str],
    helper_refs: Sequence[str],
    output: Optional[Path],
    pattern: str,
    max_depth: Optional[int],
    left_delim: Optional[str],
    right_delim: Optional[str],
    missing_key: Optional[str],
    diagnostics: bool,
) -> None:
    """Render TEMPLATE_ROOT (a file or directory) with data from DATA_FILE.

    Exit codes: 0 success, 1 parse error, 2 render error, 3 I/O error.
    """
    try:
        settings = EngineSettings.from_env(
            max_depth=max_depth,
            left_delim=left_delim,
            right_delim=right_delim,
            missing_key=missing_key,
        )
        helpers = load_helpers(helper_refs)
        paths = collect_template_paths(template_root, pattern)
        if not paths:
            raise FileNotFoundError(f"No template files under {template_root}")
        sources = read_template_files(paths)
        data = load_data_file(data_file)
    except (OSError, ValueError, DataFileError, HelperLoadError) as e:
        _fail(str(e), EXIT_IO_ERROR)

    try:
        template_set = TemplateSet(sources[0][0], settings=settings, helpers=helpers)
        template_set.parse_named(sources)
    except ParseError as e:
        _fail(str(e), EXIT_PARSE_ERROR)
    except TemplateError as e:
        _fail(str(e), EXIT_IO_ERROR)

    target = name or template_set.name
    try:
        if output is not None:
            with open(output, "w", encoding="utf-8") as sink:
                result = template_set.render(target, data, sink=sink)
        else:
            result = template_set.render(target, data, sink=_EchoSink())
    except TemplateError as e:
        logger.warning(f"Render of {target!r} failed: {e}")
        _fail(str(e), EXIT_RENDER_ERROR)
    except OSError as e:
        _fail(str(e), EXIT_IO_ERROR)
    except Exception as e:
        logger.warning(f"Helper raised during render of {target!r}: {e!r}")
        _fail(f"{type(e).__name__}: {e}", EXIT_RENDER_ERROR)

    if diagnostics and result.diagnostics:
        for diagnostic in result.diagnostics:
            err_console.print(f"⚠️  [yellow]{escape(str(diagnostic))}[/yellow]")
    if output is not None:
        err_console.print(f"✅ [green]Rendered {target!r} to {escape(str(output))}[/green]")


@stencil.command()
@click.argument("template_root", type=click.Path(exists=True, path_type=Path))
@click.option("--pattern", default="*", show_default=True, help="File glob for directories")
@click.option(
    "--helper",
    "helper_refs",
    multiple=True,
    metavar="MODULE:ATTR",
    help="Helper function or mapping of helpers to register",
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["text", "json"]),
    default="text",
    help="Output format",
)
def check(
    template_root: Path, pattern: str, helper_refs: Sequence[str], output_format: str
) -> None:
    """Validate templates without rendering them."""
    try:
        helpers = load_helpers(helper_refs)
        sources = read_template_files(collect_template_paths(template_root, pattern))
        settings = EngineSettings.from_env()
    except (OSError, ValueError, HelperLoadError) as e:
        _fail(str(e), EXIT_IO_ERROR)

    result = TemplateValidator(helpers=helpers, settings=settings).validate(sources)

    if output_format == "json":
        report = {
            "is_valid": result.is_valid,
            "errors": result.errors,
            "warnings": result.warnings,
            "variables": sorted(result.variables),
            "metadata": result.metadata,
        }
        click.echo(json.dumps(report, indent=2))
    else:
        if result.is_valid:
            console.print("✅ [green]Templates are valid[/green]")
        else:
            console.print("❌ [red]Template validation failed[/red]")

        if result.errors:
            console.print("\n[red]Errors:[/red]")
            for error in result.errors:
                console.print(f"  • {escape(error)}")

        if result.warnings:
            console.print("\n[yellow]Warnings:[/yellow]")
            for warning in result.warnings:
                console.print(f"  • {escape(warning)}")

        templates: List[str] = result.metadata.get("templates", [])
        console.print(
            f"\n[dim]Templates:[/dim] {escape(', '.join(templates)) or '(none)'}"
        )
        console.print(
            f"[dim]Fields:[/dim] {escape(', '.join(sorted(result.variables))) or '(none)'}"
        )

    if not result.is_valid:
        raise SystemExit(EXIT_PARSE_ERROR)


@stencil.command()
@click.option(
    "--helper",
    "helper_refs",
    multiple=True,
    metavar="MODULE:ATTR",
    help="Also list these helpers",
)
def funcs(helper_refs: Sequence[str]) -> None:
    """List the functions callable from templates."""
    try:
        helpers = load_helpers(helper_refs)
    except HelperLoadError as e:
        _fail(str(e), EXIT_IO_ERROR)

    table = Table(title="Template Functions")
    table.add_column("Name", style="cyan")
    table.add_column("Description")
    table.add_column("Example", style="green")
    for fname, description, example in BUILTIN_DESCRIPTIONS:
        table.add_row(fname, description, escape(f"{{{{{example}}}}}"))
    for fname in sorted(helpers):
        doc = (getattr(helpers[fname], "__doc__", None) or "").strip().splitlines()
        table.add_row(fname, escape(doc[0]) if doc else "user helper", "")
    console.print(table)
    if helpers:
        console.print(
            Panel(
                f"{len(helpers)} helper(s) loaded; helpers shadow built-ins of the same name",
                border_style="blue",
            )
        )
