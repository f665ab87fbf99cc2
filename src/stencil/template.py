"""Named collections of parsed templates sharing one helper registry."""

import io
import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from .config import EngineSettings
from .errors import ExecError, HelperRegistrationError
from .evaluator import CancelSignal, Evaluator, Sink
from .funcs import FuncRegistry
from .loader import parse_files, parse_glob
from .parse.parser import Tree, parse
from .renderer import RenderResult

logger = logging.getLogger(__name__)

_MISSING_KEY_ALIASES = {
    "default": "default",
    "invalid": "default",
    "zero": "zero",
    "error": "error",
}


class Template:
    """A parsed template together with the set it belongs to."""

    def __init__(self, name: str, tree: Tree, template_set: "TemplateSet") -> None:
        self.name = name
        self.tree = tree
        self.set = template_set

    def render(
        self,
        data: Any,
        sink: Optional[Sink] = None,
        cancel: Optional[CancelSignal] = None,
    ) -> RenderResult:
        """Render this template; see :meth:`TemplateSet.render`."""
        return self.set.render(self.name, data, sink, cancel)

    def __repr__(self) -> str:
        return f"Template({self.name!r})"


class TemplateSet:
    """A namespace of templates that can invoke each other by name.

    The set is the unit of helper binding: helpers must be registered before
    the first successful parse, after which the registry is frozen. Parsing
    is all-or-nothing; a failed parse leaves the set untouched.

    Args:
        name: Name of the root template; ``parse`` registers under it by default
        settings: Engine settings, read from the environment when omitted
        helpers: Initial helper functions

    Example:
        >>> templates = TemplateSet("greeting").parse("Hello {{.}}!")
        >>> templates.render("greeting", "world").output
        'Hello world!'
    """

    def __init__(
        self,
        name: str,
        settings: Optional[EngineSettings] = None,
        helpers: Optional[Mapping[str, Callable[..., Any]]] = None,
    ) -> None:
        self.name = name
        self.settings = settings if settings is not None else EngineSettings.from_env()
        self.funcs = FuncRegistry(helpers)
        self._trees: Dict[str, Tree] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        """True once a template has been parsed into the set."""
        return self._frozen

    # Configuration

    def add_helpers(self, helpers: Mapping[str, Callable[..., Any]]) -> "TemplateSet":
        """Register helper functions.

        Raises:
            HelperRegistrationError: If the set has already parsed a template,
                or a helper is invalid
        """
        if self._frozen:
            raise HelperRegistrationError(
                f"template set {self.name!r}: cannot add helpers after parsing"
            )
        self.funcs.add(helpers)
        return self

    def delims(self, left: str = "", right: str = "") -> "TemplateSet":
        """Set the action delimiters used by subsequent parses.

        Empty strings select the defaults ``{{`` and ``}}``.
        """
        self.settings = self._updated_settings(
            left_delim=left or "{{", right_delim=right or "}}"
        )
        return self

    def option(self, *options: str) -> "TemplateSet":
        """Apply ``key=value`` options; only ``missingkey`` is known.

        Raises:
            ValueError: For an unknown option or value
        """
        for opt in options:
            key, sep, value = opt.partition("=")
            if key != "missingkey" or not sep:
                raise ValueError(f"unrecognized option: {opt}")
            if value not in _MISSING_KEY_ALIASES:
                raise ValueError(f"unrecognized option: {opt}")
            self.settings = self._updated_settings(
                missing_key=_MISSING_KEY_ALIASES[value]
            )
        return self

    def _updated_settings(self, **changes: Any) -> EngineSettings:
        return EngineSettings(**{**self.settings.model_dump(), **changes})

    # Parsing

    def parse(self, source: str, name: Optional[str] = None) -> "TemplateSet":
        """Parse source into the set under ``name`` (the set's name by default).

        Inline ``{{define}}`` and ``{{block}}`` templates are registered too.

        Raises:
            ParseError: If the source is malformed; the set is unchanged
        """
        return self.parse_named([(name or self.name, source)])

    def parse_named(self, sources: Iterable[Tuple[str, str]]) -> "TemplateSet":
        """Parse several (name, source) pairs as one all-or-nothing unit.

        Raises:
            ParseError: If any source is malformed; the set is unchanged
        """
        staged = dict(self._trees)
        count = 0
        for name, source in sources:
            trees = parse(
                name,
                source,
                self.funcs,
                self.settings.left_delim,
                self.settings.right_delim,
            )
            for tree in trees.values():
                _merge(staged, tree)
            count += 1
        self._trees = staged
        self._frozen = True
        logger.debug(
            f"Template set {self.name!r}: parsed {count} source(s), "
            f"{len(self._trees)} template(s) defined"
        )
        return self

    def parse_files(self, *paths: Any) -> "TemplateSet":
        """Parse template files, each named by its base name."""
        return parse_files(self, paths)

    def parse_glob(self, pattern: str) -> "TemplateSet":
        """Parse every file matching a glob pattern."""
        return parse_glob(self, pattern)

    # Lookup

    def tree(self, name: str) -> Optional[Tree]:
        return self._trees.get(name)

    def lookup(self, name: str) -> Optional[Template]:
        """The template registered under ``name``, or None."""
        tree = self._trees.get(name)
        if tree is None:
            return None
        return Template(name, tree, self)

    def templates(self) -> List[Template]:
        """All templates in the set, ordered by name."""
        return [Template(name, self._trees[name], self) for name in sorted(self._trees)]

    def defined_templates(self) -> str:
        """Suffix for error messages listing the defined template names."""
        if not self._trees:
            return ""
        names = ", ".join(f'"{name}"' for name in sorted(self._trees))
        return f"; defined templates are: {names}"

    def __contains__(self, name: object) -> bool:
        return name in self._trees

    def __len__(self) -> int:
        return len(self._trees)

    # Rendering

    def render(
        self,
        name: str,
        data: Any,
        sink: Optional[Sink] = None,
        cancel: Optional[CancelSignal] = None,
    ) -> RenderResult:
        """Render the template ``name`` with ``data`` as dot.

        Args:
            name: Template to render
            data: Value bound to dot and ``$``
            sink: Object with a ``write(str)`` method receiving the output;
                the output is collected and returned when omitted
            cancel: Object with an ``is_set()`` method, polled at every node

        Returns:
            RenderResult with the output and any soft diagnostics

        Raises:
            ExecError: If the template does not exist or rendering fails
            RenderCancelled: If cancellation was observed
        """
        tree = self._trees.get(name)
        if tree is None:
            raise ExecError(
                self.name,
                f"no template {name!r} associated with template set {self.name!r}"
                f"{self.defined_templates()}",
            )
        start_time = time.time()
        buffer = None
        if sink is None:
            buffer = io.StringIO()
            sink = buffer
        diagnostics = Evaluator(self, sink, cancel).execute(tree, data)
        return RenderResult(
            output=buffer.getvalue() if buffer is not None else "",
            diagnostics=diagnostics,
            render_time=time.time() - start_time,
            metadata={"template": name, "set": self.name},
        )

    def clone(self) -> "TemplateSet":
        """Copy of the set that can diverge from the original.

        Trees are immutable and shared; the helper registry is copied so the
        clone may register further helpers, which unfreezes it.
        """
        clone = TemplateSet(self.name, settings=self.settings.model_copy())
        clone.funcs = self.funcs.copy()
        clone._trees = dict(self._trees)
        return clone

    def __repr__(self) -> str:
        return f"TemplateSet({self.name!r}, templates={sorted(self._trees)})"


def _merge(trees: Dict[str, Tree], tree: Tree) -> None:
    """Add a tree, unless it is empty and would hide a non-empty one."""
    existing = trees.get(tree.name)
    if existing is not None and tree.is_empty() and not existing.is_empty():
        return
    trees[tree.name] = tree
