"""Static checks over template sources and template sets."""

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Optional, Set, Tuple

from .config import EngineSettings
from .errors import ParseError
from .parse.nodes import ChainNode, FieldNode, IdentifierNode, Node, TemplateNode, VariableNode
from .template import TemplateSet

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    """Result of template validation."""

    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    variables: Set[str] = field(default_factory=set)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def has_warnings(self) -> bool:
        """Check if validation has warnings."""
        return len(self.warnings) > 0

    @property
    def has_errors(self) -> bool:
        """Check if validation has errors."""
        return len(self.errors) > 0


def walk_nodes(node: Node) -> Iterator[Node]:
    """Yield ``node`` and every node below it, depth-first."""
    yield node
    for f in dataclasses.fields(node):
        value = getattr(node, f.name)
        if isinstance(value, Node):
            yield from walk_nodes(value)
        elif isinstance(value, tuple):
            for item in value:
                if isinstance(item, Node):
                    yield from walk_nodes(item)


class TemplateValidator:
    """Report problems in templates without rendering them.

    Errors are parse failures. Warnings cover what only shows up at render
    time: ``{{template}}`` targets that no source defines, and templates with
    an empty body.
    """

    def __init__(
        self,
        helpers: Optional[Mapping[str, Callable[..., Any]]] = None,
        settings: Optional[EngineSettings] = None,
    ) -> None:
        """Initialize the validator.

        Args:
            helpers: Helper functions the templates may call
            settings: Engine settings (delimiters matter for parsing)
        """
        self.helpers = dict(helpers or {})
        self.settings = settings

    def validate(self, sources: Iterable[Tuple[str, str]]) -> ValidationResult:
        """Validate (name, source) pairs as if parsed into one set.

        Each source is parsed on its own so every malformed source is
        reported, not just the first.
        """
        template_set = TemplateSet("validation", settings=self.settings, helpers=self.helpers)
        errors = []
        source_count = 0
        for name, source in sources:
            source_count += 1
            try:
                template_set.parse(source, name)
            except ParseError as e:
                errors.append(str(e))
        result = self.validate_set(template_set)
        result.errors = errors + result.errors
        result.is_valid = not result.errors
        result.metadata["sources"] = source_count
        return result

    def validate_set(self, template_set: TemplateSet) -> ValidationResult:
        """Check an already-parsed set."""
        warnings = []
        variables: Set[str] = set()
        invocations: Dict[str, List[str]] = {}
        functions: Set[str] = set()

        for template in template_set.templates():
            targets = []
            if template.tree.is_empty():
                warnings.append(f"Template {template.name!r} is empty")
            for node in walk_nodes(template.tree.root):
                if isinstance(node, TemplateNode):
                    targets.append(node.name)
                    if node.name not in template_set:
                        warnings.append(
                            f"{template.tree.parse_name}:{node.line}:{node.column}: "
                            f"template {template.name!r} invokes undefined template {node.name!r}"
                        )
                elif isinstance(node, FieldNode):
                    variables.add("." + ".".join(node.path))
                elif isinstance(node, VariableNode):
                    variables.add(".".join((node.name,) + node.path))
                elif isinstance(node, ChainNode):
                    variables.add("(...)." + ".".join(node.path))
                elif isinstance(node, IdentifierNode):
                    functions.add(node.name)
            invocations[template.name] = targets

        for warning in warnings:
            logger.debug(f"Validation warning: {warning}")
        return ValidationResult(
            is_valid=True,
            warnings=warnings,
            variables=variables,
            metadata={
                "templates": [t.name for t in template_set.templates()],
                "invocations": invocations,
                "functions": sorted(functions),
                "variable_count": len(variables),
            },
        )
