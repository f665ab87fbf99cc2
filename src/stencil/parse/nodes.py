"""Parse tree nodes.

All nodes are immutable. Every node carries the 1-based line and column of
the token that introduced it so render errors can point back at the source.
"""

from dataclasses import dataclass
from typing import Optional, Tuple, Union


@dataclass(frozen=True)
class Node:
    """Base class for all parse tree nodes."""

    line: int
    column: int


@dataclass(frozen=True)
class ListNode(Node):
    """Ordered sequence of nodes; the container for every template body."""

    nodes: Tuple[Node, ...] = ()

    def is_blank(self) -> bool:
        """True when the list holds nothing but whitespace text."""
        return all(
            isinstance(node, TextNode) and not node.text.strip() for node in self.nodes
        )


@dataclass(frozen=True)
class TextNode(Node):
    text: str


# Arguments


@dataclass(frozen=True)
class DotNode(Node):
    """The current value of dot."""


@dataclass(frozen=True)
class NilNode(Node):
    """The untyped nil constant; only valid as a function argument."""


@dataclass(frozen=True)
class BoolNode(Node):
    value: bool


@dataclass(frozen=True)
class NumberNode(Node):
    value: Union[int, float]
    text: str


@dataclass(frozen=True)
class StringNode(Node):
    value: str
    quoted: str


@dataclass(frozen=True)
class IdentifierNode(Node):
    """Name of a function, resolved against the set's registry at render time."""

    name: str


@dataclass(frozen=True)
class VariableNode(Node):
    """A variable reference, optionally followed by a field path: ``$x.A.B``."""

    name: str
    path: Tuple[str, ...] = ()


@dataclass(frozen=True)
class FieldNode(Node):
    """A field path starting at dot: ``.A.B``."""

    path: Tuple[str, ...]


@dataclass(frozen=True)
class ChainNode(Node):
    """A field path applied to an arbitrary term: ``(index . 0).Name``."""

    base: Node
    path: Tuple[str, ...]


@dataclass(frozen=True)
class CommandNode(Node):
    """One stage of a pipeline: an operand followed by its arguments."""

    args: Tuple[Node, ...]


@dataclass(frozen=True)
class PipeNode(Node):
    """Commands joined by ``|``, with optional variable declaration or assignment."""

    commands: Tuple[CommandNode, ...]
    variables: Tuple[str, ...] = ()
    is_assign: bool = False


# Statements


@dataclass(frozen=True)
class ActionNode(Node):
    pipe: PipeNode


@dataclass(frozen=True)
class IfNode(Node):
    pipe: PipeNode
    body: ListNode
    else_body: Optional[ListNode] = None


@dataclass(frozen=True)
class RangeNode(Node):
    pipe: PipeNode
    body: ListNode
    else_body: Optional[ListNode] = None


@dataclass(frozen=True)
class WithNode(Node):
    pipe: PipeNode
    body: ListNode
    else_body: Optional[ListNode] = None


@dataclass(frozen=True)
class TemplateNode(Node):
    """Invocation of a named template, resolved at render time."""

    name: str
    pipe: Optional[PipeNode] = None


@dataclass(frozen=True)
class BreakNode(Node):
    pass


@dataclass(frozen=True)
class ContinueNode(Node):
    pass

