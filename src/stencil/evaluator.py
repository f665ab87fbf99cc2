"""Tree-walking evaluator rendering parse trees against a data value."""

import functools
import logging
import sys
import threading
from contextlib import contextmanager
from enum import Enum
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    Iterator,
    List,
    Optional,
    Protocol,
    Sequence,
    Tuple,
)

from .errors import (
    HELPER_TYPE_MISMATCH,
    MISSING_KEY,
    NIL_OUTPUT,
    Diagnostic,
    ExecError,
    RenderCancelled,
)
from .funcs import FuncError, Helper, KindMismatch
from .parse.nodes import (
    ActionNode,
    BoolNode,
    BreakNode,
    ChainNode,
    CommandNode,
    ContinueNode,
    DotNode,
    FieldNode,
    IdentifierNode,
    IfNode,
    ListNode,
    NilNode,
    Node,
    NumberNode,
    PipeNode,
    RangeNode,
    StringNode,
    TemplateNode,
    TextNode,
    VariableNode,
    WithNode,
)
from .parse.parser import Tree
from .values import (
    AccessError,
    Kind,
    field_of,
    is_true,
    iterate,
    key_of,
    kind_of,
    stringify,
)

if TYPE_CHECKING:
    from .template import TemplateSet

logger = logging.getLogger(__name__)


class Sink(Protocol):
    def write(self, text: str) -> Any: ...


class CancelSignal(Protocol):
    def is_set(self) -> bool: ...


class LoopControl(Enum):
    """Pending loop-control request raised by ``{{break}}``/``{{continue}}``."""

    NONE = "none"
    BREAK = "break"
    CONTINUE = "continue"


class _SoftFailure(Exception):
    """Unwinds to the enclosing statement, which then produces no output."""

    pass


class _Missing:
    """Marker for a pipeline stage that has no value piped into it."""

    def __repr__(self) -> str:
        return "<missing>"


MISSING = _Missing()


# Interpreter frames a single nested {{template}} invocation may use.
FRAMES_PER_INVOCATION = 24

# C stack reserved per interpreter frame on a render thread.
STACK_BYTES_PER_FRAME = 2048

MAX_STACK_SIZE = 256 * 1024 * 1024

_stack_lock = threading.Lock()
_deep_renders = 0
_saved_recursion_limit = 0


@contextmanager
def _recursion_limit(limit: int) -> Iterator[None]:
    """Raise the interpreter recursion limit while any deep render runs."""
    global _deep_renders, _saved_recursion_limit
    with _stack_lock:
        if _deep_renders == 0:
            _saved_recursion_limit = sys.getrecursionlimit()
        _deep_renders += 1
        if sys.getrecursionlimit() < limit:
            sys.setrecursionlimit(limit)
    try:
        yield
    finally:
        with _stack_lock:
            _deep_renders -= 1
            if _deep_renders == 0:
                sys.setrecursionlimit(_saved_recursion_limit)


def run_with_deep_stack(func: Callable[[], None], frames: int) -> None:
    """Call ``func`` on a thread whose stack fits about ``frames`` frames.

    Exceptions raised by ``func`` are re-raised in the calling thread.
    """
    stack_size = min(frames * STACK_BYTES_PER_FRAME, MAX_STACK_SIZE)
    stack_size = -(-stack_size // 4096) * 4096
    errors: List[BaseException] = []

    def run() -> None:
        try:
            func()
        except BaseException as e:
            errors.append(e)

    with _recursion_limit(stack_size // STACK_BYTES_PER_FRAME):
        with _stack_lock:
            previous = threading.stack_size(stack_size)
            try:
                worker = threading.Thread(target=run, name="stencil-render", daemon=True)
                worker.start()
            finally:
                threading.stack_size(previous)
        worker.join()
    if errors:
        raise errors[0]


class Evaluator:
    """Render one template of a set into a sink.

    The evaluator holds the mutable render state: the variable stack of the
    template being executed, the depth of nested template invocations, the
    pending loop-control flag, and the soft diagnostics collected so far.
    An evaluator serves a single render; create one per call.
    """

    def __init__(
        self,
        template_set: "TemplateSet",
        sink: Sink,
        cancel: Optional[CancelSignal] = None,
    ) -> None:
        self.set = template_set
        self.settings = template_set.settings
        self.sink = sink
        self.cancel = cancel
        self.diagnostics: List[Diagnostic] = []
        self.depth = 0
        self.deepest = 0
        self.loop = LoopControl.NONE
        self.tree: Optional[Tree] = None
        self.vars: List[Tuple[str, Any]] = []

    def execute(self, tree: Tree, data: Any) -> List[Diagnostic]:
        """Render ``tree`` with ``data`` as dot and as ``$``.

        Returns:
            Soft diagnostics recorded during the render

        Raises:
            ExecError: On any hard render failure
            RenderCancelled: If the cancellation signal was observed
        """
        self.tree = tree
        self.vars = [("$", data)]
        frames = self.settings.max_depth * FRAMES_PER_INVOCATION
        try:
            if frames <= sys.getrecursionlimit() // 2:
                self._walk(data, tree.root)
            else:
                run_with_deep_stack(functools.partial(self._walk, data, tree.root), frames)
        except RecursionError:
            raise ExecError(
                tree.name,
                f"template invocations nested too deeply for the interpreter stack "
                f"(depth {self.deepest})",
            )
        return self.diagnostics

    # State helpers

    def _error(self, node: Node, message: str) -> ExecError:
        return ExecError(self.tree.name, message, node.line, node.column)

    def _note(self, node: Node, kind: str, message: str) -> None:
        diagnostic = Diagnostic(kind, self.tree.name, node.line, node.column, message)
        logger.debug(f"Render diagnostic: {diagnostic}")
        self.diagnostics.append(diagnostic)

    def _soft(self, node: Node, kind: str, message: str) -> None:
        self._note(node, kind, message)
        raise _SoftFailure(message)

    def _check_cancel(self, node: Node) -> None:
        if self.cancel is not None and self.cancel.is_set():
            raise RenderCancelled(
                self.tree.name, "render cancelled", node.line, node.column
            )

    def _lookup_var(self, node: VariableNode) -> Any:
        for name, value in reversed(self.vars):
            if name == node.name:
                return value
        raise self._error(node, f"undefined variable: {node.name}")

    def _set_var(self, node: Node, name: str, value: Any) -> None:
        for i in range(len(self.vars) - 1, -1, -1):
            if self.vars[i][0] == name:
                self.vars[i] = (name, value)
                return
        raise self._error(node, f"undefined variable: {name}")

    def _bind(self, pipe: PipeNode, values: Sequence[Any]) -> None:
        for name, value in zip(pipe.variables, values):
            if pipe.is_assign:
                self._set_var(pipe, name, value)
            else:
                self.vars.append((name, value))

    # Statements

    def _walk(self, dot: Any, node: Node) -> None:
        self._check_cancel(node)
        if isinstance(node, ListNode):
            for child in node.nodes:
                self._walk(dot, child)
                if self.loop is not LoopControl.NONE:
                    return
        elif isinstance(node, TextNode):
            self.sink.write(node.text)
        elif isinstance(node, ActionNode):
            self._walk_action(dot, node)
        elif isinstance(node, (IfNode, WithNode)):
            self._walk_if_or_with(dot, node)
        elif isinstance(node, RangeNode):
            self._walk_range(dot, node)
        elif isinstance(node, TemplateNode):
            self._walk_template(dot, node)
        elif isinstance(node, BreakNode):
            self.loop = LoopControl.BREAK
        elif isinstance(node, ContinueNode):
            self.loop = LoopControl.CONTINUE
        else:
            raise self._error(node, f"unknown node: {type(node).__name__}")

    def _walk_action(self, dot: Any, node: ActionNode) -> None:
        pipe = node.pipe
        try:
            value = self._eval_pipeline(dot, pipe)
        except _SoftFailure:
            if pipe.variables and not pipe.is_assign:
                self._bind(pipe, [None] * len(pipe.variables))
            return
        if pipe.variables:
            return
        if value is None:
            self._note(node, NIL_OUTPUT, "nil value printed")
        self.sink.write(stringify(value))

    def _walk_if_or_with(self, dot: Any, node: Any) -> None:
        mark = len(self.vars)
        try:
            try:
                value = self._eval_pipeline(dot, node.pipe)
            except _SoftFailure:
                return
            if is_true(value):
                self._walk(value if isinstance(node, WithNode) else dot, node.body)
            elif node.else_body is not None:
                self._walk(dot, node.else_body)
        finally:
            del self.vars[mark:]

    def _walk_range(self, dot: Any, node: RangeNode) -> None:
        pipe = node.pipe
        mark = len(self.vars)
        try:
            try:
                value = self._eval_pipeline(dot, pipe, bind=False)
            except _SoftFailure:
                return
            try:
                items = iterate(value)
            except AccessError as e:
                raise self._error(node, str(e))
            count = 0
            for key, element in items:
                self._check_cancel(node)
                count += 1
                del self.vars[mark:]
                if len(pipe.variables) == 1:
                    self._bind(pipe, [element])
                elif len(pipe.variables) == 2:
                    self._bind(pipe, [key, element])
                self._walk(element, node.body)
                control, self.loop = self.loop, LoopControl.NONE
                if control is LoopControl.BREAK:
                    break
            if count == 0 and node.else_body is not None:
                del self.vars[mark:]
                self._walk(dot, node.else_body)
        finally:
            del self.vars[mark:]
            self.loop = LoopControl.NONE

    def _walk_template(self, dot: Any, node: TemplateNode) -> None:
        tree = self.set.tree(node.name)
        if tree is None:
            raise self._error(node, f"no such template {node.name!r}")
        if node.pipe is not None:
            try:
                dot = self._eval_pipeline(dot, node.pipe, bind=False)
            except _SoftFailure:
                return
        if self.depth >= self.settings.max_depth:
            raise self._error(
                node, f"exceeded maximum template depth ({self.settings.max_depth})"
            )
        saved_tree, saved_vars = self.tree, self.vars
        self.tree, self.vars = tree, [("$", dot)]
        self.depth += 1
        self.deepest = max(self.deepest, self.depth)
        try:
            self._walk(dot, tree.root)
        finally:
            self.tree, self.vars = saved_tree, saved_vars
            self.depth -= 1

    # Pipelines and commands

    def _eval_pipeline(self, dot: Any, pipe: PipeNode, bind: bool = True) -> Any:
        value: Any = MISSING
        for command in pipe.commands:
            value = self._eval_command(dot, command, value)
        if bind and pipe.variables:
            self._bind(pipe, [value] * len(pipe.variables))
        return value

    def _not_a_function(self, args: Sequence[Node], final: Any) -> None:
        if len(args) > 1 or final is not MISSING:
            raise self._error(args[0], "can't give argument to non-function")

    def _eval_command(self, dot: Any, command: CommandNode, final: Any) -> Any:
        head = command.args[0]
        rest = command.args[1:]
        if isinstance(head, FieldNode):
            return self._eval_field_chain(dot, dot, head, head.path, rest, final)
        if isinstance(head, ChainNode):
            return self._eval_chain(dot, head, rest, final)
        if isinstance(head, IdentifierNode):
            return self._eval_function(dot, head, rest, final)
        if isinstance(head, VariableNode):
            return self._eval_variable(dot, head, rest, final)
        self._not_a_function(command.args, final)
        if isinstance(head, PipeNode):
            return self._eval_pipeline(dot, head, bind=False)
        if isinstance(head, NilNode):
            raise self._error(head, "nil is not a command")
        return self._eval_arg(dot, head)

    def _eval_arg(self, dot: Any, node: Node) -> Any:
        self._check_cancel(node)
        if isinstance(node, DotNode):
            return dot
        if isinstance(node, NilNode):
            return None
        if isinstance(node, (BoolNode, NumberNode, StringNode)):
            return node.value
        if isinstance(node, FieldNode):
            return self._eval_field_chain(dot, dot, node, node.path, (), MISSING)
        if isinstance(node, VariableNode):
            return self._eval_variable(dot, node, (), MISSING)
        if isinstance(node, PipeNode):
            return self._eval_pipeline(dot, node, bind=False)
        if isinstance(node, IdentifierNode):
            return self._eval_function(dot, node, (), MISSING)
        if isinstance(node, ChainNode):
            return self._eval_chain(dot, node, (), MISSING)
        raise self._error(node, f"can't handle {type(node).__name__} for arg")

    def _eval_variable(
        self, dot: Any, node: VariableNode, args: Sequence[Node], final: Any
    ) -> Any:
        value = self._lookup_var(node)
        if not node.path:
            if args or final is not MISSING:
                raise self._error(node, "can't give argument to non-function")
            return value
        return self._eval_field_chain(dot, value, node, node.path, args, final)

    def _eval_chain(
        self, dot: Any, node: ChainNode, args: Sequence[Node], final: Any
    ) -> Any:
        base = self._eval_arg(dot, node.base)
        return self._eval_field_chain(dot, base, node, node.path, args, final)

    def _eval_field_chain(
        self,
        dot: Any,
        receiver: Any,
        node: Node,
        path: Sequence[str],
        args: Sequence[Node],
        final: Any,
    ) -> Any:
        for name in path[:-1]:
            receiver = self._eval_field(dot, name, node, receiver, (), MISSING)
        return self._eval_field(dot, path[-1], node, receiver, args, final)

    def _eval_field(
        self,
        dot: Any,
        name: str,
        node: Node,
        receiver: Any,
        args: Sequence[Node],
        final: Any,
    ) -> Any:
        has_args = bool(args) or final is not MISSING
        if kind_of(receiver) is Kind.MAPPING:
            if has_args:
                raise self._error(node, f"{name} is not a method but has arguments")
            value, found = key_of(receiver, name)
            if not found:
                policy = self.settings.missing_key
                if policy == "error":
                    raise self._error(node, f"map has no entry for key {name!r}")
                if policy == "default":
                    self._note(node, MISSING_KEY, f"map has no entry for key {name!r}")
            return value
        try:
            value = field_of(receiver, name)
        except AccessError as e:
            raise self._error(node, str(e))
        if _is_method(value):
            return self._eval_call(dot, Helper(name, value), node, args, final)
        if has_args:
            raise self._error(node, f"{name} is not a method but has arguments")
        return value

    def _eval_function(
        self, dot: Any, node: IdentifierNode, args: Sequence[Node], final: Any
    ) -> Any:
        helper = self.set.funcs.lookup(node.name)
        if helper is None:
            raise self._error(node, f"{node.name!r} is not a defined function")
        return self._eval_call(dot, helper, node, args, final)

    def _eval_call(
        self,
        dot: Any,
        helper: Helper,
        node: Node,
        args: Sequence[Node],
        final: Any,
    ) -> Any:
        count = len(args) + (0 if final is MISSING else 1)
        try:
            helper.check_arity(count)
        except FuncError as e:
            raise self._error(node, str(e))
        if helper.lazy:
            values: List[Any] = [functools.partial(self._eval_arg, dot, a) for a in args]
            if final is not MISSING:
                values.append(functools.partial(_identity, final))
        else:
            values = [self._eval_arg(dot, a) for a in args]
            if final is not MISSING:
                values.append(final)
            try:
                values = helper.check_kinds(values)
            except KindMismatch as e:
                self._soft(node, HELPER_TYPE_MISMATCH, str(e))
        try:
            return helper(*values)
        except FuncError as e:
            raise self._error(node, f"error calling {helper.name}: {e}")
        except KindMismatch as e:
            self._soft(node, HELPER_TYPE_MISMATCH, str(e))


def _identity(value: Any) -> Any:
    return value


def _is_method(value: Any) -> bool:
    return callable(value) and getattr(value, "__self__", None) is not None and (
        kind_of(value) is Kind.FUNCTION
    )
