"""Recursive-descent parser building node trees from the token stream."""

import logging
from dataclasses import dataclass
from typing import Container, Dict, List, Optional, Tuple, Union

from ..errors import ParseError
from .lexer import Token, TokenType, lex
from .nodes import (
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

logger = logging.getLogger(__name__)

# Token types that may start an operand
OPERAND_START = frozenset(
    {
        TokenType.BOOL,
        TokenType.DOT,
        TokenType.FIELD,
        TokenType.IDENTIFIER,
        TokenType.NUMBER,
        TokenType.NIL,
        TokenType.STRING,
        TokenType.VARIABLE,
        TokenType.LEFT_PAREN,
    }
)

# Arguments that cannot start a pipeline stage after the first
NON_EXECUTABLE = (BoolNode, DotNode, NilNode, NumberNode, StringNode)


@dataclass(frozen=True)
class Tree:
    """A parsed template body together with the name it is registered under."""

    name: str
    root: ListNode
    parse_name: str

    def is_empty(self) -> bool:
        """True when the body holds nothing but whitespace."""
        return self.root.is_blank()


def parse_number(text: str) -> Union[int, float]:
    """Convert a NUMBER token's text into an int or float.

    Raises:
        ValueError: If the text is not a valid number
    """
    clean = text.replace("_", "")
    digits = clean.lstrip("+-")
    if len(digits) > 1 and digits[0] == "0" and digits.isdigit():
        # Leading zero means octal
        return int(clean, 8)
    try:
        return int(clean, 0)
    except ValueError:
        return float(clean)


class Parser:
    """Build the parse trees for one template source.

    A single source yields one tree for its own name plus one tree for every
    ``{{define}}`` or ``{{block}}`` it contains, wherever they are nested.
    Variables are checked lexically: every reference must resolve to a
    declaration in an enclosing scope of the same template.
    """

    def __init__(
        self,
        name: str,
        source: str,
        funcs: Container[str] = (),
        left_delim: str = "{{",
        right_delim: str = "}}",
    ) -> None:
        self.name = name
        self.funcs = funcs
        self.tokens: List[Token] = lex(name, source, left_delim, right_delim)
        self.index = 0
        self.trees: Dict[str, Tree] = {}
        self._scopes: List[List[str]] = [["$"]]
        self._range_depth = 0

    def parse(self) -> Dict[str, Tree]:
        """Parse the whole source.

        Returns:
            Mapping of template name to tree, including inline definitions

        Raises:
            ParseError: On any lexical or structural problem
        """
        root, terminator = self._item_list()
        if terminator.type is not TokenType.EOF:
            raise self._error(terminator, f"unexpected {{{{{terminator.value}}}}}")
        existing = self.trees.get(self.name)
        if existing is None or existing.is_empty() or not root.is_blank():
            self.trees[self.name] = Tree(self.name, root, self.name)
        logger.debug(f"Parsed template {self.name!r} ({len(self.trees)} tree(s))")
        return self.trees

    # Token helpers

    def _peek(self) -> Token:
        return self.tokens[self.index]

    def _next(self) -> Token:
        token = self.tokens[self.index]
        if token.type is not TokenType.EOF:
            self.index += 1
        return token

    def _skip_spaces(self) -> None:
        while self.tokens[self.index].type is TokenType.SPACE:
            self.index += 1

    def _peek_non_space(self) -> Token:
        self._skip_spaces()
        return self._peek()

    def _next_non_space(self) -> Token:
        self._skip_spaces()
        return self._next()

    def _error(self, token: Token, message: str) -> ParseError:
        return ParseError(self.name, token.line, token.column, message)

    def _unexpected(self, token: Token, context: str) -> ParseError:
        if token.type is TokenType.EOF:
            return self._error(token, f"unexpected EOF in {context}")
        return self._error(token, f"unexpected {token} in {context}")

    def _expect(self, token_type: TokenType, context: str) -> Token:
        token = self._next_non_space()
        if token.type is not token_type:
            raise self._unexpected(token, context)
        return token

    # Variable scopes

    def _push_scope(self) -> None:
        self._scopes.append([])

    def _pop_scope(self) -> None:
        self._scopes.pop()

    def _declare(self, token: Token, name: str) -> None:
        if name in self._scopes[-1]:
            raise self._error(token, f"variable {name} redeclared in the same scope")
        self._scopes[-1].append(name)

    def _check_variable(self, token: Token, name: str) -> None:
        for scope in reversed(self._scopes):
            if name in scope:
                return
        raise self._error(token, f"undefined variable {name!r}")

    # Lists and statements

    def _item_list(self) -> Tuple[ListNode, Token]:
        """Parse nodes until ``{{end}}``, ``{{else}}`` or EOF.

        ``{{end}}`` is consumed including its closing delimiter; for
        ``{{else}}`` only the keyword is consumed so the caller can look for
        an ``else if`` / ``else with`` chain.
        """
        first = self._peek()
        nodes: List[Node] = []
        while True:
            token = self._next()
            if token.type is TokenType.EOF:
                return ListNode(first.line, first.column, tuple(nodes)), token
            if token.type is TokenType.TEXT:
                nodes.append(TextNode(token.line, token.column, token.value))
                continue
            # LEFT_DELIM
            keyword = self._peek_non_space()
            if keyword.type is TokenType.END:
                self._next()
                self._expect(TokenType.RIGHT_DELIM, "end")
                return ListNode(first.line, first.column, tuple(nodes)), keyword
            if keyword.type is TokenType.ELSE:
                self._next()
                return ListNode(first.line, first.column, tuple(nodes)), keyword
            node = self._action(token)
            if node is not None:
                nodes.append(node)

    def _action(self, delim: Token) -> Optional[Node]:
        token = self._next_non_space()
        if token.type is TokenType.DEFINE:
            self._define(token)
            return None
        if token.type is TokenType.BLOCK:
            return self._block(token)
        if token.type is TokenType.IF:
            return self._if_or_with(token, IfNode)
        if token.type is TokenType.WITH:
            return self._if_or_with(token, WithNode)
        if token.type is TokenType.RANGE:
            return self._range(token)
        if token.type is TokenType.TEMPLATE:
            return self._template(token)
        if token.type in (TokenType.BREAK, TokenType.CONTINUE):
            return self._loop_control(token)
        self.index -= 1
        return ActionNode(delim.line, delim.column, self._pipeline("command"))

    def _scoped_item_list(self) -> Tuple[ListNode, Token]:
        self._push_scope()
        try:
            return self._item_list()
        finally:
            self._pop_scope()

    def _body(self, context: str) -> ListNode:
        body, terminator = self._scoped_item_list()
        if terminator.type is TokenType.EOF:
            raise self._unexpected(terminator, context)
        if terminator.type is TokenType.ELSE:
            raise self._error(terminator, f"unexpected {{{{else}}}} in {context}")
        return body

    def _sub_template(self, name: str, context: str) -> ListNode:
        """Parse a define/block body with a fresh variable scope."""
        saved_scopes, saved_depth = self._scopes, self._range_depth
        self._scopes, self._range_depth = [["$"]], 0
        try:
            return self._body(context)
        finally:
            self._scopes, self._range_depth = saved_scopes, saved_depth

    def _define(self, keyword: Token) -> None:
        name_token = self._expect(TokenType.STRING, "define clause")
        self._expect(TokenType.RIGHT_DELIM, "define clause")
        body = self._sub_template(name_token.value, "define clause")
        if name_token.value in self.trees:
            logger.debug(f"Redefinition of template {name_token.value!r}")
        self.trees[name_token.value] = Tree(name_token.value, body, self.name)

    def _block(self, keyword: Token) -> TemplateNode:
        name_token = self._expect(TokenType.STRING, "block clause")
        pipe = self._pipeline("block clause", allow_declaration=False)
        body = self._sub_template(name_token.value, "block clause")
        self.trees[name_token.value] = Tree(name_token.value, body, self.name)
        return TemplateNode(keyword.line, keyword.column, name_token.value, pipe)

    def _template(self, keyword: Token) -> TemplateNode:
        name_token = self._next_non_space()
        if name_token.type is not TokenType.STRING:
            raise self._unexpected(name_token, "template clause")
        pipe = None
        if self._peek_non_space().type is TokenType.RIGHT_DELIM:
            self._next()
        else:
            pipe = self._pipeline("template clause", allow_declaration=False)
        return TemplateNode(keyword.line, keyword.column, name_token.value, pipe)

    def _loop_control(self, keyword: Token) -> Node:
        self._expect(TokenType.RIGHT_DELIM, f"{{{{{keyword.value}}}}}")
        if self._range_depth == 0:
            raise self._error(keyword, f"{{{{{keyword.value}}}}} outside {{{{range}}}}")
        if keyword.type is TokenType.BREAK:
            return BreakNode(keyword.line, keyword.column)
        return ContinueNode(keyword.line, keyword.column)

    def _if_or_with(self, keyword: Token, node_type: type) -> Node:
        context = keyword.value
        self._push_scope()
        try:
            pipe = self._pipeline(context)
            body, terminator = self._scoped_item_list()
            else_body = None
            if terminator.type is TokenType.EOF:
                raise self._unexpected(terminator, context)
            if terminator.type is TokenType.ELSE:
                chained = self._peek_non_space()
                if chained.type is keyword.type:
                    # {{else if ...}} / {{else with ...}}: the nested node owns the {{end}}
                    self._next()
                    nested = self._if_or_with(chained, node_type)
                    else_body = ListNode(chained.line, chained.column, (nested,))
                else:
                    self._expect(TokenType.RIGHT_DELIM, "else")
                    else_body = self._body(context)
            return node_type(keyword.line, keyword.column, pipe, body, else_body)
        finally:
            self._pop_scope()

    def _range(self, keyword: Token) -> RangeNode:
        self._push_scope()
        try:
            pipe = self._pipeline("range")
            self._range_depth += 1
            try:
                body, terminator = self._scoped_item_list()
            finally:
                self._range_depth -= 1
            else_body = None
            if terminator.type is TokenType.EOF:
                raise self._unexpected(terminator, "range")
            if terminator.type is TokenType.ELSE:
                self._expect(TokenType.RIGHT_DELIM, "else")
                else_body = self._body("range")
            return RangeNode(keyword.line, keyword.column, pipe, body, else_body)
        finally:
            self._pop_scope()

    # Pipelines

    def _declarations(self, context: str) -> Tuple[Tuple[str, ...], bool]:
        first = self._peek_non_space()
        if first.type is not TokenType.VARIABLE:
            return (), False
        start = self.index
        self._next()
        following = self._peek_non_space()
        names = [first]
        if following.type is TokenType.COMMA:
            if context != "range":
                raise self._error(following, f"too many declarations in {context}")
            self._next()
            second = self._next_non_space()
            if second.type is not TokenType.VARIABLE:
                raise self._unexpected(second, "range declaration")
            names.append(second)
            following = self._peek_non_space()
            if following.type not in (TokenType.DECLARE, TokenType.ASSIGN):
                raise self._unexpected(following, "range declaration")
        elif following.type not in (TokenType.DECLARE, TokenType.ASSIGN):
            self.index = start
            return (), False
        self._next()
        is_assign = following.type is TokenType.ASSIGN
        for token in names:
            if is_assign:
                self._check_variable(token, token.value)
        return tuple(token.value for token in names), is_assign

    def _pipeline(
        self,
        context: str,
        allow_declaration: bool = True,
        end: TokenType = TokenType.RIGHT_DELIM,
    ) -> PipeNode:
        start = self._peek_non_space()
        variables: Tuple[str, ...] = ()
        is_assign = False
        if allow_declaration:
            variables, is_assign = self._declarations(context)

        commands: List[CommandNode] = []
        while True:
            token = self._peek_non_space()
            if token.type is end:
                self._next()
                break
            if token.type not in OPERAND_START:
                raise self._unexpected(token, context)
            commands.append(self._command())
            if self._peek().type is TokenType.PIPE:
                self._next()
                if self._peek_non_space().type is end:
                    raise self._error(self._peek(), f"missing command after | in {context}")

        if not commands:
            raise self._error(start, f"missing value for {context}")
        for stage, command in enumerate(commands[1:], start=2):
            if isinstance(command.args[0], NON_EXECUTABLE):
                raise self._error(
                    start, f"non executable command in pipeline stage {stage}"
                )

        if variables and not is_assign:
            for name in variables:
                self._declare(start, name)
        return PipeNode(
            start.line, start.column, tuple(commands), variables, is_assign
        )

    def _command(self) -> CommandNode:
        start = self._peek_non_space()
        args: List[Node] = []
        while True:
            self._skip_spaces()
            operand = self._operand()
            if operand is not None:
                args.append(operand)
            token = self._peek()
            if token.type is TokenType.SPACE:
                continue
            if token.type in (
                TokenType.RIGHT_DELIM,
                TokenType.RIGHT_PAREN,
                TokenType.PIPE,
            ):
                break
            raise self._unexpected(token, "operand")
        if not args:
            raise self._error(start, "empty command")
        return CommandNode(start.line, start.column, tuple(args))

    def _operand(self) -> Optional[Node]:
        node = self._term()
        if node is None or self._peek().type is not TokenType.FIELD:
            return node
        path: List[str] = []
        while self._peek().type is TokenType.FIELD:
            path.append(self._next().value[1:])
        if isinstance(node, FieldNode):
            return FieldNode(node.line, node.column, node.path + tuple(path))
        if isinstance(node, VariableNode):
            return VariableNode(node.line, node.column, node.name, tuple(path))
        if isinstance(node, NON_EXECUTABLE):
            raise self._error(self._peek(), "unexpected . after term")
        return ChainNode(node.line, node.column, node, tuple(path))

    def _term(self) -> Optional[Node]:
        token = self._peek()
        kind = token.type
        if kind is TokenType.IDENTIFIER:
            self._next()
            if token.value not in self.funcs:
                raise self._error(token, f"function {token.value!r} not defined")
            return IdentifierNode(token.line, token.column, token.value)
        if kind is TokenType.DOT:
            self._next()
            return DotNode(token.line, token.column)
        if kind is TokenType.NIL:
            self._next()
            return NilNode(token.line, token.column)
        if kind is TokenType.VARIABLE:
            self._next()
            self._check_variable(token, token.value)
            return VariableNode(token.line, token.column, token.value)
        if kind is TokenType.FIELD:
            self._next()
            return FieldNode(token.line, token.column, (token.value[1:],))
        if kind is TokenType.BOOL:
            self._next()
            return BoolNode(token.line, token.column, token.value == "true")
        if kind is TokenType.NUMBER:
            self._next()
            try:
                value = parse_number(token.value)
            except ValueError:
                raise self._error(token, f"illegal number syntax: {token.value!r}")
            return NumberNode(token.line, token.column, value, token.value)
        if kind is TokenType.STRING:
            self._next()
            return StringNode(token.line, token.column, token.value, repr(token.value))
        if kind is TokenType.LEFT_PAREN:
            self._next()
            return self._pipeline(
                "parenthesized pipeline",
                allow_declaration=False,
                end=TokenType.RIGHT_PAREN,
            )
        return None


def parse(
    name: str,
    source: str,
    funcs: Container[str] = (),
    left_delim: str = "{{",
    right_delim: str = "}}",
) -> Dict[str, Tree]:
    """Parse template source into named trees.

    Args:
        name: Name of the template the top-level body is registered under
        source: Template source text
        funcs: Names of callable functions, checked at parse time
        left_delim: Opening action delimiter
        right_delim: Closing action delimiter

    Returns:
        Mapping of template name to parsed tree

    Raises:
        ParseError: If the source is malformed
    """
    return Parser(name, source, funcs, left_delim, right_delim).parse()
