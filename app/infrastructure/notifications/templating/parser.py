"""Template parser: Handlebars-style source to an immutable node tree.

Supported syntax:
    {{path.to.value}}          HTML-escaped output
    {{{path}}}                 raw output
    {{helper arg "lit" 3}}     helper call, arguments may be (sub expressions)
    {{#if x}}..{{else}}..{{/if}}, {{#unless x}}, {{#each items}}, {{#with obj}}
    {{this}} {{../parent}} {{@index}} {{@first}} {{@last}} {{@key}}
    {{! comment }} {{!-- comment --}}

Parsing happens once per source string; rendering walks the tree against
a data context and never generates code.
"""

import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from infrastructure.notifications.errors import TemplateCompileError

BLOCK_HELPERS = frozenset({"if", "unless", "each", "with"})

_NUMBER = re.compile(r"^-?\d+(\.\d+)?$")
_PATH_SEGMENT = re.compile(r"^[A-Za-z_$][\w$-]*$|^\d+$")
_LITERALS = {"true": True, "false": False, "null": None, "undefined": None}


# Expressions


@dataclass(frozen=True)
class PathExpr:
    parts: Tuple[str, ...]
    depth: int = 0  # number of ../ hops
    data: bool = False  # @index, @key, ...
    original: str = ""


@dataclass(frozen=True)
class LiteralExpr:
    value: Any


@dataclass(frozen=True)
class HelperCall:
    name: str
    func: Callable[..., Any]
    args: Tuple["Expr", ...]


Expr = Union[PathExpr, LiteralExpr, HelperCall]


# Nodes


@dataclass(frozen=True)
class TextNode:
    text: str


@dataclass(frozen=True)
class OutputNode:
    expr: Expr
    escape: bool = True


@dataclass(frozen=True)
class BlockNode:
    helper: str  # if, unless, each, with
    expr: Expr
    body: Tuple["Node", ...]
    inverse: Tuple["Node", ...] = ()


Node = Union[TextNode, OutputNode, BlockNode]


# Tokenizing


@dataclass
class _Tag:
    kind: str  # text, output, raw, open, close, else
    content: str
    position: int


def _scan(source: str) -> List[_Tag]:
    tags: List[_Tag] = []
    pos = 0
    length = len(source)

    while pos < length:
        start = source.find("{{", pos)
        if start == -1:
            tags.append(_Tag("text", source[pos:], pos))
            break
        if start > pos:
            tags.append(_Tag("text", source[pos:start], pos))

        if source.startswith("{{!--", start):
            end = source.find("--}}", start)
            if end == -1:
                raise TemplateCompileError("unclosed comment", source)
            pos = end + 4
            continue

        if source.startswith("{{{", start):
            end = source.find("}}}", start)
            if end == -1:
                raise TemplateCompileError(
                    f"unclosed '{{{{{{' at position {start}", source
                )
            tags.append(_Tag("raw", source[start + 3 : end].strip(), start))
            pos = end + 3
            continue

        end = source.find("}}", start)
        if end == -1:
            raise TemplateCompileError(f"unclosed '{{{{' at position {start}", source)
        inner = source[start + 2 : end].strip()
        pos = end + 2

        if inner.startswith("!"):
            continue
        if inner.startswith("#"):
            tags.append(_Tag("open", inner[1:].strip(), start))
        elif inner.startswith("/"):
            tags.append(_Tag("close", inner[1:].strip(), start))
        elif inner == "else" or inner == "^":
            tags.append(_Tag("else", "", start))
        else:
            tags.append(_Tag("output", inner, start))

    return tags


def _split_expression(content: str, source: str) -> List[str]:
    """Split a tag body into tokens: strings, parens and bare words."""
    tokens: List[str] = []
    i = 0
    while i < len(content):
        ch = content[i]
        if ch.isspace():
            i += 1
        elif ch in "()":
            tokens.append(ch)
            i += 1
        elif ch in "\"'":
            end = content.find(ch, i + 1)
            if end == -1:
                raise TemplateCompileError("unterminated string literal", source)
            tokens.append(content[i : end + 1])
            i = end + 1
        else:
            j = i
            while j < len(content) and not content[j].isspace() and content[j] not in "()":
                j += 1
            tokens.append(content[i:j])
            i = j
    return tokens


class Parser:
    """Builds a node tree for one template source.

    Args:
        source: Template source text
        helpers: Helper functions callable from the template, by name
    """

    def __init__(self, source: str, helpers: Dict[str, Callable[..., Any]]):
        self.source = source
        self.helpers = helpers

    def parse(self) -> Tuple[Node, ...]:
        # Each frame: (helper, expr, body, inverse or None, position)
        root: List[Node] = []
        stack: List[Tuple[str, Expr, List[Node], Optional[List[Node]], int]] = []
        current = root

        for tag in _scan(self.source):
            if tag.kind == "text":
                current.append(TextNode(tag.content))
            elif tag.kind in ("output", "raw"):
                current.append(
                    OutputNode(self._expression(tag.content), escape=tag.kind == "output")
                )
            elif tag.kind == "open":
                helper, expr = self._block_open(tag.content)
                body: List[Node] = []
                stack.append((helper, expr, body, None, tag.position))
                current = body
            elif tag.kind == "else":
                if not stack:
                    self._fail("'{{else}}' outside of a block")
                helper, expr, body, inverse, position = stack[-1]
                if inverse is not None:
                    self._fail(f"duplicate '{{{{else}}}}' in '{helper}' block")
                inverse = []
                stack[-1] = (helper, expr, body, inverse, position)
                current = inverse
            elif tag.kind == "close":
                if not stack:
                    self._fail(f"unexpected closing tag '{{{{/{tag.content}}}}}'")
                helper, expr, body, inverse, _ = stack.pop()
                if tag.content != helper:
                    self._fail(f"'{{{{/{tag.content}}}}}' does not close '{helper}'")
                node = BlockNode(helper, expr, tuple(body), tuple(inverse or ()))
                if stack:
                    parent = stack[-1]
                    current = parent[3] if parent[3] is not None else parent[2]
                else:
                    current = root
                current.append(node)

        if stack:
            self._fail(f"unclosed block '{stack[-1][0]}' opened at position {stack[-1][4]}")

        return tuple(root)

    def _fail(self, reason: str):
        raise TemplateCompileError(reason, self.source)

    def _block_open(self, content: str) -> Tuple[str, Expr]:
        tokens = _split_expression(content, self.source)
        if not tokens:
            self._fail("empty block expression")
        helper = tokens[0]
        if helper not in BLOCK_HELPERS:
            self._fail(f"unknown block helper '{helper}'")
        args = tokens[1:]
        if not args:
            self._fail(f"'{helper}' block requires an argument")
        expr, rest = self._parse_tokens(args)
        if rest:
            self._fail(f"'{helper}' block takes exactly one argument")
        return helper, expr

    def _expression(self, content: str) -> Expr:
        tokens = _split_expression(content, self.source)
        if not tokens:
            self._fail("empty expression")
        expr, rest = self._parse_call(tokens, allow_bare_helper=True)
        if rest:
            self._fail(f"unexpected '{rest[0]}'")
        return expr

    def _parse_call(self, tokens: List[str], allow_bare_helper: bool) -> Tuple[Expr, List[str]]:
        """Parse ``name arg...`` up to the end of tokens or a closing paren."""
        head = tokens[0]
        args_tokens = []
        depth = 0
        i = 1
        while i < len(tokens):
            token = tokens[i]
            if token == "(":
                depth += 1
            elif token == ")":
                if depth == 0:
                    break
                depth -= 1
            args_tokens.append(token)
            i += 1
        rest = tokens[i:]

        if not args_tokens:
            if allow_bare_helper and head in self.helpers:
                return HelperCall(head, self.helpers[head], ()), rest
            expr, _ = self._parse_tokens([head])
            return expr, rest

        if head not in self.helpers:
            self._fail(f"missing helper '{head}'")
        args: List[Expr] = []
        remaining = args_tokens
        while remaining:
            arg, remaining = self._parse_tokens(remaining)
            args.append(arg)
        return HelperCall(head, self.helpers[head], tuple(args)), rest

    def _parse_tokens(self, tokens: List[str]) -> Tuple[Expr, List[str]]:
        """Parse one argument (literal, path or sub expression)."""
        token = tokens[0]
        if token == "(":
            depth = 0
            for index, t in enumerate(tokens):
                if t == "(":
                    depth += 1
                elif t == ")":
                    depth -= 1
                    if depth == 0:
                        inner = tokens[1:index]
                        if not inner:
                            self._fail("empty sub expression")
                        expr, leftover = self._parse_call(inner, allow_bare_helper=True)
                        if leftover:
                            self._fail("unbalanced parentheses")
                        return expr, tokens[index + 1 :]
            self._fail("unbalanced parentheses")
        if token == ")":
            self._fail("unbalanced parentheses")
        return self._atom(token), tokens[1:]

    def _atom(self, token: str) -> Expr:
        if token[0] in "\"'":
            return LiteralExpr(token[1:-1])
        if token in _LITERALS:
            return LiteralExpr(_LITERALS[token])
        if _NUMBER.match(token):
            return LiteralExpr(float(token) if "." in token else int(token))
        if "=" in token:
            self._fail(f"hash arguments are not supported: '{token}'")
        return self._path(token)

    def _path(self, token: str) -> PathExpr:
        original = token
        depth = 0
        while token.startswith("../"):
            depth += 1
            token = token[3:]

        data = token.startswith("@")
        if data:
            token = token[1:]

        if token in ("this", "."):
            return PathExpr((), depth, data, original)
        if token.startswith("this."):
            token = token[5:]
        elif token.startswith("./"):
            token = token[2:]

        parts = tuple(token.replace("/", ".").split("."))
        for part in parts:
            if not _PATH_SEGMENT.match(part):
                self._fail(f"invalid path '{original}'")
        return PathExpr(parts, depth, data, original)


def parse(source: str, helpers: Dict[str, Callable[..., Any]]) -> Tuple[Node, ...]:
    """Parse template source into an immutable node tree.

    Raises:
        TemplateCompileError: If the source is malformed.
    """
    return Parser(source, helpers).parse()
