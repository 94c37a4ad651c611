"""Evaluate a parsed template against caller data.

Rendering is total: a missing variable, a wrong data shape or a failing
helper renders as an empty string, never as an error.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from infrastructure.logging import get_module_logger
from infrastructure.notifications.templating.parser import (
    BlockNode,
    Expr,
    HelperCall,
    LiteralExpr,
    Node,
    OutputNode,
    PathExpr,
    TextNode,
)

logger = get_module_logger()

_ESCAPES = str.maketrans(
    {
        "&": "&amp;",
        "<": "&lt;",
        ">": "&gt;",
        '"': "&quot;",
        "'": "&#x27;",
        "`": "&#x60;",
        "=": "&#x3D;",
    }
)


def escape_html(value: str) -> str:
    return value.translate(_ESCAPES)


@dataclass(frozen=True)
class Frame:
    """One scope level: the context value plus @data variables."""

    value: Any
    data: Dict[str, Any] = field(default_factory=dict)
    parent: Optional["Frame"] = None


def lookup(value: Any, part: str) -> Any:
    """Resolve one path segment against a mapping, sequence or object."""
    if value is None:
        return None
    if isinstance(value, Mapping):
        return value.get(part)
    if isinstance(value, (list, tuple)):
        if part.isdigit() and int(part) < len(value):
            return value[int(part)]
        if part == "length":
            return len(value)
        return None
    if part.startswith("_"):
        return None
    attr = getattr(value, part, None)
    return None if callable(attr) else attr


def stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ",".join(stringify(v) for v in value)
    return str(value)


def is_truthy(value: Any) -> bool:
    if value is None or value is False or value == "":
        return False
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value != 0
    if isinstance(value, (list, tuple)):
        return len(value) > 0
    return True


def evaluate(expr: Expr, frame: Frame) -> Any:
    if isinstance(expr, LiteralExpr):
        return expr.value

    if isinstance(expr, HelperCall):
        args = [evaluate(arg, frame) for arg in expr.args]
        try:
            return expr.func(*args)
        except Exception as e:
            logger.warning("template_helper_failed", helper=expr.name, error=str(e))
            return None

    scope: Optional[Frame] = frame
    for _ in range(expr.depth):
        scope = scope.parent if scope and scope.parent else scope
    if scope is None:
        return None

    if expr.data:
        name, rest = expr.parts[0], expr.parts[1:]
        holder: Optional[Frame] = scope
        while holder is not None and name not in holder.data:
            holder = holder.parent
        value = holder.data[name] if holder is not None else None
    else:
        value, rest = scope.value, expr.parts

    for part in rest:
        value = lookup(value, part)
    return value


def render_nodes(nodes: Tuple[Node, ...], frame: Frame, out: List[str]) -> None:
    for node in nodes:
        if isinstance(node, TextNode):
            out.append(node.text)
        elif isinstance(node, OutputNode):
            text = stringify(evaluate(node.expr, frame))
            out.append(escape_html(text) if node.escape else text)
        elif isinstance(node, BlockNode):
            _render_block(node, frame, out)


def _render_block(node: BlockNode, frame: Frame, out: List[str]) -> None:
    value = evaluate(node.expr, frame)

    if node.helper in ("if", "unless"):
        truthy = is_truthy(value)
        if node.helper == "unless":
            truthy = not truthy
        render_nodes(node.body if truthy else node.inverse, frame, out)
        return

    if node.helper == "with":
        if is_truthy(value):
            render_nodes(node.body, Frame(value, parent=frame), out)
        else:
            render_nodes(node.inverse, frame, out)
        return

    # each
    if isinstance(value, Mapping):
        items = list(value.items())
    elif isinstance(value, (list, tuple)):
        items = list(enumerate(value))
    else:
        items = []

    if not items:
        render_nodes(node.inverse, frame, out)
        return

    last = len(items) - 1
    for index, (key, item) in enumerate(items):
        data = {"index": index, "first": index == 0, "last": index == last}
        if isinstance(value, Mapping):
            data["key"] = key
        render_nodes(node.body, Frame(item, data, frame), out)


@dataclass(frozen=True)
class CompiledTemplate:
    """Immutable compiled form of one template source."""

    source: str
    nodes: Tuple[Node, ...]

    def render(self, data: Any = None) -> str:
        out: List[str] = []
        render_nodes(self.nodes, Frame(data if data is not None else {}), out)
        return "".join(out)
