# langpad/tree.py
"""Locating and rendering nodes of a parsed sample document."""

import asyncio
import json
import logging
import sys
from typing import Any, Dict, Iterator, List, Optional, TextIO, Tuple

logger = logging.getLogger(__name__)

AstNode = Dict[str, Any]


def is_node(value: Any) -> bool:
    return isinstance(value, dict) and "$type" in value


def is_reference(value: Any) -> bool:
    return isinstance(value, dict) and "$refText" in value


class AstNodeLocator:
    """
    Addresses AST nodes by path.

    The root is ``""``; a node held in a single-valued property ``p`` is
    ``/p`` below its container, a node at index ``i`` of a list property is
    ``/p@i``. Paths of nested nodes are concatenated: ``/persons@0/address``.
    """

    def walk(self, root: AstNode) -> Iterator[Tuple[str, AstNode]]:
        """Yields ``(path, node)`` for the root and every descendant, depth first."""
        stack: List[Tuple[str, AstNode]] = [("", root)]
        while stack:
            path, node = stack.pop()
            yield path, node
            children = list(self._children(path, node))
            stack.extend(reversed(children))

    def get_ast_node_path(self, root: AstNode, target: AstNode) -> Optional[str]:
        for path, node in self.walk(root):
            if node is target:
                return path
        return None

    def get_ast_node(self, root: AstNode, path: str) -> Optional[AstNode]:
        node: Any = root
        for segment in filter(None, path.split("/")):
            name, _, index = segment.partition("@")
            if not isinstance(node, dict) or name not in node:
                return None
            node = node[name]
            if index:
                if not isinstance(node, list) or not index.isdigit() or int(index) >= len(node):
                    return None
                node = node[int(index)]
        return node if is_node(node) else None

    @staticmethod
    def _children(path: str, node: AstNode) -> Iterator[Tuple[str, AstNode]]:
        for key, value in node.items():
            if key.startswith("$"):
                continue
            if is_node(value):
                yield f"{path}/{key}", value
            elif isinstance(value, list):
                for i, item in enumerate(value):
                    if is_node(item):
                        yield f"{path}/{key}@{i}", item


class TreeRenderer:
    """
    Renders a parsed sample document as an indented text tree.

    Every line shows a node's type, its locator path and its scalar
    properties; references show their text and resolved target.
    """

    def __init__(self, stream: Optional[TextIO] = None, indent: str = "  "):
        self.stream = stream if stream is not None else sys.stdout
        self.indent = indent
        self.last_output: Optional[str] = None
        self.render_count = 0
        self.rendered = asyncio.Event()

    def render(self, document: AstNode, locator: AstNodeLocator) -> str:
        lines: List[str] = []
        self._render_node(document, "", 0, lines)
        output = "\n".join(lines)
        self.last_output = output
        self.render_count += 1
        self.stream.write(output + "\n")
        self.stream.flush()
        self.rendered.set()
        logger.debug("Rendered %d tree lines", len(lines))
        return output

    async def wait_rendered(self, timeout: Optional[float] = None) -> bool:
        """Waits for the first render; returns False if ``timeout`` expired first."""
        try:
            await asyncio.wait_for(self.rendered.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    def _render_node(self, node: AstNode, path: str, depth: int, lines: List[str]) -> None:
        pad = self.indent * depth
        scalars = []
        for key, value in node.items():
            if key.startswith("$") or is_node(value) or isinstance(value, list):
                continue
            scalars.append(f"{key}={self._format_value(value)}")
        suffix = f" {' '.join(scalars)}" if scalars else ""
        lines.append(f"{pad}{node.get('$type', '?')} [{path or '/'}]{suffix}")

        for key, value in node.items():
            if key.startswith("$"):
                continue
            if is_node(value):
                lines.append(f"{pad}{self.indent}{key}:")
                self._render_node(value, f"{path}/{key}", depth + 2, lines)
            elif isinstance(value, list) and value:
                lines.append(f"{pad}{self.indent}{key}:")
                for i, item in enumerate(value):
                    if is_node(item):
                        self._render_node(item, f"{path}/{key}@{i}", depth + 2, lines)
                    else:
                        lines.append(f"{pad}{self.indent * 2}- {self._format_value(item)}")

    @staticmethod
    def _format_value(value: Any) -> str:
        if is_reference(value):
            target = value.get("$ref")
            return f"&{value['$refText']}" + (f" -> {target}" if target else " (unresolved)")
        return json.dumps(value)
