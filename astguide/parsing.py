"""Tree-sitter front end for Python sources."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, Optional

import tree_sitter_python
from tree_sitter import Language, Node, Parser, Tree

from .errors import StructuralParseError

PY_LANGUAGE = Language(tree_sitter_python.language())


@dataclass
class ParsedSource:
    """A syntax tree together with the bytes it was built from."""

    tree: Tree
    source_bytes: bytes

    @property
    def root(self) -> Node:
        return self.tree.root_node

    def text(self, node: Optional[Node]) -> str:
        if node is None:
            return ""
        return self.source_bytes[node.start_byte : node.end_byte].decode("utf-8", errors="ignore")


class PythonParser:
    """Parses Python source text and rejects trees carrying syntax errors."""

    def __init__(self) -> None:
        self._parser = Parser(PY_LANGUAGE)

    def parse(self, source: str, path: str = "<string>") -> ParsedSource:
        source_bytes = source.encode("utf-8")
        tree = self._parser.parse(source_bytes)
        if tree.root_node.has_error:
            error = first_error(tree.root_node)
            line = error.start_point[0] + 1 if error is not None else None
            raise StructuralParseError(path, line)
        return ParsedSource(tree=tree, source_bytes=source_bytes)


def first_error(node: Node) -> Optional[Node]:
    """Return the first ``ERROR`` or missing node in document order."""
    if node.type == "ERROR" or node.is_missing:
        return node
    for child in node.children:
        if child.has_error or child.is_missing:
            found = first_error(child)
            if found is not None:
                return found
    return None


def walk(node: Node) -> Iterator[Node]:
    """Pre-order traversal of ``node`` and all of its descendants."""
    yield node
    for child in node.children:
        yield from walk(child)


__all__ = ["PY_LANGUAGE", "ParsedSource", "PythonParser", "first_error", "walk"]
