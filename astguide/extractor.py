"""Structural record extraction from Python syntax trees."""

from __future__ import annotations

import inspect
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from tree_sitter import Node

from .errors import SourceUnreadableError
from .logging import get_logger
from .models import DetectedPattern, Param, Record, RecordKind
from .parsing import ParsedSource, PythonParser, walk
from .patterns import detect_patterns

PatternDetector = Callable[[str], List[DetectedPattern]]

_ENUM_BASES = {"Enum", "IntEnum", "StrEnum", "Flag", "IntFlag"}
_UNION_HEADS = {"Union", "typing.Union", "t.Union"}
_TYPE_ALIAS_ANNOTATIONS = {"TypeAlias", "typing.TypeAlias", "t.TypeAlias"}
_TYPE_CHECKING_GUARDS = {"TYPE_CHECKING", "typing.TYPE_CHECKING"}
_ACCESSOR_DECORATOR = re.compile(r"^\w+\.(setter|deleter|getter)$")
_CODING_LINE = re.compile(r"^#.*coding[:=]")
_STRING_PREFIX = re.compile(r"^[rRbBuUfF]{0,2}")


@dataclass
class ExtractedModule:
    """Everything the extractor learned about one source file."""

    records: List[Record] = field(default_factory=list)
    module_comment: Optional[str] = None
    imports: List[str] = field(default_factory=list)


class Extractor:
    """Walks module-level declarations and turns them into records."""

    def __init__(
        self,
        parser: PythonParser | None = None,
        pattern_detector: PatternDetector | None = None,
    ) -> None:
        self.parser = parser or PythonParser()
        self.detect = pattern_detector or detect_patterns
        self.logger = get_logger("extractor")

    def extract(self, source: str, path: str | None = None) -> ExtractedModule:
        parsed = self.parser.parse(source, path or "<string>")
        walker = _Walker(parsed, self.detect)
        module = ExtractedModule(
            records=walker.module_records(),
            module_comment=walker.module_comment(),
            imports=walker.imports(),
        )
        self.logger.debug(
            "Extracted %d top-level records from %s", len(module.records), path or "<string>"
        )
        return module

    def extract_file(self, path: Path) -> ExtractedModule:
        try:
            source = path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise SourceUnreadableError(str(path), "file not found") from exc
        except (OSError, UnicodeDecodeError) as exc:
            raise SourceUnreadableError(str(path), str(exc)) from exc
        return self.extract(source, str(path))


class _Walker:
    def __init__(self, parsed: ParsedSource, detect: PatternDetector) -> None:
        self._parsed = parsed
        self._detect = detect

    # ------------------------------------------------------------------
    # Module level

    def module_records(self) -> List[Record]:
        collector = _SiblingCollector()
        for child in self._parsed.root.named_children:
            record = self._module_declaration(child)
            if record is not None:
                collector.add(record, skip=self._is_redefinition_stub(child))
        return collector.records

    def module_comment(self) -> Optional[str]:
        block = self._leading_comment_block()
        if block:
            return "\n".join(block)
        docstring = self._docstring_node(self._parsed.root)
        if docstring is None:
            return None
        return inspect.cleandoc(_string_value(self._parsed.text(docstring))) or None

    def imports(self) -> List[str]:
        names: List[str] = []
        for node in walk(self._parsed.root):
            if node.type == "import_statement":
                for child in node.children_by_field_name("name"):
                    target = child.child_by_field_name("name") if child.type == "aliased_import" else child
                    names.append(self._parsed.text(target))
            elif node.type == "import_from_statement":
                module_name = node.child_by_field_name("module_name")
                if module_name is not None:
                    names.append(self._parsed.text(module_name))
        return names

    def _module_declaration(self, node: Node) -> Optional[Record]:
        definition = _unwrap_decorated(node)
        if definition.type == "function_definition":
            return self._function(node, definition, in_class=False)
        if definition.type == "class_definition":
            return self._class(node, definition)
        if node.type == "expression_statement":
            return self._union_alias(node)
        if node.type == "type_alias_statement":
            return self._type_statement(node)
        if node.type == "if_statement":
            return self._type_checking_block(node)
        return None

    # ------------------------------------------------------------------
    # Declarations

    def _function(self, outer: Node, definition: Node, *, in_class: bool) -> Record:
        text = self._parsed.text
        name = text(definition.child_by_field_name("name"))
        params = self._params(definition.child_by_field_name("parameters"))
        return_node = definition.child_by_field_name("return_type")
        return_type = _collapse(text(return_node)) if return_node is not None else None
        is_async = any(child.type == "async" for child in definition.children)

        rendered = ", ".join(_render_param(param) for param in params)
        signature = f"{'async ' if is_async else ''}def {name}({rendered})"
        if return_type:
            signature += f" -> {return_type}"

        private = name.startswith("_") and not _is_dunder(name)
        if name.startswith("test"):
            kind = RecordKind.TEST
        elif in_class:
            kind = RecordKind.METHOD_PRIVATE if private else RecordKind.METHOD
        else:
            kind = RecordKind.FUNCTION_PRIVATE if private else RecordKind.FUNCTION

        return Record(
            kind=kind,
            name=name,
            signature=signature,
            params=params,
            return_type=return_type,
            comment=self._doc_comment(outer, definition),
            detected_patterns=self._detect(text(outer)),
            is_public=not private,
            line=_line(definition),
        )

    def _class(self, outer: Node, definition: Node) -> Record:
        text = self._parsed.text
        name = text(definition.child_by_field_name("name"))
        bases = definition.child_by_field_name("superclasses")
        is_enum = bases is not None and any(
            _last_segment(text(arg)) in _ENUM_BASES
            for arg in bases.named_children
            if arg.type != "keyword_argument"
        )

        signature = f"class {name}"
        if bases is not None:
            signature += _collapse(text(bases))

        record = Record(
            kind=RecordKind.ENUM if is_enum else RecordKind.STRUCT,
            name=name,
            signature=signature,
            comment=self._doc_comment(outer, definition),
            detected_patterns=self._detect(text(outer)),
            is_public=not name.startswith("_"),
            line=_line(definition),
        )

        body = definition.child_by_field_name("body")
        collector = _SiblingCollector()
        for child in body.named_children if body is not None else ():
            inner = _unwrap_decorated(child)
            if inner.type == "function_definition":
                collector.add(
                    self._function(child, inner, in_class=True),
                    skip=self._is_redefinition_stub(child),
                )
            elif inner.type == "class_definition":
                collector.add(self._class(child, inner))
            elif child.type == "expression_statement":
                found = self._class_assignment(child)
                if found is None:
                    continue
                field_name, assignment = found
                record.fields.append(field_name)
                if is_enum and not field_name.startswith("_") and _has_value(assignment):
                    collector.add(self._enum_field(child, field_name))
        record.members = collector.records
        return record

    def _enum_field(self, statement: Node, name: str) -> Record:
        return Record(
            kind=RecordKind.ENUM_FIELD,
            name=name,
            comment=self._preceding_comment(statement),
            is_public=True,
            line=_line(statement),
        )

    def _union_alias(self, statement: Node) -> Optional[Record]:
        assignment = _single_assignment(statement)
        if assignment is None:
            return None
        left = assignment.child_by_field_name("left")
        right = assignment.child_by_field_name("right")
        if left is None or left.type != "identifier" or right is None:
            return None
        annotation = assignment.child_by_field_name("type")
        explicit = annotation is not None and _collapse(self._parsed.text(annotation)) in _TYPE_ALIAS_ANNOTATIONS
        if annotation is not None and not explicit:
            return None
        alternatives = self._union_alternatives(right, allow_pipe=explicit)
        if not alternatives:
            return None
        return self._union_record(statement, self._parsed.text(left), alternatives)

    def _type_statement(self, statement: Node) -> Optional[Record]:
        left = statement.child_by_field_name("left")
        right = statement.child_by_field_name("right")
        if left is None or right is None:
            return None
        alternatives = self._union_alternatives(right, allow_pipe=True)
        if not alternatives:
            return None
        name = self._parsed.text(left).split("[", 1)[0].strip()
        return self._union_record(statement, name, alternatives)

    def _union_record(self, statement: Node, name: str, alternatives: List[str]) -> Record:
        record = Record(
            kind=RecordKind.UNION,
            name=name,
            signature=_collapse(self._parsed.text(statement)),
            comment=self._preceding_comment(statement),
            detected_patterns=self._detect(self._parsed.text(statement)),
            is_public=not name.startswith("_"),
            line=_line(statement),
        )
        record.fields = alternatives
        return record

    def _type_checking_block(self, statement: Node) -> Optional[Record]:
        condition = statement.child_by_field_name("condition")
        if condition is None or _collapse(self._parsed.text(condition)) not in _TYPE_CHECKING_GUARDS:
            return None
        return Record(
            kind=RecordKind.COMPTIME_BLOCK,
            name="TYPE_CHECKING",
            comment=self._preceding_comment(statement),
            is_public=False,
            line=_line(statement),
        )

    # ------------------------------------------------------------------
    # Pieces

    def _params(self, parameters: Optional[Node]) -> List[Param]:
        if parameters is None:
            return []
        text = self._parsed.text
        params: List[Param] = []
        for node in parameters.named_children:
            kind = node.type
            if kind == "comment":
                continue
            if kind == "typed_parameter":
                target = node.named_children[0] if node.named_children else None
                params.append(
                    Param(name=text(target), type=_optional_text(self._parsed, node.child_by_field_name("type")))
                )
            elif kind in {"default_parameter", "typed_default_parameter"}:
                params.append(
                    Param(
                        name=text(node.child_by_field_name("name")),
                        type=_optional_text(self._parsed, node.child_by_field_name("type")),
                        default=_optional_text(self._parsed, node.child_by_field_name("value")),
                    )
                )
            elif kind == "keyword_separator":
                params.append(Param(name="*"))
            elif kind == "positional_separator":
                params.append(Param(name="/"))
            else:
                # identifiers and bare *args / **kwargs splats
                params.append(Param(name=_collapse(text(node))))
        return params

    def _class_assignment(self, statement: Node) -> Optional[Tuple[str, Node]]:
        assignment = _single_assignment(statement)
        if assignment is None:
            return None
        left = assignment.child_by_field_name("left")
        if left is None or left.type != "identifier":
            return None
        name = self._parsed.text(left)
        if _is_dunder(name):
            return None
        return name, assignment

    def _union_alternatives(self, node: Node, *, allow_pipe: bool) -> List[str]:
        text = self._parsed.text
        if node.type == "type" and node.named_children:
            return self._union_alternatives(node.named_children[0], allow_pipe=allow_pipe)
        if node.type in {"subscript", "generic_type"}:
            head = node.child_by_field_name("value") or (node.named_children[0] if node.named_children else None)
            if head is None or _collapse(text(head)) not in _UNION_HEADS:
                return []
            if node.type == "subscript":
                items = node.children_by_field_name("subscript")
            else:
                type_params = [child for child in node.named_children if child.type == "type_parameter"]
                items = type_params[0].named_children if type_params else []
            return [_collapse(text(item)) for item in items]
        if allow_pipe and _is_pipe_union(node):
            return [_collapse(text(part)) for part in _flatten_pipe(node)]
        return []

    def _doc_comment(self, outer: Node, definition: Node) -> Optional[str]:
        comment = self._preceding_comment(outer)
        if comment is not None:
            return comment
        docstring = self._docstring_node(definition)
        if docstring is None:
            return None
        cleaned = inspect.cleandoc(_string_value(self._parsed.text(docstring)))
        for line in cleaned.splitlines():
            if line.strip():
                return line.strip()
        return None

    def _preceding_comment(self, node: Node) -> Optional[str]:
        """Topmost line of the ``#`` block sitting directly above ``node``."""
        lines: List[str] = []
        expected_row = node.start_point[0] - 1
        current = _previous(node)
        while current is not None and current.type == "comment":
            raw = self._parsed.text(current)
            if current.start_point[0] != expected_row or _is_trailing(current) or raw.startswith("#!"):
                break
            lines.append(_comment_text(raw))
            expected_row -= 1
            current = _previous(current)
        for line in reversed(lines):
            if line:
                return line
        return None

    def _leading_comment_block(self) -> List[str]:
        block: List[str] = []
        last_row: Optional[int] = None
        last_node: Optional[Node] = None
        for child in self._parsed.root.children:
            if child.type != "comment":
                if last_node is not None and child.start_point[0] == last_node.end_point[0] + 1:
                    # attached to the first declaration instead
                    return []
                break
            raw = self._parsed.text(child)
            row = child.start_point[0]
            if last_row is None and (raw.startswith("#!") or _CODING_LINE.match(raw)):
                continue
            if last_row is not None and row != last_row + 1:
                break
            block.append(_comment_text(raw))
            last_row = row
            last_node = child
        while block and not block[-1]:
            block.pop()
        return block

    def _docstring_node(self, container: Node) -> Optional[Node]:
        body = container if container.type == "module" else container.child_by_field_name("body")
        if body is None:
            return None
        for child in body.named_children:
            if child.type == "comment":
                continue
            if child.type == "expression_statement" and child.named_children:
                first = child.named_children[0]
                if first.type == "string":
                    return first
            return None
        return None

    def _is_redefinition_stub(self, node: Node) -> bool:
        if node.type != "decorated_definition":
            return False
        for child in node.named_children:
            if child.type != "decorator":
                continue
            expression = _collapse(self._parsed.text(child).lstrip("@"))
            if expression == "overload" or expression.endswith(".overload"):
                return True
            if _ACCESSOR_DECORATOR.match(expression):
                return True
        return False


class _SiblingCollector:
    """Keeps sibling records unique by name; the last binding wins in place."""

    def __init__(self) -> None:
        self.records: List[Record] = []
        self._index: Dict[str, int] = {}

    def add(self, record: Record, *, skip: bool = False) -> None:
        position = self._index.get(record.name)
        if position is None:
            # an overload stub ahead of its implementation still reserves the slot
            self._index[record.name] = len(self.records)
            self.records.append(record)
        elif not skip:
            self.records[position] = record


def _unwrap_decorated(node: Node) -> Node:
    if node.type == "decorated_definition":
        definition = node.child_by_field_name("definition")
        if definition is not None:
            return definition
    return node


def _single_assignment(statement: Node) -> Optional[Node]:
    if statement.type != "expression_statement" or len(statement.named_children) != 1:
        return None
    child = statement.named_children[0]
    return child if child.type == "assignment" else None


def _has_value(assignment: Node) -> bool:
    return assignment.child_by_field_name("right") is not None


def _is_pipe_union(node: Node) -> bool:
    if node.type == "union_type":
        return True
    if node.type == "binary_operator":
        operator = node.child_by_field_name("operator")
        return operator is not None and operator.type == "|"
    return False


def _flatten_pipe(node: Node) -> List[Node]:
    if node.type == "type" and len(node.named_children) == 1 and _is_pipe_union(node.named_children[0]):
        return _flatten_pipe(node.named_children[0])
    if not _is_pipe_union(node):
        return [node]
    if node.type == "binary_operator":
        parts = [node.child_by_field_name("left"), node.child_by_field_name("right")]
    else:
        parts = list(node.named_children)
    flattened: List[Node] = []
    for part in parts:
        if part is not None:
            flattened.extend(_flatten_pipe(part))
    return flattened


def _previous(node: Node) -> Optional[Node]:
    sibling = node.prev_sibling
    if sibling is not None:
        return sibling
    # a comment ahead of the first statement in a block hangs off the block's parent
    parent = node.parent
    if parent is not None and parent.type == "block":
        return parent.prev_sibling
    return None


def _is_trailing(comment: Node) -> bool:
    before = comment.prev_sibling
    if before is None and comment.parent is not None and comment.parent.type == "block":
        before = comment.parent.prev_sibling
    return before is not None and before.type != "comment" and before.end_point[0] == comment.start_point[0]


def _comment_text(raw: str) -> str:
    return raw.lstrip("#").strip()


def _string_value(literal: str) -> str:
    body = _STRING_PREFIX.sub("", literal, count=1)
    for quote in ('"""', "'''", '"', "'"):
        if body.startswith(quote) and body.endswith(quote) and len(body) >= 2 * len(quote):
            return body[len(quote) : -len(quote)]
    return body


def _optional_text(parsed: ParsedSource, node: Optional[Node]) -> Optional[str]:
    if node is None:
        return None
    return _collapse(parsed.text(node)) or None


def _render_param(param: Param) -> str:
    rendered = param.name
    if param.type:
        rendered += f": {param.type}"
        if param.default is not None:
            rendered += f" = {param.default}"
    elif param.default is not None:
        rendered += f"={param.default}"
    return rendered


def _collapse(text: str) -> str:
    return " ".join(text.split())


def _last_segment(text: str) -> str:
    return text.rsplit(".", 1)[-1].strip()


def _is_dunder(name: str) -> bool:
    return len(name) > 4 and name.startswith("__") and name.endswith("__")


def _line(node: Node) -> int:
    return node.start_point[0] + 1


__all__ = ["ExtractedModule", "Extractor", "PatternDetector"]
