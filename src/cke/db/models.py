"""Domain models for the code knowledge engine.

Elements are stored flat: parents reference children by ``element_id`` and
``build_tree()`` reassembles the hierarchy on demand.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Iterable

MAX_LENGTH = 2**32 - 1  # location.length saturates here
MAX_SNIPPET_CHARS = 4_000


class ElementType(str, Enum):
    FUNCTION = "function"
    METHOD = "method"
    CLASS = "class"
    STRUCT = "struct"
    ENUM = "enum"
    INTERFACE = "interface"
    TRAIT = "trait"
    IMPLEMENTATION = "implementation"
    MODULE = "module"
    VARIABLE = "variable"
    CONSTANT = "constant"
    TYPE_ALIAS = "type_alias"
    MACRO = "macro"
    OTHER = "other"


@dataclass(frozen=True)
class SourceLocation:
    file_path: str
    line: int
    column: int = 1
    length: int = 0


@dataclass(frozen=True)
class CodeElement:
    """A parsed, named construct with its source location.

    Attributes:
        element_type: Structural kind of the construct.
        name: Non-empty symbol name (synthesized for anonymous constructs).
        language: Canonical lowercase language tag.
        location: Where the construct starts and how many bytes it spans.
        documentation: Attached doc comment / docstring, if any.
        code_snippet: Source text of the construct (capped).
        element_id: Deterministic id, see ``make_element_id()``.
        parent_id: Id of the enclosing element, None at file scope.
        children_ids: Ids of directly nested elements, in document order.
    """

    element_type: ElementType
    name: str
    language: str
    location: SourceLocation
    documentation: str | None = None
    code_snippet: str = ""
    element_id: str = ""
    parent_id: str | None = None
    children_ids: tuple[str, ...] = ()

    @property
    def file_path(self) -> str:
        return self.location.file_path

    @property
    def line(self) -> int:
        return self.location.line

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["element_type"] = self.element_type.value
        data["children_ids"] = list(self.children_ids)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CodeElement:
        return cls(
            element_type=ElementType(data["element_type"]),
            name=data["name"],
            language=data["language"],
            location=SourceLocation(**data["location"]),
            documentation=data.get("documentation"),
            code_snippet=data.get("code_snippet", ""),
            element_id=data.get("element_id", ""),
            parent_id=data.get("parent_id"),
            children_ids=tuple(data.get("children_ids", ())),
        )


@dataclass
class FileRecord:
    path: str
    language: str
    size_bytes: int
    modified_at: float
    content_hash: str
    element_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FileRecord:
        return cls(
            path=data["path"],
            language=data["language"],
            size_bytes=int(data["size_bytes"]),
            modified_at=float(data["modified_at"]),
            content_hash=data["content_hash"],
            element_ids=list(data.get("element_ids", [])),
        )


@dataclass
class RemoteContent:
    url: str
    title: str
    scraped_at: float
    size_bytes: int
    depth: int
    detected_language: str
    text_content: str
    extracted_elements: list[CodeElement] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "title": self.title,
            "scraped_at": self.scraped_at,
            "size_bytes": self.size_bytes,
            "depth": self.depth,
            "detected_language": self.detected_language,
            "text_content": self.text_content,
            "extracted_elements": [e.to_dict() for e in self.extracted_elements],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RemoteContent:
        return cls(
            url=data["url"],
            title=data.get("title", ""),
            scraped_at=float(data["scraped_at"]),
            size_bytes=int(data.get("size_bytes", 0)),
            depth=int(data.get("depth", 0)),
            detected_language=data.get("detected_language", ""),
            text_content=data.get("text_content", ""),
            extracted_elements=[
                CodeElement.from_dict(e) for e in data.get("extracted_elements", [])
            ],
        )


@dataclass
class SearchHistoryItem:
    query: str
    timestamp: float
    inferred_intent: str
    clicked_result_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SearchHistoryItem:
        return cls(
            query=data["query"],
            timestamp=float(data["timestamp"]),
            inferred_intent=data.get("inferred_intent", ""),
            clicked_result_ids=list(data.get("clicked_result_ids", [])),
        )


# ------------------------------------------------------------------
# Element construction helpers
# ------------------------------------------------------------------


@dataclass
class ParsedSymbol:
    """Parser output before ids and file paths are assigned.

    ``parent`` is an index into the same list, never an object reference.
    """

    element_type: ElementType
    name: str
    line: int
    column: int = 1
    length: int = 0
    documentation: str | None = None
    code: str = ""
    parent: int | None = None


def make_element_id(file_path: str, language: str, line: int, column: int, name: str) -> str:
    """Return the stable id for an element identity tuple."""
    key = "\x1f".join((file_path, language, str(line), str(column), name))
    return hashlib.sha256(key.encode("utf-8")).hexdigest()[:24]


def link_elements(
    symbols: Iterable[ParsedSymbol], file_path: str, language: str
) -> list[CodeElement]:
    """Turn parser drafts into id-linked CodeElements, in document order.

    Drafts that collide on the identity tuple are dropped (first one wins);
    their children are re-parented to the surviving element.
    """
    drafts = list(symbols)
    order = sorted(range(len(drafts)), key=lambda i: (drafts[i].line, drafts[i].column, i))

    names = {
        i: d.name.strip() or f"<anonymous@{d.line}:{d.column}>" for i, d in enumerate(drafts)
    }
    ids: dict[int, str] = {}
    seen: dict[str, int] = {}
    for i in order:
        d = drafts[i]
        eid = make_element_id(file_path, language, max(1, d.line), max(1, d.column), names[i])
        ids[i] = eid
        seen.setdefault(eid, i)

    children: dict[str, list[str]] = {}
    for i in order:
        eid = ids[i]
        if seen[eid] != i:
            continue
        parent = drafts[i].parent
        if parent is not None and parent in ids and ids[parent] != eid:
            children.setdefault(ids[parent], []).append(eid)

    elements: list[CodeElement] = []
    for i in order:
        eid = ids[i]
        if seen[eid] != i:
            continue
        d = drafts[i]
        parent_id = ids.get(d.parent) if d.parent is not None else None
        if parent_id == eid:
            parent_id = None
        elements.append(
            CodeElement(
                element_type=d.element_type,
                name=names[i],
                language=language,
                location=SourceLocation(
                    file_path=file_path,
                    line=max(1, d.line),
                    column=max(1, d.column),
                    length=min(max(0, d.length), MAX_LENGTH),
                ),
                documentation=d.documentation or None,
                code_snippet=d.code[:MAX_SNIPPET_CHARS],
                element_id=eid,
                parent_id=parent_id,
                children_ids=tuple(children.get(eid, ())),
            )
        )
    return elements


@dataclass
class ElementNode:
    element: CodeElement
    children: list[ElementNode] = field(default_factory=list)


def build_tree(elements: Iterable[CodeElement]) -> list[ElementNode]:
    """Rebuild the element hierarchy from flat id references.

    Returns the roots (elements without a resolvable parent) in document order.
    """
    nodes = {e.element_id: ElementNode(e) for e in elements}
    roots: list[ElementNode] = []
    for node in nodes.values():
        parent = nodes.get(node.element.parent_id or "")
        if parent is None:
            roots.append(node)
        else:
            parent.children.append(node)
    return roots


def dumps(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, sort_keys=True)


@dataclass(frozen=True)
class SearchFilters:
    """Restrictions applied inside the full-text query.

    Attributes:
        language: Allowed language tags, or None for any.
        element_type: Allowed element types, or None for any.
        path_prefix: Only paths (or URLs) starting with this string.
        max_age_seconds: Only documents modified within this many seconds.
        source: ``"local"`` or ``"remote"``, or None for both.
    """

    language: tuple[str, ...] | None = None
    element_type: tuple[ElementType, ...] | None = None
    path_prefix: str | None = None
    max_age_seconds: float | None = None
    source: str | None = None

    @classmethod
    def from_mapping(cls, data: dict[str, Any] | None) -> SearchFilters:
        """Build filters from a plain dict; scalar values become 1-tuples."""
        if not data:
            return cls()
        unknown = set(data) - {"language", "element_type", "path_prefix", "max_age_seconds", "source"}
        if unknown:
            raise ValueError(f"Unknown search filter(s): {', '.join(sorted(unknown))}")

        def as_tuple(value: Any) -> tuple | None:
            if value is None:
                return None
            if isinstance(value, (str, ElementType)):
                return (value,)
            return tuple(value)

        languages = as_tuple(data.get("language"))
        types = as_tuple(data.get("element_type"))
        source = data.get("source")
        if source is not None and source not in ("local", "remote"):
            raise ValueError(f"source filter must be 'local' or 'remote', got {source!r}")
        max_age = data.get("max_age_seconds")
        return cls(
            language=tuple(str(lang).lower() for lang in languages) if languages else None,
            element_type=tuple(ElementType(t) for t in types) if types else None,
            path_prefix=data.get("path_prefix") or None,
            max_age_seconds=float(max_age) if max_age is not None else None,
            source=source,
        )
