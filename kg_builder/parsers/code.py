"""
Tree-sitter structural parser for code files.

Supports: JavaScript (incl. JSX), TypeScript, TSX, Python

Produces one ``file`` entity per source file plus ``class`` and ``function``
entities for the declarations found by walking the syntax tree.  Import,
definition, inheritance, event-bus and ``@implements`` edges are extracted
on a best-effort basis; nothing is resolved across files.

Uses tree-sitter >= 0.22 API with individual language packages.
"""

from __future__ import annotations

import logging
import os
import re
from typing import Optional

from ..models import (
    EntityType,
    ParsedEntity,
    ParsedRelationship,
    ParseResult,
    RelationshipType,
    SourceLocation,
    class_id,
    file_id,
    function_id,
)

logger = logging.getLogger(__name__)

FILE_PREVIEW_CHARS = 1000
SNIPPET_CHARS = 800

# ---------------------------------------------------------------------------
# Language mapping
# ---------------------------------------------------------------------------

EXTENSION_TO_LANGUAGE: dict[str, str] = {
    ".js": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".tsx": "tsx",
    ".py": "python",
}

CODE_EXTENSIONS: frozenset[str] = frozenset(EXTENSION_TO_LANGUAGE)

_IMPLEMENTS_RE = re.compile(r"(?://|#) @implements ([\w-]+)")

_EVENT_METHODS = {
    "on": RelationshipType.SUBSCRIBES_TO,
    "emit": RelationshipType.EMITS,
}


def detect_language(file_path: str) -> Optional[str]:
    """Return the tree-sitter language name for *file_path*, or None if unsupported."""
    ext = os.path.splitext(file_path)[1].lower()
    return EXTENSION_TO_LANGUAGE.get(ext)


# ---------------------------------------------------------------------------
# Language → (tree-sitter Language object) lookup
# ---------------------------------------------------------------------------

def _get_lang_func(language: str):
    """Return the tree-sitter language() function for *language*, or None."""
    try:
        if language == "python":
            import tree_sitter_python as m  # type: ignore
            return m.language
        elif language == "javascript":
            import tree_sitter_javascript as m  # type: ignore
            return m.language
        elif language == "typescript":
            import tree_sitter_typescript as m  # type: ignore
            return m.language_typescript
        elif language == "tsx":
            import tree_sitter_typescript as m  # type: ignore
            return m.language_tsx
    except ImportError:
        pass
    return None


# Cache parsers to avoid repeated construction
_PARSER_CACHE: dict[str, object] = {}


def _get_ts_parser(language: str):
    """
    Return a tree-sitter Parser configured for *language*.

    Raises RuntimeError if the grammar package is not installed.
    """
    if language in _PARSER_CACHE:
        return _PARSER_CACHE[language]
    import tree_sitter as ts  # type: ignore

    func = _get_lang_func(language)
    if func is None:
        raise RuntimeError(f"tree-sitter grammar unavailable for {language}")
    parser = ts.Parser(ts.Language(func()))
    _PARSER_CACHE[language] = parser
    return parser


# ---------------------------------------------------------------------------
# Node text helpers
# ---------------------------------------------------------------------------

def _text(node) -> str:
    """Decode a tree-sitter Node's text as UTF-8."""
    if node is None:
        return ""
    return node.text.decode("utf-8", errors="replace") if node.text else ""


def _string_value(node) -> Optional[str]:
    """Return the literal value of a plain string node, or None."""
    if node is None or node.type != "string":
        return None
    raw = _text(node).lstrip("rRbBuU")
    if raw[:1] in ("f", "F"):
        return None  # f-strings are not literals
    for q in ('"""', "'''", '"', "'"):
        if raw.startswith(q) and raw.endswith(q) and len(raw) >= 2 * len(q):
            return raw[len(q):-len(q)]
    return None


def _named(node) -> list:
    """Named children without comments."""
    return [c for c in node.named_children if c.type != "comment"]


def _is_async(node) -> bool:
    return any(child.type == "async" for child in node.children)


def _location(node, rel_path: str) -> SourceLocation:
    return SourceLocation(
        file=rel_path,
        line=node.start_point[0] + 1,
        column=node.start_point[1],
    )


def _snippet(source: bytes, node) -> str:
    """Trimmed source of *node*, capped at SNIPPET_CHARS."""
    if node.start_byte >= node.end_byte:
        return ""
    trimmed = source[node.start_byte:node.end_byte].decode(
        "utf-8", errors="replace"
    ).strip()
    if len(trimmed) <= SNIPPET_CHARS:
        return trimmed
    return trimmed[:SNIPPET_CHARS] + "\n..."


# ---------------------------------------------------------------------------
# Parameter extraction
# ---------------------------------------------------------------------------

_PY_SKIP_PARAMS = {"self", "cls"}


def _js_param_name(node) -> str:
    if node.type == "identifier":
        return _text(node)
    if node.type in ("required_parameter", "optional_parameter"):
        pattern = node.child_by_field_name("pattern")
        if pattern is not None and pattern.type == "identifier":
            return _text(pattern)
    if node.type == "assignment_pattern":
        left = node.child_by_field_name("left")
        if left is not None and left.type == "identifier":
            return _text(left)
    return "unknown"


def _py_param_name(node) -> Optional[str]:
    if node.type == "identifier":
        return _text(node)
    if node.type in ("default_parameter", "typed_default_parameter"):
        name = node.child_by_field_name("name")
        return _text(name) if name is not None else None
    if node.type in ("typed_parameter", "list_splat_pattern", "dictionary_splat_pattern"):
        for sub in node.named_children:
            if sub.type == "identifier":
                return _text(sub)
    return None


def _extract_params(params_node, language: str) -> list[str]:
    if params_node is None:
        return []
    params: list[str] = []
    for child in _named(params_node):
        if language == "python":
            name = _py_param_name(child)
            if name and name not in _PY_SKIP_PARAMS:
                params.append(name)
        else:
            params.append(_js_param_name(child))
    return params


# ---------------------------------------------------------------------------
# Tree walker
# ---------------------------------------------------------------------------

class _Extractor:
    """Accumulates entities/relationships while walking one syntax tree."""

    def __init__(self, source: bytes, rel_path: str, language: str) -> None:
        self.source = source
        self.rel_path = rel_path
        self.language = language
        self.file_id = file_id(rel_path)
        self.result = ParseResult()
        self._seen_rels: set[str] = set()
        self._method_spans: set[tuple[int, int]] = set()

    def add_rel(
        self,
        source: str,
        rel_type: str,
        target: str,
        properties: Optional[dict] = None,
    ) -> None:
        rel = ParsedRelationship.create(source, rel_type, target, properties)
        if rel.id in self._seen_rels:
            return
        self._seen_rels.add(rel.id)
        self.result.relationships.append(rel)

    def walk(self, root) -> None:
        # Iterative pre-order walk; deep trees would overflow recursion.
        stack = [root]
        while stack:
            node = stack.pop()
            if self.language == "python":
                self._visit_python(node)
            else:
                self._visit_js(node)
            stack.extend(reversed(node.children))

    # ------------------------------------------------------------ shared
    def _add_class(self, node, name: str, methods: list[str],
                   properties: list[str], superclass: Optional[str]) -> None:
        cid = class_id(self.rel_path, name)
        self.result.entities.append(ParsedEntity(
            id=cid,
            type=EntityType.CLASS,
            name=name,
            path=self.rel_path,
            content=_snippet(self.source, node),
            metadata={"methods": methods, "properties": properties},
            source_location=_location(node, self.rel_path),
        ))
        self.add_rel(self.file_id, RelationshipType.DEFINES, cid)
        if superclass:
            self.add_rel(cid, RelationshipType.EXTENDS, f"class:{superclass}")

    def _add_function(self, node, name: str, params: list[str]) -> None:
        fid = function_id(self.rel_path, name)
        self.result.entities.append(ParsedEntity(
            id=fid,
            type=EntityType.FUNCTION,
            name=name,
            path=self.rel_path,
            content=_snippet(self.source, node),
            metadata={"params": params, "async": _is_async(node)},
            source_location=_location(node, self.rel_path),
        ))
        self.add_rel(self.file_id, RelationshipType.DEFINES, fid)

    def _event_call(self, method_name: str, args_node) -> None:
        rel_type = _EVENT_METHODS.get(method_name)
        if rel_type is None or args_node is None:
            return
        args = _named(args_node)
        if not args:
            return
        event_name = _string_value(args[0])
        if event_name is None:
            return
        self.add_rel(self.file_id, rel_type, f"event:{event_name}")

    # ------------------------------------------------------- javascript
    def _visit_js(self, node) -> None:
        t = node.type
        if t == "import_statement":
            self._js_import(node)
        elif t in ("class_declaration", "abstract_class_declaration"):
            self._js_class(node)
        elif t in ("function_declaration", "generator_function_declaration"):
            name_node = node.child_by_field_name("name")
            if name_node is not None:
                params = _extract_params(
                    node.child_by_field_name("parameters"), self.language
                )
                self._add_function(node, _text(name_node), params)
        elif t == "call_expression":
            callee = node.child_by_field_name("function")
            if callee is not None and callee.type == "member_expression":
                prop = callee.child_by_field_name("property")
                if prop is not None and prop.type == "property_identifier":
                    self._event_call(_text(prop), node.child_by_field_name("arguments"))

    def _js_import(self, node) -> None:
        source = _string_value(node.child_by_field_name("source"))
        if source is None:
            return
        specifiers: list[str] = []
        for child in node.named_children:
            if child.type != "import_clause":
                continue
            for part in child.named_children:
                if part.type == "identifier":
                    specifiers.append("default")
                elif part.type == "namespace_import":
                    specifiers.append("namespace")
                elif part.type == "named_imports":
                    for spec in part.named_children:
                        if spec.type != "import_specifier":
                            continue
                        imported = spec.child_by_field_name("name")
                        specifiers.append(_text(imported) if imported is not None else "namespace")
        self.add_rel(
            self.file_id,
            RelationshipType.IMPORTS,
            f"module:{source}",
            {"specifiers": specifiers},
        )

    def _js_class(self, node) -> None:
        name_node = node.child_by_field_name("name")
        if name_node is None:
            return
        methods: list[str] = []
        properties: list[str] = []
        body = node.child_by_field_name("body")
        if body is not None:
            for member in body.named_children:
                if member.type == "method_definition":
                    key = member.child_by_field_name("name")
                    methods.append(_member_name(key))
                elif member.type in ("field_definition", "public_field_definition"):
                    key = (member.child_by_field_name("property")
                           or member.child_by_field_name("name"))
                    properties.append(_member_name(key))
        self._add_class(node, _text(name_node), methods, properties,
                        _js_superclass(node))

    # ----------------------------------------------------------- python
    def _visit_python(self, node) -> None:
        t = node.type
        if t == "import_statement":
            for child in node.children_by_field_name("name"):
                self.add_rel(
                    self.file_id,
                    RelationshipType.IMPORTS,
                    f"module:{_py_module_name(child)}",
                    {"specifiers": ["namespace"]},
                )
        elif t == "import_from_statement":
            module = node.child_by_field_name("module_name")
            if module is None:
                return
            specifiers = [
                _py_module_name(child)
                for child in node.children_by_field_name("name")
            ]
            if any(c.type == "wildcard_import" for c in node.named_children):
                specifiers.append("*")
            self.add_rel(
                self.file_id,
                RelationshipType.IMPORTS,
                f"module:{_text(module)}",
                {"specifiers": specifiers},
            )
        elif t == "class_definition":
            self._py_class(node)
        elif t == "function_definition":
            if (node.start_byte, node.end_byte) in self._method_spans:
                return
            name_node = node.child_by_field_name("name")
            if name_node is not None:
                params = _extract_params(
                    node.child_by_field_name("parameters"), self.language
                )
                self._add_function(node, _text(name_node), params)
        elif t == "call":
            callee = node.child_by_field_name("function")
            if callee is not None and callee.type == "attribute":
                attr = callee.child_by_field_name("attribute")
                self._event_call(_text(attr), node.child_by_field_name("arguments"))

    def _py_class(self, node) -> None:
        name_node = node.child_by_field_name("name")
        if name_node is None:
            return
        methods: list[str] = []
        properties: list[str] = []
        body = node.child_by_field_name("body")
        if body is not None:
            for stmt in body.named_children:
                definition = stmt
                if stmt.type == "decorated_definition":
                    definition = stmt.child_by_field_name("definition")
                if definition is not None and definition.type == "function_definition":
                    self._method_spans.add((definition.start_byte, definition.end_byte))
                    methods.append(_text(definition.child_by_field_name("name")))
                elif stmt.type == "expression_statement" and stmt.named_children:
                    expr = stmt.named_children[0]
                    if expr.type == "assignment":
                        left = expr.child_by_field_name("left")
                        if left is not None and left.type == "identifier":
                            properties.append(_text(left))

        superclass: Optional[str] = None
        bases = node.child_by_field_name("superclasses")
        if bases is not None:
            for arg in _named(bases):
                if arg.type == "identifier":
                    superclass = _text(arg)
                break
        self._add_class(node, _text(name_node), methods, properties, superclass)


def _member_name(key) -> str:
    if key is not None and key.type in ("property_identifier", "identifier"):
        return _text(key)
    return "unknown"


def _js_superclass(class_node) -> Optional[str]:
    """Name of a plain-identifier superclass, or None."""
    for child in class_node.children:
        if child.type != "class_heritage":
            continue
        for sub in child.named_children:
            if sub.type == "extends_clause":
                target = sub.child_by_field_name("value")
            elif sub.type == "implements_clause":
                continue
            else:
                target = sub
            if target is not None and target.type == "identifier":
                return _text(target)
            return None
    return None


def _py_module_name(node) -> str:
    if node.type == "aliased_import":
        node = node.child_by_field_name("name")
    return _text(node)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def parse_code(source: str, rel_path: str, language: Optional[str] = None) -> ParseResult:
    """
    Parse source text and return the file's entities and relationships.

    Parameters
    ----------
    source:
        Decoded contents of the file.
    rel_path:
        Path relative to the repository root; used in every entity id.
    language:
        Tree-sitter language name.  Detected from *rel_path* when omitted.

    Raises
    ------
    ValueError
        If the extension is not a supported code extension.
    RuntimeError
        If the tree-sitter grammar is not installed.
    """
    language = language or detect_language(rel_path)
    if language is None:
        raise ValueError(f"Unsupported code file: {rel_path}")

    file_entity = ParsedEntity(
        id=file_id(rel_path),
        type=EntityType.FILE,
        name=os.path.basename(rel_path),
        path=rel_path,
        content=source[:FILE_PREVIEW_CHARS],
        metadata={
            "extension": os.path.splitext(rel_path)[1],
            "size": len(source),
            "language": language,
        },
    )

    source_bytes = source.encode("utf-8")
    tree = _get_ts_parser(language).parse(source_bytes)

    extractor = _Extractor(source_bytes, rel_path, language)
    extractor.result.entities.append(file_entity)
    extractor.walk(tree.root_node)

    for match in _IMPLEMENTS_RE.finditer(source):
        extractor.add_rel(
            extractor.file_id,
            RelationshipType.IMPLEMENTS_PATTERN,
            f"pattern:{match.group(1)}",
        )

    result = extractor.result
    logger.debug(
        "Parsed %s: %d entities, %d relationships",
        rel_path, len(result.entities), len(result.relationships),
    )
    return result


def parse_file(rel_path: str, repo_path: str) -> ParseResult:
    """Read *rel_path* under *repo_path* and parse it."""
    with open(os.path.join(repo_path, rel_path), encoding="utf-8") as fh:
        source = fh.read()
    return parse_code(source, rel_path)
