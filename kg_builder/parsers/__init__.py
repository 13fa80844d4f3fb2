"""
Source parsers — one per file family, selected by extension.

Each parser exposes ``parse_file(rel_path, repo_path) -> ParseResult`` and
raises on unreadable or malformed input; callers isolate failures per file.
"""

import os
from typing import Callable, Optional

from ..models import ParseResult
from . import asset, code, markdown

CODE_EXTENSIONS = code.CODE_EXTENSIONS
DOC_EXTENSIONS = markdown.DOC_EXTENSIONS
ASSET_EXTENSIONS = asset.ASSET_EXTENSIONS

SUPPORTED_EXTENSIONS: frozenset[str] = CODE_EXTENSIONS | DOC_EXTENSIONS | ASSET_EXTENSIONS

ParserFunc = Callable[[str, str], ParseResult]


def parser_for(rel_path: str) -> Optional[ParserFunc]:
    """Return the ``parse_file`` callable for *rel_path*, or None if unsupported."""
    ext = os.path.splitext(rel_path)[1].lower()
    if ext in CODE_EXTENSIONS:
        return code.parse_file
    if ext in DOC_EXTENSIONS:
        return markdown.parse_file
    if ext in ASSET_EXTENSIONS:
        return asset.parse_file
    return None


def is_supported(rel_path: str) -> bool:
    return os.path.splitext(rel_path)[1].lower() in SUPPORTED_EXTENSIONS
