"""
Parse stage — discovers the files to process, runs the matching parser on
each one and persists a :class:`ParseOutput` under ``<staging>/parse``.

Full mode walks the checkout; incremental mode asks the revision tracker
what changed since the base revision.
"""

from __future__ import annotations

import fnmatch
import logging
import math
import os
import time
from typing import Callable, Optional

from ..git import FileChange, RevisionTracker
from ..models import BuildConfig, ParseOutput, utc_now_iso
from ..parsers import ParserFunc, is_supported, parser_for
from .staging import write_artifact

logger = logging.getLogger(__name__)

STAGE_NAME = "parse"

# ---------------------------------------------------------------------------
# Directory / file exclusion rules
# ---------------------------------------------------------------------------

_SKIP_DIRS: frozenset[str] = frozenset({
    "node_modules", "dist", "build", "__pycache__",
    ".git", "vendor",
    ".venv", "venv",
    ".tox", ".mypy_cache", ".pytest_cache",
    "coverage", ".next", ".nuxt",
    "eggs", ".eggs",
    ".cache",
})

_TEST_FILE_PATTERNS: tuple[str, ...] = (
    "*.test.*",
    "*.spec.*",
    "test_*.py",
    "*_test.py",
)


def _is_excluded(rel_path: str) -> bool:
    """True for test files and anything under a skipped directory."""
    parts = rel_path.replace(os.sep, "/").split("/")
    if any(part in _SKIP_DIRS for part in parts[:-1]):
        return True
    name = parts[-1]
    return any(fnmatch.fnmatch(name, pattern) for pattern in _TEST_FILE_PATTERNS)


def discover_files(repo_path: str) -> list[str]:
    """
    Walk *repo_path* and return every parseable file, relative and sorted.

    Paths always use forward slashes so entity ids are platform independent.
    """
    results: list[str] = []
    for dirpath, dirnames, filenames in os.walk(repo_path, topdown=True):
        # Prune excluded directories in-place (modifies the walk)
        dirnames[:] = sorted(d for d in dirnames if d not in _SKIP_DIRS)
        for fname in filenames:
            abs_path = os.path.join(dirpath, fname)
            rel_path = os.path.relpath(abs_path, repo_path).replace(os.sep, "/")
            if is_supported(rel_path) and not _is_excluded(rel_path):
                results.append(rel_path)
    return sorted(results)


def select_changed_files(changes: list[FileChange]) -> tuple[list[str], list[str]]:
    """Split a diff into ``(files_to_parse, removed_paths)``.

    Removed paths are deleted files plus the old side of renames.
    """
    to_parse: list[str] = []
    removed: list[str] = []
    for change in changes:
        if change.status == "deleted":
            removed.append(change.file)
            continue
        if change.status == "renamed" and change.old_path:
            removed.append(change.old_path)
        if is_supported(change.file) and not _is_excluded(change.file):
            to_parse.append(change.file)
    return to_parse, removed


def progress_interval(total: int) -> int:
    """Log roughly ten evenly spaced checkpoints; every file when fewer than ten."""
    return math.ceil(total / 10) if total >= 10 else 1


class ParseStage:
    """
    Produce the parse artifact for one build.

    Parameters
    ----------
    tracker_factory:
        Callable ``(repo_path, staging_path) -> RevisionTracker``.
    parser_lookup:
        Callable returning the parser for a relative path, or None.
    """

    def __init__(
        self,
        tracker_factory: Callable[[str, str], RevisionTracker] = RevisionTracker,
        parser_lookup: Callable[[str], Optional[ParserFunc]] = parser_for,
    ) -> None:
        self._tracker_factory = tracker_factory
        self._parser_lookup = parser_lookup

    def execute(self, config: BuildConfig) -> ParseOutput:
        logger.info("Starting parse stage (%s mode)", config.mode)
        start_time = time.time()

        tracker = self._tracker_factory(config.repo_path, config.staging_path)
        current_commit = tracker.current_revision()

        removed: list[str] = []
        if config.mode == "full":
            files = discover_files(config.repo_path)
            logger.info("Full rebuild: processing %d files", len(files))
        else:
            base_commit = config.base_commit or tracker.last_build_revision()
            files, removed = select_changed_files(tracker.changed_files(base_commit))
            logger.info(
                "Incremental build: processing %d changed files (base commit: %s)",
                len(files), (base_commit or "initial")[:7],
            )

        output = ParseOutput(metadata={
            "timestamp": utc_now_iso(),
            "commit": current_commit,
            "filesProcessed": 0,
            "mode": config.mode,
        })
        parsed_files: list[str] = []

        total = len(files)
        if total == 0:
            logger.info("Parse stage: no files to process")
        interval = progress_interval(total)

        for idx, rel_path in enumerate(files):
            parse = self._parser_lookup(rel_path)
            if parse is not None:
                try:
                    result = parse(rel_path, config.repo_path)
                    output.entities.extend(result.entities)
                    output.relationships.extend(result.relationships)
                    parsed_files.append(rel_path)
                except Exception as exc:
                    logger.error("Error processing %s: %s", rel_path, exc)

            processed = idx + 1
            if processed % interval == 0 or processed == total:
                logger.info("Parse progress: %d/%d files processed", processed, total)

        output.metadata["filesProcessed"] = len(parsed_files)
        output.metadata["parsedFiles"] = parsed_files
        output.metadata["deletedFiles"] = removed

        write_artifact(config.staging_path, STAGE_NAME, output.to_dict())
        tracker.save_last_build_revision(current_commit)

        elapsed_ms = int((time.time() - start_time) * 1000)
        logger.info(
            "Parse stage complete: %d entities, %d relationships in %dms",
            len(output.entities), len(output.relationships), elapsed_ms,
        )
        return output
