"""
Git integration — revision tracking over the source checkout and repository
sync before a build.
"""

from __future__ import annotations

import json
import logging
import os
import subprocess
from dataclasses import dataclass
from typing import Optional

from .errors import GitError
from .models import utc_now_iso

logger = logging.getLogger(__name__)

LAST_BUILD_FILE = "last-build.json"

_STATUS_MAP = {
    "A": "added",
    "M": "modified",
    "D": "deleted",
}


def _run_git(args: list[str], cwd: Optional[str] = None) -> str:
    """Run ``git <args>`` and return stdout; raise :class:`GitError` on failure."""
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=cwd,
            capture_output=True,
            text=True,
            encoding="utf-8",
            check=False,
        )
    except OSError as e:
        raise GitError(f"git {args[0]} failed: {e}") from e
    if result.returncode != 0:
        raise GitError(
            f"git {' '.join(args)} failed ({result.returncode}): "
            f"{result.stderr.strip()}"
        )
    return result.stdout


@dataclass
class FileChange:
    """One entry of a name-status diff."""
    file: str
    status: str  # added | modified | deleted | renamed
    old_path: Optional[str] = None


def _split_nul(output: str) -> list[str]:
    return [field for field in output.split("\0") if field]


def parse_name_status(output: str) -> list[FileChange]:
    """Parse ``git diff --name-status -z`` output.

    Fields are NUL-separated and paths are never quoted: each status is
    followed by one path, or by the source and destination paths for renames
    and copies.
    """
    fields = _split_nul(output)
    changes: list[FileChange] = []
    i = 0
    while i < len(fields):
        status = fields[i]
        if status[0] in "RC" and i + 2 < len(fields):
            old_path, new_path = fields[i + 1], fields[i + 2]
            if status[0] == "R":
                changes.append(FileChange(file=new_path, status="renamed", old_path=old_path))
            else:
                changes.append(FileChange(file=new_path, status="added"))
            i += 3
        elif i + 1 < len(fields):
            changes.append(FileChange(file=fields[i + 1], status=_STATUS_MAP.get(status[0], "modified")))
            i += 2
        else:
            break
    return changes


class RevisionTracker:
    """Current revision, changed files and the last-build marker for one checkout."""

    def __init__(self, repo_path: str, staging_path: str) -> None:
        self.repo_path = repo_path
        self.staging_path = staging_path

    @property
    def marker_path(self) -> str:
        return os.path.join(self.staging_path, LAST_BUILD_FILE)

    def current_revision(self) -> str:
        """Hash of the most recent commit on the checked-out branch."""
        output = _run_git(["log", "-1", "--format=%H"], cwd=self.repo_path)
        return output.strip()

    def changed_files(self, base: Optional[str] = None) -> list[FileChange]:
        """Files changed between *base* and the current revision.

        Without a base every tracked file is reported as added.
        """
        if not base:
            output = _run_git(["ls-files", "-z"], cwd=self.repo_path)
            return [FileChange(file=path, status="added") for path in _split_nul(output)]

        current = self.current_revision()
        output = _run_git(["diff", "--name-status", "-z", base, current], cwd=self.repo_path)
        changes = parse_name_status(output)
        logger.info("Found %d changed files since %s", len(changes), base[:7])
        return changes

    def last_build_revision(self) -> Optional[str]:
        """Revision recorded by the previous parse, or None."""
        try:
            with open(self.marker_path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError):
            return None
        if not isinstance(data, dict):
            return None
        return data.get("commit") or None

    def save_last_build_revision(self, revision: str) -> None:
        os.makedirs(self.staging_path, exist_ok=True)
        with open(self.marker_path, "w", encoding="utf-8") as f:
            json.dump({"commit": revision, "timestamp": utc_now_iso()}, f, indent=2)


def sync_repository(repo_path: str, repo_url: str, branch: str) -> None:
    """Clone *repo_url* into *repo_path*, or update the existing checkout."""
    if not os.path.exists(repo_path):
        parent = os.path.dirname(os.path.abspath(repo_path))
        os.makedirs(parent, exist_ok=True)
        logger.info("Cloning %s into %s (branch: %s)", repo_url, repo_path, branch)
        _run_git(["clone", "--branch", branch, "--single-branch", repo_url, repo_path])
        logger.info("Clone complete")
        return

    logger.info("Updating repository at %s (branch: %s)", repo_path, branch)
    _run_git(["fetch", "origin", branch], cwd=repo_path)
    _run_git(["checkout", branch], cwd=repo_path)
    _run_git(["pull", "origin", branch], cwd=repo_path)
    logger.info("Repository update complete")
