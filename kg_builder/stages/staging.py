"""
Staging area layout and artifact I/O.

    <staging>/parse/output.json
    <staging>/enrich/output.json
    <staging>/last-build.json
    <staging>/logs/
"""

from __future__ import annotations

import json
import logging
import os
import shutil

from ..errors import StageInputError
from ..git import LAST_BUILD_FILE

logger = logging.getLogger(__name__)

OUTPUT_FILE = "output.json"
STAGING_DIRS = ("parse", "enrich", "logs")


def artifact_path(staging_path: str, stage: str) -> str:
    return os.path.join(staging_path, stage, OUTPUT_FILE)


def write_artifact(staging_path: str, stage: str, data: dict) -> str:
    """Write *data* as the output of *stage*; returns the file path.

    Values ``json`` cannot encode natively are written as ``str(value)``.
    A failed write leaves neither a partial artifact nor a temp file.
    """
    path = artifact_path(staging_path, stage)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    tmp = path + ".tmp"
    try:
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, default=str)
        os.replace(tmp, path)
    finally:
        if os.path.exists(tmp):
            os.remove(tmp)
    return path


def read_artifact(staging_path: str, stage: str) -> dict:
    """Load the output of *stage*.

    Raises :class:`StageInputError` if the file is missing or is not a JSON
    object.
    """
    path = artifact_path(staging_path, stage)
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise StageInputError(f"{stage} output not found at {path}") from e
    except (OSError, ValueError) as e:
        raise StageInputError(f"Could not read {stage} output at {path}: {e}") from e
    if not isinstance(data, dict):
        raise StageInputError(f"{stage} output at {path} is not a JSON object")
    return data


def reset_staging(staging_path: str) -> None:
    """Wipe stage outputs and logs and forget the last build revision."""
    for name in STAGING_DIRS:
        target = os.path.join(staging_path, name)
        shutil.rmtree(target, ignore_errors=True)
        os.makedirs(target, exist_ok=True)

    marker = os.path.join(staging_path, LAST_BUILD_FILE)
    if os.path.exists(marker):
        os.remove(marker)
    logger.info("Reset staging directory at %s", staging_path)
