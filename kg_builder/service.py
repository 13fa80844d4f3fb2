"""
Build Service — runs parse → enrich → populate on a background thread,
one build at a time, and keeps the last run's summary for status queries.

State machine
──────────────────────────────────────────────────────────────
Idle      start_build()      → Running{request, started_at}
Running   start_build()      → BuildInProgressError (state untouched)
Running   build finishes     → Idle, last_run = summary
──────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Union

from .config import Config
from .errors import BuildInProgressError, InvalidBuildRequestError
from .git import sync_repository
from .models import (
    MODES,
    STAGES,
    BuildRequest,
    BuildRunSummary,
    BuildStageSummary,
    BuildStatus,
    utc_now_iso,
)
from .stages import EnrichStage, ParseStage, PopulateStage

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Run state
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Running:
    request: BuildRequest
    started_at: str


RunState = Union[Idle, Running]


# ---------------------------------------------------------------------------
# Stage wiring
# ---------------------------------------------------------------------------

@dataclass
class StageFactories:
    """Callables building a fresh stage object for every run."""
    parse: Callable[[], ParseStage]
    enrich: Callable[[], EnrichStage]
    populate: Callable[[], PopulateStage]


def default_stage_factories(config: Config) -> StageFactories:
    """Wire the stages to the providers and stores named in *config*."""
    from .enrichers import CodeEnricher, DocEnricher, create_chat_client, create_embedder
    from .stores import QdrantStore, create_graph_store

    def _enrich() -> EnrichStage:
        embedder = create_embedder(config)
        code = CodeEnricher(
            embedder,
            client=create_chat_client(config),
            model=config.OPENAI_MODEL,
            batch_size=config.ENRICH_BATCH_SIZE,
            batch_delay=config.ENRICH_BATCH_DELAY,
        )
        return EnrichStage(code, DocEnricher(embedder))

    def _populate() -> PopulateStage:
        return PopulateStage(
            graph_store_factory=lambda: create_graph_store(config),
            vector_store_factory=lambda project_id: QdrantStore(
                config.QDRANT_URL, project_id, config.VECTOR_SIZE
            ),
        )

    return StageFactories(parse=ParseStage, enrich=_enrich, populate=_populate)


def validate_request(request: BuildRequest) -> None:
    """Raise :class:`InvalidBuildRequestError` for an unknown mode or stage."""
    if request.mode not in MODES:
        raise InvalidBuildRequestError(
            f"Invalid mode '{request.mode}'. Expected 'incremental' or 'full'."
        )
    if request.stage not in STAGES:
        raise InvalidBuildRequestError(
            f"Invalid stage '{request.stage}'. Expected one of all|parse|enrich|populate."
        )


def _elapsed_ms(start: float) -> int:
    return int((time.time() - start) * 1000)


def _iso_ms_between(start: str, end: str) -> int:
    fmt = "%Y-%m-%dT%H:%M:%S.%fZ"
    delta = datetime.strptime(end, fmt) - datetime.strptime(start, fmt)
    return int(delta.total_seconds() * 1000)


# ---------------------------------------------------------------------------
# BuildService
# ---------------------------------------------------------------------------

class BuildService:
    """
    Single-flight build orchestrator.

    Parameters
    ----------
    config:
        Loaded :class:`Config`.
    stages:
        Stage factories; defaults to :func:`default_stage_factories`.
    repo_sync:
        Callable ``(repo_path, repo_url, branch)`` run before parsing.
    """

    def __init__(
        self,
        config: Config,
        stages: Optional[StageFactories] = None,
        repo_sync: Callable[[str, str, str], None] = sync_repository,
    ) -> None:
        self.config = config
        self.stages = stages or default_stage_factories(config)
        self._repo_sync = repo_sync
        self._lock = threading.Lock()
        self._state: RunState = Idle()
        self._last_run: Optional[BuildRunSummary] = None
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start_build(self, request: BuildRequest) -> BuildRequest:
        """
        Validate *request* and start the build in the background.

        Returns
        -------
        BuildRequest
            The request with project, repository URL and branch resolved.

        Raises
        ------
        InvalidBuildRequestError
            Unknown mode or stage.
        UnknownProjectError
            Project not in the configured list.
        BuildInProgressError
            Another build is running.
        """
        validate_request(dataclasses.replace(request, stage=request.stage or "all"))
        normalized = dataclasses.replace(
            request,
            stage=request.stage or "all",
            project=self.config.resolve_project_id(request.project),
            repo_url=request.repo_url if request.repo_url is not None else self.config.REPO_URL,
            branch=request.branch if request.branch is not None else self.config.REPO_BRANCH,
        )

        with self._lock:
            if isinstance(self._state, Running):
                raise BuildInProgressError()
            started_at = utc_now_iso()
            self._state = Running(normalized, started_at)
            self._thread = threading.Thread(
                target=self._run,
                args=(normalized, started_at),
                name="kg-build",
                daemon=True,
            )
            self._thread.start()

        logger.info(
            "Build queued: mode=%s, stage=%s, project=%s, repo=%s, branch=%s",
            normalized.mode, normalized.stage, normalized.project,
            normalized.repo_url or "-", normalized.branch,
        )
        return normalized

    def get_status(self) -> BuildStatus:
        with self._lock:
            state = self._state
            last_run = self._last_run
        if isinstance(state, Running):
            return BuildStatus(
                running=True,
                current={"request": state.request, "started_at": state.started_at},
                last_run=last_run,
            )
        return BuildStatus(running=False, last_run=last_run)

    def wait(self, timeout: Optional[float] = None) -> Optional[BuildRunSummary]:
        """Block until the in-flight build (if any) finishes; return the last run."""
        thread = self._thread
        if thread is not None:
            thread.join(timeout)
        with self._lock:
            return self._last_run

    # ------------------------------------------------------------------
    # Build execution
    # ------------------------------------------------------------------

    def _run(self, request: BuildRequest, started_at: str) -> None:
        summary = BuildRunSummary(request=request, started_at=started_at)
        try:
            self._perform(request, summary)
        except Exception as exc:
            summary.success = False
            summary.error = str(exc) or exc.__class__.__name__
            logger.exception("Build failed: %s", summary.error)
        finally:
            summary.finished_at = utc_now_iso()
            with self._lock:
                self._last_run = summary
                self._state = Idle()

        if summary.success:
            logger.info(
                "Build complete (%s/%s) in %dms",
                request.mode, request.stage,
                _iso_ms_between(summary.started_at, summary.finished_at),
            )

    def _perform(self, request: BuildRequest, summary: BuildRunSummary) -> None:
        build_config = self.config.build_config(
            request.mode, request.project, request.base_commit
        )
        stage = request.stage

        if stage in ("all", "parse"):
            if request.repo_url:
                logger.info(
                    "Preparing repository (%s @ %s) at %s",
                    request.repo_url, request.branch, build_config.repo_path,
                )
                self._repo_sync(build_config.repo_path, request.repo_url, request.branch)
                logger.info("Repository ready")

            start = time.time()
            output = self.stages.parse().execute(build_config)
            summary.stages.append(BuildStageSummary(
                stage="parse",
                duration_ms=_elapsed_ms(start),
                entities_processed=len(output.entities),
                relationships_processed=len(output.relationships),
                metadata={"filesProcessed": output.metadata.get("filesProcessed", 0)},
            ))

        if stage in ("all", "enrich"):
            start = time.time()
            output = self.stages.enrich().execute(build_config)
            summary.stages.append(BuildStageSummary(
                stage="enrich",
                duration_ms=_elapsed_ms(start),
                entities_processed=output.metadata.get("entitiesEnriched", 0),
                relationships_processed=len(output.relationships),
                metadata={"entitiesEnriched": output.metadata.get("entitiesEnriched", 0)},
            ))

        if stage in ("all", "populate"):
            start = time.time()
            result = self.stages.populate().execute(build_config)
            summary.stages.append(BuildStageSummary(
                stage="populate",
                duration_ms=_elapsed_ms(start),
                entities_processed=result.entities,
                relationships_processed=result.relationships,
                metadata={"vectorPoints": result.vector_points, "pruned": result.pruned},
            ))
