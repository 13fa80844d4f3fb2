"""
`kg-builder` command line.

Commands
--------
kg-builder build                          -- incremental build of the configured repo
kg-builder build --mode full              -- full rebuild
kg-builder build --stage enrich           -- re-run a single stage from staged artifacts
kg-builder build --base-commit <sha>      -- diff against an explicit revision
kg-builder status                         -- last build revision and staged artifact metadata
kg-builder status --stores                -- also count nodes / points in the stores
kg-builder reset                          -- wipe staging and forget the last revision
kg-builder wait-deps                      -- block until remote services answer
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import Optional

from .config import Config
from .errors import KGBuilderError
from .logs import setup_logger
from .models import MODES, STAGES, BuildRequest

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _load_config(args: argparse.Namespace) -> Config:
    return Config.load(args.config)


def _print_summary(summary: dict) -> None:
    status = "SUCCESS" if summary.get("success") else "FAILED"
    print(f"\nBuild {status}")
    print("=" * 40)
    print(f"  {'started':<20} {summary.get('startedAt')}")
    print(f"  {'finished':<20} {summary.get('finishedAt')}")
    for stage in summary.get("stages", []):
        print(
            f"  {stage['stage']:<20} {stage['entitiesProcessed']} entities, "
            f"{stage['relationshipsProcessed']} relationships "
            f"({stage['durationMs']}ms)"
        )
    if summary.get("error"):
        print(f"  {'error':<20} {summary['error']}")
    print()


# ---------------------------------------------------------------------------
# Sub-command handlers
# ---------------------------------------------------------------------------

def _cmd_build(args: argparse.Namespace) -> int:
    from .service import BuildService

    config = _load_config(args)
    setup_logger(os.path.join(config.STAGING_PATH, "logs"), config.LOG_LEVEL)

    request = BuildRequest(
        mode=args.mode,
        stage=args.stage,
        base_commit=args.base_commit,
        repo_url=args.repo_url,
        branch=args.branch,
        project=args.project,
    )
    service = BuildService(config)
    try:
        service.start_build(request)
    except KGBuilderError as exc:
        print(f"Build rejected: {exc}", file=sys.stderr)
        return 2

    summary = service.wait()
    if summary is None:
        print("Build did not produce a summary.", file=sys.stderr)
        return 1

    if args.json:
        print(json.dumps(summary.to_dict(), indent=2))
    else:
        _print_summary(summary.to_dict())
    return 0 if summary.success else 1


def _cmd_status(args: argparse.Namespace) -> int:
    from .git import RevisionTracker
    from .stages.staging import read_artifact

    config = _load_config(args)
    tracker = RevisionTracker(config.REPO_PATH, config.STAGING_PATH)

    print("\nKnowledge Graph Build Status")
    print("=" * 40)
    print(f"  {'staging':<20} {config.STAGING_PATH}")
    print(f"  {'last build commit':<20} {tracker.last_build_revision() or '(none)'}")

    for stage in ("parse", "enrich"):
        try:
            metadata = read_artifact(config.STAGING_PATH, stage).get("metadata", {})
        except KGBuilderError:
            print(f"  {stage:<20} (no output)")
            continue
        shown = {k: v for k, v in metadata.items() if k not in ("parsedFiles", "deletedFiles")}
        print(f"  {stage:<20} {json.dumps(shown)}")

    if args.stores:
        from .stores import QdrantStore, create_graph_store

        project_id = config.resolve_project_id(args.project)
        graph = create_graph_store(config)
        try:
            stats = graph.stats(project_id)
            print(f"  {'graph':<20} {stats['nodes']} nodes, {stats['relationships']} relationships")
        finally:
            graph.close()
        vectors = QdrantStore(config.QDRANT_URL, project_id, config.VECTOR_SIZE)
        try:
            info = vectors.collection_info()
            points = info["points_count"] if info else 0
            print(f"  {'vectors':<20} {points} points in {vectors.collection}")
        finally:
            vectors.close()
    print()
    return 0


def _cmd_reset(args: argparse.Namespace) -> int:
    from .stages.staging import reset_staging

    config = _load_config(args)
    reset_staging(config.STAGING_PATH)
    print(f"Staging directory reset: {config.STAGING_PATH}")
    return 0


def _cmd_wait_deps(args: argparse.Namespace) -> int:
    from .startup import wait_for_dependencies

    config = _load_config(args)
    setup_logger(level=config.LOG_LEVEL)
    try:
        wait_for_dependencies(config, retries=args.retries, delay=args.delay)
    except KGBuilderError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    return 0


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kg-builder",
        description="Build a knowledge graph and vector index from a source repository",
    )
    parser.add_argument("--config", default=None, help="Path to a .kg-builder.yaml file")
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    # --- build ---
    build_p = subparsers.add_parser("build", help="Run a build and wait for it to finish")
    build_p.add_argument("--mode", choices=MODES, default="incremental")
    build_p.add_argument("--stage", choices=STAGES, default="all")
    build_p.add_argument("--base-commit", dest="base_commit", default=None)
    build_p.add_argument("--repo-url", dest="repo_url", default=None)
    build_p.add_argument("--branch", default=None)
    build_p.add_argument("--project", default=None)
    build_p.add_argument("--json", action="store_true", help="Print the run summary as JSON")
    build_p.set_defaults(func=_cmd_build)

    # --- status ---
    status_p = subparsers.add_parser("status", help="Show staged build state")
    status_p.add_argument("--stores", action="store_true",
                          help="Also query the graph and vector stores")
    status_p.add_argument("--project", default=None)
    status_p.set_defaults(func=_cmd_status)

    # --- reset ---
    reset_p = subparsers.add_parser("reset", help="Wipe staging artifacts and the last revision")
    reset_p.set_defaults(func=_cmd_reset)

    # --- wait-deps ---
    wait_p = subparsers.add_parser("wait-deps", help="Wait for remote services to come up")
    wait_p.add_argument("--retries", type=int, default=30)
    wait_p.add_argument("--delay", type=float, default=10.0,
                        help="Seconds between attempts (default: 10)")
    wait_p.set_defaults(func=_cmd_wait_deps)

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main(argv: Optional[list[str]] = None) -> None:
    """
    Main entry point for ``kg-builder``.

    Parameters
    ----------
    argv:
        Argument list without the program name.  Defaults to sys.argv if None.
    """
    if not logging.root.handlers:
        logging.basicConfig(
            level=logging.WARNING,
            format="%(levelname)s  %(name)s  %(message)s",
        )

    parser = _build_parser()
    args = parser.parse_args(argv)
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
