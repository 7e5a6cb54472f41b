"""Repository indexing entrypoint.

This script indexes a checked-out repository into the configured vector and
relational stores. Without change lists it builds a new index snapshot; with
``--index-id`` and any of ``--added/--modified/--removed`` it applies an
incremental update to an existing completed snapshot. ``--check-status``
reports whether the project needs indexing; ``--skip-if-fresh`` indexes only
when it does.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = REPO_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from meridian_rag.app.container import build_container
from meridian_rag.common.schemas import ChangedFiles
from meridian_rag.config import GlobalConfig
from meridian_rag.indexing.source import LocalDirectoryProvider


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Index a repository for code search")

    parser.add_argument(
        "--repo-path",
        "-r",
        required=True,
        type=str,
        help="Path to the checked-out repository.",
    )

    parser.add_argument(
        "--project-id",
        "-p",
        required=True,
        type=str,
        help="Project the index belongs to.",
    )

    parser.add_argument(
        "--config-file",
        "-c",
        required=True,
        type=str,
        help="Path to the YAML configuration file.",
    )

    parser.add_argument(
        "--commit-sha",
        required=False,
        type=str,
        default=None,
        help="Commit recorded on the index (default: HEAD).",
    )
    parser.add_argument(
        "--branch",
        required=False,
        type=str,
        default="main",
        help="Branch recorded on the index (default: main).",
    )

    parser.add_argument(
        "--index-id",
        required=False,
        type=str,
        default=None,
        help="Existing completed index to update incrementally.",
    )
    parser.add_argument("--added", nargs="*", default=[], help="Paths added since the indexed commit.")
    parser.add_argument("--modified", nargs="*", default=[], help="Paths modified since the indexed commit.")
    parser.add_argument("--removed", nargs="*", default=[], help="Paths removed since the indexed commit.")

    parser.add_argument(
        "--check-status",
        action="store_true",
        help="Only report whether the project needs indexing, then exit.",
    )
    parser.add_argument(
        "--skip-if-fresh",
        action="store_true",
        help="Skip a full index when the latest completed index is fresh.",
    )
    parser.add_argument(
        "--max-age-days",
        type=float,
        default=7.0,
        help="Age after which a completed index counts as stale (default: 7).",
    )

    parser.add_argument(
        "--log-level",
        required=False,
        type=str,
        default="INFO",
        help="Logging level (default: INFO).",
    )

    return parser.parse_args()


async def run(args: argparse.Namespace) -> None:
    cfg = GlobalConfig.load(args.config_file)
    container = build_container(cfg)
    await container.startup()

    provider = LocalDirectoryProvider(args.repo_path)
    owner, repo = "local", Path(args.repo_path).resolve().name

    try:
        if args.check_status or args.skip_if_fresh:
            report = await container.index_store.check_status(args.project_id, max_age_days=args.max_age_days)
            if report.needs_indexing:
                print(f"Project {args.project_id} needs indexing: {report.reason}")
            else:
                print(
                    f"Project {args.project_id} is fresh: index {report.index_id}, "
                    f"{report.total_chunks} chunks, {report.age_days:.1f} days old"
                )
            if args.check_status or not report.needs_indexing:
                return

        if args.index_id:
            if not args.commit_sha:
                raise SystemExit("--commit-sha is required for an incremental update.")
            changed = ChangedFiles(added=args.added, modified=args.modified, removed=args.removed)
            result = await container.incremental_indexer(provider).update_index(
                owner, repo, args.index_id, changed, args.commit_sha
            )
            print(
                f"Updated index {result.index_id}: +{result.chunks_added} ~{result.chunks_modified} "
                f"-{result.chunks_removed} chunks in {result.duration_ms / 1000:.2f}s (cost ${result.cost:.6f})"
            )
        else:
            index_id = await container.repository_indexer(provider).index_repository(
                owner, repo, args.project_id, commit_sha=args.commit_sha, branch=args.branch
            )
            index = await container.index_store.get(index_id)
            print(
                f"Indexed {index.total_files} files into {index.total_chunks} chunks "
                f"(index {index_id}, cost ${index.cost:.6f})"
            )
    finally:
        await container.aclose()


def main() -> None:
    args = parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    asyncio.run(run(args))


if __name__ == "__main__":
    main()
