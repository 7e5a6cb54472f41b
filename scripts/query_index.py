"""Code-search query entrypoint.

This script runs one query against the latest completed index of a project
and prints the ranked chunks.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = REPO_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from meridian_rag.app.container import build_container
from meridian_rag.common.errors import NoCompletedIndexError
from meridian_rag.common.schemas import RetrievalFilter
from meridian_rag.config import GlobalConfig


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Query a project's code index")

    parser.add_argument("query", type=str, help="Natural-language query.")
    parser.add_argument("--project-id", "-p", required=True, type=str, help="Project to search.")
    parser.add_argument(
        "--config-file",
        "-c",
        required=True,
        type=str,
        help="Path to the YAML configuration file.",
    )
    parser.add_argument("--top-k", "-k", type=int, default=None, help="Number of results (default: config).")
    parser.add_argument("--language", type=str, default=None, help="Only return chunks of this language.")
    parser.add_argument(
        "--chunk-type",
        type=str,
        default=None,
        choices=["function", "class", "module"],
        help="Only return chunks of this type.",
    )
    parser.add_argument("--json", action="store_true", help="Print results as JSON.")
    parser.add_argument("--log-level", type=str, default="WARNING", help="Logging level (default: WARNING).")

    return parser.parse_args()


async def run(args: argparse.Namespace) -> int:
    cfg = GlobalConfig.load(args.config_file)
    container = build_container(cfg)
    await container.startup()

    filter = RetrievalFilter.from_dict({"language": args.language, "chunk_type": args.chunk_type})
    try:
        result = await container.pipeline.run(args.query, args.project_id, args.top_k, filter)
    except NoCompletedIndexError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    finally:
        await container.aclose()

    if args.json:
        print(json.dumps(
            [
                {
                    "file_path": r.file_path,
                    "start_line": r.start_line,
                    "end_line": r.end_line,
                    "score": r.score,
                    "source": r.source,
                    "chunk_type": r.chunk_type,
                    "name": r.metadata.get("name"),
                }
                for r in result.results
            ],
            indent=2,
        ))
        return 0

    for rank, r in enumerate(result.results, start=1):
        name = r.metadata.get("name")
        label = f" {name}" if name else ""
        print(f"{rank:>2}. {r.score:.3f}  {r.file_path}:{r.start_line}-{r.end_line}  [{r.chunk_type}{label}]")
    if result.reranked:
        print(f"(reranked in {result.rerank_time_ms:.0f}ms)")
    return 0


def main() -> None:
    args = parse_args()
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
