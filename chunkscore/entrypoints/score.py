"""Command-line entrypoint for chunked batch scoring.

    chunkscore run --config config/chunkscore.yaml --total-chunks 10000 --concurrency 4
    chunkscore run --only 3 7            # re-run two failed chunks
    chunkscore clean                     # remove staged artifacts
"""

import argparse
import json
import logging
import os
import sys
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv

from chunkscore.config import Settings, load_settings
from chunkscore.database import SqlDestination, SqlSource
from chunkscore.pipeline.runner import BatchScoringPipeline
from chunkscore.pipeline.stage import StageStore
from chunkscore.pipeline.types import ChunkScoreError, InvalidConfiguration
from chunkscore.shared.logging import configure_logging

logger = logging.getLogger("chunkscore.entrypoints.score")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chunkscore",
        description="Memory-bounded parallel batch scoring",
    )
    parser.add_argument("--config", help="YAML config file")
    parser.add_argument("--log-level", help="Override logging level (DEBUG, INFO, ...)")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Partition, ingress, score and aggregate")
    run.add_argument("--total-chunks", type=int, help="Number of chunks to split the source into")
    run.add_argument("--concurrency", type=int, help="Number of scoring workers")
    run.add_argument("--model-path", help="Path to the joblib model artifact")
    run.add_argument("--staging-dir", help="Directory for staged chunk artifacts")
    run.add_argument("--resume", action="store_true", help="Skip chunks that already have egress artifacts")
    run.add_argument("--only", type=int, nargs="+", metavar="INDEX", help="Only ingress and score these chunks")

    sub.add_parser("clean", help="Delete staged chunk artifacts")
    return parser


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    if getattr(args, "total_chunks", None) is not None:
        out.setdefault("chunks", {})["total_chunks"] = args.total_chunks
    if getattr(args, "concurrency", None) is not None:
        out.setdefault("chunks", {})["concurrency"] = args.concurrency
    if getattr(args, "model_path", None):
        out["model"] = {"path": args.model_path}
    if getattr(args, "staging_dir", None):
        out["staging"] = {"directory": args.staging_dir}
    if args.log_level:
        out["logging"] = {"level": args.log_level}
    return out


def cmd_run(settings: Settings, args: argparse.Namespace) -> int:
    source = SqlSource(
        settings.source.url,
        settings.source.table,
        settings.source.ordinal_column,
    )
    destination = SqlDestination(settings.destination.url, settings.destination.if_exists)
    pipeline = BatchScoringPipeline(settings, source, destination)

    report = pipeline.run(resume=args.resume, indices=args.only)
    print(json.dumps(report.summary(), sort_keys=True))
    for index, reason in report.failures().items():
        print(f"chunk {index} failed: {reason}", file=sys.stderr)
    return EXIT_OK if report.is_success else EXIT_FAILED


def cmd_clean(settings: Settings) -> int:
    removed = StageStore(settings.staging.directory).clear()
    print(json.dumps({"removed": removed, "directory": settings.staging.directory}))
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    # Load .env if not in test mode
    if os.environ.get("CHUNKSCORE_TEST_MODE") != "true":
        load_dotenv()

    args = build_parser().parse_args(argv)
    try:
        settings = load_settings(args.config, **_overrides(args))
    except InvalidConfiguration as e:
        print(f"configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG

    configure_logging(
        settings.logging.level,
        settings.logging.directory,
        settings.logging.retention_bytes,
    )

    try:
        if args.command == "clean":
            return cmd_clean(settings)
        return cmd_run(settings, args)
    except InvalidConfiguration as e:
        logger.error(f"configuration error: {e}")
        return EXIT_CONFIG
    except ChunkScoreError as e:
        logger.error(f"run aborted: {type(e).__name__}: {e}")
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
