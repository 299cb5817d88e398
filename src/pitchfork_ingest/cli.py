# src/pitchfork_ingest/cli.py

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path

from pitchfork_ingest.config import load_settings
from pitchfork_ingest.domain.models import ReconcileOutcome
from pitchfork_ingest.errors import ConfigurationError
from pitchfork_ingest.pipeline.ingest import PageReport, ingest_pages
from pitchfork_ingest.storage.jsonl_store import JsonlReviewStore

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> None:
    """Entry point for the pitchfork-ingest CLI."""
    args = _build_arg_parser().parse_args(argv)

    _configure_logging(verbose=args.verbose)

    try:
        settings = load_settings()
        if args.command == "run":
            pages = page_range(args.start_page, args.end_page)
        elif args.command == "page":
            pages = page_range(args.page, args.page)
    except (ConfigurationError, ValueError) as exc:
        logger.error("%s", exc)
        sys.exit(2)

    if args.data_dir is not None:
        settings = replace(settings, data_dir=Path(args.data_dir))

    try:
        if args.command == "run":
            reports = asyncio.run(ingest_pages(pages, settings=settings))
            _log_totals(reports)
        elif args.command == "page":
            reports = asyncio.run(ingest_pages(pages, settings=settings))
            _log_totals(reports)
        elif args.command == "export":
            _cmd_export(settings.data_dir, Path(args.output_dir))
        else:
            msg = f"Unknown command: {args.command}"
            raise ValueError(msg)
    except KeyboardInterrupt:
        logger.warning("Interrupted by user. Exiting.")
        sys.exit(1)


def page_range(start_page: int, end_page: int) -> list[int]:
    """Inclusive page range walking from start to end in either direction."""
    if start_page < 1 or end_page < 1:
        msg = "Page numbers must be >= 1."
        raise ValueError(msg)
    step = 1 if end_page >= start_page else -1
    return list(range(start_page, end_page + step, step))


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pitchfork-ingest",
        description="Scrape Pitchfork album reviews and match them to Spotify.",
    )

    parser.add_argument(
        "--data-dir",
        default=None,
        help="Directory holding the JSONL store (default: PITCHFORK_DATA_DIR or ./data).",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging.",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        required=True,
        help="Sub-command to run.",
    )

    # run: page range, either direction
    run_parser = subparsers.add_parser(
        "run",
        help="Ingest a range of listing pages (start > end walks backwards).",
    )
    run_parser.add_argument(
        "--start-page",
        type=int,
        required=True,
        help="First listing page to ingest.",
    )
    run_parser.add_argument(
        "--end-page",
        type=int,
        default=1,
        help="Last listing page (inclusive) to ingest (default: %(default)s).",
    )

    page_parser = subparsers.add_parser(
        "page",
        help="Ingest a single listing page.",
    )
    page_parser.add_argument("page", type=int, help="Listing page number.")

    export_parser = subparsers.add_parser(
        "export",
        help="Write genres.json, labels.json and artists.json from the store.",
    )
    export_parser.add_argument(
        "--output-dir",
        default="public",
        help="Directory for the exported JSON files (default: %(default)s).",
    )

    return parser


def _configure_logging(*, verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def _log_totals(reports: list[PageReport]) -> None:
    inserted = sum(r.count(ReconcileOutcome.INSERTED) for r in reports)
    updated = sum(r.count(ReconcileOutcome.UPDATED) for r in reports)
    skipped = sum(r.count(ReconcileOutcome.SKIPPED) for r in reports)
    failed = sum(len(r.failures) for r in reports)
    logger.info(
        "Done. Pages=%s inserted=%s updated=%s skipped=%s failed=%s",
        len(reports),
        inserted,
        updated,
        skipped,
        failed,
    )


def _cmd_export(data_dir: Path, output_dir: Path) -> None:
    store = JsonlReviewStore(data_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    genres = [g["name"] for g in store.export_entities("genres")]
    _write_json(output_dir / "genres.json", genres)
    _write_json(output_dir / "labels.json", store.export_entities("labels"))
    _write_json(output_dir / "artists.json", store.export_entities("artists"))

    logger.info("Exported %s genres and entity lists to %s", len(genres), output_dir)


def _write_json(path: Path, payload: object) -> None:
    with path.open("w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False)


if __name__ == "__main__":
    # python -m pitchfork_ingest.cli -v run --start-page 5 --end-page 1
    # python -m pitchfork_ingest.cli export --output-dir public
    main()
