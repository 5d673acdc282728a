import argparse
import sys

from loguru import logger

from app.core.config import get_settings
from app.db import init_db
from indexer.service import build_indexer


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Index DTF market contract events")
    parser.add_argument(
        "--lookback-blocks",
        type=int,
        default=None,
        help="Override how many blocks behind the head the backfill replays",
    )
    parser.add_argument(
        "--skip-reconcile",
        action="store_true",
        help="Do not collapse duplicate positions before the backfill",
    )
    parser.add_argument(
        "--backfill-only",
        action="store_true",
        help="Exit after the historical backfill instead of following new blocks",
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL for this run")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    settings = get_settings()

    logger.remove()
    logger.add(sys.stderr, level=(args.log_level or settings.log_level).upper())

    init_db()
    indexer, source = build_indexer(
        lookback_blocks=args.lookback_blocks,
        reconcile_on_startup=False if args.skip_reconcile else None,
    )

    summary = indexer.start(live=not args.backfill_only)
    if args.backfill_only:
        logger.info(
            "Backfill of blocks {}-{} done: {} applied, {} skipped",
            summary.from_block,
            summary.to_block,
            summary.applied,
            summary.skipped,
        )
        return

    try:
        source.wait()
    except KeyboardInterrupt:
        logger.info("Stopping event indexer")
    finally:
        source.stop()


if __name__ == "__main__":
    main()
