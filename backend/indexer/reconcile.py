from __future__ import annotations

from loguru import logger
from sqlalchemy.orm import Session, sessionmaker

from app.db import session_scope
from app.repositories import PositionRepository


def cleanup_duplicate_positions(session_factory: sessionmaker[Session] | None = None) -> int:
    """Delete all but the earliest position of each duplicated (market, user, side).

    Share amounts of the removed rows are discarded, not folded into the
    kept row. Returns the number of rows deleted.
    """

    logger.info("Starting duplicate position cleanup")
    removed = 0
    with session_scope(session_factory) as session:
        positions = PositionRepository(session)
        groups = positions.find_duplicate_groups()
        logger.info("Found {} position groups with duplicates", len(groups))

        for group in groups:
            rows = positions.list_group(group.market_id, group.user_address, group.is_yes_position)
            if len(rows) < 2:
                continue
            keep, *duplicates = rows
            logger.info(
                "Keeping position {} and removing {} duplicates for DTF {}",
                keep.id,
                len(duplicates),
                group.market_id,
            )
            removed += positions.delete_positions([row.id for row in duplicates])

    logger.info("Duplicate cleanup complete ({} rows removed)", removed)
    return removed
