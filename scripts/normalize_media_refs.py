"""One-time migration: rewrite completion media references as JSON lists.

Older rows stored media as NULL, a bare path, or a JSON array string. After
this script every completion_records.media_refs value is a JSON array of
strings, in the original order.

The migration is idempotent - safe to re-run multiple times.
"""

import argparse
import asyncio
import json
import logging
import shutil
import sys
from datetime import datetime
from pathlib import Path

import aiosqlite

from engage.core.config import settings
from engage.domain.completion import normalize_media_refs


logger = logging.getLogger(__name__)


async def create_backup(*, db_path: Path) -> Path:
    """Create a backup of the database before migration."""
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    backup_path = db_path.parent / f"{db_path.stem}_backup_{timestamp}{db_path.suffix}"
    shutil.copy2(db_path, backup_path)
    logger.info("Created backup at: %s", backup_path)
    return backup_path


async def table_exists(conn: aiosqlite.Connection, table_name: str) -> bool:
    """Check if a table exists in the database."""
    cursor = await conn.execute("SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table_name,))
    return await cursor.fetchone() is not None


async def normalize_rows(conn: aiosqlite.Connection, *, dry_run: bool = False) -> dict[str, int]:
    """Rewrite every media_refs value that is not already a canonical JSON list.

    Returns:
        Counts of scanned and rewritten rows
    """
    if not await table_exists(conn, "completion_records"):
        logger.info("'completion_records' table does not exist, nothing to normalize")
        return {"scanned": 0, "rewritten": 0}

    cursor = await conn.execute("SELECT id, media_refs FROM completion_records")
    rows = await cursor.fetchall()

    rewritten = 0
    for record_id, raw in rows:
        canonical = json.dumps(normalize_media_refs(raw))
        if raw == canonical:
            continue
        rewritten += 1
        logger.info("Record %s: %r -> %s", record_id, raw, canonical)
        if not dry_run:
            await conn.execute("UPDATE completion_records SET media_refs = ? WHERE id = ?", (canonical, record_id))

    if not dry_run:
        await conn.commit()

    return {"scanned": len(rows), "rewritten": rewritten}


async def run_migration(*, db_path: Path, dry_run: bool = False) -> dict[str, int]:
    """Back up the database (unless dry-running) and normalize it."""
    if not db_path.exists():
        msg = f"Database not found: {db_path}"
        raise FileNotFoundError(msg)

    if not dry_run:
        await create_backup(db_path=db_path)

    async with aiosqlite.connect(str(db_path)) as conn:
        return await normalize_rows(conn, dry_run=dry_run)


def main() -> None:
    """Main entry point for the migration script."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    parser = argparse.ArgumentParser(description="Normalize stored completion media references to JSON lists")
    parser.add_argument(
        "--db-path",
        type=str,
        default=None,
        help="Path to database file (default: uses settings.sqlite_db_path)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report the rows that would change without writing anything",
    )

    args = parser.parse_args()

    db_path = Path(args.db_path).resolve() if args.db_path else Path(settings.sqlite_db_path).resolve()

    try:
        results = asyncio.run(run_migration(db_path=db_path, dry_run=args.dry_run))
    except FileNotFoundError as e:
        logger.error("%s", e)
        sys.exit(1)

    logger.info("Normalization Summary%s:", " (dry run)" if args.dry_run else "")
    for key, value in results.items():
        logger.info("  %s: %s", key, value)


if __name__ == "__main__":
    main()
