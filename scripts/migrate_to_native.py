"""
Migrate a legacy sqlite-vec memory store into a native libSQL store.

The store migrates itself on first start; this script is for doing it by
hand, e.g. after an automatic migration failed or to inspect the result
before switching over. The legacy file is only read.

Usage:
    python scripts/migrate_to_native.py --legacy ~/.dude-claude/dude.db \
        --target ~/.dude-claude/dude-libsql.db
    python scripts/migrate_to_native.py --legacy ./dude.db --target ./new.db --json-logs
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from dude_memory.config import VECTOR_DIMENSIONS
from dude_memory.exceptions import MigrationError
from dude_memory.logging_utils import configure_structured_logging
from dude_memory.migration import migrate_store

logger = logging.getLogger(__name__)


async def main() -> int:
    parser = argparse.ArgumentParser(
        description="Migrate a legacy sqlite-vec store to libSQL",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--legacy", type=Path, required=True, help="Legacy sqlite-vec database")
    parser.add_argument("--target", type=Path, required=True, help="New libSQL database file")
    parser.add_argument(
        "--dimensions", type=int, default=VECTOR_DIMENSIONS, help="Embedding dimensions"
    )
    parser.add_argument("--json-logs", action="store_true", help="Log as JSON lines on stderr")

    args = parser.parse_args()

    if args.json_logs:
        configure_structured_logging(logging.INFO)
    else:
        logging.basicConfig(level=logging.INFO, stream=sys.stderr)

    legacy = args.legacy.expanduser()
    target = args.target.expanduser()

    if not legacy.exists():
        logger.error(f"Legacy database not found: {legacy}")
        return 1
    if target.exists():
        logger.error(f"Target already exists, refusing to overwrite: {target}")
        return 1

    try:
        stats = await migrate_store(legacy, target, args.dimensions)
    except MigrationError as e:
        logger.error(e.message)
        return 1

    print(json.dumps(stats.to_dict(), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
