"""Ensure the MongoDB indexes the API queries rely on."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from pymongo.errors import PyMongoError

from .config import EnvValidationError, load_config
from .logging_config import configure_logging
from .store import MongoStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndexDefinition:
    collection: str
    keys: Sequence[Tuple[str, int]]
    name: str


INDEXES: List[IndexDefinition] = [
    IndexDefinition("events", [("childId", 1), ("startTime", 1)], "events_childId_startTime"),
    IndexDefinition("children", [("parentId", 1)], "children_parentId"),
    IndexDefinition("plans", [("childId", 1), ("status", 1)], "plans_childId_status"),
]


async def run_migrations(store: MongoStore, indexes: Sequence[IndexDefinition] = INDEXES) -> None:
    for index in indexes:
        await store.create_index(index.collection, index.keys, name=index.name)
        logger.info("index ensured", extra={"collection": index.collection, "index": index.name})
    logger.info("database indexes ensured")


async def _migrate(store: Optional[MongoStore] = None) -> int:
    try:
        config = load_config()
    except EnvValidationError as exc:
        logger.error("migration failed", extra={"missing": exc.missing_keys})
        return 1

    configure_logging(config.log_level)
    store = store or MongoStore(config)
    try:
        await run_migrations(store)
        return 0
    except PyMongoError:
        logger.exception("migration failed")
        return 1
    finally:
        await store.close()


def main() -> int:
    configure_logging("INFO")
    return asyncio.run(_migrate())


if __name__ == "__main__":
    raise SystemExit(main())
