from __future__ import annotations

import importlib.util
import logging
import time
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from bson import ObjectId
from pymongo import AsyncMongoClient
from pymongo.asynchronous.database import AsyncDatabase

from .config import AppConfig

logger = logging.getLogger(__name__)

DEFAULT_DATABASE = "happy_dreamers"
DEFAULT_COMPRESSORS = ("snappy", "zlib")

SortSpec = Sequence[Tuple[str, int]]


def resolve_compressors() -> List[str]:
    """Return the wire compressors usable in this environment."""

    negotiated: List[str] = []
    for compressor in DEFAULT_COMPRESSORS:
        if compressor == "snappy" and importlib.util.find_spec("snappy") is None:
            logger.warning(
                "snappy compressor unavailable, falling back to remaining options",
                extra={"reason": "python-snappy is not installed"},
            )
            continue
        negotiated.append(compressor)
    return negotiated


def _redact_uri(uri: str) -> str:
    scheme, sep, rest = uri.partition("//")
    if not sep or "@" not in rest:
        return uri
    return f"{scheme}//***:***@{rest.split('@', 1)[1]}"


class MongoStore:
    """Thin async wrapper over one MongoDB database.

    The client is created on first use and reused until ``close``.
    """

    def __init__(self, config: AppConfig) -> None:
        self._config = config
        self._client: Optional[AsyncMongoClient] = None
        self._db: Optional[AsyncDatabase] = None

    @property
    def pool_options(self) -> Dict[str, int]:
        return {
            "maxPoolSize": self._config.mongodb_max_pool_size,
            "minPoolSize": self._config.mongodb_min_pool_size,
            "maxIdleTimeMS": self._config.mongodb_max_idle_time_ms,
        }

    def _database(self) -> AsyncDatabase:
        if self._db is not None:
            return self._db
        if self._client is None:
            logger.debug(
                "creating MongoDB client",
                extra={"uri": _redact_uri(self._config.mongodb_uri)},
            )
            self._client = AsyncMongoClient(
                self._config.mongodb_uri,
                retryWrites=True,
                tz_aware=True,
                compressors=resolve_compressors(),
                **self.pool_options,
            )
        if self._config.mongodb_database:
            self._db = self._client.get_database(self._config.mongodb_database)
        else:
            self._db = self._client.get_default_database(default=DEFAULT_DATABASE)
        return self._db

    async def find_one(
        self,
        collection: str,
        filter: Mapping[str, Any],
        *,
        projection: Optional[Mapping[str, int]] = None,
    ) -> Optional[Dict[str, Any]]:
        return await self._database()[collection].find_one(dict(filter), projection)

    async def find(
        self,
        collection: str,
        filter: Mapping[str, Any],
        *,
        projection: Optional[Mapping[str, int]] = None,
        sort: Optional[SortSpec] = None,
        limit: int = 0,
    ) -> List[Dict[str, Any]]:
        cursor = self._database()[collection].find(dict(filter), projection)
        if sort:
            cursor = cursor.sort(list(sort))
        if limit:
            cursor = cursor.limit(limit)
        return await cursor.to_list()

    async def insert_one(self, collection: str, document: Mapping[str, Any]) -> Optional[ObjectId]:
        result = await self._database()[collection].insert_one(dict(document))
        if not result.acknowledged:
            return None
        return result.inserted_id

    async def update_one(
        self,
        collection: str,
        filter: Mapping[str, Any],
        update: Mapping[str, Any],
    ) -> int:
        result = await self._database()[collection].update_one(dict(filter), dict(update))
        return result.matched_count

    async def create_index(
        self,
        collection: str,
        keys: SortSpec,
        *,
        name: str,
    ) -> str:
        return await self._database()[collection].create_index(list(keys), name=name)

    async def ping(self) -> float:
        """Round-trip a ping command, returning the latency in milliseconds."""

        start = time.perf_counter()
        await self._database().command("ping")
        return round((time.perf_counter() - start) * 1000, 2)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            logger.debug("MongoDB client closed")
        self._client = None
        self._db = None
