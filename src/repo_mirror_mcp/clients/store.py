import copy
import os
from logging import Logger
from typing import Any, Protocol

from elasticsearch import ApiError, AsyncElasticsearch, NotFoundError, TransportError
from fastmcp.utilities.logging import get_logger

from repo_mirror_mcp.clients.errors.store import PersistenceError, RecordNotFoundError

Record = dict[str, Any]

DEFAULT_INDEX_PREFIX = "repo-mirror"

QUERY_PAGE_SIZE = 500

STRINGS_AS_KEYWORDS_MAPPING: dict[str, Any] = {
    "dynamic_templates": [
        {"strings_as_keywords": {"match_mapping_type": "string", "mapping": {"type": "keyword"}}},
    ],
}

logger = get_logger(__name__)


class RecordStore(Protocol):
    """A store of JSON records addressed by collection and primary key."""

    async def insert(self, collection: str, record: Record) -> Record: ...

    async def get(self, collection: str, record_id: str) -> Record | None: ...

    async def update(self, collection: str, record_id: str, values: Record) -> Record: ...

    async def query(
        self,
        collection: str,
        filters: Record | None = None,
        any_of: Record | None = None,
        order_by: str | None = None,
        descending: bool = True,
        limit: int | None = None,
    ) -> list[Record]: ...


def _require_id(collection: str, record: Record) -> str:
    if not isinstance(record_id := record.get("id"), str) or not record_id:
        msg = "Records must carry a string id."
        raise PersistenceError(message=msg, extra_info={"collection": collection})

    return record_id


class InMemoryRecordStore:
    """A record store that lives for the lifetime of the process."""

    collections: dict[str, dict[str, Record]]

    def __init__(self) -> None:
        self.collections = {}

    async def insert(self, collection: str, record: Record) -> Record:
        record_id = _require_id(collection=collection, record=record)

        records = self.collections.setdefault(collection, {})

        if record_id in records:
            raise PersistenceError(message="A record with this id already exists.", extra_info={"collection": collection, "id": record_id})

        records[record_id] = copy.deepcopy(record)

        return copy.deepcopy(record)

    async def get(self, collection: str, record_id: str) -> Record | None:
        if (record := self.collections.get(collection, {}).get(record_id)) is None:
            return None

        return copy.deepcopy(record)

    async def update(self, collection: str, record_id: str, values: Record) -> Record:
        if (record := self.collections.get(collection, {}).get(record_id)) is None:
            raise RecordNotFoundError(collection=collection, record_id=record_id)

        record.update(copy.deepcopy(values))

        return copy.deepcopy(record)

    async def query(
        self,
        collection: str,
        filters: Record | None = None,
        any_of: Record | None = None,
        order_by: str | None = None,
        descending: bool = True,
        limit: int | None = None,
    ) -> list[Record]:
        records: list[Record] = [
            record
            for record in self.collections.get(collection, {}).values()
            if all(record.get(key) == value for key, value in (filters or {}).items())
            and (not any_of or any(record.get(key) == value for key, value in any_of.items()))
        ]

        if order_by is not None:
            records.sort(key=lambda record: (record.get(order_by) is not None, record.get(order_by) or ""), reverse=descending)

        if limit is not None:
            records = records[:limit]

        return copy.deepcopy(records)


class ElasticsearchRecordStore:
    """A record store that keeps each collection in its own Elasticsearch index."""

    elasticsearch_client: AsyncElasticsearch
    index_prefix: str
    logger: Logger

    _known_indices: set[str]

    def __init__(self, elasticsearch_client: AsyncElasticsearch, index_prefix: str | None = None, logger: Logger | None = None):
        self.elasticsearch_client = elasticsearch_client
        self.index_prefix = index_prefix or DEFAULT_INDEX_PREFIX
        self.logger = logger or get_logger(name=__name__)
        self._known_indices = set()

    def _index(self, collection: str) -> str:
        return f"{self.index_prefix}-{collection.replace('_', '-')}"

    async def _ensure_index(self, collection: str) -> str:
        index = self._index(collection)

        if index in self._known_indices:
            return index

        try:
            if not await self.elasticsearch_client.indices.exists(index=index):
                self.logger.info(f"Creating index {index}")
                _ = await self.elasticsearch_client.indices.create(index=index, mappings=STRINGS_AS_KEYWORDS_MAPPING)
        except (ApiError, TransportError) as e:
            raise PersistenceError(message="Failed to prepare the index.", extra_info={"index": index, "error": str(e)}) from e

        self._known_indices.add(index)

        return index

    async def insert(self, collection: str, record: Record) -> Record:
        record_id = _require_id(collection=collection, record=record)
        index = await self._ensure_index(collection)

        try:
            _ = await self.elasticsearch_client.create(index=index, id=record_id, document=record, refresh="wait_for")
        except (ApiError, TransportError) as e:
            raise PersistenceError(
                message="Failed to insert the record.", extra_info={"index": index, "id": record_id, "error": str(e)}
            ) from e

        return copy.deepcopy(record)

    async def get(self, collection: str, record_id: str) -> Record | None:
        index = await self._ensure_index(collection)

        try:
            response = await self.elasticsearch_client.get(index=index, id=record_id)
        except NotFoundError:
            return None
        except (ApiError, TransportError) as e:
            raise PersistenceError(
                message="Failed to read the record.", extra_info={"index": index, "id": record_id, "error": str(e)}
            ) from e

        source: Record = response["_source"]

        return source

    async def update(self, collection: str, record_id: str, values: Record) -> Record:
        index = await self._ensure_index(collection)

        try:
            _ = await self.elasticsearch_client.update(index=index, id=record_id, doc=values, refresh="wait_for")
        except NotFoundError as e:
            raise RecordNotFoundError(collection=collection, record_id=record_id) from e
        except (ApiError, TransportError) as e:
            raise PersistenceError(
                message="Failed to update the record.", extra_info={"index": index, "id": record_id, "error": str(e)}
            ) from e

        if (record := await self.get(collection=collection, record_id=record_id)) is None:
            raise RecordNotFoundError(collection=collection, record_id=record_id)

        return record

    async def query(
        self,
        collection: str,
        filters: Record | None = None,
        any_of: Record | None = None,
        order_by: str | None = None,
        descending: bool = True,
        limit: int | None = None,
    ) -> list[Record]:
        """Return the matching records, paging through the index until `limit` records or the last match."""

        index = await self._ensure_index(collection)

        query: Record = {"match_all": {}}

        if filters or any_of:
            query = {"bool": {"filter": [{"term": {key: value}} for key, value in (filters or {}).items()]}}

            if any_of:
                query["bool"]["should"] = [{"term": {key: value}} for key, value in any_of.items()]
                query["bool"]["minimum_should_match"] = 1

        # The id breaks ties so that search_after never skips or repeats a record.
        sort: list[Record] = [{"id": {"order": "asc"}}]

        if order_by:
            sort.insert(0, {order_by: {"order": "desc" if descending else "asc", "missing": "_last"}})

        records: list[Record] = []
        search_after: list[Any] | None = None

        while True:
            size = QUERY_PAGE_SIZE if limit is None else min(QUERY_PAGE_SIZE, limit - len(records))

            try:
                response = await self.elasticsearch_client.search(index=index, query=query, sort=sort, size=size, search_after=search_after)
            except (ApiError, TransportError) as e:
                raise PersistenceError(message="Failed to query the records.", extra_info={"index": index, "error": str(e)}) from e

            hits: list[Record] = response["hits"]["hits"]
            records.extend(hit["_source"] for hit in hits)

            if len(hits) < size or (limit is not None and len(records) >= limit):
                return records

            search_after = hits[-1]["sort"]


def get_elasticsearch_client() -> AsyncElasticsearch | None:
    if not (host := os.getenv("ES_URL")):
        return None

    if not (api_key := os.getenv("ES_API_KEY")):
        return None

    return AsyncElasticsearch(hosts=[host], api_key=api_key, http_compress=True)


def get_record_store() -> RecordStore:
    if elasticsearch_client := get_elasticsearch_client():
        logger.info("Persisting records to Elasticsearch")
        return ElasticsearchRecordStore(elasticsearch_client=elasticsearch_client, index_prefix=os.getenv("ES_INDEX_PREFIX"))

    logger.info("Persisting records in memory")
    return InMemoryRecordStore()
