"""
Search log stores - durable sinks for search analytics
"""
from datetime import timedelta
from typing import List
import json
import logging

from .config import settings
from .database import Database
from .domain.models import SearchLog, TrendingQuery
from .domain.repositories import SearchLogStore
from .index_client import IndexClient
from .validation import utcnow

logger = logging.getLogger(__name__)


class ElasticsearchSearchLogStore(SearchLogStore):
    """Search logs kept in the search_logs index"""

    def __init__(self, client: IndexClient, index: str = settings.SEARCH_LOGS_INDEX):
        self.client = client
        self.index = index

    async def append(self, log: SearchLog) -> None:
        if not self.client.connected:
            logger.debug("Elasticsearch not available, skipping search log")
            return
        await self.client.index_document(self.index, log.to_document())

    async def trending(self, limit: int, window: timedelta) -> List[TrendingQuery]:
        if not self.client.connected:
            return []

        since = utcnow() - window
        body = {
            "query": {
                "bool": {
                    "filter": [{"range": {"timestamp": {"gte": since.isoformat()}}}],
                    "must_not": [{"term": {"query.keyword": ""}}],
                }
            },
            "aggs": {
                "trending": {
                    "terms": {"field": "query.keyword", "size": limit, "order": {"_count": "desc"}},
                },
            },
            "size": 0,
        }
        response = await self.client.search(self.index, body)
        buckets = response.get("aggregations", {}).get("trending", {}).get("buckets", [])
        return [TrendingQuery(query=bucket["key"], count=bucket["doc_count"]) for bucket in buckets]

    async def related(self, query: str, limit: int) -> List[str]:
        if not self.client.connected:
            return []

        body = {
            "query": {
                "bool": {
                    "must": [{"match": {"query": {"query": query, "fuzziness": "AUTO"}}}],
                    "must_not": [{"term": {"query.keyword": query}}],
                }
            },
            "aggs": {
                "related_queries": {
                    "terms": {"field": "query.keyword", "size": limit},
                },
            },
            "size": 0,
        }
        response = await self.client.search(self.index, body)
        buckets = response.get("aggregations", {}).get("related_queries", {}).get("buckets", [])
        return [bucket["key"] for bucket in buckets]


class DatabaseSearchLogStore(SearchLogStore):
    """Search logs kept in the search_logs table"""

    def __init__(self, db: Database):
        self.db = db

    async def append(self, log: SearchLog) -> None:
        query = """
            INSERT INTO search_logs (user_id, query, filters, results_count, response_time_ms, created_at)
            VALUES ($1, $2, $3::jsonb, $4, $5, $6)
        """
        await self.db.execute(
            query,
            log.requester_id,
            log.query_text,
            json.dumps(log.filter_summary),
            log.result_count,
            log.latency_ms,
            log.timestamp_utc,
        )

    async def trending(self, limit: int, window: timedelta) -> List[TrendingQuery]:
        query = """
            SELECT query, COUNT(*) AS count
            FROM search_logs
            WHERE created_at >= $1 AND query <> ''
            GROUP BY query
            ORDER BY count DESC, query ASC
            LIMIT $2
        """
        rows = await self.db.fetch_all(query, utcnow() - window, limit)
        return [TrendingQuery(query=row["query"], count=row["count"]) for row in rows]

    async def related(self, query: str, limit: int) -> List[str]:
        sql = """
            SELECT query, COUNT(*) AS count
            FROM search_logs
            WHERE query ILIKE $1 AND lower(query) <> lower($2)
            GROUP BY query
            ORDER BY count DESC, query ASC
            LIMIT $3
        """
        rows = await self.db.fetch_all(sql, f"%{query}%", query, limit)
        return [row["query"] for row in rows]


def create_search_log_store(db: Database, client: IndexClient) -> SearchLogStore:
    """Build the configured search log store"""
    if settings.ANALYTICS_STORE == "database":
        return DatabaseSearchLogStore(db)
    return ElasticsearchSearchLogStore(client)
