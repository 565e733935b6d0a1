"""
Elasticsearch client and index definitions for Search Service
"""
from elasticsearch import AsyncElasticsearch
from typing import Optional, Dict, Any
import logging

from .config import settings

logger = logging.getLogger(__name__)


# Prefix analyzers back the title/user_name autocomplete sub-fields
_AUTOCOMPLETE_ANALYSIS = {
    "analyzer": {
        "autocomplete_analyzer": {
            "type": "custom",
            "tokenizer": "autocomplete_tokenizer",
            "filter": ["lowercase"],
        },
        "autocomplete_search_analyzer": {
            "type": "custom",
            "tokenizer": "keyword",
            "filter": ["lowercase"],
        },
    },
    "tokenizer": {
        "autocomplete_tokenizer": {
            "type": "edge_ngram",
            "min_gram": 2,
            "max_gram": 20,
            "token_chars": ["letter", "digit"],
        },
    },
}

_AUTOCOMPLETE_SUBFIELDS = {
    "keyword": {"type": "keyword"},
    "autocomplete": {
        "type": "text",
        "analyzer": "autocomplete_analyzer",
        "search_analyzer": "autocomplete_search_analyzer",
    },
}

POSTS_INDEX_MAPPING: Dict[str, Any] = {
    "settings": {
        "number_of_shards": 3,
        "number_of_replicas": 1,
        "analysis": _AUTOCOMPLETE_ANALYSIS,
    },
    "mappings": {
        "properties": {
            "id": {"type": "integer"},
            "user_id": {"type": "integer"},
            "user_name": {"type": "text", "analyzer": "english", "fields": _AUTOCOMPLETE_SUBFIELDS},
            "user_avatar": {"type": "keyword"},
            "title": {"type": "text", "analyzer": "english", "fields": _AUTOCOMPLETE_SUBFIELDS},
            "content": {"type": "text", "analyzer": "english"},
            "tags": {"type": "keyword"},
            "likes_count": {"type": "integer"},
            "comments_count": {"type": "integer"},
            "created_at": {"type": "date"},
            "updated_at": {"type": "date"},
        }
    },
}

SEARCH_LOGS_INDEX_MAPPING: Dict[str, Any] = {
    "settings": {
        "number_of_shards": 1,
        "number_of_replicas": 1,
    },
    "mappings": {
        "properties": {
            "user_id": {"type": "integer"},
            "query": {
                "type": "text",
                "analyzer": "english",
                "fields": {"keyword": {"type": "keyword", "ignore_above": 256}},
            },
            "filters": {"type": "object", "enabled": False},
            "results_count": {"type": "integer"},
            "timestamp": {"type": "date"},
            "response_time_ms": {"type": "float"},
        }
    },
}


class IndexClient:
    """Elasticsearch connection manager"""

    def __init__(self, url: str = settings.ELASTICSEARCH_URL):
        self.url = url
        self.client: Optional[AsyncElasticsearch] = None

    @property
    def connected(self) -> bool:
        return self.client is not None

    async def connect(self):
        """Connect to Elasticsearch and ensure indices exist"""
        if not settings.ELASTICSEARCH_ENABLED:
            logger.warning("Elasticsearch is disabled")
            return

        try:
            self.client = AsyncElasticsearch(
                self.url,
                basic_auth=(settings.ELASTICSEARCH_USERNAME, settings.ELASTICSEARCH_PASSWORD),
                request_timeout=settings.ELASTICSEARCH_REQUEST_TIMEOUT,
                max_retries=settings.ELASTICSEARCH_MAX_RETRIES,
                retry_on_timeout=True,
            )
            health = await self.client.cluster.health()
            logger.info(f"Connected to Elasticsearch at {self.url} (status={health['status']})")

            await self.ensure_index(settings.POSTS_INDEX, POSTS_INDEX_MAPPING)
            await self.ensure_index(settings.SEARCH_LOGS_INDEX, SEARCH_LOGS_INDEX_MAPPING)
        except Exception as e:
            logger.warning(f"Failed to connect to Elasticsearch: {e}. Index backend unavailable.")
            if self.client:
                await self.client.close()
            self.client = None

    async def disconnect(self):
        """Close Elasticsearch client"""
        if self.client:
            await self.client.close()
            self.client = None
            logger.info("Elasticsearch client closed")

    async def ensure_index(self, index: str, mapping: Dict[str, Any]):
        """Create index if it does not exist"""
        exists = await self.client.indices.exists(index=index)
        if not exists:
            await self.client.indices.create(index=index, body=mapping)
            logger.info(f"Created index: {index}")

    async def search(self, index: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """Run a search request"""
        response = await self.client.search(index=index, body=body)
        return dict(response)

    async def index_document(self, index: str, document: Dict[str, Any], doc_id: Optional[str] = None):
        """Index a single document"""
        await self.client.index(index=index, id=doc_id, document=document)
