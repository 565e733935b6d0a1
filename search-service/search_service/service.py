"""
Business logic layer for Search Service
"""
import time
from dataclasses import replace
from enum import Enum
from typing import Callable, List, Optional
import logging

from .analytics import AnalyticsSink
from .backends.registry import BackendRegistry
from .cache import SearchCache
from .config import settings
from .domain.models import Backend, Post, ResultSet, SearchFilter, SearchLog, TrendingQuery
from .domain.repositories import SocialGraph
from .exceptions import ExecutionFailed, InvalidRequester, SearchError, ValidationError
from .ranking import build_result_set
from .suggestions import SuggestionEngine
from .validation import MIN_PREFIX_LENGTH, normalize_prefix, utcnow

logger = logging.getLogger(__name__)


class SearchStage(str, Enum):
    """Search pipeline stages, recorded on failure"""
    CACHE_CHECK = "cache_check"
    COMPILE = "compile"
    EXECUTE = "execute"
    RANK = "rank"
    CACHE_STORE = "cache_store"
    LOG_ASYNC = "log_async"


class SearchService:
    """Single entry point for friend post search"""

    def __init__(
        self,
        registry: BackendRegistry,
        cache: SearchCache,
        social_graph: SocialGraph,
        analytics: Optional[AnalyticsSink] = None,
        clock: Callable[[], float] = time.perf_counter,
    ):
        self.registry = registry
        self.cache = cache
        self.social_graph = social_graph
        self.analytics = analytics
        self.suggestions = SuggestionEngine(registry, cache)
        self.clock = clock

    async def _ensure_requester(self, requester_id: int):
        """Raise unless the requester is a known identity"""
        if requester_id is None or requester_id < 1:
            raise ValidationError("Valid requester_id is required")
        try:
            exists = await self.social_graph.user_exists(requester_id)
        except Exception as e:
            logger.error(f"Failed to resolve requester {requester_id}: {e}")
            raise ExecutionFailed("social_graph", f"Could not resolve requester: {e}") from e
        if not exists:
            raise InvalidRequester(requester_id)

    async def search(self, search_filter: SearchFilter, allow_fallback: bool = False) -> ResultSet:
        """
        Search posts visible to the requester

        Args:
            search_filter: Validated filter
            allow_fallback: Serve from the other backend if the requested one is down

        Returns:
            ResultSet, flagged as cached when served from the cache

        Raises:
            InvalidRequester: Requester is unknown
            BackendUnavailable: No acceptable backend has a live connection
            ExecutionFailed: Backend failed mid-query
        """
        await self._ensure_requester(search_filter.requester_id)

        started = self.clock()
        stage = SearchStage.CACHE_CHECK
        try:
            cached = await self.cache.get(search_filter)
            if cached is not None:
                logger.debug(f"Search cache hit for user {search_filter.requester_id}")
                return replace(cached, cached=True)

            stage = SearchStage.COMPILE
            engine = self.registry.get(search_filter.backend, allow_fallback)
            executed = search_filter
            if engine.kind != search_filter.backend:
                executed = replace(search_filter, backend=engine.kind)
                cached = await self.cache.get(executed)
                if cached is not None:
                    return replace(cached, cached=True)

            plan = await engine.compile(executed)

            stage = SearchStage.EXECUTE
            execution = await engine.execute(plan)

            stage = SearchStage.RANK
            result = build_result_set(execution, executed, (self.clock() - started) * 1000)

            stage = SearchStage.CACHE_STORE
            await self.cache.put(executed, result)

            stage = SearchStage.LOG_ASYNC
            self._log_search(executed, result)

            logger.info(
                f"Search for user {executed.requester_id} on {executed.backend.value}: "
                f"{result.total_matches} matches in {result.search_latency_ms}ms"
            )
            return result
        except SearchError as e:
            logger.error(f"Search failed at stage '{stage.value}' for user {search_filter.requester_id}: {e}")
            raise

    def _log_search(self, search_filter: SearchFilter, result: ResultSet):
        if not self.analytics:
            return
        self.analytics.record(SearchLog(
            requester_id=search_filter.requester_id,
            query_text=search_filter.query_text or "",
            filter_summary=search_filter.summary(),
            result_count=result.total_matches,
            timestamp_utc=utcnow(),
            latency_ms=result.search_latency_ms,
        ))

    async def suggest(
        self,
        requester_id: int,
        prefix: str,
        limit: int = settings.DEFAULT_SUGGESTIONS,
        backend: Optional[Backend] = None,
        allow_fallback: bool = False,
    ) -> List[str]:
        """Autocomplete titles for a typed prefix"""
        if normalize_prefix(prefix) is None or limit < 1:
            return []
        await self._ensure_requester(requester_id)
        return await self.suggestions.suggest(
            requester_id,
            prefix,
            limit,
            backend or Backend(settings.DEFAULT_BACKEND),
            allow_fallback,
        )

    async def popular_tags(
        self,
        requester_id: int,
        limit: int = settings.DEFAULT_POPULAR_TAGS,
        backend: Optional[Backend] = None,
        allow_fallback: bool = False,
    ) -> List[str]:
        """Most used tags among friends' posts"""
        await self._ensure_requester(requester_id)
        return await self.suggestions.popular_tags(
            requester_id,
            limit,
            backend or Backend(settings.DEFAULT_BACKEND),
            allow_fallback,
        )

    async def trending(self, limit: int = settings.DEFAULT_TRENDING) -> List[TrendingQuery]:
        """Most frequent queries of the last week"""
        if not self.analytics or limit < 1:
            return []
        return await self.analytics.trending(limit)

    async def related_queries(self, query: str, limit: int = 5) -> List[str]:
        """Previously searched queries similar to the given one"""
        text = (query or "").strip()
        if not self.analytics or len(text) < MIN_PREFIX_LENGTH or limit < 1:
            return []
        return await self.analytics.related(text, limit)

    async def similar_posts(self, requester_id: int, post_id: int, limit: int = 5) -> List[Post]:
        """Friends' posts similar to the given one (index backend only)"""
        await self._ensure_requester(requester_id)
        if limit < 1:
            return []
        engine = self.registry.get(Backend.INDEX)
        return await engine.similar_posts(requester_id, post_id, min(limit, settings.MAX_PAGE_SIZE))

    async def invalidate_cache(self, requester_id: Optional[int] = None) -> int:
        """Drop cached results for one requester, or all of them"""
        return await self.cache.invalidate(requester_id)
