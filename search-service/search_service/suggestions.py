"""
Suggestion engine - prefix autocomplete and popular tags
"""
from typing import List
import logging

from .backends.registry import BackendRegistry
from .cache import SearchCache
from .config import settings
from .domain.models import Backend
from .validation import normalize_prefix

logger = logging.getLogger(__name__)

# Backends return near-duplicate titles; fetch extra so dedupe can still fill the limit
OVERFETCH_FACTOR = 2


class SuggestionEngine:
    """Autocomplete and tag aggregation on top of the search backends"""

    def __init__(self, registry: BackendRegistry, cache: SearchCache):
        self.registry = registry
        self.cache = cache

    async def suggest(
        self,
        requester_id: int,
        prefix: str,
        limit: int = settings.DEFAULT_SUGGESTIONS,
        backend: Backend = Backend.RELATIONAL,
        allow_fallback: bool = False,
    ) -> List[str]:
        """
        Suggest post titles for a typed prefix

        Args:
            requester_id: Requesting user; only friends' posts are considered
            prefix: Typed text, at least two characters after stripping
            limit: Maximum number of suggestions

        Returns:
            Distinct titles in backend order, at most limit of them
        """
        text = normalize_prefix(prefix)
        if text is None or limit < 1:
            return []
        limit = min(limit, settings.MAX_SUGGESTIONS)

        engine = self.registry.get(backend, allow_fallback)
        candidates = await engine.suggest(requester_id, text, limit * OVERFETCH_FACTOR)

        suggestions = list(dict.fromkeys(candidates))[:limit]
        logger.debug(f"{len(suggestions)} suggestions for '{text}' (user {requester_id})")
        return suggestions

    async def popular_tags(
        self,
        requester_id: int,
        limit: int = settings.DEFAULT_POPULAR_TAGS,
        backend: Backend = Backend.RELATIONAL,
        allow_fallback: bool = False,
    ) -> List[str]:
        """Most used tags among posts visible to the requester"""
        if limit < 1:
            return []
        limit = min(limit, settings.MAX_PAGE_SIZE)

        cached = await self.cache.get_tags(requester_id, limit)
        if cached is not None:
            return cached

        engine = self.registry.get(backend, allow_fallback)
        tags = await engine.popular_tags(requester_id, limit)
        await self.cache.put_tags(requester_id, limit, tags)
        return tags
