"""
Elasticsearch search backend
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set
import logging

from ..config import settings
from ..domain.models import Backend, ExecutionResult, Post, SearchFilter
from ..domain.repositories import SearchBackend, SocialGraph
from ..exceptions import BackendUnavailable, ExecutionFailed
from ..index_client import IndexClient
from ..query_compiler import IndexPlan, IndexQueryCompiler

logger = logging.getLogger(__name__)


def parse_timestamp(value: Any) -> datetime:
    """Parse an index date into naive UTC"""
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def hit_to_post(hit: Dict[str, Any]) -> Post:
    """Map an index hit to a Post"""
    source = hit.get("_source", {})
    return Post(
        id=int(source.get("id") or hit["_id"]),
        author_id=source["user_id"],
        author_name=source.get("user_name", ""),
        author_avatar=source.get("user_avatar") or None,
        title=source.get("title") or None,
        content=source.get("content", ""),
        tags=frozenset(source.get("tags") or ()),
        like_count=source.get("likes_count", 0),
        comment_count=source.get("comments_count", 0),
        created_at=parse_timestamp(source["created_at"]),
    )


class IndexSearchBackend(SearchBackend):
    """Search over the friend_posts index"""

    kind = Backend.INDEX

    def __init__(
        self,
        client: IndexClient,
        social_graph: SocialGraph,
        compiler: Optional[IndexQueryCompiler] = None,
    ):
        self.client = client
        self.social_graph = social_graph
        self.compiler = compiler or IndexQueryCompiler(settings.POSTS_INDEX)

    @property
    def available(self) -> bool:
        return self.client.connected

    def _ensure_available(self):
        if not self.available:
            raise BackendUnavailable(self.kind.value)

    async def _visible_authors(self, requester_id: int) -> Set[int]:
        try:
            return await self.social_graph.accepted_friends_of(requester_id)
        except Exception as e:
            logger.error(f"Failed to resolve friends of user {requester_id}: {e}")
            raise ExecutionFailed(self.kind.value, f"Could not resolve visible authors: {e}") from e

    async def _search(self, plan: IndexPlan) -> Dict[str, Any]:
        self._ensure_available()
        try:
            return await self.client.search(plan.index, plan.body)
        except Exception as e:
            logger.error(f"Index query failed: {e}")
            raise ExecutionFailed(self.kind.value, f"Index search failed: {e}") from e

    async def compile(self, search_filter: SearchFilter) -> IndexPlan:
        self._ensure_available()
        visible = await self._visible_authors(search_filter.requester_id)
        return self.compiler.compile(search_filter, visible)

    async def execute(self, plan: IndexPlan) -> ExecutionResult:
        response = await self._search(plan)
        hits = response.get("hits", {})

        posts: List[Post] = []
        scores: Dict[int, float] = {}
        highlights: Dict[int, Dict[str, List[str]]] = {}
        for hit in hits.get("hits", []):
            post = hit_to_post(hit)
            posts.append(post)
            if hit.get("_score") is not None:
                scores[post.id] = float(hit["_score"])
            if hit.get("highlight"):
                highlights[post.id] = {field: list(fragments) for field, fragments in hit["highlight"].items()}

        total = hits.get("total", {})
        total_count = total.get("value", 0) if isinstance(total, dict) else int(total or 0)
        max_score = hits.get("max_score")

        return ExecutionResult(
            posts=posts,
            total_matches=total_count,
            scores=scores,
            highlights=highlights,
            max_score=float(max_score) if max_score is not None else None,
        )

    async def suggest(self, requester_id: int, prefix: str, limit: int) -> List[str]:
        self._ensure_available()
        visible = await self._visible_authors(requester_id)
        response = await self._search(self.compiler.compile_suggestion(prefix, limit, visible))
        titles = []
        for hit in response.get("hits", {}).get("hits", []):
            title = hit.get("_source", {}).get("title")
            if title:
                titles.append(title)
        return titles

    async def popular_tags(self, requester_id: int, limit: int) -> List[str]:
        self._ensure_available()
        visible = await self._visible_authors(requester_id)
        response = await self._search(self.compiler.compile_popular_tags(limit, visible))
        buckets = response.get("aggregations", {}).get("popular_tags", {}).get("buckets", [])
        return [bucket["key"] for bucket in buckets]

    async def similar_posts(self, requester_id: int, post_id: int, limit: int) -> List[Post]:
        self._ensure_available()
        visible = await self._visible_authors(requester_id)
        response = await self._search(self.compiler.compile_similar(post_id, limit, visible))
        return [hit_to_post(hit) for hit in response.get("hits", {}).get("hits", [])]
