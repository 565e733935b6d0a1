"""
PostgreSQL full-text search backend
"""
from typing import Any, Dict, List, Optional
import logging

from ..database import Database
from ..domain.models import Backend, ExecutionResult, Post, SearchFilter
from ..domain.repositories import SearchBackend
from ..exceptions import BackendUnavailable, ExecutionFailed
from ..query_compiler import RelationalPlan, RelationalQueryCompiler

logger = logging.getLogger(__name__)


def row_to_post(row: Dict[str, Any]) -> Post:
    """Map a joined posts/users row to a Post"""
    return Post(
        id=row["id"],
        author_id=row["user_id"],
        author_name=row["user_name"],
        author_avatar=row.get("user_avatar"),
        title=row.get("title"),
        content=row["content"],
        tags=frozenset(row.get("tags") or ()),
        like_count=row.get("likes_count") or 0,
        comment_count=row.get("comments_count") or 0,
        created_at=row["created_at"],
    )


class RelationalSearchBackend(SearchBackend):
    """Search over posts.search_vector with asyncpg"""

    kind = Backend.RELATIONAL

    def __init__(self, db: Database, compiler: Optional[RelationalQueryCompiler] = None):
        self.db = db
        self.compiler = compiler or RelationalQueryCompiler()

    @property
    def available(self) -> bool:
        return self.db.connected

    def _ensure_available(self):
        if not self.available:
            raise BackendUnavailable(self.kind.value)

    async def _fetch(self, plan: RelationalPlan) -> List[Dict[str, Any]]:
        self._ensure_available()
        try:
            return await self.db.fetch_all(plan.sql, *plan.params)
        except Exception as e:
            logger.error(f"Relational query failed: {e}")
            raise ExecutionFailed(self.kind.value, f"Relational search failed: {e}") from e

    async def _count(self, plan: RelationalPlan) -> int:
        try:
            row = await self.db.fetch_one(plan.count_sql, *plan.count_params)
        except Exception as e:
            logger.error(f"Relational count failed: {e}")
            raise ExecutionFailed(self.kind.value, f"Relational count failed: {e}") from e
        return row["total_count"] if row else 0

    async def compile(self, search_filter: SearchFilter) -> RelationalPlan:
        self._ensure_available()
        return self.compiler.compile(search_filter)

    async def execute(self, plan: RelationalPlan) -> ExecutionResult:
        rows = await self._fetch(plan)
        if rows:
            # Window count is repeated on every row
            total = rows[0]["total_count"]
        elif plan.offset > 0 and plan.count_sql:
            total = await self._count(plan)
        else:
            total = 0
        return ExecutionResult(
            posts=[row_to_post(row) for row in rows],
            total_matches=total,
        )

    async def suggest(self, requester_id: int, prefix: str, limit: int) -> List[str]:
        plan = self.compiler.compile_suggestion(requester_id, prefix, limit)
        if plan is None:
            return []
        rows = await self._fetch(plan)
        return [row["title"] for row in rows if row.get("title")]

    async def popular_tags(self, requester_id: int, limit: int) -> List[str]:
        rows = await self._fetch(self.compiler.compile_popular_tags(requester_id, limit))
        return [row["tag"] for row in rows]
