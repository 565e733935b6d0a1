"""
Ranking and pagination of executor output
"""
import math
from typing import List

from .domain.models import ExecutionResult, Post, ResultSet, SearchFilter, SearchHit, SortMode


def total_pages(total_matches: int, page_size: int) -> int:
    return math.ceil(total_matches / page_size) if total_matches > 0 else 0


def _rank_by_relevance(posts: List[Post], execution: ExecutionResult) -> List[Post]:
    """Score desc, then created_at desc, then id desc"""
    scores = execution.scores or {}
    # Stable sorts applied from least to most significant key
    ranked = sorted(posts, key=lambda p: p.id, reverse=True)
    ranked.sort(key=lambda p: p.created_at, reverse=True)
    ranked.sort(key=lambda p: scores.get(p.id, 0.0), reverse=True)
    return ranked


def build_result_set(execution: ExecutionResult, search_filter: SearchFilter, latency_ms: float) -> ResultSet:
    """
    Annotate and paginate executor output

    Args:
        execution: Normalized backend output for the requested page
        search_filter: Filter that produced it
        latency_ms: Time spent compiling and executing

    Returns:
        Immutable ResultSet
    """
    posts = list(execution.posts)
    if search_filter.sort_mode == SortMode.RELEVANCE and execution.scores:
        posts = _rank_by_relevance(posts, execution)

    scores = execution.scores or {}
    highlights = execution.highlights or {}
    hits = tuple(
        SearchHit(
            post=post,
            relevance_score=scores.get(post.id),
            highlights=highlights.get(post.id, {}),
        )
        for post in posts
    )

    pages = total_pages(execution.total_matches, search_filter.page_size)
    return ResultSet(
        posts=hits,
        total_matches=execution.total_matches,
        page=search_filter.page,
        page_size=search_filter.page_size,
        total_pages=pages,
        has_more=search_filter.page < pages,
        search_latency_ms=round(latency_ms, 2),
        backend=search_filter.backend,
        max_score=execution.max_score,
    )
