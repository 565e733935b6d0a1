"""
Pydantic schemas for request/response validation
"""
from pydantic import BaseModel, Field
from typing import Optional, List, Dict
from datetime import datetime

from .domain.models import Post, ResultSet, TrendingQuery


# Request Schemas
class InvalidateCacheRequest(BaseModel):
    """Drop cached results for one requester, or all when omitted"""

    requester_id: Optional[int] = Field(None, ge=1)


# Response Schemas
class PostResponse(BaseModel):
    """Post as returned by search"""

    id: int
    author_id: int
    author_name: str
    author_avatar: Optional[str] = None
    title: Optional[str] = None
    content: str
    tags: List[str]
    like_count: int
    comment_count: int
    created_at: datetime

    @classmethod
    def from_post(cls, post: Post) -> "PostResponse":
        return cls(**post.to_dict())


class SearchHitResponse(BaseModel):
    """Post with relevance score and highlight fragments"""

    post: PostResponse
    relevance_score: Optional[float] = None
    highlights: Dict[str, List[str]] = {}


class SearchResultResponse(BaseModel):
    """Paginated search result"""

    posts: List[SearchHitResponse]
    total_matches: int
    page: int
    page_size: int
    total_pages: int
    has_more: bool
    search_latency_ms: float
    backend: str
    max_score: Optional[float] = None
    cached: bool = False

    @classmethod
    def from_result(cls, result: ResultSet) -> "SearchResultResponse":
        return cls(**result.to_dict(), cached=result.cached)


class TrendingQueryResponse(BaseModel):
    """Query with its recent search count"""

    query: str
    count: int

    @classmethod
    def from_trending(cls, trending: TrendingQuery) -> "TrendingQueryResponse":
        return cls(query=trending.query, count=trending.count)


class InvalidateCacheResult(BaseModel):
    """Outcome of a cache invalidation"""

    requester_id: Optional[int] = None
    removed: int


# Envelopes
class SearchResponse(BaseModel):
    success: bool = True
    data: SearchResultResponse


class StringListResponse(BaseModel):
    success: bool = True
    data: List[str]


class TrendingResponse(BaseModel):
    success: bool = True
    data: List[TrendingQueryResponse]


class SimilarPostsResponse(BaseModel):
    success: bool = True
    data: List[PostResponse]


class InvalidateCacheResponse(BaseModel):
    success: bool = True
    data: InvalidateCacheResult


class ErrorResponse(BaseModel):
    """Error envelope"""

    success: bool = False
    error: str
    kind: str
