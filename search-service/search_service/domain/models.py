"""
Domain models - Core business entities
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from ..exceptions import ValidationError

# Hard ceiling for page size regardless of configuration (DoS guard)
PAGE_SIZE_CEILING = 100


class Backend(str, Enum):
    """Search engine serving a request"""
    RELATIONAL = "relational"
    INDEX = "index"

    @property
    def other(self) -> "Backend":
        return Backend.INDEX if self is Backend.RELATIONAL else Backend.RELATIONAL


class SortMode(str, Enum):
    """Result ordering"""
    RELEVANCE = "relevance"
    DATE = "date"
    POPULARITY = "popularity"


@dataclass(frozen=True)
class SearchFilter:
    """Immutable description of one search request"""
    requester_id: int
    query_text: Optional[str] = None
    tags: FrozenSet[str] = frozenset()
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    friend_id: Optional[int] = None
    page: int = 1
    page_size: int = 20
    sort_mode: SortMode = SortMode.RELEVANCE
    fuzzy: bool = False
    backend: Backend = Backend.RELATIONAL

    def __post_init__(self):
        if self.page < 1:
            raise ValidationError("page must be >= 1")
        if self.page_size < 1:
            raise ValidationError("page_size must be >= 1")
        if self.page_size > PAGE_SIZE_CEILING:
            object.__setattr__(self, "page_size", PAGE_SIZE_CEILING)

        query_text = self.query_text.strip() if self.query_text else None
        object.__setattr__(self, "query_text", query_text or None)
        object.__setattr__(
            self, "tags", frozenset(t.strip() for t in self.tags if t and t.strip())
        )

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    def summary(self) -> Dict[str, Any]:
        """Filter fields recorded alongside a search log"""
        return {
            "tags": sorted(self.tags),
            "date_from": self.date_from.isoformat() if self.date_from else None,
            "date_to": self.date_to.isoformat() if self.date_to else None,
            "friend_id": self.friend_id,
            "sort_mode": self.sort_mode.value,
            "fuzzy": self.fuzzy,
            "backend": self.backend.value,
        }


@dataclass(frozen=True)
class Post:
    """Post as read from the post store"""
    id: int
    author_id: int
    author_name: str
    author_avatar: Optional[str]
    title: Optional[str]
    content: str
    tags: FrozenSet[str]
    like_count: int
    comment_count: int
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "author_id": self.author_id,
            "author_name": self.author_name,
            "author_avatar": self.author_avatar,
            "title": self.title,
            "content": self.content,
            "tags": sorted(self.tags),
            "like_count": self.like_count,
            "comment_count": self.comment_count,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Post":
        return cls(
            id=data["id"],
            author_id=data["author_id"],
            author_name=data["author_name"],
            author_avatar=data.get("author_avatar"),
            title=data.get("title"),
            content=data["content"],
            tags=frozenset(data.get("tags") or ()),
            like_count=data.get("like_count", 0),
            comment_count=data.get("comment_count", 0),
            created_at=datetime.fromisoformat(data["created_at"]),
        )


@dataclass(frozen=True)
class SearchHit:
    """Post annotated with backend score and highlight fragments"""
    post: Post
    relevance_score: Optional[float] = None
    highlights: Dict[str, List[str]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "post": self.post.to_dict(),
            "relevance_score": self.relevance_score,
            "highlights": {k: list(v) for k, v in self.highlights.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SearchHit":
        return cls(
            post=Post.from_dict(data["post"]),
            relevance_score=data.get("relevance_score"),
            highlights={k: list(v) for k, v in (data.get("highlights") or {}).items()},
        )


@dataclass(frozen=True)
class ExecutionResult:
    """Normalized output of a backend executor"""
    posts: List[Post]
    total_matches: int
    scores: Optional[Dict[int, float]] = None
    highlights: Optional[Dict[int, Dict[str, List[str]]]] = None
    max_score: Optional[float] = None


@dataclass(frozen=True)
class ResultSet:
    """Ranked, paginated search result"""
    posts: Tuple[SearchHit, ...]
    total_matches: int
    page: int
    page_size: int
    total_pages: int
    has_more: bool
    search_latency_ms: float
    backend: Backend
    max_score: Optional[float] = None
    cached: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "posts": [hit.to_dict() for hit in self.posts],
            "total_matches": self.total_matches,
            "page": self.page,
            "page_size": self.page_size,
            "total_pages": self.total_pages,
            "has_more": self.has_more,
            "search_latency_ms": self.search_latency_ms,
            "backend": self.backend.value,
            "max_score": self.max_score,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResultSet":
        return cls(
            posts=tuple(SearchHit.from_dict(hit) for hit in data["posts"]),
            total_matches=data["total_matches"],
            page=data["page"],
            page_size=data["page_size"],
            total_pages=data["total_pages"],
            has_more=data["has_more"],
            search_latency_ms=data["search_latency_ms"],
            backend=Backend(data["backend"]),
            max_score=data.get("max_score"),
        )


@dataclass(frozen=True)
class SearchLog:
    """Append-only record of a completed search"""
    requester_id: int
    query_text: str
    filter_summary: Dict[str, Any]
    result_count: int
    timestamp_utc: datetime
    latency_ms: float

    def to_document(self) -> Dict[str, Any]:
        return {
            "user_id": self.requester_id,
            "query": self.query_text,
            "filters": self.filter_summary,
            "results_count": self.result_count,
            "timestamp": self.timestamp_utc.isoformat(),
            "response_time_ms": self.latency_ms,
        }


@dataclass(frozen=True)
class TrendingQuery:
    """Search query with its recent frequency"""
    query: str
    count: int
