"""
Shared fixtures: in-memory social graph, search backends and log store
"""
import asyncio
from collections import Counter
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Set

import pytest

from search_service.analytics import AnalyticsSink
from search_service.backends.registry import BackendRegistry
from search_service.cache import InMemoryCacheStore, SearchCache
from search_service.domain.models import (
    Backend,
    ExecutionResult,
    Post,
    SearchFilter,
    SearchLog,
    SortMode,
    TrendingQuery,
)
from search_service.domain.repositories import SearchBackend, SearchLogStore, SocialGraph
from search_service.exceptions import BackendUnavailable
from search_service.service import SearchService
from search_service.validation import utcnow


FRIENDS: Dict[int, Set[int]] = {
    1: {2, 3, 4},
    2: {1},
    3: {1},
    4: {1},
    5: set(),
}


def make_post(post_id, author_id, title, content, tags, day, likes=0, comments=0) -> Post:
    return Post(
        id=post_id,
        author_id=author_id,
        author_name=f"user{author_id}",
        author_avatar=None,
        title=title,
        content=content,
        tags=frozenset(tags),
        like_count=likes,
        comment_count=comments,
        created_at=datetime(2024, 1, day, 12, 0, 0),
    )


def fixture_posts() -> List[Post]:
    return [
        make_post(1, 2, "Introduction to TypeScript", "Static types for scalable applications.", ["typescript", "programming"], 7, likes=10),
        make_post(2, 2, "Best Practices in Node.js", "Performance tips for backend services.", ["nodejs", "backend"], 6, likes=3),
        make_post(3, 3, "Product Management 101", "Understanding user needs comes first.", ["product", "management"], 5),
        make_post(4, 3, "Advanced TypeScript Patterns", "Generics, mapped types and inference.", ["typescript", "patterns"], 4, likes=7),
        make_post(5, 4, "UI/UX Design Principles", "Good design is invisible.", ["design", "ux"], 3),
        make_post(6, 4, "Color Theory for Designers", "Colors can elevate your designs.", ["design", "color"], 2),
        make_post(7, 5, "Docker Best Practices", "Containers for modern development.", ["docker", "devops"], 1),
    ]


class FakeClock:
    """Manually advanced clock"""

    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeSocialGraph(SocialGraph):
    def __init__(self, friends: Optional[Dict[int, Set[int]]] = None):
        self.friends = {user: set(ids) for user, ids in (friends or FRIENDS).items()}

    async def user_exists(self, user_id: int) -> bool:
        return user_id in self.friends

    async def accepted_friends_of(self, user_id: int) -> Set[int]:
        return set(self.friends.get(user_id, set()))


class FakeDatabase:
    """Records queries; fetch_all returns rows, fetch_one returns row"""

    def __init__(self, rows=None, row=None, error=None, connected=True):
        self.rows = rows or []
        self.row = row
        self.error = error
        self.connected = connected
        self.queries = []

    def _record(self, query, args):
        self.queries.append((query, args))
        if self.error:
            raise self.error

    async def fetch_all(self, query, *args):
        self._record(query, args)
        return self.rows

    async def fetch_one(self, query, *args):
        self._record(query, args)
        return self.row

    async def execute(self, query, *args):
        self._record(query, args)
        return "INSERT 0 1"


class FakeIndexClient:
    def __init__(self, response=None, error=None, connected=True):
        self.response = response or {}
        self.error = error
        self.connected = connected
        self.requests = []
        self.documents = []

    async def search(self, index, body):
        self.requests.append((index, body))
        if self.error:
            raise self.error
        return self.response

    async def index_document(self, index, document, doc_id=None):
        if self.error:
            raise self.error
        self.documents.append((index, document))


class FakeBackend(SearchBackend):
    """In-memory backend; plans are the filters themselves"""

    def __init__(
        self,
        kind: Backend,
        posts: List[Post],
        social_graph: FakeSocialGraph,
        available: bool = True,
        error: Optional[Exception] = None,
    ):
        self.kind = kind
        self.posts = list(posts)
        self.social_graph = social_graph
        self._available = available
        self.error = error
        self.executions = 0
        self.suggest_calls: List[tuple] = []
        self.suggest_override: Optional[List[str]] = None

    @property
    def available(self) -> bool:
        return self._available

    @available.setter
    def available(self, value: bool):
        self._available = value

    async def _visible(self, requester_id: int) -> List[Post]:
        friends = await self.social_graph.accepted_friends_of(requester_id)
        return [post for post in self.posts if post.author_id in friends]

    @staticmethod
    def _text(post: Post) -> str:
        return f"{post.title or ''} {post.content}".lower()

    def _score(self, post: Post, query: Optional[str]) -> float:
        if not query:
            return 1.0
        words = query.lower().split()
        title = (post.title or "").lower()
        return float(sum(title.count(w) * 3 + post.content.lower().count(w) for w in words))

    async def compile(self, search_filter: SearchFilter) -> SearchFilter:
        if not self.available:
            raise BackendUnavailable(self.kind.value)
        return search_filter

    async def execute(self, plan: SearchFilter) -> ExecutionResult:
        self.executions += 1
        if self.error:
            raise self.error

        matched = []
        for post in await self._visible(plan.requester_id):
            if plan.query_text and not all(w in self._text(post) for w in plan.query_text.lower().split()):
                continue
            if plan.tags and not (plan.tags & post.tags):
                continue
            if plan.date_from and post.created_at < plan.date_from:
                continue
            if plan.date_to and post.created_at > plan.date_to:
                continue
            if plan.friend_id and post.author_id != plan.friend_id:
                continue
            matched.append(post)

        matched.sort(key=lambda p: (p.created_at, p.id), reverse=True)
        if self.kind == Backend.INDEX and plan.sort_mode == SortMode.POPULARITY:
            matched.sort(key=lambda p: (p.like_count, p.comment_count), reverse=True)

        page = matched[plan.offset:plan.offset + plan.page_size]
        if self.kind == Backend.RELATIONAL:
            return ExecutionResult(posts=page, total_matches=len(matched))

        scores = {post.id: self._score(post, plan.query_text) for post in page}
        return ExecutionResult(
            posts=page,
            total_matches=len(matched),
            scores=scores,
            highlights={},
            max_score=max(scores.values()) if scores else None,
        )

    async def suggest(self, requester_id: int, prefix: str, limit: int) -> List[str]:
        self.suggest_calls.append((requester_id, prefix, limit))
        if self.suggest_override is not None:
            return self.suggest_override[:limit]
        visible = sorted(await self._visible(requester_id), key=lambda p: p.created_at, reverse=True)
        lowered = prefix.lower()
        titles = [
            post.title for post in visible
            if post.title and any(word.startswith(lowered) for word in post.title.lower().split())
        ]
        return titles[:limit]

    async def popular_tags(self, requester_id: int, limit: int) -> List[str]:
        counts = Counter(tag for post in await self._visible(requester_id) for tag in post.tags)
        ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        return [tag for tag, _ in ranked[:limit]]

    async def similar_posts(self, requester_id: int, post_id: int, limit: int) -> List[Post]:
        if self.kind != Backend.INDEX:
            return await super().similar_posts(requester_id, post_id, limit)
        source = next(post for post in self.posts if post.id == post_id)
        visible = await self._visible(requester_id)
        return [p for p in visible if p.id != post_id and p.tags & source.tags][:limit]


class FakeLogStore(SearchLogStore):
    def __init__(self, fail: bool = False):
        self.logs: List[SearchLog] = []
        self.fail = fail
        self.gate: Optional[asyncio.Event] = None

    async def append(self, log: SearchLog) -> None:
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise RuntimeError("log store down")
        self.logs.append(log)

    async def trending(self, limit: int, window: timedelta) -> List[TrendingQuery]:
        if self.fail:
            raise RuntimeError("log store down")
        since = utcnow() - window
        counts = Counter(log.query_text for log in self.logs if log.query_text and log.timestamp_utc >= since)
        ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        return [TrendingQuery(query=q, count=c) for q, c in ranked[:limit]]

    async def related(self, query: str, limit: int) -> List[str]:
        if self.fail:
            raise RuntimeError("log store down")
        lowered = query.lower()
        related = [log.query_text for log in self.logs if lowered in log.query_text.lower() and log.query_text.lower() != lowered]
        return list(dict.fromkeys(related))[:limit]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def social_graph():
    return FakeSocialGraph()


@pytest.fixture
def posts():
    return fixture_posts()


@pytest.fixture
def relational_backend(posts, social_graph):
    return FakeBackend(Backend.RELATIONAL, posts, social_graph)


@pytest.fixture
def index_backend(posts, social_graph):
    return FakeBackend(Backend.INDEX, posts, social_graph)


@pytest.fixture
def registry(relational_backend, index_backend):
    return BackendRegistry([relational_backend, index_backend])


@pytest.fixture
def cache(clock):
    return SearchCache(InMemoryCacheStore(), ttl=300, sweep_interval=0, clock=clock)


@pytest.fixture
def log_store():
    return FakeLogStore()


@pytest.fixture
async def analytics(log_store):
    sink = AnalyticsSink(log_store, queue_size=100, drain_timeout=1.0)
    await sink.start()
    yield sink
    await sink.stop()


@pytest.fixture
def service(registry, cache, social_graph, analytics):
    return SearchService(registry, cache, social_graph, analytics)


def typescript_filter(**overrides) -> SearchFilter:
    fields = dict(requester_id=1, query_text="typescript", page=1, page_size=20)
    fields.update(overrides)
    return SearchFilter(**fields)


def with_backend(search_filter: SearchFilter, backend: Backend) -> SearchFilter:
    return replace(search_filter, backend=backend)
