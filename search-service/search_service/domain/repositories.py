"""
Repository interfaces - Define contracts for search engines and collaborators
"""
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, List, Set

from ..exceptions import BackendUnavailable
from .models import Backend, ExecutionResult, Post, SearchFilter, SearchLog, TrendingQuery


class SearchBackend(ABC):
    """Query compiler and executor pair for one search engine"""

    kind: Backend

    @property
    @abstractmethod
    def available(self) -> bool:
        """Whether the engine has a live connection"""
        pass

    @abstractmethod
    async def compile(self, search_filter: SearchFilter) -> Any:
        """Compile a filter into an engine-specific plan"""
        pass

    @abstractmethod
    async def execute(self, plan: Any) -> ExecutionResult:
        """Run a compiled plan and normalize the result"""
        pass

    @abstractmethod
    async def suggest(self, requester_id: int, prefix: str, limit: int) -> List[str]:
        """Candidate titles for a typed prefix, visibility-scoped"""
        pass

    @abstractmethod
    async def popular_tags(self, requester_id: int, limit: int) -> List[str]:
        """Most used tags among posts visible to the requester"""
        pass

    async def similar_posts(self, requester_id: int, post_id: int, limit: int) -> List[Post]:
        """Posts similar to the given one"""
        raise BackendUnavailable(
            self.kind.value, f"Similar posts are not supported by the {self.kind.value} backend"
        )


class SocialGraph(ABC):
    """Social graph collaborator"""

    @abstractmethod
    async def user_exists(self, user_id: int) -> bool:
        """Check if user id resolves to a known identity"""
        pass

    @abstractmethod
    async def accepted_friends_of(self, user_id: int) -> Set[int]:
        """User ids with an accepted friendship with the user"""
        pass


class SearchLogStore(ABC):
    """Durable sink for search logs and their aggregates"""

    @abstractmethod
    async def append(self, log: SearchLog) -> None:
        """Append a search log record"""
        pass

    @abstractmethod
    async def trending(self, limit: int, window: timedelta) -> List[TrendingQuery]:
        """Top queries by count within the time window"""
        pass

    @abstractmethod
    async def related(self, query: str, limit: int) -> List[str]:
        """Logged queries similar to the given one"""
        pass
