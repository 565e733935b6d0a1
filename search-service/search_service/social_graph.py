"""
Social graph collaborators for Search Service
"""
import httpx
from typing import Optional, List, Dict, Any, Set
import logging

from .config import settings
from .database import Database
from .domain.repositories import SocialGraph

logger = logging.getLogger(__name__)


class DatabaseSocialGraph(SocialGraph):
    """Social graph read directly from the users and friendships tables"""

    def __init__(self, db: Database):
        self.db = db

    async def user_exists(self, user_id: int) -> bool:
        row = await self.db.fetch_one("SELECT 1 AS found FROM users WHERE id = $1", user_id)
        return row is not None

    async def accepted_friends_of(self, user_id: int) -> Set[int]:
        query = """
            SELECT friend_id AS user_id FROM friendships
            WHERE user_id = $1 AND status = 'accepted'
            UNION
            SELECT user_id FROM friendships
            WHERE friend_id = $1 AND status = 'accepted'
        """
        rows = await self.db.fetch_all(query, user_id)
        return {row["user_id"] for row in rows}


class SocialGraphError(Exception):
    """Graph or auth service could not answer a lookup"""


class GraphServiceClient(SocialGraph):
    """HTTP client for the graph and auth services"""

    def __init__(
        self,
        token: str = settings.SERVICE_TOKEN,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = httpx.Timeout(10.0, connect=5.0)
        self.token = token
        self.transport = transport
        self.client: Optional[httpx.AsyncClient] = None

    async def start(self):
        """Initialize HTTP client"""
        self.client = httpx.AsyncClient(timeout=self.timeout, transport=self.transport)
        logger.info("Graph service client initialized")

    async def stop(self):
        """Close HTTP client"""
        if self.client:
            await self.client.aclose()
            logger.info("Graph service client closed")

    @property
    def headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"} if self.token else {}

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        if not self.client:
            raise SocialGraphError("Graph service client not initialized")
        try:
            return await self.client.request(method, url, headers=self.headers, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"Request failed for {url}: {e}")
            raise SocialGraphError(f"Request failed for {url}: {e}") from e

    async def _make_request(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        """Make HTTP request, raising on any non-2xx answer"""
        response = await self._send(method, url, **kwargs)
        if response.is_error:
            logger.error(f"HTTP error {response.status_code} for {url}")
            raise SocialGraphError(f"HTTP error {response.status_code} for {url}")
        return response.json()

    async def _collect_ids(self, url: str, list_key: str) -> List[int]:
        """Follow pagination and collect user ids"""
        ids = []
        page = 1
        has_more = True

        while has_more:
            response = await self._make_request(
                "GET",
                url,
                params={"page": page, "page_size": 100}
            )

            ids.extend(entry["user_id"] for entry in response.get(list_key, []))
            has_more = response.get("has_more", False)
            page += 1

        return ids

    async def user_exists(self, user_id: int) -> bool:
        url = f"{settings.AUTH_SERVICE_URL}/api/v1/users/{user_id}/exists"
        response = await self._send("GET", url)
        if response.status_code == 404:
            return False
        if response.is_error:
            logger.error(f"HTTP error {response.status_code} checking user {user_id}")
            raise SocialGraphError(f"HTTP error {response.status_code} for {url}")
        return True

    async def accepted_friends_of(self, user_id: int) -> Set[int]:
        base = f"{settings.GRAPH_SERVICE_URL}/api/v1/graph"
        following = await self._collect_ids(f"{base}/following/{user_id}", "following")
        followers = await self._collect_ids(f"{base}/followers/{user_id}", "followers")

        friends = set(following) | set(followers)
        logger.info(f"Fetched {len(friends)} accepted connections for user {user_id}")
        return friends


def create_social_graph(db: Database) -> SocialGraph:
    """Build the configured social graph collaborator"""
    if settings.SOCIAL_GRAPH_SOURCE == "service":
        return GraphServiceClient()
    return DatabaseSocialGraph(db)
