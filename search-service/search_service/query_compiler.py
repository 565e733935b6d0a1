"""
Query compilers - translate a SearchFilter into backend-specific plans

Relational plans are parameterized SQL for asyncpg ($n placeholders).
Index plans are Elasticsearch query DSL bodies.
"""
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .domain.models import SearchFilter, SortMode

# Field boosts for the multi-field match: title > author name > body
INDEX_MATCH_FIELDS = ["title^3", "user_name^2", "content^1"]
SUGGEST_FIELDS = ["title.autocomplete", "user_name.autocomplete"]
HIGHLIGHT_PRE_TAG = "<mark>"
HIGHLIGHT_POST_TAG = "</mark>"


@dataclass(frozen=True)
class RelationalPlan:
    """Parameterized SQL statement"""
    sql: str
    params: Tuple[Any, ...]
    limit: int
    offset: int = 0
    count_sql: Optional[str] = None

    @property
    def count_params(self) -> Tuple[Any, ...]:
        """Params of count_sql: everything but LIMIT and OFFSET"""
        return self.params[:-2]


@dataclass(frozen=True)
class IndexPlan:
    """Elasticsearch search request"""
    index: str
    body: Dict[str, Any]

    @property
    def size(self) -> int:
        return self.body.get("size", 0)


class _Params:
    """Positional parameter collector"""

    def __init__(self, *initial: Any):
        self.values: List[Any] = list(initial)

    def add(self, value: Any) -> str:
        self.values.append(value)
        return f"${len(self.values)}"


def prefix_tsquery(text: str) -> Optional[str]:
    """Build a to_tsquery expression matching every token as a prefix"""
    tokens = re.findall(r"\w+", text.lower())
    if not tokens:
        return None
    return " & ".join(f"{token}:*" for token in tokens)


class RelationalQueryCompiler:
    """Compile filters into PostgreSQL full-text queries"""

    POST_COLUMNS = """
        p.id, p.user_id, u.name AS user_name, u.avatar_url AS user_avatar,
        p.title, p.content, p.tags, p.likes_count, p.comments_count, p.created_at
    """

    # Accepted friendship in either direction; requester id is always $1
    VISIBLE_TO_REQUESTER = """
        EXISTS (
            SELECT 1 FROM friendships f
            WHERE f.status = 'accepted'
              AND ((f.user_id = $1 AND f.friend_id = p.user_id)
                OR (f.friend_id = $1 AND f.user_id = p.user_id))
        )
    """

    def compile(self, search_filter: SearchFilter, prefix_match: bool = False) -> RelationalPlan:
        """
        Compile a filter into a paginated post query

        Ordering is always by recency; sort_mode is not honored here.

        Args:
            search_filter: Validated filter
            prefix_match: Treat query text as a typed prefix (suggestions)

        Returns:
            RelationalPlan with total count computed by a window function
        """
        params = _Params(search_filter.requester_id)
        conditions = [self.VISIBLE_TO_REQUESTER]

        if search_filter.query_text:
            if prefix_match:
                expression = prefix_tsquery(search_filter.query_text)
                conditions.append(f"p.search_vector @@ to_tsquery('english', {params.add(expression)})")
            else:
                conditions.append(
                    f"p.search_vector @@ plainto_tsquery('english', {params.add(search_filter.query_text)})"
                )

        if search_filter.tags:
            conditions.append(f"p.tags && {params.add(sorted(search_filter.tags))}::text[]")

        if search_filter.date_from:
            conditions.append(f"p.created_at >= {params.add(search_filter.date_from)}")

        if search_filter.date_to:
            conditions.append(f"p.created_at <= {params.add(search_filter.date_to)}")

        if search_filter.friend_id:
            conditions.append(f"p.user_id = {params.add(search_filter.friend_id)}")

        count_sql = f"""
            SELECT COUNT(*) AS total_count
            FROM posts p
            INNER JOIN users u ON p.user_id = u.id
            WHERE {" AND ".join(conditions)}
        """

        limit_param = params.add(search_filter.page_size)
        offset_param = params.add(search_filter.offset)

        sql = f"""
            SELECT {self.POST_COLUMNS},
                   COUNT(*) OVER() AS total_count
            FROM posts p
            INNER JOIN users u ON p.user_id = u.id
            WHERE {" AND ".join(conditions)}
            ORDER BY p.created_at DESC, p.id DESC
            LIMIT {limit_param} OFFSET {offset_param}
        """
        return RelationalPlan(
            sql=sql,
            params=tuple(params.values),
            limit=search_filter.page_size,
            offset=search_filter.offset,
            count_sql=count_sql,
        )

    def compile_suggestion(self, requester_id: int, prefix: str, limit: int) -> Optional[RelationalPlan]:
        """Narrow prefix query over recent visible posts; None if prefix has no tokens"""
        if prefix_tsquery(prefix) is None:
            return None
        narrowed = SearchFilter(requester_id=requester_id, query_text=prefix, page_size=limit)
        return self.compile(narrowed, prefix_match=True)

    def compile_popular_tags(self, requester_id: int, limit: int) -> RelationalPlan:
        """Tag frequency over posts visible to the requester"""
        sql = f"""
            SELECT tag, COUNT(*) AS count
            FROM posts p
            CROSS JOIN LATERAL unnest(p.tags) AS tag
            WHERE {self.VISIBLE_TO_REQUESTER}
            GROUP BY tag
            ORDER BY count DESC, tag ASC
            LIMIT $2
        """
        return RelationalPlan(sql=sql, params=(requester_id, limit), limit=limit)


class IndexQueryCompiler:
    """Compile filters into Elasticsearch query DSL"""

    def __init__(self, posts_index: str):
        self.posts_index = posts_index

    @staticmethod
    def _visibility(visible_author_ids: Iterable[int]) -> Dict[str, Any]:
        return {"terms": {"user_id": sorted(visible_author_ids)}}

    @staticmethod
    def _sort(sort_mode: SortMode) -> List[Any]:
        if sort_mode == SortMode.DATE:
            return [{"created_at": {"order": "desc"}}]
        if sort_mode == SortMode.POPULARITY:
            return [
                {"likes_count": {"order": "desc"}},
                {"comments_count": {"order": "desc"}},
                {"created_at": {"order": "desc"}},
            ]
        return ["_score", {"created_at": {"order": "desc"}}]

    def compile(self, search_filter: SearchFilter, visible_author_ids: Iterable[int]) -> IndexPlan:
        """
        Compile a filter into a scored, highlighted search request

        Args:
            search_filter: Validated filter
            visible_author_ids: Accepted friends of the requester

        Returns:
            IndexPlan for the posts index
        """
        must: List[Dict[str, Any]] = []
        filters: List[Dict[str, Any]] = [self._visibility(visible_author_ids)]

        if search_filter.query_text:
            match: Dict[str, Any] = {
                "query": search_filter.query_text,
                "fields": INDEX_MATCH_FIELDS,
                "type": "best_fields",
                "operator": "or",
                "minimum_should_match": "70%",
            }
            # Edit distance chosen per token length
            if search_filter.fuzzy:
                match["fuzziness"] = "AUTO"
                match["prefix_length"] = 2
            must.append({"multi_match": match})

        if search_filter.friend_id:
            filters.append({"term": {"user_id": search_filter.friend_id}})

        if search_filter.tags:
            filters.append({"terms": {"tags": sorted(search_filter.tags)}})

        if search_filter.date_from or search_filter.date_to:
            bounds: Dict[str, str] = {}
            if search_filter.date_from:
                bounds["gte"] = search_filter.date_from.isoformat()
            if search_filter.date_to:
                bounds["lte"] = search_filter.date_to.isoformat()
            filters.append({"range": {"created_at": bounds}})

        body = {
            "query": {
                "bool": {
                    "must": must or [{"match_all": {}}],
                    "filter": filters,
                }
            },
            "sort": self._sort(search_filter.sort_mode),
            "from": search_filter.offset,
            "size": search_filter.page_size,
            "track_total_hits": True,
            "track_scores": True,
            "highlight": {
                "fields": {
                    "title": {},
                    "content": {"fragment_size": 150, "number_of_fragments": 3},
                },
                "pre_tags": [HIGHLIGHT_PRE_TAG],
                "post_tags": [HIGHLIGHT_POST_TAG],
            },
        }
        return IndexPlan(index=self.posts_index, body=body)

    def compile_suggestion(self, prefix: str, limit: int, visible_author_ids: Iterable[int]) -> IndexPlan:
        """Edge-ngram prefix match on titles and author names"""
        body = {
            "query": {
                "bool": {
                    "must": [{
                        "multi_match": {
                            "query": prefix,
                            "fields": SUGGEST_FIELDS,
                            "type": "bool_prefix",
                        }
                    }],
                    "filter": [self._visibility(visible_author_ids)],
                }
            },
            "size": limit,
            "_source": ["title"],
        }
        return IndexPlan(index=self.posts_index, body=body)

    def compile_popular_tags(self, limit: int, visible_author_ids: Iterable[int]) -> IndexPlan:
        """Terms aggregation over tags of visible posts"""
        body = {
            "query": {"bool": {"filter": [self._visibility(visible_author_ids)]}},
            "aggs": {
                "popular_tags": {
                    "terms": {"field": "tags", "size": limit, "order": {"_count": "desc"}},
                },
            },
            "size": 0,
        }
        return IndexPlan(index=self.posts_index, body=body)

    def compile_similar(self, post_id: int, limit: int, visible_author_ids: Iterable[int]) -> IndexPlan:
        """More-like-this over title, content and tags"""
        body = {
            "query": {
                "bool": {
                    "must": [{
                        "more_like_this": {
                            "fields": ["title", "content", "tags"],
                            "like": [{"_index": self.posts_index, "_id": str(post_id)}],
                            "min_term_freq": 1,
                            "min_doc_freq": 1,
                            "max_query_terms": 12,
                        }
                    }],
                    "filter": [self._visibility(visible_author_ids)],
                }
            },
            "size": limit,
        }
        return IndexPlan(index=self.posts_index, body=body)
