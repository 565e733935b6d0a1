"""
FastAPI application for Search Service
"""
from fastapi import FastAPI, Depends, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from typing import Optional
import logging

from .analytics import AnalyticsSink
from .backends.index import IndexSearchBackend
from .backends.registry import BackendRegistry
from .backends.relational import RelationalSearchBackend
from .cache import SearchCache, create_cache_store
from .config import settings
from .database import Database
from .dependencies import get_search_service
from .exceptions import SearchError
from .index_client import IndexClient
from .kafka_consumer import KafkaConsumerManager
from .kafka_producer import KafkaProducerManager
from .search_logs import create_search_log_store
from .service import SearchService
from .social_graph import GraphServiceClient, create_social_graph
from .validation import build_filter, parse_backend, parse_tags
from .schemas import (
    InvalidateCacheRequest,
    InvalidateCacheResponse,
    InvalidateCacheResult,
    PostResponse,
    SearchResponse,
    SearchResultResponse,
    SimilarPostsResponse,
    StringListResponse,
    TrendingQueryResponse,
    TrendingResponse,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.DEBUG else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    # Startup
    logger.info("Starting Search Service...")

    db = Database()
    try:
        await db.connect()
        logger.info("Database connected")
    except Exception:
        logger.error("Relational backend unavailable")

    index_client = IndexClient()
    await index_client.connect()

    social_graph = create_social_graph(db)
    if isinstance(social_graph, GraphServiceClient):
        await social_graph.start()

    cache = SearchCache(create_cache_store())
    await cache.start()

    kafka_producer = KafkaProducerManager()
    await kafka_producer.start()

    analytics = AnalyticsSink(create_search_log_store(db, index_client), kafka_producer)
    await analytics.start()

    registry = BackendRegistry([
        RelationalSearchBackend(db),
        IndexSearchBackend(index_client, social_graph),
    ])
    app.state.search_service = SearchService(registry, cache, social_graph, analytics)

    kafka_consumer = KafkaConsumerManager(cache, social_graph)
    await kafka_consumer.start()

    logger.info(f"Search Service started successfully on port {settings.PORT} (backends: {registry.status()})")

    yield

    # Shutdown
    logger.info("Shutting down Search Service...")

    await kafka_consumer.stop()
    await analytics.stop()
    await kafka_producer.stop()
    await cache.stop()

    if isinstance(social_graph, GraphServiceClient):
        await social_graph.stop()

    await index_client.disconnect()
    await db.disconnect()

    logger.info("Search Service shut down successfully")


# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Instagram Search Service - Full-text search over friends' posts",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SearchError)
async def search_error_handler(request: Request, exc: SearchError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    message = "; ".join(
        f"{'.'.join(str(part) for part in error['loc'][1:])}: {error['msg']}" for error in exc.errors()
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "error": message, "kind": "validation_error"},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "error": "Internal server error", "kind": "internal_error"},
    )


# Health check endpoint
@app.get("/health", tags=["Health"])
async def health_check(service: SearchService = Depends(get_search_service)):
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "backends": service.registry.status(),
    }


# Search endpoints
@app.get(
    "/api/v1/search/posts",
    response_model=SearchResponse,
    tags=["Search"],
    summary="Search friends' posts",
)
async def search_posts(
    requester_id: int = Query(..., description="Searching user"),
    q: Optional[str] = Query(None, description="Free-text query"),
    tags: Optional[str] = Query(None, description="Comma-separated tags, any may match"),
    date_from: Optional[str] = Query(None, description="Inclusive lower bound (ISO-8601)"),
    date_to: Optional[str] = Query(None, description="Inclusive upper bound (ISO-8601)"),
    friend_id: Optional[int] = Query(None, description="Restrict to one friend"),
    page: int = Query(1, description="Page number (1-indexed)"),
    page_size: Optional[int] = Query(None, description="Items per page, capped at the maximum"),
    sort_by: Optional[str] = Query(None, description="relevance, date or popularity"),
    fuzzy: bool = Query(False, description="Typo tolerance (index backend)"),
    backend: Optional[str] = Query(None, description="relational or index"),
    allow_fallback: bool = Query(False, description="Use the other backend if this one is down"),
    service: SearchService = Depends(get_search_service),
):
    """
    Search posts written by the requester's friends

    Returns a ranked, paginated result set
    """
    search_filter = build_filter(
        requester_id=requester_id,
        query=q,
        tags=parse_tags(tags),
        date_from=date_from,
        date_to=date_to,
        friend_id=friend_id,
        page=page,
        page_size=page_size,
        sort_by=sort_by,
        fuzzy=fuzzy,
        backend=backend,
    )
    result = await service.search(search_filter, allow_fallback=allow_fallback)
    return SearchResponse(data=SearchResultResponse.from_result(result))


@app.get(
    "/api/v1/search/suggestions",
    response_model=StringListResponse,
    tags=["Search"],
    summary="Autocomplete post titles",
)
async def get_suggestions(
    requester_id: int = Query(..., description="Searching user"),
    q: str = Query("", description="Typed prefix"),
    limit: int = Query(settings.DEFAULT_SUGGESTIONS, description="Maximum suggestions"),
    backend: Optional[str] = Query(None, description="relational or index"),
    service: SearchService = Depends(get_search_service),
):
    suggestions = await service.suggest(requester_id, q, limit, parse_backend(backend))
    return StringListResponse(data=suggestions)


@app.get(
    "/api/v1/search/tags",
    response_model=StringListResponse,
    tags=["Search"],
    summary="Popular tags among friends' posts",
)
async def get_popular_tags(
    requester_id: int = Query(..., description="Searching user"),
    limit: int = Query(settings.DEFAULT_POPULAR_TAGS, description="Maximum tags"),
    backend: Optional[str] = Query(None, description="relational or index"),
    service: SearchService = Depends(get_search_service),
):
    tags = await service.popular_tags(requester_id, limit, parse_backend(backend))
    return StringListResponse(data=tags)


@app.get(
    "/api/v1/search/trending",
    response_model=TrendingResponse,
    tags=["Analytics"],
    summary="Trending search queries",
)
async def get_trending(
    limit: int = Query(settings.DEFAULT_TRENDING, description="Maximum queries"),
    service: SearchService = Depends(get_search_service),
):
    trending = await service.trending(min(limit, settings.MAX_PAGE_SIZE))
    return TrendingResponse(data=[TrendingQueryResponse.from_trending(t) for t in trending])


@app.get(
    "/api/v1/search/related",
    response_model=StringListResponse,
    tags=["Analytics"],
    summary="Related search queries",
)
async def get_related_queries(
    q: str = Query(..., description="Query to find relatives of"),
    limit: int = Query(5, description="Maximum queries"),
    service: SearchService = Depends(get_search_service),
):
    related = await service.related_queries(q, min(limit, settings.MAX_PAGE_SIZE))
    return StringListResponse(data=related)


@app.get(
    "/api/v1/search/similar/{post_id}",
    response_model=SimilarPostsResponse,
    tags=["Search"],
    summary="Friends' posts similar to a post",
)
async def get_similar_posts(
    post_id: int,
    requester_id: int = Query(..., description="Searching user"),
    limit: int = Query(5, description="Maximum posts"),
    service: SearchService = Depends(get_search_service),
):
    posts = await service.similar_posts(requester_id, post_id, limit)
    return SimilarPostsResponse(data=[PostResponse.from_post(post) for post in posts])


@app.post(
    "/api/v1/search/cache/invalidate",
    response_model=InvalidateCacheResponse,
    tags=["Cache"],
    summary="Invalidate cached search results",
)
async def invalidate_cache(
    request: Optional[InvalidateCacheRequest] = None,
    service: SearchService = Depends(get_search_service),
):
    """
    Drop cached results for a requester, or every requester when none is given

    Post writers call this after creating, editing or deleting a post
    """
    requester_id = request.requester_id if request else None
    removed = await service.invalidate_cache(requester_id)
    return InvalidateCacheResponse(data=InvalidateCacheResult(requester_id=requester_id, removed=removed))


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "search_service.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
    )
