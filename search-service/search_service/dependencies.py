"""
FastAPI dependencies for Search Service
"""
from fastapi import Request

from .service import SearchService


def get_search_service(request: Request) -> SearchService:
    """Get the SearchService built at startup"""
    return request.app.state.search_service
