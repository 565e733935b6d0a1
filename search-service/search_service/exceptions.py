"""
Error taxonomy for Search Service

Every error surfaced to callers carries a stable machine-readable ``kind`` and
an HTTP-style status code. ``CacheError`` never leaves the cache layer.
"""
from typing import Optional


class SearchError(Exception):
    """Base class for search errors"""

    kind = "search_error"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"success": False, "error": self.message, "kind": self.kind}


class ValidationError(SearchError):
    """Bad or missing filter field, always client-correctable"""

    kind = "validation_error"
    status_code = 400


class InvalidRequester(ValidationError):
    """Requester id does not resolve to a known identity"""

    kind = "invalid_requester"
    status_code = 404

    def __init__(self, requester_id: int):
        super().__init__(f"Unknown requester: {requester_id}")
        self.requester_id = requester_id


class BackendUnavailable(SearchError):
    """Requested backend has no live connection"""

    kind = "backend_unavailable"
    status_code = 503

    def __init__(self, backend: str, message: Optional[str] = None):
        super().__init__(message or f"Search backend '{backend}' is unavailable")
        self.backend = backend


class ExecutionFailed(SearchError):
    """Backend raised an error mid-query"""

    kind = "execution_failed"
    status_code = 500

    def __init__(self, backend: str, message: Optional[str] = None):
        super().__init__(message or f"Search failed on backend '{backend}'")
        self.backend = backend


class CacheError(SearchError):
    """Cache store read/write failure"""

    kind = "cache_error"
