"""
Backend registry - map each Backend tag to its implementation
"""
from typing import Dict, Iterable
import logging

from ..domain.models import Backend
from ..domain.repositories import SearchBackend
from ..exceptions import BackendUnavailable

logger = logging.getLogger(__name__)


class BackendRegistry:
    """Resolve backends by tag, optionally falling back to the other engine"""

    def __init__(self, backends: Iterable[SearchBackend] = ()):
        self._backends: Dict[Backend, SearchBackend] = {}
        for backend in backends:
            self.register(backend)

    def register(self, backend: SearchBackend):
        self._backends[backend.kind] = backend

    def _available(self, kind: Backend) -> bool:
        backend = self._backends.get(kind)
        return backend is not None and backend.available

    def get(self, kind: Backend, allow_fallback: bool = False) -> SearchBackend:
        """
        Get a live backend

        Args:
            kind: Requested backend
            allow_fallback: Serve from the other backend if the requested one is down

        Raises:
            BackendUnavailable: If no acceptable backend has a live connection
        """
        if self._available(kind):
            return self._backends[kind]

        if allow_fallback and self._available(kind.other):
            logger.warning(f"Backend '{kind.value}' unavailable, falling back to '{kind.other.value}'")
            return self._backends[kind.other]

        raise BackendUnavailable(kind.value)

    def status(self) -> Dict[str, bool]:
        """Availability of every known backend"""
        return {kind.value: self._available(kind) for kind in Backend}
