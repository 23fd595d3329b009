"""
esrepository Projection — Search Results as Typed Hits
======================================================

Two ways to read search results:

    SearchPage        one request, one response, a bounded list of hits
    ScrollProjection  an unbounded, lazily fetched sequence backed by a
                      server-held scroll cursor

Each element is a :class:`~esrepository.models.SearchHit` pairing the raw hit
with its deserialized value. A hit that fails to deserialize keeps
``value=None`` and iteration carries on.

Scroll cursors are released after the last page, when iteration fails, and
when a consumer abandons iteration through ``close()`` or the ``with``
block exit. A dropped sync iterator also releases its cursor when it is
garbage collected. A dropped async iterator does not: its cleanup needs a
running event loop, so abandon it through ``aclose()`` or ``async with``.

Example:
    with repo.scroll({"term": {"year": "2024"}}, page_size=1000) as results:
        for hit in results:
            process(hit.value)
"""

import logging
import weakref
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence

from .models import SearchHit
from .protocol import (
    DEFAULT_KEEP_ALIVE,
    DEFAULT_PAGE_SIZE,
    ScrollState,
    body_of,
    call,
    project_hit,
    total_hits,
)
from .serializer import Serializer

logger = logging.getLogger(__name__)


class SearchPage:
    """
    Hits from a single search response.

    Hits are projected through the serializer on first access.
    """

    def __init__(self, response: Any, serializer: Serializer):
        data = body_of(response)
        self._raw_hits: List[Dict[str, Any]] = data.get("hits", {}).get("hits", [])
        self._serializer = serializer
        self._hits: Optional[List[SearchHit]] = None
        self.total = total_hits(data)
        self.took = data.get("took")
        self.max_score = data.get("hits", {}).get("max_score")

    @property
    def hits(self) -> List[SearchHit]:
        if self._hits is None:
            self._hits = [project_hit(raw, self._serializer) for raw in self._raw_hits]
        return self._hits

    def values(self) -> List[Any]:
        """Deserialized values, skipping hits that have none."""
        return [hit.value for hit in self.hits if hit.value is not None]

    def __iter__(self) -> Iterator[SearchHit]:
        return iter(self.hits)

    def __len__(self) -> int:
        return len(self._raw_hits)

    def __getitem__(self, position: int) -> SearchHit:
        return self.hits[position]

    def __repr__(self) -> str:
        return f"SearchPage(hits={len(self)}, total={self.total})"


class ScrollProjectionBase:
    """
    Configuration and cursor bookkeeping shared by both scroll flavors.

    ``pages`` and ``total`` describe the most recent pass. Open cursors are
    held weakly, so finished or dropped iterators do not accumulate.
    """

    def __init__(
        self,
        client: Any,
        index: str,
        serializer: Serializer,
        query: Optional[Mapping[str, Any]] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        keep_alive: str = DEFAULT_KEEP_ALIVE,
        sort: Optional[Sequence[Any]] = None,
    ):
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self._client = client
        self._index = index
        self._serializer = serializer
        self._query = query
        self.page_size = page_size
        self.keep_alive = keep_alive
        self._sort = list(sort) if sort else ["_doc"]
        self._cursors: "weakref.WeakSet[Any]" = weakref.WeakSet()
        self._state: Optional[ScrollState] = None

    @property
    def pages(self) -> int:
        return self._state.pages if self._state else 0

    @property
    def total(self) -> Optional[int]:
        return self._state.total if self._state else None

    def _new_state(self) -> ScrollState:
        self._state = ScrollState(
            self._index, self._query, self.page_size, self.keep_alive, self._sort
        )
        return self._state

    def _log_release(self, error: Optional[BaseException] = None) -> None:
        if error is not None:
            logger.warning("Failed to release scroll cursor on %s: %s", self._index, error)
        else:
            logger.debug("Released scroll cursor on %s", self._index)


class ScrollProjection(ScrollProjectionBase):
    """
    Lazily scroll through every hit matching a query.

    Nothing is sent until iteration starts. Each ``iter()`` reissues the
    search and opens a new cursor; an iterator cannot be rewound.

    Args:
        client: Elasticsearch client
        index: Index to search
        serializer: Serializer used to project hits
        query: Query DSL clause (match_all when None)
        page_size: Hits per page
        keep_alive: Cursor expiry between page requests
        sort: Sort clause (defaults to index order, the cheapest for scrolling)
    """

    def __iter__(self) -> Iterator[SearchHit]:
        cursor = self._iterate(self._new_state())
        self._cursors.add(cursor)
        return cursor

    def _iterate(self, state: ScrollState) -> Iterator[SearchHit]:
        try:
            response = call(self._client.search, **state.first_request())
            while True:
                for raw in state.accept(response):
                    yield project_hit(raw, self._serializer)

                request = state.next_request()
                if request is None:
                    break
                logger.debug("Fetching scroll page %d for %s", state.pages + 1, self._index)
                response = call(self._client.scroll, **request)
        finally:
            if state.scroll_id:
                self._release(state.scroll_id)

    def _release(self, scroll_id: str) -> None:
        try:
            self._client.clear_scroll(scroll_id=scroll_id)
        except Exception as e:
            self._log_release(e)
        else:
            self._log_release()

    def close(self) -> None:
        """Release every cursor this projection still holds open."""
        for cursor in list(self._cursors):
            cursor.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
