"""
esrepository Repository — Typed CRUD Bound to One Index
=======================================================

A Repository wraps an ``Elasticsearch`` client and one index name. It holds
no state besides its configuration: every call is a request to the store,
nothing is cached.

Optimistic concurrency:
    Every read returns a VersionedDocument carrying ``(seq_no, primary_term)``.
    ``update`` writes back with that pair; if another writer got there first
    the store rejects the write and ``update`` re-reads and tries again, at
    most ``max_retries`` more times.

Refresh:
    ``refresh()`` is opt-in. A repository built without ``refresh=True``
    raises RefreshNotAllowed without contacting the store.

Example:
    repo = Repository(client, "papers", JsonSerializer(Paper))
    repo.index("10.1234/x", Paper("Quantum", 2024), create=True)
    repo.update("10.1234/x", lambda p: replace(p, year=2025))

    with repo.bulk(max_actions=1000) as session:
        for paper in papers:
            session.index(paper.doi, paper)
"""

import logging
import time
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

from elasticsearch import Elasticsearch

from .bulk import BulkSession
from .exceptions import RefreshNotAllowed, VersionConflict
from .models import VersionedDocument
from .projection import ScrollProjection, SearchPage
from .protocol import (
    DEFAULT_KEEP_ALIVE,
    DEFAULT_MAX_ACTIONS,
    DEFAULT_MAX_BYTES,
    DEFAULT_PAGE_SIZE,
    ConflictBudget,
    body_of,
    call,
    index_kwargs,
    search_kwargs,
    version_kwargs,
    versioned_from_get,
    versioned_from_write,
)
from .serializer import JsonSerializer, Serializer

logger = logging.getLogger(__name__)


class RepositoryBase:
    """
    Configuration and request building shared by both repository flavors.

    Subclasses only issue the client calls. ``scroll_class`` and
    ``session_class`` pick the projection and bulk session they hand out.
    """

    scroll_class: Any = ScrollProjection
    session_class: Any = BulkSession

    def __init__(
        self,
        client: Any,
        index: str,
        serializer: Optional[Serializer] = None,
        refresh: bool = False,
        max_retries: int = 3,
        retry_backoff: float = 0.0,
    ):
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self._client = client
        self.index_name = index
        self.serializer = serializer or JsonSerializer()
        self.allow_refresh = refresh
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff

    def __repr__(self) -> str:
        return f"{type(self).__name__}(index={self.index_name!r})"

    def _create_kwargs(
        self,
        mappings: Optional[Dict[str, Any]],
        settings: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"index": self.index_name}
        if mappings:
            kwargs["mappings"] = mappings
        if settings:
            kwargs["settings"] = settings
        return kwargs

    def _index_kwargs(
        self,
        doc_id: str,
        value: Any,
        create: bool,
        if_seq_no: Optional[int],
        if_primary_term: Optional[int],
    ) -> Dict[str, Any]:
        document = self.serializer.dumps(value)
        return index_kwargs(
            self.index_name, doc_id, document, create, if_seq_no, if_primary_term
        )

    def _delete_kwargs(
        self, doc_id: str, if_seq_no: Optional[int], if_primary_term: Optional[int]
    ) -> Dict[str, Any]:
        return {
            "index": self.index_name,
            "id": doc_id,
            **version_kwargs(if_seq_no, if_primary_term),
        }

    def _count_kwargs(self, query: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        if query:
            return {"index": self.index_name, "query": dict(query)}
        return {"index": self.index_name}

    def _budget(self, doc_id: str, max_retries: Optional[int]) -> ConflictBudget:
        retries = self.max_retries if max_retries is None else max_retries
        return ConflictBudget(doc_id, self.index_name, retries, self.retry_backoff)

    def _check_refresh(self) -> None:
        if not self.allow_refresh:
            raise RefreshNotAllowed(
                f"refresh is disabled for repository {self.index_name!r}"
            )

    def scroll(
        self,
        query: Optional[Mapping[str, Any]] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        keep_alive: str = DEFAULT_KEEP_ALIVE,
        sort: Optional[Sequence[Any]] = None,
    ):
        """Iterate over every matching hit, one page request at a time."""
        return self.scroll_class(
            self._client,
            self.index_name,
            self.serializer,
            query=query,
            page_size=page_size,
            keep_alive=keep_alive,
            sort=sort,
        )

    def bulk(
        self,
        max_actions: int = DEFAULT_MAX_ACTIONS,
        max_bytes: int = DEFAULT_MAX_BYTES,
        callback: Optional[Callable] = None,
    ):
        """Open a bulk session writing to this repository's index."""
        return self.session_class(
            self._client,
            self.index_name,
            self.serializer,
            max_actions=max_actions,
            max_bytes=max_bytes,
            callback=callback,
        )


class Repository(RepositoryBase):
    """
    Typed document repository for a single index.

    Args:
        client: Elasticsearch client (see :func:`esrepository.create_client`)
        index: Index name
        serializer: Value <-> document mapping (default: plain dicts)
        refresh: Allow ``refresh()``; off by default since frequent
            refreshes are expensive on production clusters
        max_retries: Re-reads allowed after a version conflict in ``update``
        retry_backoff: Base delay in seconds between conflict retries
            (0 retries immediately)
    """

    def __init__(
        self,
        client: Elasticsearch,
        index: str,
        serializer: Optional[Serializer] = None,
        refresh: bool = False,
        max_retries: int = 3,
        retry_backoff: float = 0.0,
    ):
        super().__init__(client, index, serializer, refresh, max_retries, retry_backoff)

    def ensure_index(
        self,
        mappings: Optional[Dict[str, Any]] = None,
        settings: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """
        Create the index if it does not exist yet.

        Returns:
            True when the index was created by this call
        """
        if call(self._client.indices.exists, index=self.index_name):
            return False
        call(self._client.indices.create, **self._create_kwargs(mappings, settings))
        logger.info("Created index %s", self.index_name)
        return True

    def get(self, doc_id: str) -> VersionedDocument:
        """
        Fetch a document with its version.

        Raises:
            NotFound: No document with this id
        """
        response = call(self._client.get, index=self.index_name, id=doc_id)
        return versioned_from_get(response, self.serializer)

    def exists(self, doc_id: str) -> bool:
        return bool(call(self._client.exists, index=self.index_name, id=doc_id))

    def index(
        self,
        doc_id: str,
        value: Any,
        create: bool = False,
        if_seq_no: Optional[int] = None,
        if_primary_term: Optional[int] = None,
    ) -> VersionedDocument:
        """
        Store a document.

        Args:
            doc_id: Document id
            value: Typed value, converted by the serializer
            create: Fail with VersionConflict if the id already exists
            if_seq_no: Only write if the stored seq_no matches
            if_primary_term: Only write if the stored primary term matches

        Returns:
            The written document with its new version

        Raises:
            VersionConflict: ``create`` on an existing id, or version mismatch
            ValidationError: The value could not be serialized or was rejected
        """
        kwargs = self._index_kwargs(doc_id, value, create, if_seq_no, if_primary_term)
        response = call(self._client.index, **kwargs)
        return versioned_from_write(response, value)

    def update(
        self,
        doc_id: str,
        mutator: Callable[[Any], Any],
        max_retries: Optional[int] = None,
    ) -> VersionedDocument:
        """
        Read-modify-write a document under optimistic concurrency.

        ``mutator`` receives the current value and returns the new one. It may
        be called several times, once per attempt, so it must not have side
        effects beyond building the new value.

        Raises:
            NotFound: The document does not exist
            UpdateConflictExhausted: Every attempt hit a version conflict
        """
        budget = self._budget(doc_id, max_retries)

        while True:
            current = self.get(doc_id)
            new_value = mutator(current.value)
            try:
                return self.index(
                    doc_id,
                    new_value,
                    if_seq_no=current.seq_no,
                    if_primary_term=current.primary_term,
                )
            except VersionConflict:
                delay = budget.conflict()
                if delay:
                    time.sleep(delay)

    def delete(
        self,
        doc_id: str,
        if_seq_no: Optional[int] = None,
        if_primary_term: Optional[int] = None,
    ) -> None:
        """
        Delete a document.

        Raises:
            NotFound: No document with this id
            VersionConflict: Version given and the stored one differs
        """
        call(self._client.delete, **self._delete_kwargs(doc_id, if_seq_no, if_primary_term))

    def search(
        self,
        query: Optional[Mapping[str, Any]] = None,
        size: int = 10,
        from_: int = 0,
        sort: Optional[Sequence[Any]] = None,
    ) -> SearchPage:
        """
        Run one search request and return its page of hits.

        Args:
            query: Query DSL clause (match_all when None)
            size: Maximum hits in the page
            from_: Offset of the first hit
            sort: Optional sort clause
        """
        response = call(
            self._client.search, **search_kwargs(self.index_name, query, size, from_, sort)
        )
        return SearchPage(response, self.serializer)

    def count(self, query: Optional[Mapping[str, Any]] = None) -> int:
        response = call(self._client.count, **self._count_kwargs(query))
        return body_of(response)["count"]

    def refresh(self) -> None:
        """
        Make recent writes visible to search.

        Raises:
            RefreshNotAllowed: The repository was built without ``refresh=True``
        """
        self._check_refresh()
        call(self._client.indices.refresh, index=self.index_name)
