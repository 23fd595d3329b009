"""
esrepository Async — Coroutine Flavor of Repository, Bulk and Scroll
====================================================================

Same contracts as :mod:`esrepository.repository`, :mod:`esrepository.bulk`
and :mod:`esrepository.projection`, over ``AsyncElasticsearch``. Requests
are built and responses interpreted by the shared functions in
:mod:`esrepository.protocol`; coroutines only suspend at the client call.

Cancellation:
    If the task awaiting a bulk flush is cancelled, every operation of the
    batch is reported to its callback with a Cancelled error (the result
    keeps the operation so it can be resubmitted) and CancelledError
    propagates. Whether the store applied the batch is unknown.

Example:
    client = create_async_client()
    repo = AsyncRepository(client, "papers", JsonSerializer(Paper))

    async with repo.bulk() as session:
        await session.index("10.1234/x", paper)

    async with repo.scroll(page_size=1000) as results:
        async for hit in results:
            ...
"""

import asyncio
import logging
from typing import Any, AsyncIterator, Callable, Dict, List, Mapping, Optional, Sequence

from elasticsearch import AsyncElasticsearch

from .bulk import BulkBuffer, Callback
from .exceptions import VersionConflict
from .models import BulkItemResult, BulkOperation, OpType, SearchHit, VersionedDocument
from .projection import ScrollProjectionBase, SearchPage
from .protocol import (
    ScrollState,
    acall,
    body_of,
    interpret_bulk_response,
    project_hit,
    search_kwargs,
    versioned_from_get,
    versioned_from_write,
)
from .repository import RepositoryBase
from .serializer import Serializer

logger = logging.getLogger(__name__)


class AsyncScrollProjection(ScrollProjectionBase):
    """
    Async counterpart of :class:`~esrepository.projection.ScrollProjection`.

    An abandoned cursor is only released by ``aclose()`` or by leaving an
    ``async with`` block; async generators are not finalized reliably when
    dropped.
    """

    def __aiter__(self) -> AsyncIterator[SearchHit]:
        cursor = self._iterate(self._new_state())
        self._cursors.add(cursor)
        return cursor

    async def _iterate(self, state: ScrollState) -> AsyncIterator[SearchHit]:
        try:
            response = await acall(self._client.search, **state.first_request())
            while True:
                for raw in state.accept(response):
                    yield project_hit(raw, self._serializer)

                request = state.next_request()
                if request is None:
                    break
                logger.debug("Fetching scroll page %d for %s", state.pages + 1, self._index)
                response = await acall(self._client.scroll, **request)
        finally:
            if state.scroll_id:
                await self._release(state.scroll_id)

    async def _release(self, scroll_id: str) -> None:
        try:
            await self._client.clear_scroll(scroll_id=scroll_id)
        except Exception as e:
            self._log_release(e)
        else:
            self._log_release()

    async def aclose(self) -> None:
        for cursor in list(self._cursors):
            await cursor.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()


class AsyncBulkSession(BulkBuffer):
    """Async bulk session; use with ``async with``."""

    def __init__(self, client: AsyncElasticsearch, index: str, serializer: Serializer, **kwargs):
        super().__init__(index, serializer, **kwargs)
        self._client = client

    async def index(
        self,
        doc_id: str,
        value: Any,
        create: bool = False,
        if_seq_no: Optional[int] = None,
        if_primary_term: Optional[int] = None,
        callback: Optional[Callback] = None,
    ) -> None:
        op_type = OpType.CREATE if create else OpType.INDEX
        await self.add(self._operation(op_type, doc_id, value, if_seq_no, if_primary_term, callback))

    async def update(
        self,
        doc_id: str,
        partial: Any,
        if_seq_no: Optional[int] = None,
        if_primary_term: Optional[int] = None,
        callback: Optional[Callback] = None,
    ) -> None:
        await self.add(self._operation(OpType.UPDATE, doc_id, partial, if_seq_no, if_primary_term, callback))

    async def delete(
        self,
        doc_id: str,
        if_seq_no: Optional[int] = None,
        if_primary_term: Optional[int] = None,
        callback: Optional[Callback] = None,
    ) -> None:
        await self.add(self._operation(OpType.DELETE, doc_id, None, if_seq_no, if_primary_term, callback))

    async def add(self, operation: BulkOperation) -> None:
        item = self._encode(operation)
        if self._would_overflow(item):
            try:
                await self.flush()
            except BaseException:
                self._append(item)
                raise
        if self._append(item):
            await self.flush()

    async def flush(self) -> List[BulkItemResult]:
        """
        Send every buffered operation as one bulk request.

        Raises:
            TransportFailure: The store was unreachable
            asyncio.CancelledError: The flush was cancelled; items were
                reported with Cancelled first
        """
        batch = self._take()
        if not batch:
            return []

        lines = self._lines(batch)
        if not lines:
            return self._local_only(batch)

        try:
            response = await self._client.bulk(operations=lines)
        except asyncio.CancelledError:
            self._cancel(batch)
            raise
        except Exception as e:
            raise self._fail(batch, e) from e

        return self._report(interpret_bulk_response(batch, response))

    async def close(self) -> None:
        await self.flush()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            await self.flush()
            return False
        try:
            await self.flush()
        except Exception as e:
            logger.error("Final flush of %s failed during error exit: %s", self.index_name, e)
        return False


class AsyncRepository(RepositoryBase):
    """
    Async counterpart of :class:`~esrepository.repository.Repository`.

    Takes the same arguments, with an ``AsyncElasticsearch`` client.
    """

    scroll_class = AsyncScrollProjection
    session_class = AsyncBulkSession

    async def ensure_index(
        self,
        mappings: Optional[Dict[str, Any]] = None,
        settings: Optional[Dict[str, Any]] = None,
    ) -> bool:
        if await acall(self._client.indices.exists, index=self.index_name):
            return False
        await acall(self._client.indices.create, **self._create_kwargs(mappings, settings))
        logger.info("Created index %s", self.index_name)
        return True

    async def get(self, doc_id: str) -> VersionedDocument:
        response = await acall(self._client.get, index=self.index_name, id=doc_id)
        return versioned_from_get(response, self.serializer)

    async def exists(self, doc_id: str) -> bool:
        return bool(await acall(self._client.exists, index=self.index_name, id=doc_id))

    async def index(
        self,
        doc_id: str,
        value: Any,
        create: bool = False,
        if_seq_no: Optional[int] = None,
        if_primary_term: Optional[int] = None,
    ) -> VersionedDocument:
        kwargs = self._index_kwargs(doc_id, value, create, if_seq_no, if_primary_term)
        response = await acall(self._client.index, **kwargs)
        return versioned_from_write(response, value)

    async def update(
        self,
        doc_id: str,
        mutator: Callable[[Any], Any],
        max_retries: Optional[int] = None,
    ) -> VersionedDocument:
        """Read-modify-write under optimistic concurrency (see Repository.update)."""
        budget = self._budget(doc_id, max_retries)

        while True:
            current = await self.get(doc_id)
            new_value = mutator(current.value)
            try:
                return await self.index(
                    doc_id,
                    new_value,
                    if_seq_no=current.seq_no,
                    if_primary_term=current.primary_term,
                )
            except VersionConflict:
                delay = budget.conflict()
                if delay:
                    await asyncio.sleep(delay)

    async def delete(
        self,
        doc_id: str,
        if_seq_no: Optional[int] = None,
        if_primary_term: Optional[int] = None,
    ) -> None:
        await acall(self._client.delete, **self._delete_kwargs(doc_id, if_seq_no, if_primary_term))

    async def search(
        self,
        query: Optional[Mapping[str, Any]] = None,
        size: int = 10,
        from_: int = 0,
        sort: Optional[Sequence[Any]] = None,
    ) -> SearchPage:
        response = await acall(
            self._client.search, **search_kwargs(self.index_name, query, size, from_, sort)
        )
        return SearchPage(response, self.serializer)

    async def count(self, query: Optional[Mapping[str, Any]] = None) -> int:
        response = await acall(self._client.count, **self._count_kwargs(query))
        return body_of(response)["count"]

    async def refresh(self) -> None:
        self._check_refresh()
        await acall(self._client.indices.refresh, index=self.index_name)
