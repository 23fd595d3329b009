"""
esrepository Bulk — Buffered Index/Update/Delete Sessions
=========================================================

A BulkSession queues write operations and sends them as one ``bulk``
request whenever the buffer reaches ``max_actions`` operations or
``max_bytes`` of encoded payload, and once more when the ``with`` block
exits (normally or through an exception).

Every queued operation may carry a callback. After each flush the bulk
response is split per item and each callback receives a BulkItemResult,
in submission order. A failing item never affects the others in its batch.
If the store cannot be reached, every item of the batch is reported with
TransportFailure and ``flush`` raises that TransportFailure, even when a
callback raised while the batch was being reported.

An operation whose arrival forces a flush is queued even if that flush
fails or is cancelled, so it goes out with the next flush.

Example:
    def report(result):
        if not result.ok:
            print(f"{result.id}: {result.error}")

    with repo.bulk(max_actions=1000, callback=report) as session:
        for rec in records:
            session.index(rec["id"], rec)
        session.delete("obsolete-id")
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from .exceptions import Cancelled, RepositoryError, translate_error
from .models import BulkItemResult, BulkOperation, OpType
from .protocol import (
    DEFAULT_MAX_ACTIONS,
    DEFAULT_MAX_BYTES,
    PendingItem,
    dispatch_results,
    encode_operation,
    failed_results,
    flatten_lines,
    interpret_bulk_response,
)
from .serializer import Serializer

logger = logging.getLogger(__name__)

Callback = Callable[[BulkItemResult], Any]


class BulkBuffer:
    """
    Operation buffer and counters shared by the sync and async sessions.

    Args:
        index: Target index
        serializer: Serializer for index/update payloads
        max_actions: Flush once this many operations are queued
        max_bytes: Flush before the encoded payload would exceed this size
        callback: Called for items that have no callback of their own
    """

    def __init__(
        self,
        index: str,
        serializer: Serializer,
        max_actions: int = DEFAULT_MAX_ACTIONS,
        max_bytes: int = DEFAULT_MAX_BYTES,
        callback: Optional[Callback] = None,
    ):
        if max_actions <= 0:
            raise ValueError("max_actions must be positive")
        if max_bytes <= 0:
            raise ValueError("max_bytes must be positive")
        self.index_name = index
        self.serializer = serializer
        self.max_actions = max_actions
        self.max_bytes = max_bytes
        self.callback = callback
        self._pending: List[PendingItem] = []
        self._pending_bytes = 0
        self.sent = 0
        self.succeeded = 0
        self.failed = 0

    def __len__(self) -> int:
        return len(self._pending)

    @property
    def pending_bytes(self) -> int:
        return self._pending_bytes

    def _encode(self, operation: BulkOperation) -> PendingItem:
        return encode_operation(operation, self.index_name, self.serializer)

    def _would_overflow(self, item: PendingItem) -> bool:
        return bool(self._pending) and self._pending_bytes + item.size > self.max_bytes

    def _append(self, item: PendingItem) -> bool:
        """Queue an item; returns True when the buffer is due for a flush."""
        self._pending.append(item)
        self._pending_bytes += item.size
        return (
            len(self._pending) >= self.max_actions
            or self._pending_bytes >= self.max_bytes
        )

    def _take(self) -> List[PendingItem]:
        batch, self._pending = self._pending, []
        self._pending_bytes = 0
        return batch

    def _report(self, results: List[BulkItemResult]) -> List[BulkItemResult]:
        for result in results:
            if result.ok:
                self.succeeded += 1
            else:
                self.failed += 1
        dispatch_results(results, self.callback)
        return results

    def _report_failure(self, results: List[BulkItemResult]) -> None:
        # The request error is what the caller sees; callback errors are
        # already logged by dispatch_results.
        try:
            self._report(results)
        except Exception as e:
            logger.warning(
                "Ignoring callback error while reporting failed bulk to %s: %s",
                self.index_name, e,
            )

    def _fail(self, batch: List[PendingItem], exc: Exception) -> RepositoryError:
        """Report every item of a failed request; returns the error to raise."""
        error = translate_error(exc)
        logger.error(
            "Bulk request to %s failed, %d operations not applied: %s",
            self.index_name, len(batch), error,
        )
        self._report_failure(failed_results(batch, error))
        return error

    def _cancel(self, batch: List[PendingItem]) -> None:
        logger.warning(
            "Bulk request to %s cancelled, outcome of %d operations unknown",
            self.index_name, len(batch),
        )
        self._report_failure(failed_results(batch, Cancelled("bulk flush was cancelled")))

    def _lines(self, batch: List[PendingItem]) -> List[Dict[str, Any]]:
        lines = flatten_lines(batch)
        if lines:
            logger.debug("Flushing %d bulk operations to %s", len(batch), self.index_name)
            self.sent += sum(1 for item in batch if item.error is None)
        return lines

    def _local_only(self, batch: List[PendingItem]) -> List[BulkItemResult]:
        """Report a batch where every item failed before it could be sent."""
        return self._report(interpret_bulk_response(batch, {"items": []}))

    @staticmethod
    def _operation(
        op_type: OpType,
        doc_id: str,
        value: Any = None,
        if_seq_no: Optional[int] = None,
        if_primary_term: Optional[int] = None,
        callback: Optional[Callback] = None,
    ) -> BulkOperation:
        return BulkOperation(
            op_type=op_type,
            id=doc_id,
            value=value,
            if_seq_no=if_seq_no,
            if_primary_term=if_primary_term,
            callback=callback,
        )


class BulkSession(BulkBuffer):
    """Synchronous bulk session; use as a context manager."""

    def __init__(self, client: Any, index: str, serializer: Serializer, **kwargs):
        super().__init__(index, serializer, **kwargs)
        self._client = client

    def index(
        self,
        doc_id: str,
        value: Any,
        create: bool = False,
        if_seq_no: Optional[int] = None,
        if_primary_term: Optional[int] = None,
        callback: Optional[Callback] = None,
    ) -> None:
        """Queue a full-document write (``create=True`` fails on existing ids)."""
        op_type = OpType.CREATE if create else OpType.INDEX
        self.add(self._operation(op_type, doc_id, value, if_seq_no, if_primary_term, callback))

    def update(
        self,
        doc_id: str,
        partial: Any,
        if_seq_no: Optional[int] = None,
        if_primary_term: Optional[int] = None,
        callback: Optional[Callback] = None,
    ) -> None:
        """Queue a partial update merged into the stored document."""
        self.add(self._operation(OpType.UPDATE, doc_id, partial, if_seq_no, if_primary_term, callback))

    def delete(
        self,
        doc_id: str,
        if_seq_no: Optional[int] = None,
        if_primary_term: Optional[int] = None,
        callback: Optional[Callback] = None,
    ) -> None:
        self.add(self._operation(OpType.DELETE, doc_id, None, if_seq_no, if_primary_term, callback))

    def add(self, operation: BulkOperation) -> None:
        item = self._encode(operation)
        if self._would_overflow(item):
            try:
                self.flush()
            except BaseException:
                self._append(item)
                raise
        if self._append(item):
            self.flush()

    def flush(self) -> List[BulkItemResult]:
        """
        Send every buffered operation as one bulk request.

        Returns:
            One result per operation, in submission order

        Raises:
            TransportFailure: The store was unreachable; every item of the
                batch has been reported as failed before this is raised
        """
        batch = self._take()
        if not batch:
            return []

        lines = self._lines(batch)
        if not lines:
            return self._local_only(batch)

        try:
            response = self._client.bulk(operations=lines)
        except Exception as e:
            raise self._fail(batch, e) from e

        return self._report(interpret_bulk_response(batch, response))

    def close(self) -> None:
        self.flush()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            self.flush()
            return False
        try:
            self.flush()
        except Exception as e:
            logger.error("Final flush of %s failed during error exit: %s", self.index_name, e)
        return False
