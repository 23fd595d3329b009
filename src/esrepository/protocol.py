"""
esrepository Protocol — Requests and Responses Shared by Both Flavors
=====================================================================

The synchronous and asynchronous classes differ only in how they wait for
the store. Everything else lives here, once: building request arguments,
reading version metadata, encoding bulk actions, demultiplexing bulk
responses, projecting search hits, walking scroll cursors and budgeting
update retries.
"""

import json
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence

from .exceptions import (
    RepositoryError,
    SerializationError,
    UpdateConflictExhausted,
    describe_error,
    error_from_status,
    translate_error,
)
from .models import BulkItemResult, BulkOperation, OpType, SearchHit, VersionedDocument
from .serializer import Serializer

logger = logging.getLogger(__name__)

DEFAULT_MAX_ACTIONS = 500
DEFAULT_MAX_BYTES = 10 * 1024 * 1024
DEFAULT_KEEP_ALIVE = "1m"
DEFAULT_PAGE_SIZE = 500


def body_of(response: Any) -> Dict[str, Any]:
    """Unwrap an ``ObjectApiResponse`` (or pass a plain dict through)."""
    return getattr(response, "body", response)


def version_kwargs(if_seq_no: Optional[int], if_primary_term: Optional[int]) -> Dict[str, int]:
    if (if_seq_no is None) != (if_primary_term is None):
        raise ValueError("if_seq_no and if_primary_term must be given together")
    if if_seq_no is None:
        return {}
    return {"if_seq_no": if_seq_no, "if_primary_term": if_primary_term}


def index_kwargs(
    index: str,
    doc_id: str,
    document: dict,
    create: bool = False,
    if_seq_no: Optional[int] = None,
    if_primary_term: Optional[int] = None,
) -> Dict[str, Any]:
    kwargs: Dict[str, Any] = {"index": index, "id": doc_id, "document": document}
    if create:
        kwargs["op_type"] = "create"
    kwargs.update(version_kwargs(if_seq_no, if_primary_term))
    return kwargs


def versioned_from_get(response: Any, serializer: Serializer) -> VersionedDocument:
    """Build a VersionedDocument from a ``get`` response."""
    data = body_of(response)
    return VersionedDocument(
        id=data["_id"],
        seq_no=data["_seq_no"],
        primary_term=data["_primary_term"],
        value=serializer.loads(data.get("_source", {})),
        index=data.get("_index", ""),
    )


def versioned_from_write(response: Any, value: Any) -> VersionedDocument:
    """Build a VersionedDocument from an ``index`` response and the written value."""
    data = body_of(response)
    return VersionedDocument(
        id=data["_id"],
        seq_no=data["_seq_no"],
        primary_term=data["_primary_term"],
        value=value,
        index=data.get("_index", ""),
    )


def backoff_delay(base: float, attempt: int, max_delay: float = 5.0) -> float:
    """Exponential backoff with full jitter; 0 when ``base`` is 0."""
    if base <= 0:
        return 0.0
    return random.uniform(0, min(max_delay, base * (2 ** attempt)))


def search_kwargs(
    index: str,
    query: Optional[Mapping[str, Any]] = None,
    size: int = 10,
    from_: int = 0,
    sort: Optional[Sequence[Any]] = None,
) -> Dict[str, Any]:
    kwargs: Dict[str, Any] = {
        "index": index,
        "query": dict(query) if query else {"match_all": {}},
        "size": size,
        "seq_no_primary_term": True,
        "track_total_hits": True,
    }
    if from_:
        kwargs["from_"] = from_
    if sort:
        kwargs["sort"] = list(sort)
    return kwargs


def total_hits(response: Mapping[str, Any]) -> Optional[int]:
    """Exact hit count, or None when the store only gave a lower bound."""
    total = response.get("hits", {}).get("total")
    if total is None:
        return None
    if isinstance(total, int):
        return total
    if total.get("relation", "eq") != "eq":
        return None
    return total.get("value")


def project_hit(raw: Dict[str, Any], serializer: Serializer) -> SearchHit:
    """
    Pair a raw hit with its typed value.

    The value is None when the hit carries no ``_source`` (source storage
    disabled, or excluded by the query) or when it fails to deserialize.
    """
    value = None
    source = raw.get("_source")
    if source is not None:
        try:
            value = serializer.loads(source)
        except Exception as e:
            logger.warning("Could not deserialize hit %s: %s", raw.get("_id"), e)

    return SearchHit(
        id=raw.get("_id", ""),
        index=raw.get("_index", ""),
        score=raw.get("_score"),
        raw=raw,
        value=value,
        seq_no=raw.get("_seq_no"),
        primary_term=raw.get("_primary_term"),
    )


# ---------------------------------------------------------------------------
# Bulk encoding
# ---------------------------------------------------------------------------

@dataclass
class PendingItem:
    """A queued operation with its encoded action lines (or a local error)."""

    operation: BulkOperation
    lines: List[Dict[str, Any]] = field(default_factory=list)
    size: int = 0
    error: Optional[RepositoryError] = None


def _line_size(line: Dict[str, Any]) -> int:
    return len(json.dumps(line, separators=(",", ":")).encode("utf-8")) + 1


def encode_operation(
    operation: BulkOperation, index: str, serializer: Serializer
) -> PendingItem:
    """
    Encode one operation into bulk action lines.

    Serialization failures are recorded on the item instead of raised so
    they are reported through the item's callback at flush time.
    """
    header: Dict[str, Any] = {"_index": index, "_id": operation.id}
    header.update(version_kwargs(operation.if_seq_no, operation.if_primary_term))
    lines: List[Dict[str, Any]] = [{operation.op_type.value: header}]

    try:
        if operation.op_type in (OpType.INDEX, OpType.CREATE):
            lines.append(serializer.dumps(operation.value))
        elif operation.op_type is OpType.UPDATE:
            lines.append({"doc": serializer.dumps(operation.value)})
    except SerializationError as e:
        return PendingItem(operation, error=e)

    return PendingItem(operation, lines=lines, size=sum(_line_size(l) for l in lines))


def flatten_lines(items: Sequence[PendingItem]) -> List[Dict[str, Any]]:
    return [line for item in items if item.error is None for line in item.lines]


def failed_results(items: Sequence[PendingItem], error: RepositoryError) -> List[BulkItemResult]:
    """Give every item of a batch the same failure (transport, cancellation)."""
    return [
        BulkItemResult(
            operation=item.operation,
            ok=False,
            status=None if item.error else error.status,
            error=item.error or error,
        )
        for item in items
    ]


def interpret_bulk_response(
    items: Sequence[PendingItem], response: Any
) -> List[BulkItemResult]:
    """
    Demultiplex a bulk response onto the submitted items, in order.

    Items that failed locally were never sent and keep their own error.
    """
    data = body_of(response)
    answers = iter(data.get("items", []))
    results: List[BulkItemResult] = []

    for item in items:
        if item.error is not None:
            results.append(
                BulkItemResult(item.operation, ok=False, status=None, error=item.error)
            )
            continue

        try:
            answer = next(answers)
        except StopIteration:
            results.append(
                BulkItemResult(
                    item.operation,
                    ok=False,
                    error=RepositoryError("bulk response is missing this item"),
                )
            )
            continue

        info = next(iter(answer.values()))
        status = info.get("status", 500)
        if 200 <= status < 300:
            results.append(
                BulkItemResult(
                    item.operation,
                    ok=True,
                    status=status,
                    seq_no=info.get("_seq_no"),
                    primary_term=info.get("_primary_term"),
                )
            )
        else:
            reason = describe_error(info.get("error")) or info.get("result", "")
            results.append(
                BulkItemResult(
                    item.operation,
                    ok=False,
                    status=status,
                    error=error_from_status(status, reason),
                )
            )

    return results


def dispatch_results(
    results: Sequence[BulkItemResult],
    default_callback: Optional[Any] = None,
) -> None:
    """
    Invoke each item's callback (or the session callback) in order.

    A raising callback does not stop the remaining ones; the first
    exception is re-raised once every item has been reported.
    """
    first_error: Optional[BaseException] = None
    for result in results:
        if not result.ok:
            logger.warning(
                "Bulk %s %s failed: %s",
                result.operation.op_type.value,
                result.id,
                result.error,
            )
        callback = result.operation.callback or default_callback
        if callback is None:
            continue
        try:
            callback(result)
        except Exception as e:
            logger.exception("Bulk callback for %s raised", result.id)
            if first_error is None:
                first_error = e
    if first_error is not None:
        raise first_error


# ---------------------------------------------------------------------------
# Call sites, retry budget and scroll cursor state
# ---------------------------------------------------------------------------

def call(func: Callable[..., Any], **kwargs: Any) -> Any:
    """Invoke a client method, translating its errors into the taxonomy."""
    try:
        return func(**kwargs)
    except Exception as e:
        raise translate_error(e) from e


async def acall(func: Callable[..., Awaitable[Any]], **kwargs: Any) -> Any:
    """Awaitable counterpart of :func:`call`."""
    try:
        return await func(**kwargs)
    except Exception as e:
        raise translate_error(e) from e


class ConflictBudget:
    """
    Decides what happens after a version conflict during ``update``.

    ``conflict()`` either raises UpdateConflictExhausted once more than
    ``max_retries`` conflicts were seen, or returns the delay to wait
    before the next read-modify-write attempt.
    """

    def __init__(self, doc_id: str, index: str, max_retries: int, backoff: float = 0.0):
        self.doc_id = doc_id
        self.index = index
        self.max_retries = max_retries
        self.backoff = backoff
        self.attempts = 0

    def conflict(self) -> float:
        self.attempts += 1
        if self.attempts > self.max_retries:
            raise UpdateConflictExhausted(self.doc_id, self.attempts)
        logger.warning(
            "Version conflict updating %s/%s, retrying (%d/%d)",
            self.index, self.doc_id, self.attempts, self.max_retries,
        )
        return backoff_delay(self.backoff, self.attempts - 1)


class ScrollState:
    """
    One pass over a scroll cursor.

    The caller sends ``first_request()`` to ``search``, hands every
    response to ``accept()`` and keeps sending ``next_request()`` to
    ``scroll`` until it returns None.
    """

    def __init__(
        self,
        index: str,
        query: Optional[Mapping[str, Any]],
        page_size: int,
        keep_alive: str,
        sort: Sequence[Any],
    ):
        self.index = index
        self.query = query
        self.page_size = page_size
        self.keep_alive = keep_alive
        self.sort = sort
        self.scroll_id: Optional[str] = None
        self.total: Optional[int] = None
        self.pages = 0
        self.seen = 0
        self._done = False

    def first_request(self) -> Dict[str, Any]:
        kwargs = search_kwargs(self.index, self.query, size=self.page_size, sort=self.sort)
        kwargs["scroll"] = self.keep_alive
        return kwargs

    def accept(self, response: Any) -> List[Dict[str, Any]]:
        """Record a page and return its raw hits."""
        data = body_of(response)
        if self.pages == 0:
            self.total = total_hits(data)
        self.pages += 1
        self.scroll_id = data.get("_scroll_id") or self.scroll_id

        hits = data.get("hits", {}).get("hits", [])
        self.seen += len(hits)
        if len(hits) < self.page_size:
            self._done = True
        elif self.total is not None and self.seen >= self.total:
            self._done = True
        return hits

    def next_request(self) -> Optional[Dict[str, Any]]:
        if self._done or self.scroll_id is None:
            return None
        return {"scroll_id": self.scroll_id, "scroll": self.keep_alive}
