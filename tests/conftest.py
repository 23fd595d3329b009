import sys
from pathlib import Path
from types import SimpleNamespace

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if SRC.exists() and str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from elasticsearch import (  # noqa: E402
    BadRequestError,
    ConflictError,
    ConnectionError as ESConnectionError,
    NotFoundError,
)


def api_error(cls, status, error_type, reason="boom"):
    meta = SimpleNamespace(status=status, headers={}, http_version="1.1", duration=0.0, node=None)
    body = {"error": {"type": error_type, "reason": reason}, "status": status}
    return cls(reason, meta, body)


class FakeIndices:
    def __init__(self, store):
        self._store = store

    def exists(self, index):
        self._store.record("indices.exists", index=index)
        return index in self._store.index_names

    def create(self, index, **kwargs):
        self._store.record("indices.create", index=index, **kwargs)
        self._store.index_names.add(index)
        return {"acknowledged": True, "index": index}

    def refresh(self, index):
        self._store.record("indices.refresh", index=index)
        return {"_shards": {"total": 1, "successful": 1, "failed": 0}}


class FakeClient:
    """
    In-memory stand-in for ``elasticsearch.Elasticsearch``.

    Knobs:
        reject_ids: ids whose writes fail with a 400 mapping error
        unreachable: every call raises a connection error
        source_enabled: hits carry ``_source``
    """

    def __init__(self):
        self.docs = {}
        self.index_names = set()
        self.calls = []
        self.seq_no = -1
        self.reject_ids = set()
        self.unreachable = False
        self.source_enabled = True
        self.scrolls = {}
        self.cleared = []
        self._scroll_counter = 0
        self.indices = FakeIndices(self)

    # -- helpers --------------------------------------------------------

    def record(self, name, **kwargs):
        self.calls.append((name, kwargs))

    def calls_to(self, name):
        return [kwargs for called, kwargs in self.calls if called == name]

    def _check(self):
        if self.unreachable:
            raise ESConnectionError("connection refused")

    def _next_seq_no(self):
        self.seq_no += 1
        return self.seq_no

    def _write(self, index, id, document, op_type=None, if_seq_no=None, if_primary_term=None):
        key = (index, id)
        existing = self.docs.get(key)
        if op_type == "create" and existing is not None:
            raise api_error(ConflictError, 409, "version_conflict_engine_exception",
                            f"[{id}]: document already exists")
        if if_seq_no is not None:
            if existing is None or (existing["_seq_no"], existing["_primary_term"]) != (if_seq_no, if_primary_term):
                raise api_error(ConflictError, 409, "version_conflict_engine_exception",
                                f"[{id}]: version conflict")
        if id in self.reject_ids:
            raise api_error(BadRequestError, 400, "mapper_parsing_exception",
                            "failed to parse field")
        seq_no = self._next_seq_no()
        self.docs[key] = {"_source": dict(document), "_seq_no": seq_no, "_primary_term": 1}
        self.index_names.add(index)
        return {
            "_index": index,
            "_id": id,
            "_seq_no": seq_no,
            "_primary_term": 1,
            "result": "updated" if existing else "created",
        }

    def _delete(self, index, id, if_seq_no=None, if_primary_term=None):
        key = (index, id)
        existing = self.docs.get(key)
        if existing is None:
            raise api_error(NotFoundError, 404, "not_found", f"[{id}] not found")
        if if_seq_no is not None and (existing["_seq_no"], existing["_primary_term"]) != (if_seq_no, if_primary_term):
            raise api_error(ConflictError, 409, "version_conflict_engine_exception", "conflict")
        del self.docs[key]
        return {"_index": index, "_id": id, "_seq_no": self._next_seq_no(),
                "_primary_term": 1, "result": "deleted"}

    def _hits(self, index):
        hits = []
        for (idx, doc_id), doc in self.docs.items():
            if idx != index:
                continue
            hit = {"_index": idx, "_id": doc_id, "_score": 1.0,
                   "_seq_no": doc["_seq_no"], "_primary_term": doc["_primary_term"]}
            if self.source_enabled:
                hit["_source"] = dict(doc["_source"])
            hits.append(hit)
        return hits

    # -- client API -----------------------------------------------------

    def get(self, index, id):
        self.record("get", index=index, id=id)
        self._check()
        doc = self.docs.get((index, id))
        if doc is None:
            raise api_error(NotFoundError, 404, "not_found", f"[{id}] not found")
        return {"_index": index, "_id": id, "found": True,
                "_seq_no": doc["_seq_no"], "_primary_term": doc["_primary_term"],
                "_source": dict(doc["_source"])}

    def exists(self, index, id):
        self.record("exists", index=index, id=id)
        self._check()
        return (index, id) in self.docs

    def index(self, index, id, document, **kwargs):
        self.record("index", index=index, id=id, document=document, **kwargs)
        self._check()
        return self._write(index, id, document, **kwargs)

    def delete(self, index, id, **kwargs):
        self.record("delete", index=index, id=id, **kwargs)
        self._check()
        return self._delete(index, id, **kwargs)

    def count(self, index, query=None):
        self.record("count", index=index, query=query)
        self._check()
        return {"count": len(self._hits(index))}

    def search(self, index, query=None, size=10, from_=0, sort=None, scroll=None, **kwargs):
        self.record("search", index=index, query=query, size=size, from_=from_,
                    sort=sort, scroll=scroll, **kwargs)
        self._check()
        hits = self._hits(index)
        response = {
            "took": 1,
            "hits": {"total": {"value": len(hits), "relation": "eq"},
                     "max_score": 1.0 if hits else None,
                     "hits": hits[from_:from_ + size]},
        }
        if scroll:
            self._scroll_counter += 1
            scroll_id = f"scroll-{self._scroll_counter}"
            self.scrolls[scroll_id] = (hits[size:], size)
            response["_scroll_id"] = scroll_id
        return response

    def scroll(self, scroll_id, scroll=None):
        self.record("scroll", scroll_id=scroll_id, scroll=scroll)
        self._check()
        if scroll_id not in self.scrolls:
            raise api_error(NotFoundError, 404, "search_context_missing_exception")
        remaining, size = self.scrolls[scroll_id]
        page, rest = remaining[:size], remaining[size:]
        self.scrolls[scroll_id] = (rest, size)
        return {"_scroll_id": scroll_id, "took": 1,
                "hits": {"total": {"value": -1, "relation": "eq"}, "hits": page}}

    def clear_scroll(self, scroll_id):
        self.record("clear_scroll", scroll_id=scroll_id)
        self.scrolls.pop(scroll_id, None)
        self.cleared.append(scroll_id)
        return {"succeeded": True, "num_freed": 1}

    def bulk(self, operations):
        self.record("bulk", operations=operations)
        self._check()
        items = []
        lines = iter(operations)
        for header in lines:
            (action, meta), = header.items()
            index, doc_id = meta["_index"], meta["_id"]
            versions = {k: meta[k] for k in ("if_seq_no", "if_primary_term") if k in meta}
            try:
                if action in ("index", "create"):
                    source = next(lines)
                    result = self._write(index, doc_id, source,
                                         op_type="create" if action == "create" else None,
                                         **versions)
                    status = 201 if result["result"] == "created" else 200
                elif action == "update":
                    partial = next(lines)["doc"]
                    existing = self.docs.get((index, doc_id))
                    if existing is None:
                        raise api_error(NotFoundError, 404, "document_missing_exception",
                                        f"[{doc_id}]: document missing")
                    merged = {**existing["_source"], **partial}
                    result = self._write(index, doc_id, merged, **versions)
                    status = 200
                else:
                    if (index, doc_id) not in self.docs:
                        items.append({action: {"_index": index, "_id": doc_id,
                                               "status": 404, "result": "not_found"}})
                        continue
                    result = self._delete(index, doc_id, **versions)
                    status = 200
            except (ConflictError, BadRequestError, NotFoundError) as e:
                items.append({action: {"_index": index, "_id": doc_id,
                                       "status": e.meta.status, "error": e.body["error"]}})
                continue
            items.append({action: {"_index": index, "_id": doc_id, "status": status,
                                   "_seq_no": result["_seq_no"],
                                   "_primary_term": result["_primary_term"],
                                   "result": result["result"]}})
        return {"took": 1, "errors": any("error" in next(iter(i.values())) for i in items),
                "items": items}

    def close(self):
        self.record("close")


class AsyncFakeIndices:
    def __init__(self, sync):
        self._sync = sync

    async def exists(self, index):
        return self._sync.exists(index)

    async def create(self, index, **kwargs):
        return self._sync.create(index, **kwargs)

    async def refresh(self, index):
        return self._sync.refresh(index)


class AsyncFakeClient:
    """Coroutine facade over a FakeClient; ``bulk_gate`` blocks bulk calls."""

    def __init__(self, sync):
        self.sync = sync
        self.indices = AsyncFakeIndices(sync.indices)
        self.bulk_gate = None

    async def get(self, **kwargs):
        return self.sync.get(**kwargs)

    async def exists(self, **kwargs):
        return self.sync.exists(**kwargs)

    async def index(self, **kwargs):
        return self.sync.index(**kwargs)

    async def delete(self, **kwargs):
        return self.sync.delete(**kwargs)

    async def count(self, **kwargs):
        return self.sync.count(**kwargs)

    async def search(self, **kwargs):
        return self.sync.search(**kwargs)

    async def scroll(self, **kwargs):
        return self.sync.scroll(**kwargs)

    async def clear_scroll(self, **kwargs):
        return self.sync.clear_scroll(**kwargs)

    async def bulk(self, **kwargs):
        if self.bulk_gate is not None:
            await self.bulk_gate.wait()
        return self.sync.bulk(**kwargs)

    async def close(self):
        self.sync.close()


@pytest.fixture
def client():
    return FakeClient()


@pytest.fixture
def async_client(client):
    return AsyncFakeClient(client)
