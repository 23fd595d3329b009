"""
esrepository — Typed Repositories over Elasticsearch
====================================================

A thin, typed layer on top of the official ``elasticsearch`` client. The
client does the transport, pooling, retries and wire format; esrepository
adds:

- Repository: typed CRUD for one index, with optimistic-concurrency updates
- BulkSession: buffered index/update/delete with per-item callbacks
- SearchPage / ScrollProjection: search hits paired with typed values
- Async variants of all of the above over ``AsyncElasticsearch``

Usage:
    from dataclasses import dataclass
    from esrepository import Repository, JsonSerializer, create_client

    @dataclass
    class Paper:
        title: str
        year: int

    repo = Repository(create_client(), "papers", JsonSerializer(Paper))

    repo.index("10.1234/example", Paper("Quantum Mechanics", 2024))
    doc = repo.get("10.1234/example")
    repo.update(doc.id, lambda p: Paper(p.title, 2025))

    with repo.bulk() as session:
        session.index("10.1234/other", Paper("Neural Networks", 2023))

    with repo.scroll({"range": {"year": {"gte": 2020}}}) as hits:
        for hit in hits:
            print(hit.id, hit.value)

License: MIT
"""

__version__ = "0.1.0"

from .aio import AsyncBulkSession, AsyncRepository, AsyncScrollProjection
from .bulk import BulkSession
from .config import ConnectionConfig, create_async_client, create_client, load_config
from .exceptions import (
    Cancelled,
    DeserializationError,
    NotFound,
    RefreshNotAllowed,
    RepositoryError,
    SerializationError,
    ServerError,
    TransportFailure,
    UpdateConflictExhausted,
    ValidationError,
    VersionConflict,
)
from .models import BulkItemResult, BulkOperation, OpType, SearchHit, VersionedDocument
from .projection import ScrollProjection, SearchPage
from .repository import Repository
from .serializer import Extensible, JsonSerializer, Serializer

__all__ = [
    # repositories
    "Repository",
    "AsyncRepository",
    # bulk
    "BulkSession",
    "AsyncBulkSession",
    "BulkOperation",
    "BulkItemResult",
    "OpType",
    # search
    "SearchPage",
    "ScrollProjection",
    "AsyncScrollProjection",
    "SearchHit",
    "VersionedDocument",
    # serialization
    "Serializer",
    "JsonSerializer",
    "Extensible",
    # config
    "ConnectionConfig",
    "load_config",
    "create_client",
    "create_async_client",
    # errors
    "RepositoryError",
    "NotFound",
    "VersionConflict",
    "UpdateConflictExhausted",
    "ValidationError",
    "SerializationError",
    "DeserializationError",
    "ServerError",
    "TransportFailure",
    "RefreshNotAllowed",
    "Cancelled",
]
