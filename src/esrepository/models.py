"""Value types shared by the repository, bulk session and projections."""

import enum
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

from .exceptions import RepositoryError


@dataclass(frozen=True)
class VersionedDocument:
    """
    A document together with the version it was read or written at.

    ``seq_no`` and ``primary_term`` must be passed back on a conditional
    write; if the stored pair differs, the write fails with VersionConflict.
    """

    id: str
    seq_no: int
    primary_term: int
    value: Any
    index: str = ""

    @property
    def version(self) -> Tuple[int, int]:
        return (self.seq_no, self.primary_term)


class OpType(str, enum.Enum):
    INDEX = "index"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class BulkOperation:
    """One queued bulk action. ``value`` is a partial document for UPDATE."""

    op_type: OpType
    id: str
    value: Any = None
    if_seq_no: Optional[int] = None
    if_primary_term: Optional[int] = None
    callback: Optional[Callable[["BulkItemResult"], Any]] = field(
        default=None, repr=False, compare=False
    )


@dataclass
class BulkItemResult:
    """Outcome of one bulk operation after a flush."""

    operation: BulkOperation
    ok: bool
    status: Optional[int] = None
    error: Optional[RepositoryError] = None
    seq_no: Optional[int] = None
    primary_term: Optional[int] = None

    @property
    def id(self) -> str:
        return self.operation.id


@dataclass
class SearchHit:
    """A raw search hit paired with its deserialized value (or None)."""

    id: str
    index: str
    score: Optional[float]
    raw: Dict[str, Any]
    value: Any = None
    seq_no: Optional[int] = None
    primary_term: Optional[int] = None
