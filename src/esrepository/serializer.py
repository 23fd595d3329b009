"""
esrepository Serializer — Typed Value <-> JSON Document
=======================================================

A serializer turns the caller's typed value into the JSON document stored in
``_source`` and back again. The default :class:`JsonSerializer` works on
plain dicts or on dataclasses, using dataclass field reflection.

Properties the schema does not declare can be kept on an :class:`Extensible`
dataclass: they live in an explicit ``extensions`` side-map which is merged
into the document when writing and refilled with unknown keys when reading.

Example:
    @dataclass
    class Paper(Extensible):
        title: str = ""
        year: int = 0

    serializer = JsonSerializer(Paper)
    serializer.dumps(Paper("Quantum", 2024, extensions={"lang": "en"}))
    # {"title": "Quantum", "year": 2024, "lang": "en"}
"""

import dataclasses
import json
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Type

from .exceptions import DeserializationError, SerializationError


@dataclasses.dataclass
class Extensible:
    """Dataclass mixin holding untyped properties next to the typed ones."""

    extensions: Dict[str, Any] = dataclasses.field(
        default_factory=dict, kw_only=True
    )


class Serializer(ABC):
    """Bidirectional mapping between a typed value and a JSON document."""

    @abstractmethod
    def dumps(self, value: Any) -> dict:
        """Convert ``value`` to a JSON-compatible dict."""

    @abstractmethod
    def loads(self, source: dict) -> Any:
        """Convert a ``_source`` dict back to the typed value."""


class JsonSerializer(Serializer):
    """
    Reflection-based serializer for dicts and dataclasses.

    Args:
        document_type: Dataclass to build on ``loads``. ``None`` keeps
            documents as plain dicts.
        strict: Reject unknown keys on ``loads`` for non-extensible types
    """

    def __init__(self, document_type: Optional[Type] = None, strict: bool = True):
        if document_type is not None and not dataclasses.is_dataclass(document_type):
            raise TypeError(f"{document_type!r} is not a dataclass")
        self.document_type = document_type
        self.strict = strict

    def dumps(self, value: Any) -> dict:
        if dataclasses.is_dataclass(value) and not isinstance(value, type):
            document = dataclasses.asdict(value)
            if isinstance(value, Extensible):
                extensions = document.pop("extensions")
                document = {**extensions, **document}
        elif isinstance(value, dict):
            document = dict(value)
        else:
            raise SerializationError(
                f"cannot serialize {type(value).__name__}, expected a dict or dataclass"
            )

        try:
            json.dumps(document)
        except (TypeError, ValueError) as e:
            raise SerializationError(str(e)) from e
        return document

    def loads(self, source: dict) -> Any:
        if self.document_type is None:
            return dict(source)

        names = {
            f.name for f in dataclasses.fields(self.document_type)
            if f.init and f.name != "extensions"
        }
        known = {k: v for k, v in source.items() if k in names}
        unknown = {k: v for k, v in source.items() if k not in names}

        kwargs: Dict[str, Any] = known
        if issubclass(self.document_type, Extensible):
            kwargs = {**known, "extensions": unknown}
        elif unknown and self.strict:
            raise DeserializationError(
                f"unknown fields for {self.document_type.__name__}: "
                f"{', '.join(sorted(unknown))}"
            )

        try:
            return self.document_type(**kwargs)
        except TypeError as e:
            raise DeserializationError(str(e)) from e
