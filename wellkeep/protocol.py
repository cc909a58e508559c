"""
Protocol definitions for the storage layer.

Defines the interface contracts that let repositories, the migration engine
and the restore path run against any backend:
- DocumentStoreProtocol: raw key → bytes persistence
- RepositoryProtocol: the per-collection CRUD surface used by the host and
  by the backup codec
"""

from __future__ import annotations

from typing import Any, Optional, Protocol, Union, runtime_checkable


@runtime_checkable
class DocumentStoreProtocol(Protocol):
    """
    Raw key/value persistence with no schema awareness.

    Implemented by:
    - DocumentStore (local SQLite)
    """

    def get(self, key: str) -> Optional[bytes]: ...

    def put(self, key: str, value: Union[bytes, str]) -> None: ...

    def delete(self, key: str) -> bool: ...

    def exists(self, key: str) -> bool: ...

    def keys(self, prefix: str = "") -> list[str]: ...

    def quarantine(self, key: str) -> Optional[str]: ...

    def promote(self, mapping: dict[str, str]) -> None: ...

    def close(self) -> None: ...


@runtime_checkable
class RepositoryProtocol(Protocol):
    """The per-collection surface shared by every domain repository."""

    collection: str

    def add(self, doc: Any) -> Any: ...

    def update(self, doc: Any) -> bool: ...

    def delete(self, id: str) -> bool: ...

    def get_by_id(self, id: str) -> Optional[Any]: ...

    def list(self) -> list: ...

    def reload(self) -> None: ...

    def export_documents(self) -> list[dict]: ...
