from __future__ import annotations

import copy
import inspect
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from .errors import DocumentNotFoundError, InvalidPathError, StoreError
from .logger import get_logger

log = get_logger(__name__)

Doc = Dict[str, Any]
CollectionCallback = Callable[[List[Doc]], Union[None, Awaitable[None]]]
DocumentCallback = Callable[[Optional[Doc]], Union[None, Awaitable[None]]]


@dataclass(frozen=True)
class Increment:
    """Field value meaning "add ``amount`` to whatever is stored"."""

    amount: Union[int, float]


def _segments(path: str) -> List[str]:
    parts = [part for part in path.strip("/").split("/")]
    if not parts or any(not part for part in parts):
        raise InvalidPathError(f"Invalid path: {path!r}")
    return parts


def split_document_path(path: str) -> Tuple[str, str]:
    parts = _segments(path)
    if len(parts) % 2 != 0:
        raise InvalidPathError(f"Not a document path: {path!r}")
    return "/".join(parts[:-1]), parts[-1]


def check_collection_path(path: str) -> str:
    parts = _segments(path)
    if len(parts) % 2 != 1:
        raise InvalidPathError(f"Not a collection path: {path!r}")
    return "/".join(parts)


def _materialize(value: Any, current: Any = None) -> Any:
    if isinstance(value, Increment):
        base = current if isinstance(current, (int, float)) and not isinstance(current, bool) else 0
        return base + value.amount
    if isinstance(value, dict):
        existing = current if isinstance(current, dict) else {}
        return {key: _materialize(item, existing.get(key)) for key, item in value.items()}
    return copy.deepcopy(value)


def _deep_merge(target: Doc, updates: Doc) -> Doc:
    for key, value in updates.items():
        current = target.get(key)
        if isinstance(value, dict) and isinstance(current, dict):
            target[key] = _deep_merge(current, value)
        else:
            target[key] = _materialize(value, current)
    return target


def _set_field(target: Doc, dotted: str, value: Any) -> None:
    parts = dotted.split(".")
    node = target
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
    node[parts[-1]] = _materialize(value, node.get(parts[-1]))


@dataclass(frozen=True)
class WriteOp:
    kind: str  # "set" | "update" | "delete"
    path: str
    data: Optional[Doc] = None
    merge: bool = False


class Subscription:
    def __init__(self, cancel: Callable[[], None]) -> None:
        self._cancel: Optional[Callable[[], None]] = cancel

    @property
    def active(self) -> bool:
        return self._cancel is not None

    def unsubscribe(self) -> None:
        if self._cancel is not None:
            self._cancel()
            self._cancel = None


@dataclass
class WriteBatch:
    """Accumulates writes across documents; ``commit`` applies all or none."""

    store: "DocumentStore"
    operations: List[WriteOp] = field(default_factory=list)
    committed: bool = False

    def set(self, path: str, doc: Doc, merge: bool = False) -> "WriteBatch":
        split_document_path(path)
        self.operations.append(WriteOp("set", path, dict(doc), merge))
        return self

    def update(self, path: str, fields: Doc) -> "WriteBatch":
        split_document_path(path)
        self.operations.append(WriteOp("update", path, dict(fields)))
        return self

    def delete(self, path: str) -> "WriteBatch":
        split_document_path(path)
        self.operations.append(WriteOp("delete", path))
        return self

    def __len__(self) -> int:
        return len(self.operations)

    async def commit(self) -> None:
        if self.committed:
            raise StoreError("Batch already committed")
        self.committed = True
        await self.store.commit(self.operations)


class DocumentStore(ABC):
    """Collection/document store with live subscriptions and atomic batches.

    Backends provide three primitives (load one, load a collection, store a
    set of changes atomically); field-path updates, increments, merges and
    snapshot delivery live here.
    """

    def __init__(self) -> None:
        self._write_lock = threading.RLock()
        self._collection_listeners: Dict[str, List[CollectionCallback]] = {}
        self._document_listeners: Dict[str, List[DocumentCallback]] = {}

    # ------------------------------------------------------------------
    # Backend primitives
    # ------------------------------------------------------------------
    @abstractmethod
    def _load(self, path: str) -> Optional[Doc]:
        ...

    @abstractmethod
    def _load_collection(self, collection: str) -> List[Doc]:
        ...

    @abstractmethod
    def _store(self, changes: Dict[str, Optional[Doc]]) -> None:
        """Persist all changes or none; ``None`` deletes the document."""

    async def _run_io(self, func: Callable[..., Any], *args: Any) -> Any:
        """Run a backend primitive. Backends doing blocking I/O move it off the event loop."""
        return func(*args)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def get(self, path: str) -> Optional[Doc]:
        split_document_path(path)
        doc = await self._run_io(self._load, path)
        return copy.deepcopy(doc) if doc is not None else None

    async def list(self, collection: str) -> List[Doc]:
        collection = check_collection_path(collection)
        return copy.deepcopy(await self._run_io(self._load_collection, collection))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------
    async def set(self, path: str, doc: Doc, merge: bool = False) -> None:
        await self.batch().set(path, doc, merge=merge).commit()

    async def update(self, path: str, fields: Doc) -> None:
        await self.batch().update(path, fields).commit()

    async def delete(self, path: str) -> None:
        await self.batch().delete(path).commit()

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    async def commit(self, operations: List[WriteOp]) -> None:
        changed = await self._run_io(self._apply, operations)
        if changed:
            await self._notify(changed)

    def _apply(self, operations: List[WriteOp]) -> List[str]:
        # Read-modify-write of a whole batch; concurrent commits must not interleave
        with self._write_lock:
            staged: Dict[str, Optional[Doc]] = {}
            for op in operations:
                path = "/".join(_segments(op.path))
                if path in staged:
                    current = staged[path]
                else:
                    current = self._load(path)
                if op.kind == "delete":
                    staged[path] = None
                elif op.kind == "set":
                    if op.merge and current is not None:
                        staged[path] = _deep_merge(copy.deepcopy(current), op.data or {})
                    else:
                        staged[path] = _materialize(op.data or {})
                elif op.kind == "update":
                    if current is None:
                        raise DocumentNotFoundError(path)
                    updated = copy.deepcopy(current)
                    for key, value in (op.data or {}).items():
                        _set_field(updated, key, value)
                    staged[path] = updated
                else:
                    raise StoreError(f"Unknown write operation: {op.kind}")
            if staged:
                self._store(staged)
            return list(staged)

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------
    async def subscribe(self, collection: str, on_snapshot: CollectionCallback) -> Subscription:
        collection = check_collection_path(collection)
        listeners = self._collection_listeners.setdefault(collection, [])
        listeners.append(on_snapshot)

        def cancel() -> None:
            if on_snapshot in listeners:
                listeners.remove(on_snapshot)

        await self._deliver(collection, on_snapshot, await self.list(collection))
        return Subscription(cancel)

    async def subscribe_document(self, path: str, on_snapshot: DocumentCallback) -> Subscription:
        split_document_path(path)
        path = "/".join(_segments(path))
        listeners = self._document_listeners.setdefault(path, [])
        listeners.append(on_snapshot)

        def cancel() -> None:
            if on_snapshot in listeners:
                listeners.remove(on_snapshot)

        await self._deliver(path, on_snapshot, await self.get(path))
        return Subscription(cancel)

    async def _notify(self, paths: List[str]) -> None:
        collections: List[str] = []
        for path in paths:
            collection, _ = split_document_path(path)
            if collection not in collections:
                collections.append(collection)
        for collection in collections:
            for listener in list(self._collection_listeners.get(collection, [])):
                await self._deliver(collection, listener, await self.list(collection))
        for path in paths:
            for listener in list(self._document_listeners.get(path, [])):
                await self._deliver(path, listener, await self.get(path))

    async def _deliver(self, path: str, listener: Callable[[Any], Any], snapshot: Any) -> None:
        try:
            result = listener(snapshot)
            if inspect.isawaitable(result):
                await result
        except Exception:
            log.exception("Snapshot listener for %s failed", path)


class MemoryDocumentStore(DocumentStore):
    """Process-local store; documents live in a dict keyed by full path."""

    def __init__(self, initial: Optional[Dict[str, Doc]] = None) -> None:
        super().__init__()
        self._docs: Dict[str, Doc] = {}
        for path, doc in (initial or {}).items():
            split_document_path(path)
            self._docs["/".join(_segments(path))] = copy.deepcopy(doc)

    def _load(self, path: str) -> Optional[Doc]:
        return self._docs.get(path)

    def _load_collection(self, collection: str) -> List[Doc]:
        docs = []
        for path in sorted(self._docs):
            parent, _ = split_document_path(path)
            if parent == collection:
                docs.append(self._docs[path])
        return docs

    def _store(self, changes: Dict[str, Optional[Doc]]) -> None:
        for path, doc in changes.items():
            if doc is None:
                self._docs.pop(path, None)
            else:
                self._docs[path] = doc
