from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Generator, List, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool

from .config import Settings, settings
from .models import Base, DocumentRecord
from .store import Doc, DocumentStore, MemoryDocumentStore, split_document_path


def build_engine(sqlite_path: Path) -> Engine:
    return create_engine(
        f"sqlite:///{sqlite_path}",
        connect_args={"check_same_thread": False},
        future=True,
    )


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


@contextmanager
def db_session(factory: sessionmaker) -> Generator[Session, None, None]:
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


class SqlDocumentStore(DocumentStore):
    """Documents as JSON rows; every commit is a single database transaction."""

    def __init__(self, factory: sessionmaker) -> None:
        super().__init__()
        self._factory = factory

    @classmethod
    def from_path(cls, sqlite_path: Path) -> "SqlDocumentStore":
        engine = build_engine(sqlite_path)
        Base.metadata.create_all(bind=engine)
        return cls(build_session_factory(engine))

    async def _run_io(self, func: Callable[..., Any], *args: Any) -> Any:
        # Sessions block on SQLite I/O; keep them on the worker pool like sync routes
        return await run_in_threadpool(func, *args)

    def _load(self, path: str) -> Optional[Doc]:
        with db_session(self._factory) as session:
            record = session.get(DocumentRecord, path)
            return dict(record.data) if record is not None else None

    def _load_collection(self, collection: str) -> List[Doc]:
        with db_session(self._factory) as session:
            records = (
                session.query(DocumentRecord)
                .filter(DocumentRecord.collection == collection)
                .order_by(DocumentRecord.path)
                .all()
            )
            return [dict(record.data) for record in records]

    def _store(self, changes: Dict[str, Optional[Doc]]) -> None:
        with db_session(self._factory) as session:
            for path, doc in changes.items():
                record = session.get(DocumentRecord, path)
                if doc is None:
                    if record is not None:
                        session.delete(record)
                    continue
                if record is None:
                    collection, doc_id = split_document_path(path)
                    session.add(DocumentRecord(path=path, collection=collection, doc_id=doc_id, data=doc))
                else:
                    record.data = doc


def build_store(config: Settings = settings) -> DocumentStore:
    if config.storage_backend == "memory":
        return MemoryDocumentStore()
    if config.storage_backend == "sqlite":
        return SqlDocumentStore.from_path(config.sqlite_path)
    raise NotImplementedError(f"Storage backend {config.storage_backend!r} is not implemented")
