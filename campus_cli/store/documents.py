import copy
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from campus_cli.config import MAX_BATCH_OPERATIONS
from campus_cli.exceptions import BatchLimitError, DocumentNotFoundError
from campus_cli.models import Document
from campus_cli.utils.logging_config import get_logger

logger = get_logger(__name__)


class _DeleteField:
    def __repr__(self) -> str:
        return "DELETE_FIELD"


# Use as a field value in set(merge=True)/update() to remove the field.
DELETE_FIELD = _DeleteField()


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def split_path(path: str) -> Tuple[str, str]:
    parts = [p for p in path.strip("/").split("/") if p]
    if len(parts) < 2 or len(parts) % 2:
        raise ValueError(f"Not a document path: {path!r}")
    return "/".join(parts[:-1]), parts[-1]


@dataclass
class DocumentSnapshot:
    id: str
    path: str
    data: Dict[str, Any]


def _without_deletes(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {k: copy.deepcopy(v) for k, v in fields.items() if v is not DELETE_FIELD}


def _merged(existing: Dict[str, Any], fields: Dict[str, Any]) -> Dict[str, Any]:
    data = copy.deepcopy(existing)
    for key, value in fields.items():
        if value is DELETE_FIELD:
            data.pop(key, None)
        else:
            data[key] = copy.deepcopy(value)
    return data


@dataclass
class _Operation:
    kind: str  # "set" | "update" | "delete"
    path: str
    fields: Optional[Dict[str, Any]] = None
    merge: bool = False


class WriteBatch:
    """Accumulates writes that are applied together or not at all."""

    def __init__(self, store: "DocumentStore"):
        self._store = store
        self._operations: List[_Operation] = []
        self._committed = False

    def __len__(self) -> int:
        return len(self._operations)

    def _add(self, operation: _Operation) -> "WriteBatch":
        if self._committed:
            raise RuntimeError("Batch has already been committed")
        if len(self._operations) >= self._store.max_batch_operations:
            raise BatchLimitError(self._store.max_batch_operations)
        split_path(operation.path)
        self._operations.append(operation)
        return self

    def set(self, path: str, fields: Dict[str, Any], merge: bool = False) -> "WriteBatch":
        return self._add(_Operation("set", path, dict(fields), merge))

    def update(self, path: str, fields: Dict[str, Any]) -> "WriteBatch":
        return self._add(_Operation("update", path, dict(fields)))

    def delete(self, path: str) -> "WriteBatch":
        return self._add(_Operation("delete", path))

    def commit(self) -> None:
        if self._committed:
            raise RuntimeError("Batch has already been committed")
        self._store._apply(self._operations)
        self._committed = True


class DocumentStore:
    """Hierarchically keyed document collections persisted in one SQL table.

    Every write, single or batched, runs in its own transaction. There is no
    transaction spanning more than one batch.
    """

    def __init__(
        self, engine: Engine, max_batch_operations: int = MAX_BATCH_OPERATIONS
    ):
        self.engine = engine
        self.max_batch_operations = max_batch_operations
        self._session_factory = sessionmaker(bind=engine, autoflush=False)

    def get(self, path: str) -> Optional[Dict[str, Any]]:
        split_path(path)
        with self._session_factory() as session:
            doc = session.get(Document, path)
            return copy.deepcopy(doc.data) if doc else None

    def exists(self, path: str) -> bool:
        return self.get(path) is not None

    def list(
        self, collection: str, where: Optional[Dict[str, Any]] = None
    ) -> List[DocumentSnapshot]:
        """Documents directly inside ``collection`` whose fields equal every ``where`` value."""
        with self._session_factory() as session:
            rows = session.scalars(
                select(Document)
                .where(Document.collection == collection.strip("/"))
                .order_by(Document.doc_id)
            ).all()
            snapshots = [
                DocumentSnapshot(row.doc_id, row.path, copy.deepcopy(row.data))
                for row in rows
            ]

        if where:
            snapshots = [
                s
                for s in snapshots
                if all(s.data.get(key) == value for key, value in where.items())
            ]
        return snapshots

    def count(self, collection: str) -> int:
        return len(self.list(collection))

    def set(self, path: str, fields: Dict[str, Any], merge: bool = False) -> None:
        self.batch().set(path, fields, merge=merge).commit()

    def update(self, path: str, fields: Dict[str, Any]) -> None:
        self.batch().update(path, fields).commit()

    def delete(self, path: str) -> None:
        self.batch().delete(path).commit()

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    def compare_and_set(
        self, path: str, expected: Dict[str, Any], fields: Dict[str, Any]
    ) -> bool:
        """Merge ``fields`` into the document only if every ``expected`` field matches.

        A missing document or missing field compares equal to ``None``.
        """
        with self._session_factory() as session, session.begin():
            doc = session.get(Document, path)
            current = doc.data if doc else {}
            for key, value in expected.items():
                if current.get(key) != value:
                    logger.debug(
                        f"compare_and_set rejected on {path}: {key}={current.get(key)!r}, expected {value!r}"
                    )
                    return False
            self._write(session, _Operation("set", path, fields, merge=True))
        return True

    def _apply(self, operations: List[_Operation]) -> None:
        if not operations:
            return
        with self._session_factory() as session, session.begin():
            for operation in operations:
                self._write(session, operation)

    def _write(self, session: Session, operation: _Operation) -> None:
        collection, doc_id = split_path(operation.path)
        path = f"{collection}/{doc_id}"
        existing = session.get(Document, path)
        now = int(time.time())

        if operation.kind == "delete":
            if existing is not None:
                session.delete(existing)
        elif operation.kind == "update":
            if existing is None:
                raise DocumentNotFoundError(path)
            existing.data = _merged(existing.data, operation.fields or {})
            existing.updated_at = now
        elif existing is not None:
            existing.data = (
                _merged(existing.data, operation.fields or {})
                if operation.merge
                else _without_deletes(operation.fields or {})
            )
            existing.updated_at = now
        else:
            session.add(
                Document(
                    path=path,
                    collection=collection,
                    doc_id=doc_id,
                    data=_without_deletes(operation.fields or {}),
                    updated_at=now,
                )
            )
        session.flush()
