from campus_cli.store.documents import (
    DELETE_FIELD,
    DocumentSnapshot,
    DocumentStore,
    WriteBatch,
    utc_timestamp,
)

__all__ = [
    "DELETE_FIELD",
    "DocumentSnapshot",
    "DocumentStore",
    "WriteBatch",
    "utc_timestamp",
]
