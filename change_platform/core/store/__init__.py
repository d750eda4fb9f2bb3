from change_platform.core.store.documents import (
    Collection,
    DocumentStore,
    get_document_store,
    get_path,
    matches,
    new_id,
    utc_now_iso,
)

__all__ = [
    "Collection",
    "DocumentStore",
    "get_document_store",
    "get_path",
    "matches",
    "new_id",
    "utc_now_iso",
]
