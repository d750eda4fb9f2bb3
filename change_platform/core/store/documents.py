from __future__ import annotations

import copy
import json
import logging
import re
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Generator, Iterable, List, Optional, Sequence, Tuple

try:
    import fcntl as _fcntl
    _HAS_FCNTL = True
except ImportError:
    _HAS_FCNTL = False
    logging.getLogger("change.store").warning(
        "fcntl not available (non-POSIX). File locking is disabled. "
        "Do not run concurrent writers against the same data dir on this platform."
    )

log = logging.getLogger("change.store")

Document = Dict[str, Any]
Filter = Dict[str, Any]
SortSpec = Sequence[Tuple[str, int]]

_MISSING = object()


@contextmanager
def _flock(path: Path, exclusive: bool = True) -> Generator:
    """Hold a flock on a sidecar lock file (POSIX only)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a", encoding="utf-8") as fh:
        if _HAS_FCNTL:
            _fcntl.flock(fh, _fcntl.LOCK_EX if exclusive else _fcntl.LOCK_SH)
        try:
            yield
        finally:
            if _HAS_FCNTL:
                _fcntl.flock(fh, _fcntl.LOCK_UN)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def new_id() -> str:
    return uuid.uuid4().hex


def get_path(doc: Any, path: str, default: Any = _MISSING) -> Any:
    """
    Resolve a dotted path ("profile.address.state", "owners.0.name") through
    nested dicts and lists. Returns `default` (or the internal missing marker)
    when any segment does not resolve.
    """
    cur = doc
    for part in path.split("."):
        if isinstance(cur, dict):
            if part not in cur:
                return default
            cur = cur[part]
        elif isinstance(cur, list):
            try:
                idx = int(part)
            except ValueError:
                return default
            if idx < -len(cur) or idx >= len(cur):
                return default
            cur = cur[idx]
        else:
            return default
    return cur


def is_missing(value: Any) -> bool:
    return value is _MISSING


def _compare(actual: Any, expected: Any, op: Callable[[Any, Any], bool]) -> bool:
    if actual is _MISSING or actual is None or expected is None:
        return False
    try:
        return op(actual, expected)
    except TypeError:
        return False


def _match_operator(actual: Any, op: str, expected: Any) -> bool:
    if op == "$eq":
        return _match_value(actual, expected)
    if op == "$ne":
        return not _match_value(actual, expected)
    if op == "$in":
        return any(_match_value(actual, e) for e in (expected or []))
    if op == "$nin":
        return not any(_match_value(actual, e) for e in (expected or []))
    if op == "$exists":
        present = actual is not _MISSING
        return present if expected else not present
    if op == "$gt":
        return _compare(actual, expected, lambda a, b: a > b)
    if op == "$gte":
        return _compare(actual, expected, lambda a, b: a >= b)
    if op == "$lt":
        return _compare(actual, expected, lambda a, b: a < b)
    if op == "$lte":
        return _compare(actual, expected, lambda a, b: a <= b)
    if op == "$regex":
        if not isinstance(actual, str):
            return False
        return re.search(str(expected), actual, flags=re.IGNORECASE) is not None
    raise ValueError(f"Unsupported filter operator: {op}")


def _match_value(actual: Any, expected: Any) -> bool:
    if expected is None:
        return actual is _MISSING or actual is None
    if actual is _MISSING:
        return False
    if isinstance(actual, list) and not isinstance(expected, list):
        return expected in actual
    return actual == expected


def matches(doc: Document, flt: Optional[Filter]) -> bool:
    """Mongo-style filter matcher over plain dict documents."""
    if not flt:
        return True
    for key, cond in flt.items():
        if key == "$or":
            if not any(matches(doc, sub) for sub in cond):
                return False
            continue
        if key == "$and":
            if not all(matches(doc, sub) for sub in cond):
                return False
            continue

        actual = get_path(doc, key)
        if isinstance(cond, dict) and cond and all(str(k).startswith("$") for k in cond):
            for op, expected in cond.items():
                if not _match_operator(actual, op, expected):
                    return False
        elif not _match_value(actual, cond):
            return False
    return True


def _sort_key(field: str) -> Callable[[Document], Tuple[int, Any]]:
    def key(doc: Document) -> Tuple[int, Any]:
        v = get_path(doc, field, None)
        # None sorts first ascending; mixed types fall back to their string form
        if v is None:
            return (0, "")
        if isinstance(v, bool):
            return (1, int(v))
        if isinstance(v, (int, float)):
            return (1, v)
        return (2, str(v))

    return key


class Collection:
    """
    One collection = one JSON file:
      {"kind": "collection", "name": "...", "documents": [...]}

    Every read-modify-write cycle runs under an in-process lock plus one
    exclusive flock on `<name>.json.lock`, held from load to save. Reads
    take the flock shared.
    """

    def __init__(self, root: Path, name: str):
        self.name = name
        self.path = root / f"{name}.json"
        self.lock_path = root / f"{name}.json.lock"
        self._lock = threading.RLock()

    @contextmanager
    def _locked(self, exclusive: bool = True) -> Generator:
        with self._lock, _flock(self.lock_path, exclusive):
            yield

    def _load(self) -> List[Document]:
        if not self.path.exists():
            return []
        raw = self.path.read_text(encoding="utf-8")
        if not raw.strip():
            return []
        data = json.loads(raw)
        if not isinstance(data, dict) or data.get("kind") != "collection":
            raise ValueError(f"Unexpected collection format: {self.path}")
        return list(data.get("documents") or [])

    def _save(self, docs: List[Document]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {"kind": "collection", "name": self.name, "documents": docs}
        self.path.write_text(json.dumps(payload, indent=2, sort_keys=True, default=str), encoding="utf-8")

    # ------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------
    def get(self, doc_id: str) -> Optional[Document]:
        with self._locked(exclusive=False):
            for d in self._load():
                if d.get("id") == doc_id:
                    return copy.deepcopy(d)
        return None

    def find(
        self,
        flt: Optional[Filter] = None,
        sort: Optional[SortSpec] = None,
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> List[Document]:
        with self._locked(exclusive=False):
            docs = [d for d in self._load() if matches(d, flt)]

        # stable multi-key sort: apply keys last-to-first
        for field, direction in reversed(list(sort or [])):
            docs.sort(key=_sort_key(field), reverse=direction < 0)

        if skip:
            docs = docs[skip:]
        if limit is not None:
            docs = docs[:limit]
        return copy.deepcopy(docs)

    def find_one(self, flt: Optional[Filter] = None) -> Optional[Document]:
        res = self.find(flt, limit=1)
        return res[0] if res else None

    def count(self, flt: Optional[Filter] = None) -> int:
        with self._locked(exclusive=False):
            return sum(1 for d in self._load() if matches(d, flt))

    def distinct(self, field: str, flt: Optional[Filter] = None) -> List[Any]:
        seen: List[Any] = []
        for d in self.find(flt):
            v = get_path(d, field, None)
            values = v if isinstance(v, list) else [v]
            for item in values:
                if item is not None and item not in seen:
                    seen.append(item)
        return seen

    # ------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------
    def insert(self, doc: Document) -> Document:
        now = utc_now_iso()
        new = copy.deepcopy(doc)
        new.setdefault("id", new_id())
        new.setdefault("created_at", now)
        new["updated_at"] = now
        with self._locked():
            docs = self._load()
            if any(d.get("id") == new["id"] for d in docs):
                raise ValueError(f"duplicate id in {self.name}: {new['id']}")
            docs.append(new)
            self._save(docs)
        return copy.deepcopy(new)

    def update(self, doc_id: str, changes: Dict[str, Any]) -> Optional[Document]:
        return self.modify(doc_id, lambda d: d.update(copy.deepcopy(changes)))

    def modify(self, doc_id: str, fn: Callable[[Document], None]) -> Optional[Document]:
        """Apply `fn` in place to one document under the collection lock."""
        with self._locked():
            docs = self._load()
            for d in docs:
                if d.get("id") == doc_id:
                    fn(d)
                    d["id"] = doc_id
                    d["updated_at"] = utc_now_iso()
                    self._save(docs)
                    return copy.deepcopy(d)
        return None

    def update_many(self, flt: Optional[Filter], fn: Callable[[Document], None]) -> int:
        n = 0
        with self._locked():
            docs = self._load()
            now = utc_now_iso()
            for d in docs:
                if matches(d, flt):
                    fn(d)
                    d["updated_at"] = now
                    n += 1
            if n:
                self._save(docs)
        return n

    def add_to_set(self, doc_id: str, field: str, values: Iterable[Any]) -> Optional[Document]:
        vals = list(values)

        def apply(d: Document) -> None:
            cur = list(d.get(field) or [])
            for v in vals:
                if v not in cur:
                    cur.append(v)
            d[field] = cur

        return self.modify(doc_id, apply)

    def pull(self, doc_id: str, field: str, values: Iterable[Any]) -> Optional[Document]:
        vals = set(values)
        return self.modify(doc_id, lambda d: d.update({field: [v for v in (d.get(field) or []) if v not in vals]}))

    def delete(self, doc_id: str) -> bool:
        with self._locked():
            docs = self._load()
            kept = [d for d in docs if d.get("id") != doc_id]
            if len(kept) == len(docs):
                return False
            self._save(kept)
        return True


class DocumentStore:
    def __init__(self, root: Path):
        self.root = Path(root)
        self._collections: Dict[str, Collection] = {}
        self._lock = threading.Lock()

    def collection(self, name: str) -> Collection:
        with self._lock:
            if name not in self._collections:
                self._collections[name] = Collection(self.root, name)
            return self._collections[name]

    # Named accessors for the collections the platform uses.
    @property
    def tenants(self) -> Collection:
        return self.collection("tenants")

    @property
    def users(self) -> Collection:
        return self.collection("users")

    @property
    def iam_roles(self) -> Collection:
        return self.collection("iam_roles")

    @property
    def groups(self) -> Collection:
        return self.collection("groups")

    @property
    def advisor_assignments(self) -> Collection:
        return self.collection("advisor_assignments")

    @property
    def access_requests(self) -> Collection:
        return self.collection("access_requests")

    @property
    def tenant_settings(self) -> Collection:
        return self.collection("tenant_settings")

    @property
    def iam_audit_logs(self) -> Collection:
        return self.collection("iam_audit_logs")

    @property
    def audit_logs(self) -> Collection:
        return self.collection("audit_logs")

    @property
    def rules(self) -> Collection:
        return self.collection("rules")

    @property
    def business_profiles(self) -> Collection:
        return self.collection("business_profiles")


_store_cache: Dict[str, DocumentStore] = {}
_store_cache_lock = threading.Lock()


def get_document_store(root: Path) -> DocumentStore:
    key = str(Path(root).resolve())
    with _store_cache_lock:
        if key not in _store_cache:
            _store_cache[key] = DocumentStore(Path(root))
        return _store_cache[key]
