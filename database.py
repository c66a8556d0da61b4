"""
Key-value persistence for the shop.

Every logical collection (products, categories, orders, ...) is one JSON
document stored under its own key. Two stores exist side by side: the durable
"local" store (MongoDB when DATABASE_URL is set) and the "session" store that
holds guest carts for the lifetime of the process.

Multi-key operations go through Storage.transaction(), which serializes the
sequence, stages every write and commits them together with a per-key version
check. If one write loses its compare-and-set, the keys already written by that
commit are put back before the error propagates. Plain reads outside a
transaction degrade to the default value on storage errors.
"""
import copy
import json
import logging
import os
import secrets
import string
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from pymongo import MongoClient
from pymongo.errors import DuplicateKeyError, PyMongoError

from errors import ConcurrentModificationError

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "chezflora")
KV_COLLECTION = os.getenv("KV_COLLECTION", "kv_store")

LOCAL = "local"
SESSION = "session"

client = None
db = None
if DATABASE_URL:
    client = MongoClient(DATABASE_URL)
    db = client[DATABASE_NAME]


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_iso(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


_ID_ALPHABET = string.ascii_lowercase + string.digits


def generate_id(prefix: str) -> str:
    """Timestamp plus a random suffix, e.g. ``order-1700000000000-k3j9x0a1b``."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"{prefix}-{int(time.time() * 1000)}-{suffix}"


class KeyValueStore:
    """JSON values under string keys, each with an integer version."""

    name = "store"

    def __init__(self):
        self.lock = threading.RLock()

    def _read(self, key: str) -> Tuple[Optional[str], int]:
        raise NotImplementedError

    def _write(self, key: str, raw: Optional[str], expected_version: int) -> bool:
        """Compare-and-set. ``raw=None`` deletes the value but keeps the version."""
        raise NotImplementedError

    def keys(self) -> List[str]:
        raise NotImplementedError

    def get(self, key: str, default: Any = None) -> Any:
        try:
            raw, _ = self._read(key)
            return json.loads(raw) if raw is not None else default
        except (PyMongoError, ValueError):
            logger.exception("Failed to read %r from %s store", key, self.name)
            return default

    def set(self, key: str, value: Any) -> bool:
        try:
            raw = json.dumps(value)
            with self.lock:
                _, version = self._read(key)
                return self._write(key, raw, version)
        except (PyMongoError, TypeError, ValueError):
            logger.exception("Failed to write %r to %s store", key, self.name)
            return False

    def remove(self, key: str) -> bool:
        try:
            with self.lock:
                _, version = self._read(key)
                return self._write(key, None, version)
        except PyMongoError:
            logger.exception("Failed to remove %r from %s store", key, self.name)
            return False


class MemoryKeyValueStore(KeyValueStore):
    name = "memory"

    def __init__(self):
        super().__init__()
        self._data: Dict[str, Tuple[Optional[str], int]] = {}

    def _read(self, key):
        return self._data.get(key, (None, 0))

    def _write(self, key, raw, expected_version):
        with self.lock:
            _, version = self._data.get(key, (None, 0))
            if version != expected_version:
                return False
            self._data[key] = (raw, version + 1)
            return True

    def keys(self):
        return [k for k, (raw, _) in self._data.items() if raw is not None]


class MongoKeyValueStore(KeyValueStore):
    """One document per key: ``{_id: key, value: <json text>, version: n}``."""

    name = "mongo"

    def __init__(self, collection):
        super().__init__()
        self.collection = collection

    def _read(self, key):
        doc = self.collection.find_one({"_id": key})
        if not doc:
            return None, 0
        return doc.get("value"), int(doc.get("version", 0))

    def _write(self, key, raw, expected_version):
        if expected_version == 0:
            try:
                self.collection.insert_one({"_id": key, "value": raw, "version": 1})
                return True
            except DuplicateKeyError:
                return False
        result = self.collection.update_one(
            {"_id": key, "version": expected_version},
            {"$set": {"value": raw, "version": expected_version + 1}},
        )
        return result.matched_count == 1

    def keys(self):
        return [doc["_id"] for doc in self.collection.find({"value": {"$ne": None}}, {"_id": 1})]


class Transaction:
    """Staged reads and writes across the local and session stores."""

    def __init__(self, stores: Dict[str, KeyValueStore]):
        self._stores = stores
        self._versions: Dict[Tuple[str, str], int] = {}
        self._values: Dict[Tuple[str, str], Any] = {}
        self._originals: Dict[Tuple[str, str], Optional[str]] = {}
        self._dirty: List[Tuple[str, str]] = []
        self._on_commit: List[Callable[[], None]] = []

    def _load(self, slot: Tuple[str, str]) -> None:
        scope, key = slot
        raw, version = self._stores[scope]._read(key)
        self._versions[slot] = version
        self._originals[slot] = raw
        self._values[slot] = json.loads(raw) if raw is not None else None

    def get(self, key: str, default: Any = None, scope: str = LOCAL) -> Any:
        slot = (scope, key)
        if slot not in self._versions:
            self._load(slot)
        value = self._values[slot]
        if value is None:
            return default
        return copy.deepcopy(value)

    def set(self, key: str, value: Any, scope: str = LOCAL) -> None:
        slot = (scope, key)
        if slot not in self._versions:
            self._load(slot)
        # round-trip so unserializable values fail here, before anything is written
        self._values[slot] = json.loads(json.dumps(value))
        if slot not in self._dirty:
            self._dirty.append(slot)

    def remove(self, key: str, scope: str = LOCAL) -> None:
        slot = (scope, key)
        if slot not in self._versions:
            self._load(slot)
        self._values[slot] = None
        if slot not in self._dirty:
            self._dirty.append(slot)

    def on_commit(self, callback: Callable[[], None]) -> None:
        """Run ``callback`` once the outermost transaction has committed."""
        self._on_commit.append(callback)

    def run_commit_hooks(self) -> None:
        hooks, self._on_commit = self._on_commit, []
        for hook in hooks:
            hook()

    def commit(self) -> None:
        for (scope, key), version in self._versions.items():
            _, current = self._stores[scope]._read(key)
            if current != version:
                raise ConcurrentModificationError(key)
        written: List[Tuple[str, str]] = []
        try:
            for slot in self._dirty:
                scope, key = slot
                value = self._values[slot]
                raw = json.dumps(value) if value is not None else None
                if not self._stores[scope]._write(key, raw, self._versions[slot]):
                    raise ConcurrentModificationError(key)
                written.append(slot)
        except (ConcurrentModificationError, PyMongoError):
            self._undo(written)
            raise
        if self._dirty:
            logger.debug("Committed %s", ", ".join(f"{s}:{k}" for s, k in self._dirty))

    def _undo(self, written: List[Tuple[str, str]]) -> None:
        """Put back the values this commit already wrote, newest first."""
        for scope, key in reversed(written):
            slot = (scope, key)
            try:
                restored = self._stores[scope]._write(key, self._originals[slot], self._versions[slot] + 1)
            except PyMongoError:
                logger.exception("Failed to restore %s:%s after an aborted commit", scope, key)
                continue
            if not restored:
                logger.error("Could not restore %s:%s after an aborted commit, it changed meanwhile", scope, key)


class Storage:
    """The durable store and the session store, plus thread-bound transactions.

    A transaction opened while another one is active on the same thread joins
    it, so services can call each other inside a single commit. Callbacks
    registered with Transaction.on_commit run after that commit succeeds.
    """

    def __init__(self, local: KeyValueStore, session: Optional[KeyValueStore] = None):
        self.local = local
        self.session = session if session is not None else MemoryKeyValueStore()
        self._state = threading.local()

    def _store(self, scope: str) -> KeyValueStore:
        return self.local if scope == LOCAL else self.session

    def current(self) -> Optional[Transaction]:
        return getattr(self._state, "tx", None)

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        active = self.current()
        if active is not None:
            yield active
            return
        with self.local.lock, self.session.lock:
            tx = Transaction({LOCAL: self.local, SESSION: self.session})
            self._state.tx = tx
            try:
                yield tx
                tx.commit()
            finally:
                self._state.tx = None
        tx.run_commit_hooks()

    def get(self, key: str, default: Any = None, scope: str = LOCAL) -> Any:
        tx = self.current()
        if tx is not None:
            return tx.get(key, default, scope)
        return self._store(scope).get(key, default)


def create_local_store() -> KeyValueStore:
    if db is not None:
        return MongoKeyValueStore(db[KV_COLLECTION])
    logger.warning("DATABASE_URL not set, falling back to in-memory storage")
    return MemoryKeyValueStore()
