"""
Versioned document storage.

Records live in named collections and carry a version number that starts at
1 and grows by one on every write. `commit` applies a batch of writes as one
unit: every write names the version it expects to replace (0 for "must not
exist yet") and the batch is rejected as a whole if any expectation fails.
"""

import copy
import threading
from dataclasses import dataclass
from typing import Any, Optional

from .logging_config import get_logger

logger = get_logger(__name__)

USERS = "users"
REFERRALS = "referrals"
SETTINGS = "settings"

UNIQUE_FIELDS = {
    USERS: ("referral_code",),
}


class StorageError(Exception):
    pass


class VersionConflictError(StorageError):
    def __init__(self, collection: str, key: str, expected: int, actual: int):
        self.collection = collection
        self.key = key
        self.expected = expected
        self.actual = actual
        super().__init__(f"{collection}/{key}: expected version {expected}, found {actual}")


class UniqueConstraintError(StorageError):
    def __init__(self, collection: str, field_name: str, value: Any):
        self.collection = collection
        self.field_name = field_name
        self.value = value
        super().__init__(f"{collection}.{field_name} value {value!r} is already taken")


class StorageTimeoutError(StorageError):
    pass


@dataclass
class Record:
    key: str
    version: int
    data: dict


@dataclass
class Write:
    collection: str
    key: str
    data: dict
    expected_version: int = 0


class InMemoryStorage:
    def __init__(self, lock_timeout: float = 5.0):
        self.lock_timeout = lock_timeout
        self._lock = threading.Lock()
        self._collections: dict[str, dict[str, Record]] = {
            USERS: {},
            REFERRALS: {},
            SETTINGS: {},
        }

    def get(self, collection: str, key: str) -> Optional[Record]:
        with self._locked():
            record = self._collection(collection).get(key)
            return self._copy(record) if record else None

    def find_by(self, collection: str, field_name: str, value: Any) -> list[Record]:
        """Equality query, results in insertion order."""
        with self._locked():
            return [
                self._copy(r) for r in self._collection(collection).values()
                if r.data.get(field_name) == value
            ]

    def list_ordered(self, collection: str, order_by: str, limit: int, descending: bool = True) -> list[Record]:
        with self._locked():
            records = [self._copy(r) for r in self._collection(collection).values()]
        # ties keep insertion order in the requested direction
        if descending:
            records.reverse()
        # records without the field sort after every dated one
        records.sort(key=lambda r: (r.data.get(order_by) is not None, r.data.get(order_by)), reverse=descending)
        return records[:limit]

    def commit(self, writes: list[Write]) -> list[Record]:
        """Apply all writes or none of them."""
        with self._locked():
            for write in writes:
                current = self._collection(write.collection).get(write.key)
                actual = current.version if current else 0
                if actual != write.expected_version:
                    raise VersionConflictError(write.collection, write.key, write.expected_version, actual)
            self._check_unique(writes)

            committed = []
            for write in writes:
                record = Record(
                    key=write.key,
                    version=write.expected_version + 1,
                    data=copy.deepcopy(write.data),
                )
                self._collection(write.collection)[write.key] = record
                committed.append(self._copy(record))
            return committed

    def seed(self, collection: str, key: str, data: dict) -> Record:
        """Write a record without version or uniqueness checks (fixtures, imports)."""
        with self._locked():
            records = self._collection(collection)
            current = records.get(key)
            record = Record(key=key, version=(current.version if current else 0) + 1, data=copy.deepcopy(data))
            records[key] = record
            return self._copy(record)

    def _check_unique(self, writes: list[Write]) -> None:
        for write in writes:
            for field_name in UNIQUE_FIELDS.get(write.collection, ()):
                value = write.data.get(field_name)
                if value is None:
                    continue
                current = self._collection(write.collection).get(write.key)
                if current and current.data.get(field_name) == value:
                    # unchanged value, already stored under this key
                    continue
                batch_keys = {w.key for w in writes if w.collection == write.collection}
                for other in writes:
                    if other.collection == write.collection and other.key != write.key \
                            and other.data.get(field_name) == value:
                        raise UniqueConstraintError(write.collection, field_name, value)
                for key, record in self._collection(write.collection).items():
                    if key not in batch_keys and record.data.get(field_name) == value:
                        raise UniqueConstraintError(write.collection, field_name, value)

    def _collection(self, name: str) -> dict[str, Record]:
        try:
            return self._collections[name]
        except KeyError:
            raise StorageError(f"Unknown collection {name!r}") from None

    def _locked(self) -> "_LockGuard":
        return _LockGuard(self._lock, self.lock_timeout)

    @staticmethod
    def _copy(record: Record) -> Record:
        return Record(key=record.key, version=record.version, data=copy.deepcopy(record.data))


class _LockGuard:
    def __init__(self, lock: threading.Lock, timeout: float):
        self.lock = lock
        self.timeout = timeout

    def __enter__(self):
        if not self.lock.acquire(timeout=self.timeout):
            logger.error("storage_lock_timeout", timeout=self.timeout)
            raise StorageTimeoutError(f"Storage lock not acquired within {self.timeout}s")
        return self

    def __exit__(self, exc_type, exc, tb):
        self.lock.release()
        return False
