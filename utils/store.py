import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Type

from pydantic import BaseModel

from models.errors import ConflictError, StoreContentionError


class RecordStore:
    """Per-employee, versioned record store.

    Every mutation bumps the employee's version. Passing ``expected_version``
    makes a mutation conditional: a stale version raises StoreContentionError
    and nothing is written.
    """

    def __init__(self, model: Type[BaseModel]):
        self.model = model
        self._lock = threading.Lock()
        self._buckets: Dict[str, dict] = {}

    def employee_ids(self) -> List[str]:
        with self._lock:
            return sorted(self._buckets)

    def version(self, employee_id: str) -> int:
        with self._lock:
            return self._buckets.get(employee_id, {}).get("version", 0)

    def read_all(self, employee_id: str) -> List[BaseModel]:
        with self._lock:
            bucket = self._buckets.get(employee_id)
            if not bucket:
                return []
            return [r.model_copy(deep=True) for r in bucket["records"]]

    def read_everything(self) -> List[BaseModel]:
        with self._lock:
            return [
                r.model_copy(deep=True)
                for employee_id in sorted(self._buckets)
                for r in self._buckets[employee_id]["records"]
            ]

    def append(self, employee_id: str, records: Iterable[BaseModel], expected_version: Optional[int] = None) -> int:
        new_records = list(records)

        def mutate(current):
            return current + new_records, []

        version, _ = self._mutate(employee_id, mutate, expected_version)
        return version

    def replace_matching(
        self,
        employee_id: str,
        predicate: Callable[[BaseModel], bool],
        new_records: Iterable[BaseModel],
        expected_version: Optional[int] = None,
    ) -> List[BaseModel]:
        """Atomically drop every record matching ``predicate`` and add ``new_records``.

        Returns the removed records.
        """
        inserted = list(new_records)

        def mutate(current):
            kept = [r for r in current if not predicate(r)]
            removed = [r for r in current if predicate(r)]
            return kept + inserted, removed

        _, removed = self._mutate(employee_id, mutate, expected_version)
        return [r.model_copy(deep=True) for r in removed]

    def _mutate(self, employee_id, mutate, expected_version):
        with self._lock:
            bucket = self._buckets.get(employee_id, {"version": 0, "records": []})
            if expected_version is not None and bucket["version"] != expected_version:
                raise StoreContentionError(
                    f"version mismatch for {employee_id}: expected {expected_version}, found {bucket['version']}"
                )
            records, removed = mutate(list(bucket["records"]))
            for record in records:
                if record.employee_id != employee_id:
                    raise ValueError(f"record for {record.employee_id} written under {employee_id}")
            new_bucket = {"version": bucket["version"] + 1, "records": [r.model_copy(deep=True) for r in records]}
            buckets = dict(self._buckets)
            buckets[employee_id] = new_bucket
            self._persist(buckets)
            self._buckets = buckets
            return new_bucket["version"], removed

    def _persist(self, buckets: Dict[str, dict]) -> None:
        pass


class InMemoryRecordStore(RecordStore):
    pass


class JsonFileRecordStore(RecordStore):
    """RecordStore backed by a single JSON file, rewritten atomically on every mutation."""

    def __init__(self, model: Type[BaseModel], path: str):
        super().__init__(model)
        self.path = Path(path)
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        with open(self.path, "r", encoding="utf-8") as f:
            raw = json.load(f) or {}
        for employee_id, bucket in raw.get("employees", {}).items():
            self._buckets[employee_id] = {
                "version": bucket.get("version", 0),
                "records": [self.model.model_validate(r) for r in bucket.get("records", [])],
            }
        logging.info(f"Loaded {len(self._buckets)} employee logs from {self.path}")

    def _persist(self, buckets: Dict[str, dict]) -> None:
        payload = {
            "employees": {
                employee_id: {
                    "version": bucket["version"],
                    "records": [r.model_dump(mode="json") for r in bucket["records"]],
                }
                for employee_id, bucket in buckets.items()
            }
        }
        directory = self.path.parent
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise


class EmployeeLocks:
    """Registry of one re-entrant lock per employee."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.RLock] = {}

    def get(self, employee_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(employee_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[employee_id] = lock
            return lock

    @contextmanager
    def hold(self, employee_id: str):
        lock = self.get(employee_id)
        with lock:
            yield


def retry_on_contention(operation: Callable, max_retries: int, description: str):
    """Run a read-modify-write ``operation`` again while the store reports contention."""
    attempts = max(1, max_retries)
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except StoreContentionError as e:
            logging.warning(f"Store contention during {description} (attempt {attempt}/{attempts}): {e}")
    logging.error(f"Giving up on {description} after {attempts} attempts")
    raise ConflictError(f"Concurrent update while {description}; please retry.")
