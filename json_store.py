"""
Embedded JSON key-value store.

Each store is one JSON object on disk. Reads go to disk every time so that
the file stays the source of truth; writes replace the whole document
atomically (temp file + fsync + os.replace). Read-modify-write cycles are
serialized per store with a lock, so concurrent requests inside one process
cannot lose each other's updates. There is no cross-process locking.
"""

import json
import logging
import os
import tempfile
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

from backend_errors import PersistenceFailure

logger = logging.getLogger(__name__)


class JsonStore:
    """Key-value store persisted as a single JSON document"""

    def __init__(self, path: str):
        self.path = path
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Raw document access
    # ------------------------------------------------------------------

    def _read(self) -> Dict[str, Any]:
        """Load the document; missing, empty or corrupt files read as {}"""
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                raw = f.read()
        except FileNotFoundError:
            return {}
        except OSError as e:
            logger.warning(f"Failed to read {self.path}, starting fresh: {e}")
            return {}

        if not raw.strip():
            return {}
        try:
            data = json.loads(raw)
        except ValueError as e:
            logger.warning(f"Corrupt store file {self.path}, starting fresh: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Store file {self.path} is not a JSON object, starting fresh")
            return {}
        return data

    def _write(self, data: Dict[str, Any]):
        directory = os.path.dirname(os.path.abspath(self.path))
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=directory, prefix='.' + os.path.basename(self.path), suffix='.tmp')
        except OSError as e:
            logger.error(f"Failed to write {self.path}: {e}")
            raise PersistenceFailure(f"Failed to persist {self.path}: {e}") from e

        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except OSError as e:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            logger.error(f"Failed to write {self.path}: {e}")
            raise PersistenceFailure(f"Failed to persist {self.path}: {e}") from e

    # ------------------------------------------------------------------
    # Key-value interface
    # ------------------------------------------------------------------

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self._read().get(key)

    def put(self, key: str, value: Dict[str, Any]):
        """Insert or overwrite a single entry"""
        with self._lock:
            data = self._read()
            data[key] = value
            self._write(data)

    def delete(self, key: str) -> bool:
        """Remove an entry. Returns whether it existed."""
        with self._lock:
            data = self._read()
            if key not in data:
                return False
            del data[key]
            self._write(data)
            return True

    def scan(self, predicate: Callable[[str, Dict[str, Any]], bool]) -> List[Tuple[str, Dict[str, Any]]]:
        """Return (key, value) pairs matching predicate, in insertion order"""
        with self._lock:
            return [(k, v) for k, v in self._read().items() if predicate(k, v)]

    def update(self, fn: Callable[[Dict[str, Any]], Any]) -> Any:
        """
        Run fn on the whole document under the store lock and persist it.

        fn mutates the dict in place; its return value is passed through.
        """
        with self._lock:
            data = self._read()
            result = fn(data)
            self._write(data)
            return result

    def items(self) -> List[Tuple[str, Dict[str, Any]]]:
        with self._lock:
            return list(self._read().items())

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def __len__(self) -> int:
        with self._lock:
            return len(self._read())
