"""Durable key-value record store using YAML files.

Records are stored one per file:
    root/<collection>/<key>.yaml

Writes go through a temporary file and an atomic rename. create() claims a
key with a hard link, which fails if the key already exists, so two racing
creators can never both succeed.
"""

import contextlib
import os
import re
import threading
import uuid
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

import yaml

from ..utils.logging import get_logger
from .exceptions import CorruptObjectError, StorageIOError

logger = get_logger(__name__)

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")

RECORD_SUFFIX = ".yaml"


class RecordStore:
    """Thread-safe YAML record store.

    All mutating calls are serialized through a re-entrant lock; callers that
    need several operations to appear atomic can hold transaction().
    """

    def __init__(self, root: Path):
        """Initialize storage rooted at a directory.

        Args:
            root: Directory that holds one subdirectory per collection
        """
        self.root = Path(root)
        self._lock = threading.RLock()

    def ensure_root(self) -> None:
        """Create the root directory if it doesn't exist."""
        self.root.mkdir(parents=True, exist_ok=True)

    @contextlib.contextmanager
    def transaction(self) -> Iterator["RecordStore"]:
        """Hold the store lock for a group of operations."""
        with self._lock:
            yield self

    def record_path(self, collection: str, key: str) -> Path:
        """Get path to a record file."""
        for part in (collection, key):
            if not _KEY_PATTERN.match(part):
                raise ValueError(f"Invalid record key: {part!r}")
        return self.root / collection / f"{key}{RECORD_SUFFIX}"

    @staticmethod
    def _dump(data: dict[str, Any]) -> str:
        return yaml.safe_dump(
            data,
            default_flow_style=False,
            sort_keys=False,
            allow_unicode=True,
        )

    def _read(self, path: Path) -> Optional[dict[str, Any]]:
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except FileNotFoundError:
            return None
        except yaml.YAMLError as e:
            raise CorruptObjectError(f"Malformed record {path.name}: {e}") from e
        except OSError as e:
            raise StorageIOError(f"Cannot read record {path.name}: {e}") from e

        if not isinstance(data, dict):
            raise CorruptObjectError(f"Malformed record {path.name}")
        return data

    def _write_temp(self, path: Path, data: dict[str, Any]) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                f.write(self._dump(data))
        except BaseException:
            temp_path.unlink(missing_ok=True)
            raise
        return temp_path

    def get(self, collection: str, key: str) -> Optional[dict[str, Any]]:
        """Load a record.

        Returns:
            The record dictionary, or None if not found
        """
        return self._read(self.record_path(collection, key))

    def put(self, collection: str, key: str, data: dict[str, Any]) -> None:
        """Write a record, replacing any existing value."""
        path = self.record_path(collection, key)
        with self._lock:
            temp_path = None
            try:
                temp_path = self._write_temp(path, data)
                os.replace(temp_path, path)
            except OSError as e:
                if temp_path is not None:
                    temp_path.unlink(missing_ok=True)
                raise StorageIOError(f"Cannot write record {path.name}: {e}") from e

    def create(self, collection: str, key: str, data: dict[str, Any]) -> bool:
        """Write a record only if the key is free.

        Returns:
            True if created, False if the key already existed
        """
        path = self.record_path(collection, key)
        with self._lock:
            temp_path = None
            try:
                temp_path = self._write_temp(path, data)
                os.link(temp_path, path)
                return True
            except FileExistsError:
                return False
            except OSError as e:
                raise StorageIOError(f"Cannot create record {path.name}: {e}") from e
            finally:
                if temp_path is not None:
                    temp_path.unlink(missing_ok=True)

    def update(
        self,
        collection: str,
        key: str,
        mutate: Callable[[dict[str, Any]], dict[str, Any]],
    ) -> Optional[dict[str, Any]]:
        """Read-modify-write a record under the store lock.

        Returns:
            The updated record, or None if the key does not exist
        """
        with self._lock:
            current = self.get(collection, key)
            if current is None:
                return None
            updated = mutate(dict(current))
            self.put(collection, key, updated)
            return updated

    def delete(self, collection: str, key: str) -> bool:
        """Delete a record.

        Returns:
            True if deleted, False if not found
        """
        path = self.record_path(collection, key)
        with self._lock:
            try:
                path.unlink()
                return True
            except FileNotFoundError:
                return False
            except OSError as e:
                raise StorageIOError(f"Cannot delete record {path.name}: {e}") from e

    def load_all(self, collection: str) -> list[dict[str, Any]]:
        """Load all records of a collection.

        Malformed records are logged and skipped.
        """
        directory = self.root / collection
        records = []

        if not directory.exists():
            return records

        for record_file in sorted(directory.glob(f"*{RECORD_SUFFIX}")):
            if record_file.name.startswith("."):
                continue
            try:
                data = self._read(record_file)
            except CorruptObjectError as e:
                logger.warning(str(e))
                continue
            if data is not None:
                records.append(data)

        return records
