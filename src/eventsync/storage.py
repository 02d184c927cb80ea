"""
Key/value persistence boundary.

The offline queue only needs `get(key) -> str | None` and `set(key, value)`.
Two implementations are provided: an in-memory dict for tests and ephemeral
clients, and a directory of files (one file per key) for durable storage.
"""

import os
import re
import tempfile
from abc import abstractmethod
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from .exceptions import PersistenceError


@runtime_checkable
class KeyValueStorage(Protocol):
    """Protocol for a simple durable key/value medium."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...


class MemoryStorage:
    """Process-local storage backed by a dict."""

    def __init__(self, initial: Optional[dict[str, str]] = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


_SAFE_KEY = re.compile(r"[^A-Za-z0-9._-]")


class FileStorage:
    """
    Directory-backed storage; each key lives in its own file.

    Writes go to a temporary file in the same directory which then replaces
    the target, so a reader never observes a half-written value.
    """

    def __init__(self, directory: Path) -> None:
        self._directory = Path(directory)

    @property
    def directory(self) -> Path:
        return self._directory

    def path_for(self, key: str) -> Path:
        return self._directory / f"{_SAFE_KEY.sub('_', key)}.json"

    def get(self, key: str) -> Optional[str]:
        """
        Read the value stored under key.

        Raises:
            PersistenceError: If the file exists but cannot be read
        """
        path = self.path_for(key)
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to read storage file: {e}",
                details={"file_path": str(path)},
            ) from e

    def set(self, key: str, value: str) -> None:
        """
        Replace the value stored under key.

        Raises:
            PersistenceError: If the file cannot be written
        """
        path = self.path_for(key)
        try:
            self._directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self._directory, prefix=".tmp-", suffix=".json")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(value)
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to write storage file: {e}",
                details={"file_path": str(path)},
            ) from e

    def delete(self, key: str) -> None:
        path = self.path_for(key)
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise PersistenceError(
                code="io_error",
                message=f"Failed to delete storage file: {e}",
                details={"file_path": str(path)},
            ) from e
