"""
Persisted cart storage.

A single serialized blob under a well-known key: read once at startup,
written after every cart mutation.
"""
import os
import tempfile
from pathlib import Path
from typing import Dict, Optional, Protocol

CART_STORAGE_KEY = "tool-pal-cart"


class CartStorage(Protocol):
    key: str

    def read(self) -> Optional[str]:
        ...

    def write(self, blob: str) -> None:
        ...

    def delete(self) -> None:
        ...


class InMemoryCartStorage:
    """Process-local storage; one shared dict can back several keys (sessions)."""

    def __init__(self, key: str = CART_STORAGE_KEY, backing: Optional[Dict[str, str]] = None):
        self.key = key
        self.backing: Dict[str, str] = backing if backing is not None else {}

    def read(self) -> Optional[str]:
        return self.backing.get(self.key)

    def write(self, blob: str) -> None:
        self.backing[self.key] = blob

    def delete(self) -> None:
        self.backing.pop(self.key, None)


class FileCartStorage:
    """One JSON file per key inside a directory."""

    def __init__(self, directory: str, key: str = CART_STORAGE_KEY):
        self.directory = Path(directory)
        self.key = key

    @property
    def path(self) -> Path:
        return self.directory / f"{self.key}.json"

    def read(self) -> Optional[str]:
        try:
            return self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def write(self, blob: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        # readers only ever see a complete blob
        fd, tmp_path = tempfile.mkstemp(dir=str(self.directory), prefix=f".{self.key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(blob)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def delete(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
