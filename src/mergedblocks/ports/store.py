# mergedblocks/ports/store.py
from __future__ import annotations

from typing import BinaryIO, Protocol


class ObjectStore(Protocol):
    """Port for a flat key/object store holding one object per bundle."""

    async def list_keys(self, prefix: str = "") -> list[str]:
        """Return every key starting with `prefix`, in ascending order."""

    async def open_object(self, key: str) -> BinaryIO:
        """Open an object for reading; callers close the returned stream."""

    async def write_object(self, key: str, data: bytes) -> None:
        """Persist `data` under `key`; readers never observe a partially written object."""
