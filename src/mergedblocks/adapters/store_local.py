# mergedblocks/adapters/store_local.py
from __future__ import annotations
import asyncio, io, os
from typing import BinaryIO

from ..ports.store import ObjectStore


class LocalObjectStore(ObjectStore):
    """
    Directory-backed store: key `0000000100` lives at `<root>/0000000100<suffix>`.
    Writes land in a `.tmp` sibling first and are renamed into place, so a reader
    only ever sees complete bundles.
    """
    def __init__(self, root_dir: str, suffix: str = ".parquet") -> None:
        self.root = root_dir
        self.suffix = suffix

    def _path(self, key: str) -> str:
        return os.path.join(self.root, key + self.suffix)

    def _list(self, prefix: str) -> list[str]:
        if not os.path.isdir(self.root):
            raise FileNotFoundError(f"store directory not found: {self.root}")
        keys: list[str] = []
        for name in os.listdir(self.root):
            if not name.endswith(self.suffix) or name.endswith(".tmp"):
                continue
            key = name[:len(name) - len(self.suffix)] if self.suffix else name
            if key.startswith(prefix):
                keys.append(key)
        return sorted(keys)

    async def list_keys(self, prefix: str = "") -> list[str]:
        return await asyncio.to_thread(self._list, prefix)

    async def open_object(self, key: str) -> BinaryIO:
        def _read() -> bytes:
            with open(self._path(key), "rb") as f:
                return f.read()
        return io.BytesIO(await asyncio.to_thread(_read))

    async def write_object(self, key: str, data: bytes) -> None:
        await asyncio.to_thread(self._write, key, data)

    def _write(self, key: str, data: bytes) -> None:
        os.makedirs(self.root, exist_ok=True)
        path = self._path(key)
        tmp  = path + ".tmp"
        with open(tmp, "wb") as f:
            f.write(data); f.flush(); os.fsync(f.fileno())
        os.replace(tmp, path)
