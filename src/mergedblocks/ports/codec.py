# mergedblocks/ports/codec.py
from __future__ import annotations

from typing import BinaryIO, Iterator, Protocol
from ..domain.models import Block


class BlockWriter(Protocol):
    def write(self, block: Block) -> None: ...
    def close(self) -> None:
        """Finalize the segment; nothing is guaranteed on the stream before this returns."""


class BlockCodec(Protocol):
    """Port for the binary layout of a bundle (a sequence of block records)."""

    def read_blocks(self, stream: BinaryIO) -> Iterator[Block]:
        """Yield blocks in stored order; raise on corrupt data (possibly mid-iteration)."""

    def open_writer(self, stream: BinaryIO) -> BlockWriter:
        """Return a writer serializing blocks onto `stream`."""
