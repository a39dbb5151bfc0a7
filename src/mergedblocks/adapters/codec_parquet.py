from __future__ import annotations
from dataclasses import dataclass
from typing import BinaryIO, Iterator, List, Optional

import pyarrow as pa
import pyarrow.parquet as pq

from ..domain.models import Block, BlockFilters
from ..domain.value_types import BlockId
from ..ports.codec import BlockCodec, BlockWriter

BLOCK_SCHEMA = pa.schema([
    pa.field("number",         pa.int64()),
    pa.field("id",             pa.large_string()),
    pa.field("previous_id",    pa.large_string()),
    pa.field("lib_num",        pa.int64()),
    pa.field("timestamp",      pa.int64()),
    pa.field("payload",        pa.large_binary()),
    pa.field("filter_include", pa.large_string()),   # null when the block carries no filters
    pa.field("filter_exclude", pa.large_string()),
    pa.field("filter_system",  pa.large_string()),
])


# ──────────────────────────────
# Column buffer (one bundle)
# ──────────────────────────────

@dataclass(slots=True)
class BlockColumns:
    number: List[int]
    id: List[str]
    previous_id: List[str]
    lib_num: List[int]
    timestamp: List[int]
    payload: List[bytes]
    filter_include: List[Optional[str]]
    filter_exclude: List[Optional[str]]
    filter_system: List[Optional[str]]

    @classmethod
    def empty(cls) -> "BlockColumns":
        return cls(number=[], id=[], previous_id=[], lib_num=[], timestamp=[], payload=[],
                   filter_include=[], filter_exclude=[], filter_system=[])

    def append(self, b: Block) -> None:
        self.number.append(b.number)
        self.id.append(b.id)
        self.previous_id.append(b.previous_id)
        self.lib_num.append(b.lib_num)
        self.timestamp.append(b.timestamp)
        self.payload.append(b.payload)
        f = b.filters
        self.filter_include.append(None if f is None else f.include)
        self.filter_exclude.append(None if f is None else f.exclude)
        self.filter_system.append(None if f is None else f.system)

    def size(self) -> int:
        return len(self.number)

    def to_arrow_table(self) -> pa.Table:
        arrays = {name: pa.array(getattr(self, name), type=BLOCK_SCHEMA.field(name).type)
                  for name in BLOCK_SCHEMA.names}
        return pa.Table.from_pydict(arrays, schema=BLOCK_SCHEMA)


def _row_to_block(row: dict) -> Block:
    filters = None
    if row.get("filter_include") is not None:
        filters = BlockFilters(row["filter_include"], row["filter_exclude"] or "", row["filter_system"] or "")
    return Block(
        number=int(row["number"]),
        id=BlockId(row["id"]),
        previous_id=BlockId(row["previous_id"] or ""),
        lib_num=int(row["lib_num"] or 0),
        timestamp=int(row["timestamp"] or 0),
        payload=row["payload"] or b"",
        filters=filters,
    )


class ParquetBlockWriter(BlockWriter):
    def __init__(self, stream: BinaryIO, codec: str) -> None:
        self.stream = stream
        self.codec = codec
        self.cols = BlockColumns.empty()
        self.closed = False

    def write(self, block: Block) -> None:
        if self.closed:
            raise ValueError("write on closed block writer")
        self.cols.append(block)

    def close(self) -> None:
        if self.closed:
            return
        pq.write_table(self.cols.to_arrow_table(), self.stream, compression=self.codec)
        self.closed = True

    def __enter__(self) -> "ParquetBlockWriter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()


class ParquetBlockCodec(BlockCodec):
    """One Parquet file per bundle, one row per block, stored in block order."""
    def __init__(self, *, compression: str = "zstd", read_batch_rows: int = 64) -> None:
        self.compression = compression
        self.read_batch_rows = read_batch_rows

    def read_blocks(self, stream: BinaryIO) -> Iterator[Block]:
        pf = pq.ParquetFile(stream)
        for batch in pf.iter_batches(batch_size=self.read_batch_rows):
            for row in batch.to_pylist():
                yield _row_to_block(row)

    def open_writer(self, stream: BinaryIO) -> ParquetBlockWriter:
        return ParquetBlockWriter(stream, self.compression)
