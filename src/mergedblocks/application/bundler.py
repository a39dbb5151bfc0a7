from __future__ import annotations
import io, logging
from typing import Callable

from ..config import ChainConfig
from ..domain.bundles import bundle_key, is_boundary, round_to_bundle_start
from ..domain.errors import BlockTransformError, BundleWriteError, EmptyBundleError, UnexpectedBlockError
from ..domain.models import Block
from ..ports.codec import BlockCodec
from ..ports.store import ObjectStore

logger = logging.getLogger(__name__)

BlockTransform = Callable[[Block], Block]


class MergedBlocksWriter:
    """
    Accumulates an ordered block sequence into boundary-aligned bundles of
    `file_block_size` blocks, writing each bundle once under its zero-padded base
    number. Owned by a single ingest/rewrite loop; not safe for concurrent use.
    """
    def __init__(
        self,
        store: ObjectStore,
        codec: BlockCodec,
        *,
        chain: ChainConfig | None = None,
        stop_block_num: int | None = None,
        transform: BlockTransform | None = None,
    ) -> None:
        self.store = store
        self.codec = codec
        self.chain = chain or ChainConfig()
        self.stop_block_num = stop_block_num
        self.transform = transform
        self.low_block_num: int | None = None   # None until the first block arrives
        self.blocks: list[Block] = []
        self.bundles_written = 0

    @property
    def file_block_size(self) -> int:
        return self.chain.file_block_size

    async def process_block(self, block: Block) -> bool:
        """Buffer `block`, flushing completed bundles. Returns False once the block
        before `stop_block_num` is bundled (end of stream). Blocks that are not above
        the last buffered one are skipped."""
        if self.transform is not None:
            try:
                block = self.transform(block)
            except Exception as e:
                raise BlockTransformError(f"tweaking block {block}: {e}") from e

        if self.low_block_num is None:
            if not is_boundary(block.number, self.file_block_size, self.chain.first_streamable_block):
                raise UnexpectedBlockError(
                    f"received unexpected block {block} (not a boundary, not the first "
                    f"streamable block {self.chain.first_streamable_block})"
                )
            self.low_block_num = round_to_bundle_start(block.number, self.file_block_size)

        if self.stop_block_num is not None and block.number >= self.stop_block_num:
            if self.blocks:
                await self.flush()
            return False

        # pending blocks stay strictly increasing inside [low, low + size)
        if block.number < self.low_block_num or (self.blocks and block.number <= self.blocks[-1].number):
            logger.warning("skipping out of order block %s (bundle %s, last buffered %s)",
                           block, bundle_key(self.low_block_num),
                           self.blocks[-1].number if self.blocks else "none")
            return True

        last_in_bundle = self.low_block_num + self.file_block_size - 1
        if block.number > last_in_bundle:
            # a gap skipped the rest of the current bundle
            if self.blocks:
                await self.flush()
            self.low_block_num = round_to_bundle_start(block.number, self.file_block_size)
            last_in_bundle = self.low_block_num + self.file_block_size - 1

        self.blocks.append(block)
        if block.number == last_in_bundle:
            await self.flush()

        # [start, stop) streams never deliver `stop` itself
        if self.stop_block_num is not None and block.number >= self.stop_block_num - 1:
            if self.blocks:
                await self.flush()
            return False
        return True

    def _encode(self) -> bytes:
        buf = io.BytesIO()
        writer = self.codec.open_writer(buf)
        for blk in self.blocks:
            writer.write(blk)
        writer.close()
        return buf.getvalue()

    async def flush(self) -> None:
        """Write the buffered blocks as the bundle at `low_block_num`."""
        if not self.blocks or self.low_block_num is None:
            raise EmptyBundleError("no blocks to write to bundle")
        key = bundle_key(self.low_block_num)
        logger.info("writing merged file to store: %s (%d blocks)", key, len(self.blocks))
        try:
            data = self._encode()
        except Exception as e:
            raise BundleWriteError(f"encoding bundle {key}: {e}") from e
        try:
            await self.store.write_object(key, data)
        except Exception as e:
            logger.error("writing to store failed: %s: %s", key, e)
            raise BundleWriteError(f"writing bundle {key}: {e}") from e

        self.bundles_written += 1
        self.low_block_num += self.file_block_size
        self.blocks = []
