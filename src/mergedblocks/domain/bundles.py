from __future__ import annotations
import re
from .value_types import StoreKey

KEY_WIDTH = 10
_NUMBER_RE = re.compile(r"^(\d{10})(?!\d)")


def bundle_key(base_num: int) -> StoreKey:
    return StoreKey(f"{base_num:0{KEY_WIDTH}d}")


def parse_bundle_key(key: str) -> int | None:
    """Base block number embedded in a store key, or None when the key is not a bundle."""
    m = _NUMBER_RE.search(key)
    return int(m.group(1)) if m else None


def round_to_bundle_start(block_num: int, file_block_size: int) -> int:
    # 1085 with size 100 -> 1000
    return block_num - (block_num % file_block_size)


def round_to_bundle_end(block_num: int, file_block_size: int) -> int:
    # 1085 with size 100 -> 1099, the last block the bundle can hold
    return round_to_bundle_start(block_num, file_block_size) + file_block_size - 1


def is_boundary(block_num: int, file_block_size: int, first_streamable_block: int) -> bool:
    return block_num % file_block_size == 0 or block_num == first_streamable_block


def expected_block_count(key: str, file_block_size: int, first_streamable_block: int) -> int:
    """Blocks a complete bundle holds; the chain's first bundle starts at the first streamable block."""
    base = parse_bundle_key(key)
    if base is not None and base == round_to_bundle_start(first_streamable_block, file_block_size):
        return base + file_block_size - first_streamable_block
    return file_block_size
