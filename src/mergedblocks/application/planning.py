from __future__ import annotations

from ..domain.bundles import bundle_key, parse_bundle_key, round_to_bundle_end, round_to_bundle_start
from ..domain.errors import InvalidRangeError, StoreListingError
from ..domain.models import BlockRange, ScanJob
from ..ports.store import ObjectStore


def plan_jobs(block_range: BlockRange, batch_size: int) -> list[ScanJob]:
    """Split a bounded range into `batch_size`-wide jobs; the last one takes the remainder."""
    if batch_size <= 0:
        raise InvalidRangeError(f"batch size must be > 0, got {batch_size}")
    if block_range.stop is None:
        raise InvalidRangeError("cannot partition an unbounded range, resolve it first")
    out: list[ScanJob] = []
    b = block_range.start
    while b < block_range.stop:
        fb, tb = b, min(block_range.stop, b + batch_size)
        out.append(ScanJob(job_id=len(out), block_range=BlockRange(fb, tb)))
        b = tb
    return out


def walk_block_prefix(block_range: BlockRange, file_block_size: int) -> str:
    """
    Longest common prefix of the zero-padded first and one-past-last bundle numbers,
    used to narrow store listings. `[1200, 1800)` -> `"0000001"`; empty when unbounded.
    """
    if block_range.stop is None:
        return ""
    last = max(block_range.start, block_range.stop - 1)
    start_s = bundle_key(round_to_bundle_start(block_range.start, file_block_size))
    end_s   = bundle_key(round_to_bundle_end(last, file_block_size) + 1)
    for i, (a, b) in enumerate(zip(start_s, end_s)):
        if a != b:
            return start_s[:i]
    return start_s


async def find_min_max_block(store: ObjectStore, file_block_size: int) -> BlockRange:
    """Concrete bounds of everything in the store: [lowest base, highest base + size)."""
    try:
        keys = await store.list_keys("")
    except Exception as e:
        raise StoreListingError(f"listing store: {e}") from e
    bases = [n for n in (parse_bundle_key(k) for k in keys) if n is not None]
    if not bases:
        raise InvalidRangeError("cannot resolve unbounded range: store holds no bundles")
    return BlockRange(min(bases), max(bases) + file_block_size)
