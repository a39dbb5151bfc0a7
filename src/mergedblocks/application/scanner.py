from __future__ import annotations
import json, logging
from dataclasses import dataclass, field
from typing import Callable

from ..adapters.forkdb import ForkDB
from ..config import ChainConfig
from ..domain.bundles import expected_block_count, parse_bundle_key, round_to_bundle_end, round_to_bundle_start
from ..domain.errors import StoreListingError
from ..domain.models import Block, BlockFilters, BlockRange, ScanJob, SegmentStats, pretty_block_num
from ..domain.value_types import PrintDetails
from ..ports.codec import BlockCodec
from ..ports.linkage import LinkageTracker
from ..ports.store import ObjectStore
from .aggregator import JobLog
from .linkage import LinkageState
from .planning import walk_block_prefix

logger = logging.getLogger(__name__)

PROGRESS_EVERY_BUNDLES = 10_000

BlockPrinter = Callable[[Block], str]


def default_block_printer(block: Block) -> str:
    return (f"Block {block}, prev: {block.previous_id}, lib: {block.lib_num}, "
            f"payload: {len(block.payload)} bytes")


@dataclass(slots=True, frozen=True)
class ScanOptions:
    chain: ChainConfig = field(default_factory=ChainConfig)
    print_details: PrintDetails = PrintDetails.NOTHING
    # short bundles are only reported at or above this detail level
    short_segment_level: PrintDetails = PrintDetails.STATS
    block_printer: BlockPrinter = default_block_printer
    tracker_factory: Callable[[], LinkageTracker] = ForkDB
    store_url: str = ""


@dataclass(slots=True)
class ScanResult:
    block_range: BlockRange
    hole_found: bool = False
    missing_ranges: list[BlockRange] = field(default_factory=list)
    overlapping_segments: list[str] = field(default_factory=list)
    bundles_seen: int = 0
    lowest_block_seen: int | None = None
    highest_block_seen: int | None = None
    last_linked_block: int | None = None
    incomplete: bool = False
    seen_filters: dict[str, BlockFilters] = field(default_factory=dict)


def _num(n: int | None) -> str:
    return "n/a" if n is None else pretty_block_num(n)


async def check_merged_blocks(
    store: ObjectStore,
    codec: BlockCodec,
    job: ScanJob,
    log: JobLog,
    opts: ScanOptions,
) -> ScanResult:
    """Scan one job's range for holes (and, with details, unlinkable blocks). Always
    emits the job's done entry, even when failing."""
    try:
        return await _check(store, codec, job, log, opts)
    finally:
        await log.done()


async def _check(store: ObjectStore, codec: BlockCodec, job: ScanJob, log: JobLog, opts: ScanOptions) -> ScanResult:
    await log.emit(f"Checking block holes on {opts.store_url or 'store'}")
    size = opts.chain.file_block_size
    first_streamable = opts.chain.first_streamable_block

    # raises InvalidRangeError when clamping inverts the range
    br = BlockRange(max(job.block_range.start, first_streamable), job.block_range.stop)
    start, stop = br.start, br.stop
    res = ScanResult(block_range=br)

    expected = round_to_bundle_start(start, size)
    current_start = start
    linkage = LinkageState.fresh(opts.tracker_factory)

    walk_prefix = walk_block_prefix(br, size)
    logger.debug("walking merged blocks: job=%d range=%s prefix=%r", job.job_id, br, walk_prefix)
    try:
        keys = await store.list_keys(walk_prefix)
    except Exception as e:
        raise StoreListingError(f"listing store with prefix {walk_prefix!r}: {e}") from e

    for key in keys:
        base = parse_bundle_key(key)
        if base is None:
            continue
        logger.debug("received merged blocks: %s", key)
        if base + size - 1 < start:
            continue

        past_stop = stop is not None and base >= stop
        if base < expected:
            await log.emit(f"❌ Segment {key} overlaps the previous segment "
                           f"(expected next segment at {pretty_block_num(expected)})")
            res.overlapping_segments.append(key)
        elif base != expected and not (past_stop and expected >= stop):
            # nothing to confirm before the very first bundle
            if res.bundles_seen > 0:
                await log.emit(f"✅ Range {BlockRange(current_start, expected)}")
            missing = BlockRange(expected, min(base, stop) if stop is not None else base)
            await log.emit(f"❌ Range {missing}! (Missing, [{missing.reproc_range()}])")
            res.missing_ranges.append(missing)
            res.hole_found = True
            if not past_stop:
                current_start = base
        if past_stop:
            break

        expected = max(expected, base + size)
        res.bundles_seen += 1

        if opts.print_details > PrintDetails.NOTHING:
            seg = await validate_block_segment(store, codec, key, br, opts, linkage, log)
            res.seen_filters.update(seg.seen_filters)
            if seg.lowest_block_seen is not None:
                res.lowest_block_seen = min(res.lowest_block_seen, seg.lowest_block_seen) \
                    if res.lowest_block_seen is not None else seg.lowest_block_seen
            if seg.highest_block_seen is not None:
                res.highest_block_seen = max(res.highest_block_seen or 0, seg.highest_block_seen)
        else:
            if res.lowest_block_seen is None or base < res.lowest_block_seen:
                res.lowest_block_seen = base
            res.highest_block_seen = max(res.highest_block_seen or 0, base + size - 1)

        if res.bundles_seen % PROGRESS_EVERY_BUNDLES == 0:
            await log.emit(f"✅ Range {BlockRange(current_start, base + size)}")
            current_start = base + size

        if stop is not None and round_to_bundle_end(base, size) >= stop - 1:
            break

    lowest, highest = res.lowest_block_seen, res.highest_block_seen
    logger.debug("checking incomplete range: range=%s lowest=%s highest=%s", br, lowest, highest)
    if stop is not None and (
        highest is None
        or highest < stop - 1
        or (lowest is not None and lowest > start and lowest > first_streamable)
    ):
        res.incomplete = True
        await log.emit(f"🔶 Incomplete range {br}, started at block {_num(lowest)} "
                       f"and stopped at block: {_num(highest)}")

    seen_end = max(current_start, highest + 1 if highest is not None else current_start)
    last_linked = linkage.last_linked_block
    res.last_linked_block = None if last_linked is None else last_linked.number
    if last_linked is not None and highest is not None and last_linked.number < highest:
        await log.emit(f"🔶 Range {BlockRange(current_start, seen_end)} has issues with forks, "
                       f"last linkable block number: {last_linked.number}")
    else:
        await log.emit(f"✅ Range {BlockRange(current_start, seen_end)}")

    if res.seen_filters:
        lines = ["Seen filters"]
        for f in res.seen_filters.values():
            lines.append(f"- [Include {f.include!r}, Exclude {f.exclude!r}, System {f.system!r}]")
        await log.emit("\n".join(lines))

    await log.emit("🆘 Holes found!" if res.hole_found else "🆗 No hole found")
    return res


async def validate_block_segment(
    store: ObjectStore,
    codec: BlockCodec,
    key: str,
    br: BlockRange,
    opts: ScanOptions,
    linkage: LinkageState,
    log: JobLog,
) -> SegmentStats:
    """Replay one bundle through the linkage tracker. Read failures are reported on
    the job log and end this bundle only."""
    stats = SegmentStats()
    details = opts.print_details
    try:
        stream = await store.open_object(key)
    except Exception as e:
        await log.emit(f"❌ Unable to read blocks segment {key}: {e}")
        return stats

    read_count = 0
    with stream:
        blocks = codec.read_blocks(stream)
        while True:
            try:
                block = next(blocks)
            except StopIteration:
                break
            except Exception as e:
                if read_count == 0:
                    await log.emit(f"❌ Unable to read blocks segment {key}: {e}")
                else:
                    await log.emit(f"❌ Unable to read all blocks from segment {key} "
                                   f"after reading {read_count} blocks: {e}")
                return stats

            read_count += 1
            if br.stop is not None and block.number >= br.stop:
                return stats
            if block.number < br.start:
                continue

            if stats.lowest_block_seen is None or block.number < stats.lowest_block_seen:
                stats.lowest_block_seen = block.number
            if stats.highest_block_seen is None or block.number > stats.highest_block_seen:
                stats.highest_block_seen = block.number
            if block.filters is not None:
                stats.seen_filters[block.filters.key()] = block.filters

            for msg in linkage.observe(block, details):
                await log.emit(msg)
            stats.block_count += 1

            if details == PrintDetails.STATS:
                await log.emit(opts.block_printer(block))
            elif details == PrintDetails.FULL:
                await log.emit(json.dumps(block.to_dict(), indent=2))

    expected = expected_block_count(key, opts.chain.file_block_size, opts.chain.first_streamable_block)
    if read_count < expected and details >= opts.short_segment_level:
        await log.emit(f"🔶 Segment {key} contained only {read_count} blocks (< {expected}), "
                       f"this can happen on some chains")
    return stats
