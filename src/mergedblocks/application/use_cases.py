from __future__ import annotations
import asyncio, json, logging, os
from typing import Any, AsyncIterator, Callable

from ..config import ChainConfig
from ..domain.bundles import is_boundary, parse_bundle_key
from ..domain.errors import BlockDecodeError, BlockFileError, InvalidRangeError, ScanError, StoreListingError
from ..domain.models import Block, BlockRange, LogEntry, ScanJob
from ..ports.codec import BlockCodec
from ..ports.store import ObjectStore
from .aggregator import JobLog, OrderedLogAggregator, console_write
from .bundler import BlockTransform, MergedBlocksWriter
from .planning import find_min_max_block, plan_jobs, walk_block_prefix
from .scanner import ScanOptions, ScanResult, check_merged_blocks

logger = logging.getLogger(__name__)


async def check_merged_blocks_batch(
    *,
    store: ObjectStore,
    codec: BlockCodec,
    block_range: BlockRange,
    batch_size: int,
    workers: int,
    opts: ScanOptions,
    write: Callable[[str], None] = console_write,
) -> list[ScanResult]:
    """
    Scan `block_range` as `batch_size`-wide jobs on `workers` concurrent workers.
    Report lines come out in job order. Raises ScanError (wrapping the last failure)
    once every job has run, if any job failed.
    """
    if workers <= 0:
        raise ValueError(f"workers must be > 0, got {workers}")
    if block_range.unbounded():
        block_range = await find_min_max_block(store, opts.chain.file_block_size)
        logger.info("resolved unbounded range to %s", block_range)

    planned = plan_jobs(block_range, batch_size)
    logs: asyncio.Queue[LogEntry | None] = asyncio.Queue(maxsize=workers * 2)
    jobs: asyncio.Queue[ScanJob] = asyncio.Queue(maxsize=workers)
    results: dict[int, ScanResult] = {}
    failures: list[tuple[int, Exception]] = []

    async def worker() -> None:
        while True:
            job = await jobs.get()
            try:
                results[job.job_id] = await check_merged_blocks(store, codec, job, JobLog(job.job_id, logs), opts)
            except Exception as e:
                logger.error("job %d (%s) failed: %s", job.job_id, job.block_range, e)
                failures.append((job.job_id, e))
            finally:
                jobs.task_done()

    async def dispatch() -> None:
        for job in planned:
            await jobs.put(job)
        await jobs.join()

    aggregator = OrderedLogAggregator(write)
    agg_task = asyncio.create_task(aggregator.run(logs))
    worker_tasks = [asyncio.create_task(worker()) for _ in range(workers)]
    dispatch_task = asyncio.create_task(dispatch())
    completed = False
    try:
        await asyncio.wait({dispatch_task, agg_task}, return_when=asyncio.FIRST_COMPLETED)
        if not dispatch_task.done():
            agg_task.result()   # the aggregator died first; surface why
            raise RuntimeError("log aggregator stopped before all jobs completed")
        dispatch_task.result()
        completed = True
    finally:
        for t in (dispatch_task, *worker_tasks):
            t.cancel()
        await asyncio.gather(dispatch_task, *worker_tasks, return_exceptions=True)
        if not completed:
            agg_task.cancel()
            await asyncio.gather(agg_task, return_exceptions=True)

    await logs.put(None)
    await agg_task

    if failures:
        job_id, last = failures[-1]
        raise ScanError(f"{len(failures)} of {len(planned)} job(s) failed, last error (job {job_id}): {last}",
                        failed_jobs=len(failures)) from last
    return [results[j.job_id] for j in planned]


async def _segment_blocks(source: ObjectStore, codec: BlockCodec, key: str) -> AsyncIterator[Block]:
    try:
        stream = await source.open_object(key)
    except Exception as e:
        raise BlockDecodeError(f"opening segment {key}: {e}") from e
    with stream:
        blocks = codec.read_blocks(stream)
        while True:
            try:
                block = next(blocks)
            except StopIteration:
                return
            except Exception as e:
                raise BlockDecodeError(f"reading segment {key}: {e}") from e
            yield block


async def normalize_merged_blocks(
    *,
    source: ObjectStore,
    dest: ObjectStore,
    codec: BlockCodec,
    start_block: int,
    stop_block: int | None,
    chain: ChainConfig | None = None,
    transform: BlockTransform | None = None,
) -> MergedBlocksWriter:
    """
    Rewrite the bundles covering [start_block, stop_block) from `source` into `dest`,
    passing every block through `transform`. A trailing partial bundle is written too.
    """
    chain = chain or ChainConfig()
    size = chain.file_block_size
    if not is_boundary(start_block, size, chain.first_streamable_block):
        raise InvalidRangeError(f"start must be on a boundary, got {start_block}")
    br = BlockRange(start_block, stop_block)

    writer = MergedBlocksWriter(dest, codec, chain=chain, stop_block_num=stop_block, transform=transform)
    try:
        keys = await source.list_keys(walk_block_prefix(br, size))
    except Exception as e:
        raise StoreListingError(f"listing source store: {e}") from e

    for key in keys:
        base = parse_bundle_key(key)
        if base is None or base + size - 1 < start_block:
            continue
        if stop_block is not None and base >= stop_block:
            break
        async for block in _segment_blocks(source, codec, key):
            if block.number < start_block:
                continue
            if not await writer.process_block(block):
                logger.info("Complete! %d bundle(s) written", writer.bundles_written)
                return writer

    if writer.blocks:
        await writer.flush()
    logger.info("Complete! %d bundle(s) written", writer.bundles_written)
    return writer


def _load_json(path: str) -> Any:
    try:
        with open(path, "r") as f:
            return json.load(f)
    except OSError as e:
        raise BlockFileError(f"unable to read block file {path!r}: {e}") from e
    except json.JSONDecodeError as e:
        raise BlockFileError(f"unable to unmarshal block {path!r}: {e}") from e


def diff_command(path_a: str, path_b: str) -> str:
    editor = os.environ.get("DIFF_EDITOR", "")
    if editor:
        return f'{editor} "{path_a}" "{path_b}"'
    return f'diff -C 5 "{path_a}" "{path_b}" | less'


def compare_block_files(path_a: str, path_b: str, write: Callable[[str], None] = console_write) -> bool:
    """Structural JSON comparison of two block dumps; prints how to see the diff when they differ."""
    logger.info("comparing block files: %s %s", path_a, path_b)
    if _load_json(path_a) == _load_json(path_b):
        write("Files are equal, all good")
        return True
    write(f"Files {path_a!r} and {path_b!r} differ, run the following command to see the difference:")
    write("")
    write(f"    {diff_command(path_a, path_b)}")
    write("")
    return False
