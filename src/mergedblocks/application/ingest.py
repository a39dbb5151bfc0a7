from __future__ import annotations
import asyncio, base64, json, logging
from typing import AsyncIterator, Awaitable, Callable

from ..config import STREAM_RETRY_DELAY_S
from ..domain.errors import BlockDecodeError, StreamError
from ..domain.models import Block, StreamRequest, StreamResponse
from ..ports.stream import BlockStreamClient
from .aggregator import console_write
from .bundler import MergedBlocksWriter

logger = logging.getLogger(__name__)

ResponseDecoder = Callable[[bytes], Block]


def decode_json_block(data: bytes) -> Block:
    """Default decoder: the opaque block is a JSON document in `Block.to_dict()` form."""
    return Block.from_dict(json.loads(data))


async def _aclose(stream: AsyncIterator[StreamResponse]) -> None:
    close = getattr(stream, "aclose", None)
    if close is not None:
        await close()


async def download_stream_blocks(
    *,
    client: BlockStreamClient,
    writer: MergedBlocksWriter,
    start_block: int,
    stop_block: int,
    decoder: ResponseDecoder = decode_json_block,
    retry_delay: float = STREAM_RETRY_DELAY_S,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> int:
    """
    Stream irreversible blocks for [start_block, stop_block) into `writer`.
    Transport failures are retried forever after `retry_delay`, resuming from the last
    cursor received; decoding and bundling failures abort. Returns blocks received.
    """
    cursor = ""
    received = 0
    while True:
        request = StreamRequest(start_block, stop_block, ("irreversible",), cursor)
        stream = client.blocks(request)
        logger.info("requesting blocks %d-%d (cursor=%r)", start_block, stop_block, cursor)
        try:
            while True:
                try:
                    response = await anext(stream)
                except StopAsyncIteration:
                    logger.info("stream complete: %d blocks received", received)
                    return received
                except Exception as e:
                    logger.error("stream encountered a remote error, going to retry in %.1fs: %s", retry_delay, e)
                    break

                try:
                    block = decoder(response.block)
                except Exception as e:
                    raise BlockDecodeError(f"error decoding response to block: {e}") from e
                received += 1
                if not await writer.process_block(block):
                    logger.info("reached stop block %d: %d blocks received", stop_block, received)
                    return received
                if response.cursor:
                    cursor = response.cursor
        finally:
            await _aclose(stream)
        await sleep(retry_delay)


def response_to_json(response: StreamResponse) -> str:
    return json.dumps({
        "block": base64.b64encode(response.block).decode(),
        "step": response.step,
        "cursor": response.cursor,
    }, separators=(",", ":"))


async def print_stream(
    *,
    client: BlockStreamClient,
    start_block: int,
    stop_block: int,
    write: Callable[[str], None] = console_write,
) -> int:
    """Print every new-block response as one JSON line. No retries."""
    request = StreamRequest(start_block, stop_block, ("new",))
    printed = 0
    stream = client.blocks(request)
    try:
        while True:
            try:
                response = await anext(stream)
            except StopAsyncIteration:
                return printed
            except Exception as e:
                raise StreamError(f"stream error while receiving: {e}") from e
            write(response_to_json(response))
            printed += 1
    finally:
        await _aclose(stream)
