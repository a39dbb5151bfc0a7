import asyncio, importlib, logging, os, time
import click
from rich.console import Console
from rich.logging import RichHandler

from .config import (
    ChainConfig, DEFAULT_API_TOKEN_ENV_VAR, DEFAULT_FILE_BLOCK_SIZE,
    ENV_FILE_BLOCK_SIZE, ENV_FIRST_STREAMABLE_BLOCK, STREAM_RETRY_DELAY_S, store_path_from_url,
)
from .domain.errors import MergedBlocksError
from .domain.models import BlockRange
from .domain.value_types import PrintDetails

console = Console()

_DETAILS = click.Choice([d.name.lower() for d in PrintDetails], case_sensitive=False)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)],
        force=True,
    )


def _load_callable(target: str):
    """`package.module:function` -> the function."""
    mod_name, _, attr = target.partition(":")
    if not mod_name or not attr:
        raise click.BadParameter(f"expected 'module:function', got {target!r}")
    try:
        return getattr(importlib.import_module(mod_name), attr)
    except (ImportError, AttributeError) as e:
        raise click.BadParameter(f"cannot load {target!r}: {e}")


def _open_store(url: str):
    from .adapters.store_local import LocalObjectStore
    try:
        return LocalObjectStore(store_path_from_url(url))
    except ValueError as e:
        raise click.BadParameter(str(e))


def _stop_or_none(stop: int) -> int | None:
    return None if stop == 0 else stop


def _run(coro):
    try:
        return asyncio.run(coro)
    except MergedBlocksError as e:
        raise click.ClickException(str(e))


def chain_options(f):
    f = click.option("--first-streamable-block", type=click.IntRange(min=0), default=0, show_default=True,
                     envvar=ENV_FIRST_STREAMABLE_BLOCK, help="First block the chain can stream")(f)
    f = click.option("--file-block-size", type=click.IntRange(min=1), default=DEFAULT_FILE_BLOCK_SIZE,
                     show_default=True, envvar=ENV_FILE_BLOCK_SIZE, help="Blocks per bundle")(f)
    return f


def stream_options(f):
    f = click.option("--insecure", "-k", is_flag=True, help="Skip TLS certificate validation")(f)
    f = click.option("--plaintext", "-p", is_flag=True, help="Use a plaintext connection")(f)
    f = click.option("--api-token-env-var", "-a", default=DEFAULT_API_TOKEN_ENV_VAR, show_default=True,
                     help="Environment variable holding the JWT used against the endpoint")(f)
    return f


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
def cli(verbose):
    """mergedblocks: audit, rebuild and stream merged block bundles."""
    _configure_logging(verbose)


@cli.command("check")
@click.argument("store_url")
@click.argument("start", type=click.IntRange(min=0))
@click.argument("stop", type=click.IntRange(min=0))
@click.option("--batch-size", type=click.IntRange(min=1), default=100_000, show_default=True, help="Blocks per job")
@click.option("--workers", type=click.IntRange(min=1), default=4, show_default=True, help="Concurrent jobs")
@click.option("--details", type=_DETAILS, default="nothing", show_default=True,
              help="nothing: bundle names only; stats: replay blocks; full: also dump every block")
@click.option("--short-segment-level", type=_DETAILS, default="stats", show_default=True,
              help="Lowest detail level at which short bundles are reported")
@chain_options
def check_cmd(store_url, start, stop, batch_size, workers, details, short_segment_level,
              file_block_size, first_streamable_block):
    """Check a merged-blocks store for holes over [START, STOP) (STOP 0 = everything)."""
    from .adapters.codec_parquet import ParquetBlockCodec
    from .application.scanner import ScanOptions
    from .application.use_cases import check_merged_blocks_batch

    async def run():
        opts = ScanOptions(
            chain=ChainConfig(file_block_size, first_streamable_block),
            print_details=PrintDetails.parse(details),
            short_segment_level=PrintDetails.parse(short_segment_level),
            store_url=store_url,
        )
        t0 = time.time()
        results = await check_merged_blocks_batch(
            store=_open_store(store_url), codec=ParquetBlockCodec(),
            block_range=BlockRange(start, _stop_or_none(stop)),
            batch_size=batch_size, workers=workers, opts=opts,
        )
        holes = sum(len(r.missing_ranges) for r in results)
        console.print(
            f"[bold]summary[/]: jobs={len(results)}  "
            f"[red]missing_ranges[/]={holes}  "
            f"[yellow]incomplete_jobs[/]={sum(r.incomplete for r in results)}  "
            f"({time.time() - t0:.2f}s)"
        )

    _run(run())


@cli.command("download")
@click.argument("endpoint")
@click.argument("dest_url")
@click.argument("start", type=click.IntRange(min=0))
@click.argument("stop", type=click.IntRange(min=0))
@click.option("--decoder", default="", help="module:function turning a response payload into a Block")
@click.option("--transform", default="", help="module:function applied to every block before bundling")
@stream_options
@chain_options
def download_cmd(endpoint, dest_url, start, stop, decoder, transform, api_token_env_var, plaintext, insecure,
                 file_block_size, first_streamable_block):
    """Stream irreversible blocks [START, STOP) from ENDPOINT into bundles at DEST_URL (STOP 0 = unbounded)."""
    from .adapters.codec_parquet import ParquetBlockCodec
    from .adapters.stream_httpx import HttpxBlockStream
    from .application.bundler import MergedBlocksWriter
    from .application.ingest import decode_json_block, download_stream_blocks

    async def run():
        writer = MergedBlocksWriter(
            _open_store(dest_url), ParquetBlockCodec(),
            chain=ChainConfig(file_block_size, first_streamable_block),
            stop_block_num=_stop_or_none(stop),
            transform=_load_callable(transform) if transform else None,
        )
        async with HttpxBlockStream(endpoint, jwt=os.environ.get(api_token_env_var, ""),
                                    insecure=insecure, plaintext=plaintext) as client:
            received = await download_stream_blocks(
                client=client, writer=writer, start_block=start, stop_block=stop,
                decoder=_load_callable(decoder) if decoder else decode_json_block,
                retry_delay=STREAM_RETRY_DELAY_S,
            )
        console.print(f"[bold]done[/]: {received} blocks • {writer.bundles_written} bundles written")

    _run(run())


@cli.command("normalize")
@click.argument("source_url")
@click.argument("dest_url")
@click.argument("start", type=click.IntRange(min=0))
@click.argument("stop", type=click.IntRange(min=0))
@click.option("--transform", default="", help="module:function applied to every block")
@chain_options
def normalize_cmd(source_url, dest_url, start, stop, transform, file_block_size, first_streamable_block):
    """Rewrite bundles [START, STOP) from SOURCE_URL to DEST_URL through a block transform."""
    from .adapters.codec_parquet import ParquetBlockCodec
    from .application.use_cases import normalize_merged_blocks

    async def run():
        writer = await normalize_merged_blocks(
            source=_open_store(source_url), dest=_open_store(dest_url), codec=ParquetBlockCodec(),
            start_block=start, stop_block=_stop_or_none(stop),
            chain=ChainConfig(file_block_size, first_streamable_block),
            transform=_load_callable(transform) if transform else None,
        )
        console.print(f"[bold]done[/]: {writer.bundles_written} bundles written")

    _run(run())


@cli.command("print-stream")
@click.argument("endpoint")
@click.argument("start", type=click.IntRange(min=0))
@click.argument("stop", type=click.IntRange(min=0))
@stream_options
def print_stream_cmd(endpoint, start, stop, api_token_env_var, plaintext, insecure):
    """Print the block stream of ENDPOINT as JSON lines."""
    from .adapters.stream_httpx import HttpxBlockStream
    from .application.ingest import print_stream

    async def run():
        async with HttpxBlockStream(endpoint, jwt=os.environ.get(api_token_env_var, ""),
                                    insecure=insecure, plaintext=plaintext) as client:
            await print_stream(client=client, start_block=start, stop_block=stop)

    _run(run())


@cli.command("compare-blocks")
@click.argument("block_a", type=click.Path(exists=True, dir_okay=False))
@click.argument("block_b", type=click.Path(exists=True, dir_okay=False))
def compare_blocks_cmd(block_a, block_b):
    """Compare two JSON block dumps; exits 1 when they differ."""
    from .application.use_cases import compare_block_files
    try:
        equal = compare_block_files(block_a, block_b)
    except MergedBlocksError as e:
        raise click.ClickException(str(e))
    if not equal:
        raise SystemExit(1)


if __name__ == "__main__":
    cli()
