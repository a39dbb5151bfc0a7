"""Tests for the single-job merged-blocks scanner."""

from __future__ import annotations

import asyncio
import json

import pytest

from mergedblocks.application import scanner
from mergedblocks.application.aggregator import JobLog
from mergedblocks.application.scanner import ScanOptions, check_merged_blocks
from mergedblocks.config import ChainConfig
from mergedblocks.domain.bundles import bundle_key
from mergedblocks.domain.errors import InvalidRangeError, StoreListingError
from mergedblocks.domain.models import BlockRange, BlockFilters, ScanJob
from mergedblocks.domain.value_types import PrintDetails

from fakes import encode_bundle, make_block, make_blocks, put_bundles, run_job

QUIET_STATS = ScanOptions(print_details=PrintDetails.STATS, block_printer=lambda b: "")


class TestHoleDetection:
    @pytest.mark.asyncio
    async def test_contiguous_store_has_no_holes(self, store, codec) -> None:
        put_bundles(store, codec, list(range(0, 1000, 100)))
        result, lines = await run_job(store, codec, BlockRange(0, 1000))

        assert lines == ["Checking block holes on store", "✅ Range #0 - #999", "🆗 No hole found"]
        assert not result.hole_found
        assert result.bundles_seen == 10
        assert (result.lowest_block_seen, result.highest_block_seen) == (0, 999)

    @pytest.mark.asyncio
    async def test_missing_bundle_reported_with_reproc_range(self, store, codec) -> None:
        put_bundles(store, codec, [b for b in range(0, 1000, 100) if b != 300])
        result, lines = await run_job(store, codec, BlockRange(0, 1000))

        assert lines == [
            "Checking block holes on store",
            "✅ Range #0 - #299",
            "❌ Range #300 - #399! (Missing, [300:400])",
            "✅ Range #400 - #999",
            "🆘 Holes found!",
        ]
        assert result.hole_found
        assert result.missing_ranges == [BlockRange(300, 400)]

    @pytest.mark.asyncio
    async def test_missing_run_of_bundles(self, store, codec) -> None:
        put_bundles(store, codec, [0, 100, 500, 600])
        result, lines = await run_job(store, codec, BlockRange(0, 700))
        assert "❌ Range #200 - #499! (Missing, [200:500])" in lines
        assert result.missing_ranges == [BlockRange(200, 500)]

    @pytest.mark.asyncio
    async def test_trailing_gap_is_incomplete_not_a_hole(self, store, codec) -> None:
        put_bundles(store, codec, list(range(0, 800, 100)))
        result, lines = await run_job(store, codec, BlockRange(0, 1000))

        assert lines == [
            "Checking block holes on store",
            "🔶 Incomplete range #0 - #999, started at block #0 and stopped at block: #799",
            "✅ Range #0 - #799",
            "🆗 No hole found",
        ]
        assert result.incomplete
        assert not result.hole_found

    @pytest.mark.asyncio
    async def test_hole_running_past_stop_is_clipped(self, store, codec) -> None:
        put_bundles(store, codec, [0, 100, 2000])
        result, lines = await run_job(store, codec, BlockRange(0, 1000))

        assert "❌ Range #200 - #999! (Missing, [200:1000])" in lines
        assert result.missing_ranges == [BlockRange(200, 1000)]
        assert result.highest_block_seen == 199
        assert lines[-1] == "🆘 Holes found!"

    @pytest.mark.asyncio
    async def test_empty_store_is_incomplete(self, store, codec) -> None:
        result, lines = await run_job(store, codec, BlockRange(0, 300))
        assert "🔶 Incomplete range #0 - #299, started at block n/a and stopped at block: n/a" in lines
        assert result.bundles_seen == 0
        assert lines[-1] == "🆗 No hole found"

    @pytest.mark.asyncio
    async def test_range_inside_store_only_looks_at_covering_bundles(self, store, codec) -> None:
        put_bundles(store, codec, list(range(0, 3000, 100)))
        result, lines = await run_job(store, codec, BlockRange(1200, 1800))

        assert store.list_calls == ["0000001"]
        assert result.bundles_seen == 6
        assert lines == ["Checking block holes on store", "✅ Range #1 200 - #1 799", "🆗 No hole found"]

    @pytest.mark.asyncio
    async def test_overlapping_segment_reported(self, store, codec) -> None:
        put_bundles(store, codec, [0, 100, 200])
        store.objects["0000000100.bak"] = store.objects[bundle_key(100)]
        result, lines = await run_job(store, codec, BlockRange(0, 300))

        assert "❌ Segment 0000000100.bak overlaps the previous segment (expected next segment at #200)" in lines
        assert result.overlapping_segments == ["0000000100.bak"]
        assert not result.hole_found

    @pytest.mark.asyncio
    async def test_progress_reported_periodically(self, store, codec, monkeypatch) -> None:
        monkeypatch.setattr(scanner, "PROGRESS_EVERY_BUNDLES", 3)
        put_bundles(store, codec, list(range(0, 1000, 100)))
        _, lines = await run_job(store, codec, BlockRange(0, 1000))

        assert lines == [
            "Checking block holes on store",
            "✅ Range #0 - #299",
            "✅ Range #300 - #599",
            "✅ Range #600 - #899",
            "✅ Range #900 - #999",
            "🆗 No hole found",
        ]

    @pytest.mark.asyncio
    async def test_rescan_is_idempotent(self, store, codec) -> None:
        put_bundles(store, codec, [0, 100, 300])
        first = await run_job(store, codec, BlockRange(0, 400), QUIET_STATS)
        second = await run_job(store, codec, BlockRange(0, 400), QUIET_STATS)
        assert first == second

    @pytest.mark.asyncio
    async def test_store_url_in_header(self, store, codec) -> None:
        _, lines = await run_job(store, codec, BlockRange(0, 100), ScanOptions(store_url="file:///data"))
        assert lines[0] == "Checking block holes on file:///data"


class TestBlockDetails:
    @pytest.mark.asyncio
    async def test_linked_chain_reports_no_issues(self, store, codec) -> None:
        put_bundles(store, codec, [0, 100, 200])
        result, lines = await run_job(store, codec, BlockRange(0, 300), QUIET_STATS)

        assert lines == ["Checking block holes on store", "✅ Range #0 - #299", "🆗 No hole found"]
        assert result.last_linked_block == 299
        assert result.highest_block_seen == 299

    @pytest.mark.asyncio
    async def test_stats_prints_one_line_per_block(self, store, codec) -> None:
        put_bundles(store, codec, [0])
        _, lines = await run_job(store, codec, BlockRange(0, 100), ScanOptions(print_details=PrintDetails.STATS))
        block_lines = [ln for ln in lines if ln.startswith("Block #")]
        assert len(block_lines) == 100
        assert block_lines[0].startswith("Block #0 (0000000000a), prev: ")

    @pytest.mark.asyncio
    async def test_full_dumps_blocks_as_json(self, store, codec) -> None:
        put_bundles(store, codec, [0])
        _, lines = await run_job(store, codec, BlockRange(0, 100), ScanOptions(print_details=PrintDetails.FULL))
        dumps = [json.loads(ln) for ln in lines if ln.startswith("{")]
        assert [d["number"] for d in dumps] == list(range(100))

    @pytest.mark.asyncio
    async def test_only_blocks_inside_range_are_replayed(self, store, codec) -> None:
        put_bundles(store, codec, [0, 100])
        result, _ = await run_job(store, codec, BlockRange(50, 150), QUIET_STATS)
        assert (result.lowest_block_seen, result.highest_block_seen) == (50, 149)

    @pytest.mark.asyncio
    async def test_fork_reported_with_last_linkable_block(self, store, codec) -> None:
        put_bundles(store, codec, [0, 200])
        forked = [make_block(n, prev_fork="b") if n == 150 else make_block(n) for n in range(100, 200)]
        store.objects[bundle_key(100)] = encode_bundle(codec, forked)

        result, lines = await run_job(store, codec, BlockRange(0, 300), QUIET_STATS)

        assert "🔶 Block #150 is not linkable at this point" in lines
        assert "🔶 Block #299 is not linkable at this point" in lines
        assert (
            "❌ Large gap of 100 unlinkable blocks found in chain. "
            "Last linked block: 149, first Unlinkable block: 150."
        ) in lines
        assert "🔶 Range #0 - #299 has issues with forks, last linkable block number: 149" in lines
        assert result.last_linked_block == 149
        assert not result.hole_found

    @pytest.mark.asyncio
    async def test_short_segment_warning(self, store, codec) -> None:
        store.objects[bundle_key(0)] = encode_bundle(codec, make_blocks(0, 90))
        result, lines = await run_job(store, codec, BlockRange(0, 100), QUIET_STATS)

        assert "🔶 Segment 0000000000 contained only 90 blocks (< 100), this can happen on some chains" in lines
        assert result.incomplete

    @pytest.mark.asyncio
    async def test_short_segment_warning_threshold(self, store, codec) -> None:
        store.objects[bundle_key(0)] = encode_bundle(codec, make_blocks(0, 90))
        opts = ScanOptions(print_details=PrintDetails.STATS, block_printer=lambda b: "",
                           short_segment_level=PrintDetails.FULL)
        _, lines = await run_job(store, codec, BlockRange(0, 100), opts)
        assert not any("contained only" in ln for ln in lines)

    @pytest.mark.asyncio
    async def test_first_bundle_past_key_zero_is_not_short(self, store, codec) -> None:
        chain = ChainConfig(file_block_size=100, first_streamable_block=250)
        put_bundles(store, codec, [200, 300], first_streamable=250)
        opts = ScanOptions(chain=chain, print_details=PrintDetails.STATS, block_printer=lambda b: "")
        result, lines = await run_job(store, codec, BlockRange(0, 400), opts)

        assert not any("contained only" in ln for ln in lines)
        assert lines == ["Checking block holes on store", "✅ Range #250 - #399", "🆗 No hole found"]
        assert not result.incomplete

    @pytest.mark.asyncio
    async def test_first_streamable_block_clamps_range(self, store, codec) -> None:
        # once clamped, "lowest > start" already implies "lowest > first streamable"
        chain = ChainConfig(file_block_size=100, first_streamable_block=5)
        put_bundles(store, codec, [0, 100], first_streamable=5)
        opts = ScanOptions(chain=chain, print_details=PrintDetails.STATS, block_printer=lambda b: "")
        result, lines = await run_job(store, codec, BlockRange(0, 200), opts)

        assert result.block_range == BlockRange(5, 200)
        assert lines == ["Checking block holes on store", "✅ Range #5 - #199", "🆗 No hole found"]
        assert not result.incomplete

    @pytest.mark.asyncio
    async def test_unreadable_bundle_is_reported_and_skipped(self, store, codec) -> None:
        put_bundles(store, codec, [0, 200])
        store.objects[bundle_key(100)] = b"garbage"
        result, lines = await run_job(store, codec, BlockRange(0, 300), QUIET_STATS)

        assert any(ln.startswith("❌ Unable to read blocks segment 0000000100: ") for ln in lines)
        assert not any("contained only" in ln for ln in lines)
        assert not result.hole_found
        assert result.bundles_seen == 3

    @pytest.mark.asyncio
    async def test_seen_filters_listed(self, store, codec) -> None:
        filters = BlockFilters("type == 'transfer'", "", "system")
        store.objects[bundle_key(0)] = encode_bundle(
            codec, [make_block(n, filters=filters) for n in range(100)]
        )
        result, lines = await run_job(store, codec, BlockRange(0, 100), QUIET_STATS)

        assert result.seen_filters == {filters.key(): filters}
        assert "Seen filters\n- [Include \"type == 'transfer'\", Exclude '', System 'system']" in lines


class TestFailures:
    @pytest.mark.asyncio
    async def test_listing_failure(self, store, codec) -> None:
        store.fail_list = True
        with pytest.raises(StoreListingError):
            await run_job(store, codec, BlockRange(0, 100))

    @pytest.mark.asyncio
    async def test_done_entry_emitted_when_range_is_invalid(self, store, codec) -> None:
        queue: asyncio.Queue = asyncio.Queue()
        opts = ScanOptions(chain=ChainConfig(first_streamable_block=500))
        with pytest.raises(InvalidRangeError):
            await check_merged_blocks(store, codec, ScanJob(3, BlockRange(0, 100)), JobLog(3, queue), opts)

        entries = [queue.get_nowait() for _ in range(queue.qsize())]
        assert entries[-1].is_done
        assert all(e.job_id == 3 for e in entries)
