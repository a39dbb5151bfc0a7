from __future__ import annotations
from dataclasses import dataclass
from typing import Callable

from ..adapters.forkdb import ForkDB
from ..domain.models import Block
from ..domain.value_types import PrintDetails
from ..ports.linkage import LinkageTracker

LARGE_GAP_EVERY = 100


@dataclass(slots=True)
class LinkageState:
    """Fork tracking for one scan job. Never shared between jobs."""
    tracker: LinkageTracker
    last_linked_block: Block | None = None
    first_unlinkable_block: Block | None = None
    unlinkable_count: int = 0

    @classmethod
    def fresh(cls, factory: Callable[[], LinkageTracker] = ForkDB) -> "LinkageState":
        return cls(tracker=factory())

    def observe(self, block: Block, print_details: PrintDetails) -> list[str]:
        """Register `block` with the tracker; returns the diagnostics it produced."""
        msgs: list[str] = []
        ref = block.ref()
        if not self.tracker.has_lib():
            self.tracker.init_lib(ref)

        self.tracker.add_link(ref, block.previous_id)
        if self.tracker.reversible_segment(ref) is None:
            self.unlinkable_count += 1
            if self.first_unlinkable_block is None:
                self.first_unlinkable_block = block

            if print_details >= PrintDetails.STATS:
                msgs.append(f"🔶 Block #{block.number} is not linkable at this point")

            if self.unlinkable_count % LARGE_GAP_EVERY == 0:
                last = "none" if self.last_linked_block is None else str(self.last_linked_block.number)
                msgs.append(
                    f"❌ Large gap of {self.unlinkable_count} unlinkable blocks found in chain. "
                    f"Last linked block: {last}, first Unlinkable block: {self.first_unlinkable_block.number}."
                )
        else:
            self.last_linked_block = block
            self.unlinkable_count = 0
            self.first_unlinkable_block = None
            self.tracker.set_lib(ref)
            self.tracker.purge_before_lib()
        return msgs
