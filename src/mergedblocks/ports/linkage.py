# mergedblocks/ports/linkage.py
from __future__ import annotations

from typing import Protocol
from ..domain.models import BlockRef
from ..domain.value_types import BlockId


class LinkageTracker(Protocol):
    """Port for the chain-linkage (fork) database used while replaying bundles."""

    def has_lib(self) -> bool: ...

    def init_lib(self, ref: BlockRef) -> None:
        """Use `ref` as the initial last irreversible block."""

    def add_link(self, ref: BlockRef, previous_id: BlockId) -> None: ...

    def reversible_segment(self, up_to: BlockRef) -> list[BlockRef] | None:
        """Blocks after the LIB up to `up_to` (inclusive), or None when `up_to` does not chain back to the LIB."""

    def set_lib(self, ref: BlockRef) -> None: ...

    def purge_before_lib(self) -> None:
        """Forget every link older than the current LIB."""
