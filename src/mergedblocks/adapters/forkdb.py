# mergedblocks/adapters/forkdb.py
from __future__ import annotations

from ..domain.models import BlockRef
from ..domain.value_types import BlockId
from ..ports.linkage import LinkageTracker


class ForkDB(LinkageTracker):
    """
    In-memory link database: block id -> (number, previous id), plus the last
    irreversible block (LIB). A block is "linked" when following previous ids from it
    reaches the LIB without hitting an unknown id.
    """
    def __init__(self) -> None:
        self._links: dict[BlockId, tuple[int, BlockId]] = {}
        self._lib: BlockRef | None = None

    @property
    def lib(self) -> BlockRef | None:
        return self._lib

    def has_lib(self) -> bool:
        return self._lib is not None

    def init_lib(self, ref: BlockRef) -> None:
        self._lib = ref

    def add_link(self, ref: BlockRef, previous_id: BlockId) -> None:
        self._links[ref.id] = (ref.number, previous_id)

    def reversible_segment(self, up_to: BlockRef) -> list[BlockRef] | None:
        if self._lib is None:
            return None
        seg: list[BlockRef] = []
        cur = up_to
        while cur.id != self._lib.id:
            if cur.number <= self._lib.number:
                return None   # walked past the LIB on another branch
            link = self._links.get(cur.id)
            if link is None:
                return None
            seg.append(cur)
            prev_id = link[1]
            prev = self._links.get(prev_id)
            if prev is None and prev_id != self._lib.id:
                return None
            cur = BlockRef(prev_id, prev[0] if prev is not None else self._lib.number)
        seg.reverse()
        return seg

    def set_lib(self, ref: BlockRef) -> None:
        self._lib = ref

    def purge_before_lib(self) -> None:
        if self._lib is None:
            return
        lib_num = self._lib.number
        for bid in [bid for bid, (num, _) in self._links.items() if num < lib_num]:
            del self._links[bid]

    def __len__(self) -> int:
        return len(self._links)
