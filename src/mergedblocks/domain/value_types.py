from __future__ import annotations
from enum import IntEnum
from typing import NewType, Literal

BlockId  = NewType("BlockId", str)    # chain-specific block hash
StoreKey = NewType("StoreKey", str)   # 10-digit zero-padded bundle base number
ForkStep = Literal["new", "undo", "irreversible"]


class PrintDetails(IntEnum):
    """How much of each bundle the scanner looks at (ordered, compare with >=)."""
    NOTHING = 0
    STATS   = 1
    FULL    = 2

    @classmethod
    def parse(cls, value: str) -> "PrintDetails":
        return cls[value.strip().upper()]
