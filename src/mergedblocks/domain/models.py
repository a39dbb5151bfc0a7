from __future__ import annotations
import base64
from dataclasses import dataclass, field
from typing import Any
from .errors import InvalidRangeError
from .value_types import BlockId, ForkStep


def pretty_block_num(n: int) -> str:
    """`1234567` -> `#1 234 567`"""
    return "#" + f"{n:,}".replace(",", " ")


@dataclass(slots=True, frozen=True)
class BlockRange:
    """Half-open [start, stop). `stop=None` means unbounded."""
    start: int
    stop: int | None = None

    def __post_init__(self) -> None:
        if self.start < 0:
            raise InvalidRangeError(f"invalid range: negative start {self.start}")
        if self.stop is not None and self.start > self.stop:
            raise InvalidRangeError(f"invalid range: start {self.start} is after stop {self.stop}")

    def bounded(self) -> bool: return self.stop is not None
    def unbounded(self) -> bool: return self.stop is None

    def span(self) -> int:
        if self.stop is None:
            raise InvalidRangeError("unbounded range has no span")
        return self.stop - self.start

    def reproc_range(self) -> str:
        if self.stop is None:
            return "<Invalid unbounded range>"
        return f"{self.start}:{self.stop}"

    def __str__(self) -> str:
        if self.stop is None:
            return f"{pretty_block_num(self.start)} - ∞"
        return f"{pretty_block_num(self.start)} - {pretty_block_num(max(self.start, self.stop - 1))}"


@dataclass(slots=True, frozen=True)
class BlockRef:
    id: BlockId
    number: int

    def __str__(self) -> str:
        return f"{pretty_block_num(self.number)} ({self.id})"


@dataclass(slots=True, frozen=True)
class BlockFilters:
    """Filter expressions a bundle was produced with."""
    include: str = ""
    exclude: str = ""
    system: str = ""

    def key(self) -> str:
        return f"{self.include}|{self.exclude}|{self.system}"


@dataclass(slots=True, frozen=True)
class Block:
    number: int
    id: BlockId
    previous_id: BlockId
    lib_num: int = 0
    timestamp: int = 0                 # unix millis
    payload: bytes = b""               # opaque chain-specific body
    filters: BlockFilters | None = None

    def ref(self) -> BlockRef:
        return BlockRef(self.id, self.number)

    def to_dict(self) -> dict[str, Any]:
        return {
            "number": self.number,
            "id": self.id,
            "previous_id": self.previous_id,
            "lib_num": self.lib_num,
            "timestamp": self.timestamp,
            "payload": base64.b64encode(self.payload).decode(),
            "filters": None if self.filters is None else {
                "include": self.filters.include,
                "exclude": self.filters.exclude,
                "system": self.filters.system,
            },
        }

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Block":
        f = d.get("filters")
        return cls(
            number=int(d["number"]),
            id=BlockId(str(d["id"])),
            previous_id=BlockId(str(d.get("previous_id") or "")),
            lib_num=int(d.get("lib_num") or 0),
            timestamp=int(d.get("timestamp") or 0),
            payload=base64.b64decode(d.get("payload") or ""),
            filters=None if not f else BlockFilters(f.get("include", ""), f.get("exclude", ""), f.get("system", "")),
        )

    def __str__(self) -> str:
        return f"{pretty_block_num(self.number)} ({self.id})"


@dataclass(slots=True, frozen=True)
class ScanJob:
    job_id: int
    block_range: BlockRange


@dataclass(slots=True, frozen=True)
class LogEntry:
    job_id: int
    message: str
    is_done: bool = False


@dataclass(slots=True, frozen=True)
class StreamRequest:
    start_block_num: int
    stop_block_num: int
    fork_steps: tuple[ForkStep, ...] = ("irreversible",)
    cursor: str = ""


@dataclass(slots=True, frozen=True)
class StreamResponse:
    block: bytes                       # opaque encoded block
    step: str = "irreversible"
    cursor: str = ""


@dataclass(slots=True)
class SegmentStats:
    """What the scanner learned from replaying a single bundle."""
    seen_filters: dict[str, BlockFilters] = field(default_factory=dict)
    lowest_block_seen: int | None = None
    highest_block_seen: int | None = None
    block_count: int = 0
