# mergedblocks/config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from urllib.parse import urlparse

from .domain.errors import InvalidRangeError

ENV_FILE_BLOCK_SIZE         = "MERGEDBLOCKS_FILE_BLOCK_SIZE"
ENV_FIRST_STREAMABLE_BLOCK  = "MERGEDBLOCKS_FIRST_STREAMABLE_BLOCK"
DEFAULT_FILE_BLOCK_SIZE     = 100
DEFAULT_API_TOKEN_ENV_VAR   = "FIREHOSE_API_TOKEN"
STREAM_RETRY_DELAY_S        = 4.0


@dataclass(slots=True, frozen=True)
class ChainConfig:
    file_block_size: int = DEFAULT_FILE_BLOCK_SIZE
    first_streamable_block: int = 0

    def __post_init__(self) -> None:
        if self.file_block_size <= 0:
            raise InvalidRangeError(f"file_block_size must be > 0, got {self.file_block_size}")
        if self.first_streamable_block < 0:
            raise InvalidRangeError(f"first_streamable_block must be >= 0, got {self.first_streamable_block}")

    @classmethod
    def from_env(cls) -> "ChainConfig":
        return cls(
            file_block_size=int(os.environ.get(ENV_FILE_BLOCK_SIZE, DEFAULT_FILE_BLOCK_SIZE)),
            first_streamable_block=int(os.environ.get(ENV_FIRST_STREAMABLE_BLOCK, 0)),
        )


def store_path_from_url(url: str) -> str:
    """Accepts `file:///data/merged` or a plain path."""
    parsed = urlparse(url)
    if parsed.scheme in ("", "file"):
        return parsed.path if parsed.scheme == "file" else url
    raise ValueError(f"unsupported store URL scheme {parsed.scheme!r} in {url!r}")
