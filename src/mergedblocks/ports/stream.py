# mergedblocks/ports/stream.py
from __future__ import annotations

from typing import AsyncIterator, Protocol
from ..domain.models import StreamRequest, StreamResponse


class BlockStreamClient(Protocol):
    """Port for a remote block streaming service."""

    def blocks(self, request: StreamRequest) -> AsyncIterator[StreamResponse]:
        """Stream responses for the request. Exhaustion means clean end of stream;
        any exception raised while iterating is a transport failure."""
