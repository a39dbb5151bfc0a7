from __future__ import annotations
import base64, json
from typing import AsyncIterator

import httpx

from ..domain.models import StreamRequest, StreamResponse
from ..ports.stream import BlockStreamClient


def _base_url(endpoint: str, plaintext: bool) -> str:
    if endpoint.startswith(("http://", "https://")):
        return endpoint.rstrip("/")
    return ("http://" if plaintext else "https://") + endpoint.rstrip("/")


def _parse_line(line: str) -> StreamResponse:
    d = json.loads(line)
    return StreamResponse(
        block=base64.b64decode(d["block"]),
        step=str(d.get("step") or "irreversible"),
        cursor=str(d.get("cursor") or ""),
    )


class HttpxBlockStream(BlockStreamClient):
    """
    Block stream over a long-lived HTTP response: the request is POSTed as JSON and
    the server answers with one JSON object per line
    (`{"block": <base64>, "step": "...", "cursor": "..."}`).
    """
    def __init__(
        self,
        endpoint: str,
        *,
        jwt: str = "",
        insecure: bool = False,
        plaintext: bool = False,
        timeout_s: int = 30,
        path: str = "/v1/blocks",
    ) -> None:
        self.url = _base_url(endpoint, plaintext) + path
        headers = {"Accept": "application/x-ndjson"}
        if jwt:
            headers["Authorization"] = f"Bearer {jwt}"
        self.client = httpx.AsyncClient(
            http2=True,
            verify=not insecure,
            headers=headers,
            # reads stay open for the whole stream
            timeout=httpx.Timeout(connect=timeout_s, read=None, write=timeout_s, pool=timeout_s),
        )

    async def blocks(self, request: StreamRequest) -> AsyncIterator[StreamResponse]:
        payload = {
            "start_block_num": request.start_block_num,
            "stop_block_num": request.stop_block_num,
            "fork_steps": list(request.fork_steps),
            "cursor": request.cursor,
        }
        async with self.client.stream("POST", self.url, json=payload) as r:
            r.raise_for_status()
            async for line in r.aiter_lines():
                if not line.strip():
                    continue
                yield _parse_line(line)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "HttpxBlockStream":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()
