"""
Shared test configuration and fixtures.

Bundles are encoded with the real Parquet codec and kept in an in-memory store so
scanner, bundler and ingest tests run without touching the filesystem.
"""

import pytest

from fakes import MemoryObjectStore
from mergedblocks.adapters.codec_parquet import ParquetBlockCodec


@pytest.fixture
def codec() -> ParquetBlockCodec:
    return ParquetBlockCodec()


@pytest.fixture
def store() -> MemoryObjectStore:
    return MemoryObjectStore()


@pytest.fixture
def dest() -> MemoryObjectStore:
    return MemoryObjectStore()
