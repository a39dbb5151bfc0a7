from __future__ import annotations


class MergedBlocksError(Exception):
    """Base class for every error raised by the merged-blocks tooling."""


class InvalidRangeError(MergedBlocksError, ValueError):
    """Inverted or misaligned block range; raised before any I/O happens."""


class StoreListingError(MergedBlocksError, RuntimeError):
    pass


class UnexpectedBlockError(MergedBlocksError, ValueError):
    """First block of a bundling run is neither a boundary nor the first streamable block."""


class EmptyBundleError(MergedBlocksError, RuntimeError):
    pass


class BundleWriteError(MergedBlocksError, RuntimeError):
    pass


class BlockTransformError(MergedBlocksError, RuntimeError):
    pass


class BlockDecodeError(MergedBlocksError, ValueError):
    pass


class StreamError(MergedBlocksError, RuntimeError):
    pass


class ScanError(MergedBlocksError, RuntimeError):
    def __init__(self, message: str, failed_jobs: int = 0) -> None:
        super().__init__(message)
        self.failed_jobs = failed_jobs


class BlockFileError(MergedBlocksError, ValueError):
    pass
