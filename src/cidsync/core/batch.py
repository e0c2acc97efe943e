"""
Batch configuration for CID synchronization
"""

from typing import Generator, List, Sequence, TypeVar

T = TypeVar("T")


class BatchConfig:
    """Configuration for batch syncs"""
    # Maximum number of CIDs synced concurrently in a single batch
    MAX_CIDS_PER_BATCH = 50

    # Count a failed upload again when the verification step fails
    COUNT_UPLOAD_FAILURE_TWICE = False

    # Extra attempts for fetch/upload requests (0 disables retrying)
    DEFAULT_RETRIES = 0

    # Base delay between retries in seconds
    RETRY_BACKOFF = 0.5


def effective_batch_size(total: int, max_batch_size: int) -> int:
    """Never run more workers than there are items"""
    if max_batch_size < 1:
        raise ValueError(f"Batch size must be at least 1, got {max_batch_size}")
    return min(max_batch_size, total)


def iter_batches(items: Sequence[T], batch_size: int) -> Generator[List[T], None, None]:
    """
    Split items into consecutive, non-overlapping batches

    Args:
        items: Items to split
        batch_size: Maximum number of items per batch

    Yields:
        List of items for each batch; the last one may be shorter
    """
    if batch_size < 1:
        raise ValueError(f"Batch size must be at least 1, got {batch_size}")

    for start in range(0, len(items), batch_size):
        yield list(items[start:start + batch_size])
