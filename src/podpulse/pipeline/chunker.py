"""
Audio Chunk Planner

Splits a stored audio blob into fixed-size byte ranges so that only one
chunk is ever held in memory during transcription, whatever the episode
length.
"""

import logging
from typing import List

logger = logging.getLogger(__name__)


class ByteChunk:
    """A contiguous byte range ``[start, end)`` of an audio blob."""

    def __init__(self, index: int, start: int, end: int):
        self.index = index
        self.start = start
        self.end = end

    @property
    def size(self) -> int:
        return self.end - self.start

    def as_range(self):
        return (self.start, self.end)

    def __eq__(self, other):
        if not isinstance(other, ByteChunk):
            return NotImplemented
        return (self.index, self.start, self.end) == (other.index, other.start, other.end)

    def __repr__(self):
        return f"ByteChunk(index={self.index}, start={self.start}, end={self.end})"


def plan_chunks(blob_size: int, chunk_size: int) -> List[ByteChunk]:
    """
    Plan contiguous, non-overlapping byte ranges covering a blob.

    Args:
        blob_size: Total blob size in bytes
        chunk_size: Maximum bytes per chunk

    Returns:
        ceil(blob_size / chunk_size) chunks in order

    Note:
        Chunks must be transcribed one after another, never in parallel.
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    if blob_size < 0:
        raise ValueError(f"blob_size must not be negative, got {blob_size}")

    num_chunks = (blob_size + chunk_size - 1) // chunk_size
    chunks = [
        ByteChunk(
            index=i,
            start=i * chunk_size,
            end=min((i + 1) * chunk_size, blob_size),
        )
        for i in range(num_chunks)
    ]

    logger.info(
        f"Planned {num_chunks} chunks of up to {chunk_size} bytes "
        f"over {blob_size} bytes"
    )
    return chunks
