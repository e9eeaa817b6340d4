"""
Batcher

Fixed-size chunking of ordered work items.
"""

from typing import Generic, Iterator, Sequence, TypeVar

T = TypeVar('T')


class Batcher(Generic[T]):
    """Lazy, restartable sequence of fixed-size chunks.

    Every chunk has `size` items except possibly the last one. Iterating
    again starts over from the first chunk.
    """

    def __init__(self, items: Sequence[T], size: int):
        if size < 1:
            raise ValueError(f"Batch size must be a positive integer, got {size}")
        self.items = items
        self.size = size

    def __len__(self) -> int:
        return -(-len(self.items) // self.size)

    def __iter__(self) -> Iterator[list[T]]:
        for start in range(0, len(self.items), self.size):
            yield list(self.items[start:start + self.size])


def batched(items: Sequence[T], size: int) -> list[list[T]]:
    """Split items into chunks of `size`."""
    return list(Batcher(items, size))
