"""Helper functions for chunking iterables."""
from collections.abc import Iterable, Iterator
from itertools import islice
from typing import TypeVar

T = TypeVar("T")


def chunked(iterable: Iterable[T], size: int) -> Iterator[list[T]]:
    """Yield successive lists of at most ``size`` items, preserving order."""
    if size < 1:
        raise ValueError("chunk size must be positive")
    iterator = iter(iterable)
    while batch := list(islice(iterator, size)):
        yield batch
