from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, Iterable, Iterator, List, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class GroupState(str, Enum):
    ACCUMULATING = "accumulating"  # collecting items sharing the current key
    FLUSHING = "flushing"  # a complete group was handed out
    DONE = "done"  # input exhausted, nothing left to hand out


class ReadGroupIterator(Iterator[Tuple[str, List[T]]]):
    """Split a stream grouped by read name into ``(name, items)`` groups.

    Input must already be grouped: a name that reappears after a different
    one starts a new group. The item that ends a group is held back and opens
    the next one.

    Examples
    --------
    >>> groups = ReadGroupIterator(["a1", "a2", "b1"], key=lambda s: s[0])
    >>> [(k, v) for k, v in groups]
    [('a', ['a1', 'a2']), ('b', ['b1'])]
    """

    def __init__(self, items: Iterable[T], key: Callable[[T], str]) -> None:
        self._it = iter(items)
        self._key = key
        self._pending: Optional[T] = None
        self._exhausted = False
        self.state = GroupState.ACCUMULATING
        self.n_groups = 0

    def __iter__(self) -> "ReadGroupIterator[T]":
        return self

    def __next__(self) -> Tuple[str, List[T]]:
        if self.state is GroupState.DONE:
            raise StopIteration
        if self._exhausted and self._pending is None:
            self.state = GroupState.DONE
            raise StopIteration

        self.state = GroupState.ACCUMULATING
        group: List[T] = []
        key: Optional[str] = None
        if self._pending is not None:
            group.append(self._pending)
            key = self._key(self._pending)
            self._pending = None

        for item in self._it:
            k = self._key(item)
            if key is None:
                key = k
            elif k != key:
                self._pending = item
                return self._flush(key, group)
            group.append(item)

        self._exhausted = True
        if key is None:
            self.state = GroupState.DONE
            raise StopIteration
        return self._flush(key, group)

    def _flush(self, key: str, group: List[T]) -> Tuple[str, List[T]]:
        self.state = GroupState.FLUSHING
        self.n_groups += 1
        return key, group


def group_by_read(items: Iterable[T], key: Callable[[T], str]) -> ReadGroupIterator[T]:
    return ReadGroupIterator(items, key)
