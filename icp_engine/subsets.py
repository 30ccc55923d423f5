"""
Subset enumeration and the prunable search space.

The enumeration itself is immutable; pruning only flips entries of a skip mask
kept next to it, so every transition of the search can be audited afterwards.
"""
from __future__ import annotations

import itertools
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple

from .setops import Subset, as_subset


def enumerate_subsets(universe: Iterable[int], max_size: Optional[int] = None) -> List[Subset]:
    """
    All subsets of `universe` with size 0..max_size, smallest first.

    Within one size, combinations follow the lexicographic order of the sorted
    universe. The empty subset `()` is always the first entry.
    """
    items = as_subset(universe)
    if max_size is None:
        max_size = len(items)
    max_size = max(0, min(int(max_size), len(items)))
    out: List[Subset] = [()]
    for k in range(1, max_size + 1):
        out.extend(itertools.combinations(items, k))
    return out


class SearchSpace:
    """
    Ordered candidate subsets plus the skip mask written by pruning.

    Parameters
    ----------
    sets : sequence of subsets, in test order.
    """

    def __init__(self, sets: Sequence[Iterable[int]]):
        self._sets: Tuple[Subset, ...] = tuple(as_subset(s) for s in sets)
        self._skipped: List[bool] = [False] * len(self._sets)

    def __len__(self) -> int:
        return len(self._sets)

    def __getitem__(self, i: int) -> Subset:
        return self._sets[i]

    def __iter__(self) -> Iterator[Subset]:
        return iter(self._sets)

    @property
    def sets(self) -> Tuple[Subset, ...]:
        return self._sets

    @property
    def skipped(self) -> Tuple[bool, ...]:
        return tuple(self._skipped)

    def is_skipped(self, i: int) -> bool:
        return self._skipped[i]

    def n_skipped(self) -> int:
        return sum(self._skipped)

    def pending(self, start: int) -> List[Subset]:
        """Entries at positions >= start that are still to be tested."""
        return [s for i, s in enumerate(self._sets) if i >= start and not self._skipped[i]]

    def mark_supersets(self, anchor: Iterable[int], start: int) -> int:
        """
        Skip every entry at position >= start that contains all of `anchor`.

        Positions before `start` (already visited) are never touched.
        Returns the number of entries newly marked.
        """
        need = set(anchor)
        marked = 0
        for i in range(max(0, start), len(self._sets)):
            if self._skipped[i]:
                continue
            if need.issubset(self._sets[i]):
                self._skipped[i] = True
                marked += 1
        return marked
