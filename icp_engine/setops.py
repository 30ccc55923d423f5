"""
Set algebra over predictor subsets.

Subsets are sorted tuples of 0-based column indices and the empty subset is `()`.
Intersecting any family that contains `()` therefore yields `()` without a special
case, and no index value can be mistaken for the empty set.
"""
from __future__ import annotations

from typing import Iterable, List, Sequence, Tuple

Subset = Tuple[int, ...]


def as_subset(indices: Iterable[int]) -> Subset:
    """Canonical form: sorted tuple of unique ints."""
    return tuple(sorted({int(i) for i in indices}))


def same_set(a: Iterable[int], b: Iterable[int]) -> bool:
    return set(a) == set(b)


def intersection(sets: Sequence[Iterable[int]]) -> Subset:
    """
    Intersection of an ordered family of subsets.

    Returns `()` for an empty family.
    """
    if len(sets) == 0:
        return ()
    common = set(sets[0])
    for s in sets[1:]:
        common &= set(s)
        if not common:
            break
    return tuple(sorted(common))


def defining_sets(sets: Sequence[Iterable[int]]) -> List[Subset]:
    """
    Inclusion-minimal members of an accepted family.

    A set is kept unless another member is a strict subset of it. Duplicates are
    collapsed and first-occurrence order is preserved.

    Examples
    --------
    >>> defining_sets([(0, 1), (), (2,)])
    [()]
    >>> defining_sets([(0, 1), (1, 2), (0, 1, 2)])
    [(0, 1), (1, 2)]
    """
    family: List[Subset] = []
    seen = set()
    for s in sets:
        key = frozenset(s)
        if key in seen:
            continue
        seen.add(key)
        family.append(as_subset(key))

    minimal: List[Subset] = []
    for candidate in family:
        cand = set(candidate)
        if any(set(other) < cand for other in family):
            continue
        minimal.append(candidate)
    return minimal
