"""Exceptions raised by the subset search."""
from __future__ import annotations


class ICPInputError(ValueError):
    """A precondition on the inputs failed; no subset has been tested."""


class InvarianceTestError(RuntimeError):
    """The injected invariance test failed; the whole search is aborted."""

    def __init__(self, subset, message: str) -> None:
        self.subset = tuple(subset)
        super().__init__(f"Invariance test failed for set {list(self.subset)}: {message}")
