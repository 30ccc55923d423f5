"""
Test invoker: turns a candidate subset into a design matrix and runs the injected
invariance test on it, optionally with the subsampling speed-up.

Speed-up
--------
Tiers follow the subsample schedule (fractions of the sample, strictly increasing,
a final 1.0 tier is always present). Every tier before the last draws a subsample
stratified by environment and calls the test at the Bonferroni level
``alpha / n_tiers``; a rejection there ends the invocation early. The full-sample
tier runs at the uncorrected ``alpha`` and is the only tier that can accept.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

import numpy as np

from .errors import ICPInputError, InvarianceTestError
from .models.base import InvarianceOutcome, InvarianceTest, coerce_outcome
from .models.residual_test import environment_codes
from .setops import Subset
from .utils.logging_utils import get_logger

DEFAULT_SUBSAMPLE_SIZE: Tuple[float, ...] = (0.1, 0.25, 0.5, 0.75, 1.0)


@dataclass(frozen=True)
class InvocationResult:
    outcome: InvarianceOutcome
    tiers_run: int = 1
    early_stop: bool = False


def design_matrix(X: np.ndarray, subset: Subset) -> np.ndarray:
    """Columns of X in `subset`, or a single constant column for the empty set."""
    if len(subset) == 0:
        return np.ones((X.shape[0], 1))
    return X[:, list(subset)]


def normalize_schedule(subsample_size: Sequence[float]) -> Tuple[float, ...]:
    fracs = tuple(float(f) for f in subsample_size)
    if not fracs:
        raise ICPInputError("subsample_size must contain at least one fraction.")
    if any(not (0.0 < f <= 1.0) for f in fracs):
        raise ICPInputError(f"subsample_size fractions must lie in (0, 1]; got {list(fracs)}.")
    if any(b <= a for a, b in zip(fracs, fracs[1:])):
        raise ICPInputError(f"subsample_size must be strictly increasing; got {list(fracs)}.")
    if fracs[-1] < 1.0:
        fracs = fracs + (1.0,)
    return fracs


def stratified_prefixes(
    codes: np.ndarray,
    fractions: Sequence[float],
    rng: np.random.Generator,
) -> list[np.ndarray]:
    """
    Nested row subsets, one per fraction.

    Each environment is permuted once; tier k keeps the first ceil(frac_k * n_e)
    rows of every environment, so larger tiers extend smaller ones.
    """
    perms = {lev: rng.permutation(np.flatnonzero(codes == lev)) for lev in np.unique(codes)}
    out = []
    for frac in fractions:
        parts = [p[: max(1, math.ceil(frac * p.size))] for p in perms.values()]
        out.append(np.sort(np.concatenate(parts)))
    return out


def _run(test: InvarianceTest, subset: Subset, Y, environment, X, alpha: float, verbose: bool) -> InvarianceOutcome:
    try:
        return coerce_outcome(test.test(Y, environment, X, alpha, verbose))
    except Exception as e:
        raise InvarianceTestError(subset, f"{type(e).__name__}: {e}") from e


def invoke_test(
    subset: Subset,
    X: np.ndarray,
    Y: np.ndarray,
    environment: np.ndarray,
    test: InvarianceTest,
    alpha: float,
    speed_up: bool = False,
    subsample_size: Sequence[float] = DEFAULT_SUBSAMPLE_SIZE,
    rng: Optional[np.random.Generator] = None,
    verbose: bool = False,
) -> InvocationResult:
    """
    Run `test` on the design matrix of `subset`.

    Raises
    ------
    InvarianceTestError
        If the test raises or returns something that is not a valid outcome.
    """
    design = design_matrix(X, subset)
    if not speed_up:
        return InvocationResult(outcome=_run(test, subset, Y, environment, design, alpha, verbose))

    log = get_logger("invoke")
    fractions = normalize_schedule(subsample_size)
    n_tiers = len(fractions)
    corrected = alpha / n_tiers
    if rng is None:
        rng = np.random.default_rng()
    rows = stratified_prefixes(environment_codes(environment), fractions[:-1], rng)

    for k, idx in enumerate(rows, start=1):
        outcome = _run(test, subset, Y[idx], environment[idx], design[idx], corrected, verbose)
        if not outcome.accepted:
            log.debug(
                f"Set {list(subset)} rejected on subsample {fractions[k - 1]:.2f} "
                f"(p={outcome.pvalue:.4g}, level={corrected:.4g})"
            )
            return InvocationResult(outcome=outcome, tiers_run=k, early_stop=True)

    outcome = _run(test, subset, Y, environment, design, alpha, verbose)
    return InvocationResult(outcome=outcome, tiers_run=n_tiers, early_stop=False)
