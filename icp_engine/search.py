# FILE: icp_engine/search.py
# ======================================================================================
# ICP Engine
# Subset search — nonlinear invariant causal prediction
# --------------------------------------------------------------------------------------
# What this is
# ------------
# The search controller. Given predictors X, a target Y and environment labels, every
# candidate subset S (smallest first, empty set first) is handed to an invariance test.
# The causal-parent estimate is the intersection of all accepted subsets; when that
# intersection is empty, the inclusion-minimal accepted subsets ("defining sets")
# are reported instead of a single answer.
#
# Pruning (stop_if_empty=True)
# ----------------------------
# After the second acceptance the running intersection I is recomputed. Pending
# subsets whose outcome can no longer change the result are marked as skipped:
#
#   • I non-empty, defining sets not requested → every superset of I
#       (accepting it leaves I unchanged, rejecting it is irrelevant)
#   • otherwise → every superset of the set just accepted
#       (it can neither shrink I nor be inclusion-minimal)
#
#   • I empty and defining sets not requested → the search stops right away.
#
# Typical usage
# -------------
#   from icp_engine import nonlinear_icp
#
#   res = nonlinear_icp(X, Y, E, cond_ind_test="residual_linear", alpha=0.05)
#   res.retrieved_causal_vars      # e.g. (0,)
#   res.defining_sets              # None unless the estimate is empty
#
# Reference
# ---------
# C. Heinze-Deml, J. Peters and N. Meinshausen, "Invariant Causal Prediction for
# Nonlinear Models", arXiv:1706.08576.
# ======================================================================================

from __future__ import annotations

import warnings
from typing import Any, Callable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from .errors import ICPInputError
from .invoke import DEFAULT_SUBSAMPLE_SIZE, InvocationResult, invoke_test, normalize_schedule
from .models import as_invariance_test, environment_codes, set_global_seed
from .models.base import InvarianceTest
from .result import ICPResult, ICPSettings, TestRecord
from .setops import Subset, as_subset, defining_sets, intersection, same_set
from .subsets import SearchSpace, enumerate_subsets
from .utils.logging_utils import get_logger


class SubsetSearch:
    """
    Sequential accept/reject/prune loop over a SearchSpace.

    One instance owns the state of exactly one run; call `run()` once.

    Parameters
    ----------
    X, Y, environment : prepared arrays (validated by `nonlinear_icp`).
    test : InvarianceTest
    space : SearchSpace, candidate subsets in test order (empty set first).
    alpha : float
    speed_up, subsample_size : subsampling speed-up configuration.
    retrieve_defining_sets : keep searching after the intersection becomes empty.
    stop_if_empty : enable pruning / early termination.
    test_additional_set : optional subset tested once after the loop.
    rng : numpy Generator used for subsampling.
    verbose : narrate progress at INFO level (DEBUG otherwise).
    """

    def __init__(
        self,
        X: np.ndarray,
        Y: np.ndarray,
        environment: np.ndarray,
        test: InvarianceTest,
        space: SearchSpace,
        alpha: float = 0.05,
        speed_up: bool = False,
        subsample_size: Sequence[float] = DEFAULT_SUBSAMPLE_SIZE,
        retrieve_defining_sets: bool = True,
        stop_if_empty: bool = True,
        test_additional_set: Optional[Subset] = None,
        rng: Optional[np.random.Generator] = None,
        verbose: bool = False,
    ):
        self.X = X
        self.Y = Y
        self.environment = environment
        self.test = test
        self.space = space
        self.alpha = float(alpha)
        self.speed_up = bool(speed_up)
        self.subsample_size = tuple(subsample_size)
        self.retrieve_defining_sets = bool(retrieve_defining_sets)
        self.stop_if_empty = bool(stop_if_empty)
        self.test_additional_set = test_additional_set
        self.rng = rng if rng is not None else np.random.default_rng()
        self.verbose = bool(verbose)

        self.accepted: List[TestRecord] = []
        self.rejected: List[TestRecord] = []
        self.n_tested = 0
        self.stopped_early = False
        self._done = False
        self._logger = get_logger("search")

    # ------------------------------ Public API ----------------------------------------

    def run(self) -> Tuple[Subset, Optional[List[Subset]]]:
        """
        Walk the search space, then test the additional set.

        Returns
        -------
        (estimate, defining_sets)
        """
        if self._done:
            raise RuntimeError("SubsetSearch.run() can only be called once.")
        self._done = True

        n_sets = len(self.space)
        for i in range(n_sets):
            if i > 1 and (i & (i - 1)) == 0:
                self._log(f"{round(100 * i / n_sets)}% complete: tested {self.n_tested} of {n_sets} sets of variables")
            if self.space.is_skipped(i):
                continue

            subset = self.space[i]
            self._log(f"Testing variables {list(subset)}")
            res = self._invoke(subset)
            if res.outcome.accepted:
                if not self._on_accept(i, subset, res):
                    self.stopped_early = True
                    break
            else:
                self._on_reject(subset, res)

        searched = [r.subset for r in self.accepted]
        estimate = intersection(searched)

        if self.test_additional_set is not None:
            self._test_additional(self.test_additional_set)

        self._log(f"Accepted sets {' ;; '.join(str(list(s)) for s in searched) or 'none'}")
        self._log(f"Retrieved set {list(estimate)}")

        # the additional set does not move the estimate but can define it
        defining: Optional[List[Subset]] = None
        if len(estimate) == 0 and self.accepted:
            defining = defining_sets([r.subset for r in self.accepted])
            self._log(f"Defining sets {[list(s) for s in defining]}")
        return estimate, defining

    # ------------------------------ State transitions ---------------------------------

    def _on_accept(self, i: int, subset: Subset, res: InvocationResult) -> bool:
        """Record an acceptance and prune. Returns False when the search must stop."""
        self._log(f"Accepted set of variables {list(subset)} with p-value {res.outcome.pvalue:.4g}")
        self.accepted.append(TestRecord(subset=subset, pvalue=res.outcome.pvalue, model=res.outcome.model))

        if len(self.accepted) >= 2:
            current = intersection([r.subset for r in self.accepted])
            if not current:
                if not self.retrieve_defining_sets:
                    self._log("Intersection of accepted sets is empty; stopping")
                    return False
                self._log("Intersection of accepted sets is empty; retrieving defining sets")
                if self.stop_if_empty:
                    self._prune(subset, i + 1)
            elif self.stop_if_empty:
                self._prune(subset if self.retrieve_defining_sets else current, i + 1)
        elif len(subset) == 0 and i == 0:
            if not self.retrieve_defining_sets and self.stop_if_empty:
                self._log("Accepted empty set; stopping")
                return False
        return True

    def _on_reject(self, subset: Subset, res: InvocationResult) -> None:
        self._log(f"Rejected set of variables {list(subset)} with p-value {res.outcome.pvalue:.4g}")
        self.rejected.append(TestRecord(subset=subset, pvalue=res.outcome.pvalue))

    def _prune(self, anchor: Subset, start: int) -> None:
        marked = self.space.mark_supersets(anchor, start)
        if marked:
            self._log(f"Removing {marked} set(s) containing variable(s) {list(anchor)}")

    def _test_additional(self, subset: Subset) -> None:
        tested = [r.subset for r in self.accepted] + [r.subset for r in self.rejected]
        if any(same_set(s, subset) for s in tested):
            self._log(f"Additional set {list(subset)} has already been tested")
            return
        self._log(f"Additionally testing variables {list(subset)}")
        res = self._invoke(subset)
        record = TestRecord(
            subset=subset,
            pvalue=res.outcome.pvalue,
            model=res.outcome.model if res.outcome.accepted else None,
            additional=True,
        )
        if res.outcome.accepted:
            self._log(f"Accepted set of variables {list(subset)} with p-value {res.outcome.pvalue:.4g}")
            self.accepted.append(record)
        else:
            self._log(f"Rejected set of variables {list(subset)} with p-value {res.outcome.pvalue:.4g}")
            self.rejected.append(record)

    # ------------------------------ Helpers -------------------------------------------

    def _invoke(self, subset: Subset) -> InvocationResult:
        self.n_tested += 1
        return invoke_test(
            subset,
            self.X,
            self.Y,
            self.environment,
            self.test,
            self.alpha,
            speed_up=self.speed_up,
            subsample_size=self.subsample_size,
            rng=self.rng,
            verbose=self.verbose,
        )

    def _log(self, msg: str) -> None:
        if self.verbose:
            self._logger.info(msg)
        else:
            self._logger.debug(msg)


# --------------------------------------------------------------------------------------
# Input preparation
# --------------------------------------------------------------------------------------

def _prepare_inputs(X, Y, environment, var_names):
    names = None
    if hasattr(X, "columns"):
        names = [str(c) for c in X.columns]
    if var_names is not None:
        names = [str(v) for v in var_names]

    Xa = np.asarray(X, dtype=float)
    if Xa.ndim == 1:
        Xa = Xa.reshape(-1, 1)
    if Xa.ndim != 2:
        raise ICPInputError("X must be 2D [n, p].")

    Ya = np.asarray(Y, dtype=float)
    if Ya.ndim == 2 and Ya.shape[1] == 1:
        Ya = Ya[:, 0]
    if Ya.ndim != 1:
        raise ICPInputError("Y must be a vector of length n.")

    Ea = np.asarray(environment)
    if Ea.shape[0] != Ya.shape[0]:
        raise ICPInputError(
            f"environment needs to have the same length as Y ({Ea.shape[0]} != {Ya.shape[0]})."
        )
    if Xa.shape[0] != Ya.shape[0]:
        raise ICPInputError(f"X and Y must have the same number of rows ({Xa.shape[0]} != {Ya.shape[0]}).")

    codes = environment_codes(Ea)
    if np.unique(codes).size < 2:
        first = Ea[0].tolist() if hasattr(Ea[0], "tolist") else Ea[0]
        raise ICPInputError(
            f"there is just one environment (environment={first} for all observations) "
            "and the method needs at least two distinct environments"
        )
    if names is not None and len(names) != Xa.shape[1]:
        raise ICPInputError("var_names length must equal number of columns in X.")
    return Xa, Ya, Ea, names


def _select_universe(
    X: np.ndarray,
    Y: np.ndarray,
    environment: np.ndarray,
    func: Any,
    args: Mapping[str, Any],
    verbose: bool,
) -> Tuple[Subset, bool]:
    """Apply the preselection callable once. Returns (universe, preselected)."""
    p = X.shape[1]
    full = tuple(range(p))
    if func is None:
        return full, False
    log = get_logger("search")
    if not callable(func):
        msg = "var_preselection_func needs to be a function. Ignoring the argument."
        warnings.warn(msg, UserWarning, stacklevel=3)
        log.warning(msg)
        return full, False
    selected = as_subset(func(X, Y, environment, verbose, **dict(args)))
    bad = [i for i in selected if i < 0 or i >= p]
    if bad:
        raise ICPInputError(f"Preselection returned indices outside 0..{p - 1}: {bad}")
    return selected, True


# --------------------------------------------------------------------------------------
# Entry point
# --------------------------------------------------------------------------------------

def nonlinear_icp(
    X,
    Y,
    environment,
    cond_ind_test: Any = None,
    args_cond_ind_test: Optional[Mapping[str, Any]] = None,
    alpha: float = 0.05,
    var_preselection_func: Optional[Callable[..., Any]] = None,
    args_var_preselection_func: Optional[Mapping[str, Any]] = None,
    max_size_sets: Optional[int] = None,
    cond_ind_test_names: Optional[Sequence[str]] = None,
    speed_up: bool = False,
    subsample_size: Sequence[float] = DEFAULT_SUBSAMPLE_SIZE,
    retrieve_defining_sets: bool = True,
    seed: int = 1,
    stop_if_empty: bool = True,
    test_additional_set: Optional[Sequence[int]] = None,
    verbose: bool = False,
    var_names: Optional[Sequence[str]] = None,
) -> ICPResult:
    """
    Nonlinear invariant causal prediction.

    Parameters
    ----------
    X : array-like or DataFrame [n, p]
        Predictors. DataFrame column names are kept as variable names.
    Y : array-like [n]
        Target.
    environment : array-like [n] or [n, k]
        Environment label(s); at least two distinct values are required.
    cond_ind_test : str | InvarianceTest | callable, optional
        Registry key, test object, or function called as
        ``f(Y, environment, X, alpha, verbose, **args_cond_ind_test)``.
        Defaults to the random-forest residual distribution test.
    args_cond_ind_test : dict, optional
        Keyword configuration for the test.
    alpha : float
        Significance level.
    var_preselection_func : callable, optional
        ``f(X, Y, environment, verbose, **args_var_preselection_func)`` returning the
        indices to search over. Invalid (non-callable) values are ignored with a warning.
    max_size_sets : int, optional
        Largest subset size considered; defaults to the number of variables.
    cond_ind_test_names : sequence of str, optional
        Display names used in log messages only.
    speed_up : bool
        Reject early on subsamples (Bonferroni corrected).
    subsample_size : sequence of float
        Subsample fractions for the speed-up.
    retrieve_defining_sets : bool
        Keep testing after the intersection becomes empty so the reported defining
        sets cover the whole search space.
    seed : int
        Seed set once at the start of the run.
    stop_if_empty : bool
        Skip subsets whose outcome cannot change the result; False tests everything.
    test_additional_set : sequence of int, optional
        Extra subset tested once after the search unless already tested.
    verbose : bool
        Narrate progress through the `icp.search` logger at INFO level.
    var_names : sequence of str, optional
        Variable names (override DataFrame columns).

    Returns
    -------
    ICPResult

    Raises
    ------
    ICPInputError
        Shape or configuration preconditions fail; nothing is tested.
    InvarianceTestError
        The invariance test failed on some subset.
    """
    set_global_seed(seed)
    log = get_logger("search")

    Xa, Ya, Ea, names = _prepare_inputs(X, Y, environment, var_names)
    alpha = float(alpha)
    if not (0.0 < alpha < 1.0):
        raise ICPInputError(f"alpha must lie in (0, 1); got {alpha}.")
    schedule = normalize_schedule(subsample_size) if speed_up else tuple(float(f) for f in subsample_size)

    test_args = dict(args_cond_ind_test or {})
    test, test_name = as_invariance_test(cond_ind_test, test_args)
    display = list(cond_ind_test_names) if cond_ind_test_names else [test_name]

    pre_args = dict(args_var_preselection_func or {})
    universe, preselected = _select_universe(Xa, Ya, Ea, var_preselection_func, pre_args, verbose)

    p = Xa.shape[1]
    max_size = len(universe) if max_size_sets is None else min(int(max_size_sets), len(universe))
    if max_size < 0:
        raise ICPInputError("max_size_sets must be non-negative.")

    additional: Optional[Subset] = None
    if test_additional_set is not None:
        additional = as_subset(test_additional_set)
        bad = [i for i in additional if i < 0 or i >= p]
        if bad:
            raise ICPInputError(f"test_additional_set has indices outside 0..{p - 1}: {bad}")

    narrate = log.info if verbose else log.debug
    narrate(
        f"Using conditional independence test '{' / '.join(display)}'"
        + (" and variable selection." if preselected else ".")
    )
    if preselected:
        narrate(f"Preselected variables {list(universe)}; maximal set size is {max_size}")

    space = SearchSpace(enumerate_subsets(universe, max_size))
    search = SubsetSearch(
        Xa,
        Ya,
        Ea,
        test,
        space,
        alpha=alpha,
        speed_up=speed_up,
        subsample_size=schedule,
        retrieve_defining_sets=retrieve_defining_sets,
        stop_if_empty=stop_if_empty,
        test_additional_set=additional,
        rng=np.random.default_rng(seed),
        verbose=verbose,
    )
    estimate, defining = search.run()

    settings = ICPSettings(
        cond_ind_test=test,
        cond_ind_test_name=test_name,
        args_cond_ind_test=test_args,
        alpha=alpha,
        var_preselection_func=var_preselection_func,
        args_var_preselection_func=pre_args,
        max_size_sets=max_size,
        cond_ind_test_names=tuple(cond_ind_test_names) if cond_ind_test_names else None,
        speed_up=bool(speed_up),
        subsample_size=schedule,
        retrieve_defining_sets=bool(retrieve_defining_sets),
        stop_if_empty=bool(stop_if_empty),
        test_additional_set=additional,
        seed=int(seed),
    )
    return ICPResult(
        retrieved_causal_vars=estimate,
        accepted=search.accepted,
        rejected=search.rejected,
        defining_sets=defining,
        settings=settings,
        var_names=names,
        n_sets=len(space),
        n_tested=search.n_tested,
        n_pruned=space.n_skipped(),
        stopped_early=search.stopped_early,
    )
