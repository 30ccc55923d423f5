# icp_engine/models/base.py
# ======================================================================================
# ICP Engine
# Invariance test interface
# --------------------------------------------------------------------------------------
# An invariance test checks the null hypothesis that the conditional distribution of
# the target Y given a candidate design matrix X_S is the same in every environment:
#
#     H0:  Y | X_S, E  =  Y | X_S
#
# The search engine only needs one capability from a test:
#
#     test(Y, environment, X, alpha, verbose) -> InvarianceOutcome
#
# Concrete strategies subclass InvarianceTest. Plain functions with the same argument
# order (plus keyword configuration) are wrapped by CallableTest; they may return an
# InvarianceOutcome, a mapping with "pvalue" and "decision"/"accepted" (optionally
# "model"), or a tuple (pvalue, accepted[, model]).
#
# The decision flag returned by the test is authoritative: some tests correct their
# p-values internally before deciding, so the engine never re-derives acceptance
# from the p-value.
# ======================================================================================

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

import numpy as np


@dataclass(frozen=True)
class InvarianceOutcome:
    """
    Result of one invariance test.

    pvalue   : p-value in [0, 1]; large values mean invariance cannot be rejected.
    accepted : True if the test does not reject invariance at the requested level.
    model    : optional fitted-model handle kept for accepted sets.
    """
    pvalue: float
    accepted: bool
    model: Any = None

    def __post_init__(self) -> None:
        p = float(self.pvalue)
        if math.isnan(p) or p < 0.0 or p > 1.0:
            raise ValueError(f"p-value must lie in [0, 1], got {self.pvalue!r}.")
        object.__setattr__(self, "pvalue", p)
        object.__setattr__(self, "accepted", bool(self.accepted))


class InvarianceTest(ABC):
    """
    Abstract base class for invariance tests used by the subset search.
    """

    #: short label used in log lines and in the echoed settings
    name: str = "invariance_test"

    @abstractmethod
    def test(
        self,
        Y: np.ndarray,
        environment: np.ndarray,
        X: np.ndarray,
        alpha: float,
        verbose: bool = False,
    ) -> InvarianceOutcome:
        """
        Test invariance of Y | X across environments.

        Parameters
        ----------
        Y : np.ndarray of shape (n,)
        environment : np.ndarray of shape (n,) or (n, k)
        X : np.ndarray of shape (n, d), the candidate design matrix
            (a single constant column for the empty set)
        alpha : float, significance level
        verbose : bool
        """
        raise NotImplementedError("Subclasses must implement test().")

    def __call__(self, Y, environment, X, alpha, verbose=False) -> InvarianceOutcome:
        return self.test(Y, environment, X, alpha, verbose)


def coerce_outcome(raw: Any) -> InvarianceOutcome:
    """
    Normalize whatever a test callable returned into an InvarianceOutcome.
    """
    if isinstance(raw, InvarianceOutcome):
        return raw
    if isinstance(raw, Mapping):
        if "pvalue" not in raw:
            raise ValueError("Test result mapping must contain 'pvalue'.")
        if "accepted" in raw:
            decision = raw["accepted"]
        elif "decision" in raw:
            decision = raw["decision"]
        else:
            raise ValueError("Test result mapping must contain 'decision' or 'accepted'.")
        return InvarianceOutcome(pvalue=raw["pvalue"], accepted=_as_decision(decision), model=raw.get("model"))
    if isinstance(raw, tuple) and len(raw) in (2, 3):
        model = raw[2] if len(raw) == 3 else None
        return InvarianceOutcome(pvalue=raw[0], accepted=_as_decision(raw[1]), model=model)
    raise TypeError(
        "Invariance test must return an InvarianceOutcome, a mapping with 'pvalue' and "
        f"'decision', or a (pvalue, decision[, model]) tuple; got {type(raw).__name__}."
    )


def _as_decision(value: Any) -> bool:
    # numeric 1/0 flags are accepted as well as booleans
    if isinstance(value, str):
        v = value.strip().lower()
        if v in ("accept", "accepted", "true", "1"):
            return True
        if v in ("reject", "rejected", "false", "0"):
            return False
        raise ValueError(f"Unrecognized decision flag: {value!r}")
    return bool(value)


class CallableTest(InvarianceTest):
    """
    Adapter turning a plain function into an InvarianceTest.

    The function is called as ``func(Y, environment, X, alpha, verbose, **kwargs)``;
    every keyword argument is forwarded, `label` only sets the display name.
    """

    def __init__(self, func: Callable[..., Any], *, label: Optional[str] = None, **kwargs: Any):
        if not callable(func):
            raise TypeError("func must be callable.")
        self.func = func
        self.kwargs: Dict[str, Any] = dict(kwargs)
        self.name = label or getattr(func, "__name__", type(func).__name__)

    def test(self, Y, environment, X, alpha, verbose=False) -> InvarianceOutcome:
        return coerce_outcome(self.func(Y, environment, X, alpha, verbose, **self.kwargs))

    def __repr__(self) -> str:
        return f"CallableTest({self.name!r}, kwargs={sorted(self.kwargs)})"
