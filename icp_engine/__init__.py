"""
ICP Engine — Nonlinear Invariant Causal Prediction

Estimates the causal parents of a target variable from data gathered in several
environments. A subset of predictors is plausible when the conditional distribution
of the target given that subset is invariant across environments; the estimate is
the intersection of all such subsets.

Modules
-------
- subsets   → candidate subset enumeration and the prunable search space
- invoke    → design matrices + invariance test calls (subsampling speed-up)
- search    → the accept/reject/prune controller and `nonlinear_icp`
- setops    → intersection and defining sets
- result    → result & settings structures
- models    → invariance test interface, default residual test, registry
- cli       → Typer CLI (config-driven runs on CSV data)
"""
from __future__ import annotations

import os

from .errors import ICPInputError, InvarianceTestError
from .models import CallableTest, InvarianceOutcome, InvarianceTest, ResidualDistributionTest
from .result import ICPResult, ICPSettings, TestRecord
from .search import SubsetSearch, nonlinear_icp
from .setops import defining_sets, intersection
from .subsets import SearchSpace, enumerate_subsets

__all__ = [
    "CallableTest",
    "ICPInputError",
    "ICPResult",
    "ICPSettings",
    "InvarianceOutcome",
    "InvarianceTest",
    "InvarianceTestError",
    "ResidualDistributionTest",
    "SearchSpace",
    "SubsetSearch",
    "TestRecord",
    "defining_sets",
    "enumerate_subsets",
    "get_version",
    "intersection",
    "nonlinear_icp",
]


def get_version() -> str:
    """
    Return package version.
    Uses environment variable ICP_ENGINE_VERSION if present, else falls back to static.
    """
    return os.environ.get("ICP_ENGINE_VERSION", "0.3.0")


__version__ = get_version()
