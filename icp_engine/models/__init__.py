# /icp_engine/models/__init__.py
# ======================================================================================
# ICP Engine
# models package — invariance test interface, registry, and convenience factories
# --------------------------------------------------------------------------------------
# What this is
# ------------
# A single, stable import point for invariance tests used by the subset search. It
# exposes:
#
#   • The InvarianceTest interface and the CallableTest adapter for plain functions
#   • A tiny string → factory registry to instantiate tests by name (used by configs)
#   • as_invariance_test(): normalize whatever the caller passed into a test object
#
# Registry keys (aliases)
# -----------------------
#   "residual", "residual_rf", "rf"      random forest + KS residual test (default)
#   "residual_linear", "linear"          linear regression + Levene/Welch residual test
# ======================================================================================

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import numpy as np

from .base import CallableTest, InvarianceOutcome, InvarianceTest, coerce_outcome
from .residual_test import ResidualDistributionTest, environment_codes

__all__ = [
    "CallableTest",
    "InvarianceOutcome",
    "InvarianceTest",
    "ResidualDistributionTest",
    "TestRegistry",
    "REGISTRY",
    "as_invariance_test",
    "coerce_outcome",
    "create",
    "environment_codes",
    "get_available",
    "register_factory",
    "set_global_seed",
]

DEFAULT_TEST = "residual"


# ======================================================================================
# Registry & Factories
# ======================================================================================

@dataclass
class _Entry:
    """Internal: registry entry describing one constructible test."""
    name: str
    factory: Callable[..., InvarianceTest]
    summary: str = ""


class TestRegistry:
    """
    Minimal registry for invariance test lookup by string key.

    Examples
    --------
        from icp_engine.models import create, get_available

        print(get_available())
        t = create("residual", n_estimators=200)
    """

    __test__ = False  # not a pytest class

    def __init__(self) -> None:
        self._map: Dict[str, _Entry] = {}

    def register(self, name: str, factory: Callable[..., InvarianceTest], summary: str = "") -> None:
        key = name.strip().lower()
        self._map[key] = _Entry(name=key, factory=factory, summary=summary)

    def register_alias(self, alias: str, target: str) -> None:
        alias_key = alias.strip().lower()
        target_key = target.strip().lower()
        if target_key not in self._map:
            raise KeyError(f"Cannot alias unknown target '{target}'.")
        self._map[alias_key] = self._map[target_key]

    def create(self, name: str, /, **kwargs: Any) -> InvarianceTest:
        key = name.strip().lower()
        if key not in self._map:
            raise KeyError(f"Unknown invariance test '{name}'. Known: {sorted(self._map)}")
        return self._map[key].factory(**kwargs)

    def keys(self) -> List[str]:
        return sorted(self._map.keys())

    def table(self) -> List[Dict[str, Any]]:
        """One row per unique factory, aliases collapsed."""
        by_id: Dict[int, Dict[str, Any]] = {}
        for k, e in self._map.items():
            row = by_id.setdefault(id(e), {"keys": [], "summary": e.summary})
            row["keys"].append(k)
        rows = [dict(r, keys=sorted(r["keys"])) for r in by_id.values()]
        rows.sort(key=lambda r: r["keys"][0])
        return rows

    def __contains__(self, name: str) -> bool:
        return name.strip().lower() in self._map

    def __len__(self) -> int:
        return len(self._map)


REGISTRY = TestRegistry()


def _factory_residual_rf(**kwargs: Any) -> InvarianceTest:
    kwargs.setdefault("regressor", "rf")
    return ResidualDistributionTest(**kwargs)


def _factory_residual_linear(**kwargs: Any) -> InvarianceTest:
    kwargs.setdefault("regressor", "linear")
    kwargs.setdefault("comparison", "levene_ttest")
    return ResidualDistributionTest(**kwargs)


REGISTRY.register(
    "residual",
    _factory_residual_rf,
    summary="Random-forest OOB residuals, KS test per environment (Bonferroni)",
)
REGISTRY.register_alias("residual_rf", "residual")
REGISTRY.register_alias("rf", "residual")
REGISTRY.register(
    "residual_linear",
    _factory_residual_linear,
    summary="Linear-regression residuals, Welch t + Levene per environment (Bonferroni)",
)
REGISTRY.register_alias("linear", "residual_linear")


# ======================================================================================
# Global seeding convenience
# ======================================================================================

def set_global_seed(seed: int = 1) -> None:
    """
    Seed NumPy's global RNG so tests that draw from it (e.g. forests built without a
    random_state) are reproducible within one run.
    """
    np.random.seed(seed)


# ======================================================================================
# Public helpers
# ======================================================================================

def create(name: str, /, **kwargs: Any) -> InvarianceTest:
    """Create an invariance test by registry key."""
    return REGISTRY.create(name, **kwargs)


def register_factory(name: str, factory: Callable[..., InvarianceTest], *, summary: str = "") -> None:
    """Allow external modules/notebooks to register new tests at runtime."""
    REGISTRY.register(name, factory, summary=summary)


def get_available() -> List[str]:
    return REGISTRY.keys()


def as_invariance_test(
    test: Any,
    args: Optional[Mapping[str, Any]] = None,
) -> Tuple[InvarianceTest, str]:
    """
    Normalize the user's choice of test into (InvarianceTest, display name).

    - None            → default registry test, built with `args`
    - str             → registry key, built with `args`
    - InvarianceTest  → used as is (`args` must be empty)
    - callable        → wrapped in CallableTest with `args` as keyword configuration
    """
    kwargs = dict(args or {})
    if test is None:
        test = DEFAULT_TEST
    if isinstance(test, str):
        obj = create(test, **kwargs)
        return obj, test
    if isinstance(test, InvarianceTest):
        if kwargs:
            raise ValueError("Test arguments cannot be applied to an already constructed InvarianceTest.")
        return test, getattr(test, "name", type(test).__name__)
    if callable(test):
        # set after construction so that a "label" key still reaches the function
        obj = CallableTest(test)
        obj.kwargs.update(kwargs)
        return obj, obj.name
    raise TypeError(f"cond_ind_test must be a registry key, an InvarianceTest or a callable; got {type(test).__name__}.")
