"""
Result structure returned by `nonlinear_icp`.

`ICPResult` packages the causal-parent estimate, every tested set with its p-value,
the defining sets and the settings of the run. `to_dict()` gives a JSON-safe view
(fitted models are left out; callables are reduced to their names).
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .setops import Subset


@dataclass(frozen=True)
class TestRecord:
    """One tested set: canonical subset, p-value, optional model, additional-set flag."""
    __test__ = False  # not a pytest class

    subset: Subset
    pvalue: float
    model: Any = None
    additional: bool = False


@dataclass(frozen=True)
class ICPSettings:
    cond_ind_test: Any
    cond_ind_test_name: str
    args_cond_ind_test: Dict[str, Any]
    alpha: float
    var_preselection_func: Any
    args_var_preselection_func: Dict[str, Any]
    max_size_sets: int
    cond_ind_test_names: Optional[Tuple[str, ...]]
    speed_up: bool
    subsample_size: Tuple[float, ...]
    retrieve_defining_sets: bool
    stop_if_empty: bool
    test_additional_set: Optional[Subset]
    seed: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cond_ind_test": self.cond_ind_test_name,
            "args_cond_ind_test": _jsonable(self.args_cond_ind_test),
            "alpha": self.alpha,
            "var_preselection_func": _callable_name(self.var_preselection_func),
            "args_var_preselection_func": _jsonable(self.args_var_preselection_func),
            "max_size_sets": self.max_size_sets,
            "cond_ind_test_names": list(self.cond_ind_test_names) if self.cond_ind_test_names else None,
            "speed_up": self.speed_up,
            "subsample_size": list(self.subsample_size),
            "retrieve_defining_sets": self.retrieve_defining_sets,
            "stop_if_empty": self.stop_if_empty,
            "test_additional_set": list(self.test_additional_set) if self.test_additional_set is not None else None,
            "seed": self.seed,
        }


@dataclass
class ICPResult:
    retrieved_causal_vars: Subset
    accepted: List[TestRecord]
    rejected: List[TestRecord]
    defining_sets: Optional[List[Subset]]
    settings: ICPSettings
    var_names: Optional[List[str]] = None
    n_sets: int = 0
    n_tested: int = 0
    n_pruned: int = 0
    stopped_early: bool = False

    # ---- flat views mirroring the accepted/rejected collections ----

    @property
    def accepted_sets(self) -> List[Subset]:
        return [r.subset for r in self.accepted]

    @property
    def pvalues_accepted(self) -> List[float]:
        return [r.pvalue for r in self.accepted]

    @property
    def accepted_models(self) -> List[Any]:
        return [r.model for r in self.accepted if r.model is not None]

    @property
    def rejected_sets(self) -> List[Subset]:
        return [r.subset for r in self.rejected]

    @property
    def pvalues_rejected(self) -> List[float]:
        return [r.pvalue for r in self.rejected]

    @property
    def retrieved_causal_names(self) -> List[str]:
        return self.names(self.retrieved_causal_vars)

    def names(self, subset: Sequence[int]) -> List[str]:
        if self.var_names is None:
            return [str(i) for i in subset]
        return [self.var_names[i] for i in subset]

    # ---- serialization ----

    def to_dict(self) -> Dict[str, Any]:
        def rec(r: TestRecord) -> Dict[str, Any]:
            return {
                "set": list(r.subset),
                "names": self.names(r.subset),
                "pvalue": r.pvalue,
                "additional": r.additional,
            }

        return {
            "retrieved_causal_vars": list(self.retrieved_causal_vars),
            "retrieved_causal_names": self.retrieved_causal_names,
            "accepted": [rec(r) for r in self.accepted],
            "rejected": [rec(r) for r in self.rejected],
            "defining_sets": [list(s) for s in self.defining_sets] if self.defining_sets is not None else None,
            "var_names": self.var_names,
            "n_sets": self.n_sets,
            "n_tested": self.n_tested,
            "n_pruned": self.n_pruned,
            "stopped_early": self.stopped_early,
            "settings": self.settings.to_dict(),
        }

    def to_json(self, path: str | Path) -> Path:
        p = Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(json.dumps(self.to_dict(), indent=2), encoding="utf-8")
        return p


def _callable_name(obj: Any) -> Optional[str]:
    if obj is None:
        return None
    return getattr(obj, "__name__", None) or getattr(obj, "name", None) or type(obj).__name__


def _jsonable(d: Dict[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for k, v in (d or {}).items():
        if isinstance(v, (str, int, float, bool)) or v is None:
            out[k] = v
        elif isinstance(v, (list, tuple)):
            out[k] = [x if isinstance(x, (str, int, float, bool)) or x is None else repr(x) for x in v]
        elif callable(v):
            out[k] = _callable_name(v)
        else:
            out[k] = repr(v)
    return out
