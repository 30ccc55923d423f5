"""
Shared pytest fixtures for ICP engine tests.

- cfg_path / cfg: a minimal search config written to tmp_path and loaded back
- sim_data: linear-Gaussian data from two environments where X0 is the only parent of Y
- oracle: a scripted invariance test that accepts a fixed family of subsets
"""
from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable, List, Tuple

import numpy as np
import pytest

from icp_engine.models.base import InvarianceOutcome, InvarianceTest
from icp_engine.utils.config_loader import resolve_config


_MIN_CONFIG_YAML = """\
run:
  output_dir: "{OUT}"
  random_seed: 3

search:
  alpha: 0.01
  max_size_sets: 2
  speed_up: false
  retrieve_defining_sets: true
  stop_if_empty: true

test:
  name: "residual_linear"
  args: {}

logging:
  level: "INFO"
  to_file: false
"""


@pytest.fixture(scope="function")
def cfg_path(tmp_path: Path) -> Path:
    """Writes a minimal icp.yaml into tmp_path/configs/ and returns its path."""
    cfg_dir = tmp_path / "configs"
    cfg_dir.mkdir(parents=True, exist_ok=True)
    out_dir = tmp_path / "outputs"
    p = cfg_dir / "icp.yaml"
    p.write_text(_MIN_CONFIG_YAML.replace("{OUT}", out_dir.as_posix()), encoding="utf-8")
    return p


@pytest.fixture(scope="function")
def cfg(cfg_path: Path) -> Dict:
    return resolve_config(cfg_path)


@pytest.fixture(scope="session")
def sim_data() -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    E ∈ {0, 1};  X0 = 2E + ε0;  Y = X0 + εY;  X1 = Y + 2E + ε1;  X2 = ε2.
    Only {X0} and {X0, X2} leave the residuals of Y invariant.
    """
    rng = np.random.default_rng(2024)
    n = 1000
    E = np.repeat([0, 1], n // 2)
    X0 = 2.0 * E + rng.normal(size=n)
    Y = X0 + 0.5 * rng.normal(size=n)
    X1 = Y + 2.0 * E + 0.5 * rng.normal(size=n)
    X2 = rng.normal(size=n)
    X = np.column_stack([X0, X1, X2])
    return X, Y, E


# --------------------------------------------------------------------------------------
# Scripted oracle test
# --------------------------------------------------------------------------------------

_OFFSET = 10.0


def coded_design(n: int, p: int) -> np.ndarray:
    """Constant columns 10, 11, ... so the oracle can tell which subset it was given."""
    return np.tile(_OFFSET + np.arange(p, dtype=float), (n, 1))


def decode_subset(X: np.ndarray) -> Tuple[int, ...]:
    row = np.asarray(X)[0]
    if row.size == 1 and row[0] == 1.0:
        return ()
    return tuple(sorted(int(v - _OFFSET) for v in row))


class OracleTest(InvarianceTest):
    """Accepts exactly the subsets in `accept`; records every call."""

    name = "oracle"

    def __init__(self, accept: Iterable[Iterable[int]]):
        self.accept = {frozenset(s) for s in accept}
        self.calls: List[Tuple[Tuple[int, ...], int, float]] = []

    def test(self, Y, environment, X, alpha, verbose=False) -> InvarianceOutcome:
        subset = decode_subset(X)
        self.calls.append((subset, int(np.asarray(X).shape[0]), float(alpha)))
        if frozenset(subset) in self.accept:
            return InvarianceOutcome(pvalue=0.5, accepted=True, model=("model", subset))
        return InvarianceOutcome(pvalue=0.001, accepted=False)

    @property
    def tested(self) -> List[Tuple[int, ...]]:
        return [c[0] for c in self.calls]


@pytest.fixture
def oracle_data():
    """Factory: (X, Y, E) with n rows, p coded columns and two environments."""
    def _make(p: int, n: int = 40):
        X = coded_design(n, p)
        Y = np.linspace(0.0, 1.0, n)
        E = np.arange(n) % 2
        return X, Y, E

    return _make


@pytest.fixture
def oracle():
    return OracleTest
