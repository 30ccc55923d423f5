"""
Config loader & resolver

- load_yaml(path): loads YAML into dict (requires PyYAML)
- resolve_config(path, overrides_json): loads, applies optional JSON overrides, fills defaults
- search_kwargs(cfg): maps a resolved config onto `nonlinear_icp` keyword arguments
"""
from __future__ import annotations

import copy
import json
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

DEFAULTS: Dict[str, Any] = {
    "run": {"output_dir": "outputs", "random_seed": 1},
    "search": {
        "alpha": 0.05,
        "max_size_sets": None,
        "speed_up": False,
        "subsample_size": [0.1, 0.25, 0.5, 0.75, 1.0],
        "retrieve_defining_sets": True,
        "stop_if_empty": True,
        "test_additional_set": None,
    },
    "test": {"name": "residual", "args": {}},
    "logging": {"level": "INFO", "to_file": False, "to_json": False, "dir": "logs"},
}


def load_yaml(path: str | Path) -> Dict[str, Any]:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Config not found: {p}")
    return yaml.safe_load(p.read_text(encoding="utf-8")) or {}


def deep_merge(a: Dict, b: Dict) -> Dict:
    """Recursively merge dict b into a (returns a new dict)."""
    out = dict(a)
    for k, v in b.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def resolve_config(path: Optional[str | Path] = None, overrides_json: Optional[str] = None) -> Dict:
    cfg = load_yaml(path) if path is not None else {}
    if overrides_json:
        # Accept a JSON string (e.g. {"search":{"alpha":0.01}})
        overrides = json.loads(overrides_json)
        if not isinstance(overrides, dict):
            raise ValueError("Overrides must be a JSON object.")
        cfg = deep_merge(cfg, overrides)
    return deep_merge(copy.deepcopy(DEFAULTS), cfg)


def search_kwargs(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """
    Translate a resolved config into keyword arguments for `nonlinear_icp`.

    The `test` section selects a registered invariance test by name; its `args`
    are forwarded to the test factory.
    """
    search = cfg.get("search", {})
    test = cfg.get("test", {})
    additional = search.get("test_additional_set")
    return {
        "cond_ind_test": test.get("name", "residual"),
        "args_cond_ind_test": dict(test.get("args") or {}),
        "alpha": float(search.get("alpha", 0.05)),
        "max_size_sets": search.get("max_size_sets"),
        "speed_up": bool(search.get("speed_up", False)),
        "subsample_size": tuple(search.get("subsample_size") or DEFAULTS["search"]["subsample_size"]),
        "retrieve_defining_sets": bool(search.get("retrieve_defining_sets", True)),
        "stop_if_empty": bool(search.get("stop_if_empty", True)),
        "test_additional_set": tuple(additional) if additional is not None else None,
        "seed": int(cfg.get("run", {}).get("random_seed", 1)),
    }
