# FILE: icp_engine/cli.py
# =============================================================================
# ICP Engine — Typer CLI
#
# Commands
# --------
#   run                Run the subset search on a CSV file and write the JSON result
#   effective-config   Emit fully resolved config (after overrides) to JSON or YAML
#   tests              List registered invariance tests
#   version            Print version info
#
# Logging controls on `run`:
#   --run-id auto|<str>   → stamps file/JSON logs with a stable run id (auto = timestamp)
#   --log-level LEVEL     → overrides config.logging.level (INFO|DEBUG|...)
#   --log-file/--no-log-file, --log-json/--no-log-json → force on/off regardless of config
#
# Usage examples
# --------------
#   python -m icp_engine run -c configs/icp.yaml --data sim.csv --target Y --env E
#   python -m icp_engine run --data sim.csv --target Y --env E -o '{"search":{"alpha":0.01}}'
#   python -m icp_engine effective-config -c configs/icp.yaml --out resolved.yaml
# =============================================================================

from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd
import typer
import yaml

from . import get_version
from .errors import ICPInputError, InvarianceTestError
from .models import REGISTRY
from .search import nonlinear_icp
from .utils.config_loader import resolve_config, search_kwargs
from .utils.logging_utils import get_logger, init_logging

app = typer.Typer(add_completion=False, help="ICP Engine — nonlinear invariant causal prediction")

# =============================================================================
# Helpers
# =============================================================================


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _sha256_bytes(b: bytes) -> str:
    return "sha256:" + hashlib.sha256(b).hexdigest()


def _write_json(path: Path, obj: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(obj, indent=2, sort_keys=False), encoding="utf-8")


def _merge_logging_overrides(cfg: Dict[str, Any],
                             level: Optional[str],
                             to_file: Optional[bool],
                             to_json: Optional[bool]) -> Dict[str, Any]:
    c = dict(cfg or {})
    lc = dict(c.get("logging", {}) or {})
    if level:
        lc["level"] = level
    if to_file is not None:
        lc["to_file"] = bool(to_file)
    if to_json is not None:
        lc["to_json"] = bool(to_json)
    lc.setdefault("dir", "logs")
    c["logging"] = lc
    return c


def _bootstrap_logging(cfg: Dict[str, Any],
                       run_id: Optional[str],
                       level: Optional[str],
                       to_file: Optional[bool],
                       to_json: Optional[bool]) -> Tuple[Dict[str, Any], str]:
    """
    Apply CLI logging overrides, compute run_id (auto|str), and initialize logging.
    Returns (merged_cfg, resolved_run_id).
    """
    merged = _merge_logging_overrides(cfg, level, to_file, to_json)
    rid = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S") if (run_id == "auto" or not run_id) else run_id
    init_logging(merged, run_id=rid)
    log = get_logger("cli")
    log.info("[RunMeta] run_id=%s cfg_hash=%s", rid, _sha256_bytes(json.dumps(merged, sort_keys=True, default=str).encode("utf-8")))
    return merged, rid


def _load_frame(data: Path, target: str, env: List[str], variables: Optional[List[str]]):
    if not data.exists():
        raise FileNotFoundError(f"Data file not found: {data}")
    df = pd.read_csv(data)
    missing = [c for c in [target, *env, *(variables or [])] if c not in df.columns]
    if missing:
        raise ICPInputError(f"Columns not found in {data.name}: {missing}")
    if variables:
        predictors = list(variables)
    else:
        predictors = [c for c in df.columns if c != target and c not in env]
    E = df[env[0]] if len(env) == 1 else df[env]
    return df[predictors], df[target], E


# =============================================================================
# Commands
# =============================================================================


@app.command("run")
def cli_run(
    data: Path = typer.Option(..., "--data", "-d", help="CSV file with predictors, target and environment."),
    target: str = typer.Option(..., "--target", "-t", help="Target column."),
    env: List[str] = typer.Option(..., "--env", "-e", help="Environment column (repeat for several)."),
    variables: Optional[List[str]] = typer.Option(None, "--var", help="Predictor column (repeat); default: all others."),
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to search config YAML."),
    overrides: Optional[str] = typer.Option(None, "--override", "-o", help="JSON string of overrides."),
    out: Optional[Path] = typer.Option(None, "--out", help="Result JSON path (default: <output_dir>/icp_result.json)."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Narrate search progress."),
    run_id: str = typer.Option("auto", "--run-id", help='Run identifier ("auto" => timestamp).'),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override logging level (e.g. INFO, DEBUG)."),
    log_file: Optional[bool] = typer.Option(None, "--log-file/--no-log-file", help="Enable/disable file logging."),
    log_json: Optional[bool] = typer.Option(None, "--log-json/--no-log-json", help="Enable/disable JSONL logging."),
):
    """
    Run the invariant causal prediction search on a CSV file.
    """
    cfg = resolve_config(config, overrides_json=overrides)
    cfg, rid = _bootstrap_logging(cfg, run_id, log_level, log_file, log_json)
    log = get_logger("cli")

    try:
        X, Y, E = _load_frame(data, target, env, variables)
        result = nonlinear_icp(X, Y, E, verbose=verbose, **search_kwargs(cfg))
    except (FileNotFoundError, ICPInputError, InvarianceTestError, KeyError) as e:
        log.error("Search aborted: %s", e)
        raise typer.Exit(code=2)

    out_path = out or Path(cfg["run"]["output_dir"]) / "icp_result.json"
    payload = result.to_dict()
    payload["run"] = {"run_id": rid, "timestamp_utc": _utc_now_iso(), "data": str(data.as_posix()), "target": target}
    _write_json(out_path, payload)
    log.info(
        "Retrieved %s (tested %d of %d sets, %d pruned) → %s",
        result.retrieved_causal_names, result.n_tested, result.n_sets, result.n_pruned, out_path.as_posix(),
    )
    summary = {
        "retrieved_causal_vars": payload["retrieved_causal_names"],
        "defining_sets": [result.names(s) for s in result.defining_sets] if result.defining_sets is not None else None,
        "result_file": str(out_path.as_posix()),
    }
    typer.echo(json.dumps(summary, indent=2))


@app.command("effective-config")
def cli_effective_config(
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to YAML config."),
    overrides: Optional[str] = typer.Option(None, "--override", "-o", help="JSON string of overrides."),
    out: Optional[str] = typer.Option(None, "--out", help="Write resolved config to this path (json|yaml)."),
):
    """
    Render the fully-resolved config (after JSON overrides). Handy for debugging & provenance.
    """
    cfg = resolve_config(config, overrides_json=overrides)
    if out:
        outp = Path(out)
        outp.parent.mkdir(parents=True, exist_ok=True)
        if outp.suffix.lower() in (".yml", ".yaml"):
            outp.write_text(yaml.safe_dump(cfg, sort_keys=False), encoding="utf-8")
        else:
            _write_json(outp, cfg)
        typer.echo(f"Wrote resolved config → {outp.as_posix()}")
    else:
        typer.echo(json.dumps(cfg, indent=2))


@app.command("tests")
def cli_tests():
    """List registered invariance tests (aliases grouped)."""
    typer.echo(json.dumps(REGISTRY.table(), indent=2))


@app.command("version")
def cli_version():
    payload = {"icp_engine_version": get_version(), "timestamp_utc": _utc_now_iso()}
    typer.echo(json.dumps(payload, indent=2))


# =============================================================================
# Entrypoint
# =============================================================================


def main() -> None:
    app()


if __name__ == "__main__":
    main()
