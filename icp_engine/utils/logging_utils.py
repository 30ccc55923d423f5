# icp_engine/utils/logging_utils.py
# ======================================================================================
# ICP Engine
# Logging Utilities — Config-driven, reproducible logging
# --------------------------------------------------------------------------------------
# Purpose
#   Provide a unified logging setup for the search engine and its CLI:
#     • Configurable levels and destinations (console, file, JSON lines).
#     • Deterministic log file naming with timestamps + run IDs for reproducibility.
#     • Library modules only ask for namespaced loggers; handlers are installed by
#       the CLI (or the caller) through init_logging().
#
# Dependencies: Python stdlib only (logging, json, datetime, pathlib).
# ======================================================================================

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

# --------------------------------------------------------------------------------------
# Default formats
# --------------------------------------------------------------------------------------

_CONSOLE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

ROOT_NAME = "icp"


class _JSONLogHandler(logging.Handler):
    """
    JSONL sink: one object per record, each stamped with the run id.
    """

    def __init__(self, path: Path, run_id: str, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.run_id = run_id
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = self.path.open("a", encoding="utf-8")

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entry = {
                "time": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
                "run_id": self.run_id,
                "level": record.levelname,
                "logger": record.name,
                "msg": record.getMessage(),
                "func": record.funcName,
            }
            if record.exc_info:
                entry["exc"] = logging.Formatter().formatException(record.exc_info)
            self._fh.write(json.dumps(entry, ensure_ascii=False) + "\n")
            self._fh.flush()
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        try:
            if not self._fh.closed:
                self._fh.close()
        finally:
            super().close()


# --------------------------------------------------------------------------------------
# Init + Helpers
# --------------------------------------------------------------------------------------

def init_logging(cfg: Dict[str, Any], run_id: Optional[str] = None) -> None:
    """
    Configure the `icp` logger hierarchy from a config dictionary.

    Parameters
    ----------
    cfg : dict
        Config dictionary (expects key "logging" with options).
    run_id : str, optional
        Unique run identifier (e.g. timestamp). Used in file naming.
    """
    log_cfg = cfg.get("logging", {}) if cfg else {}
    level_str = str(log_cfg.get("level", "INFO")).upper()
    level = getattr(logging, level_str, logging.INFO)

    root = logging.getLogger(ROOT_NAME)
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()
    root.setLevel(level)

    ch = logging.StreamHandler(sys.stderr)
    ch.setLevel(level)
    ch.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
    root.addHandler(ch)

    run_tag = run_id or datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    log_dir = Path(log_cfg.get("dir", "logs"))

    if log_cfg.get("to_file", False):
        log_file = log_dir / f"icp_{run_tag}.log"
        log_file.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(_FILE_FORMAT))
        root.addHandler(fh)

    if log_cfg.get("to_json", False):
        root.addHandler(_JSONLogHandler(log_dir / f"icp_{run_tag}.jsonl", run_tag, level=level))

    root.debug("Logging initialized (run_id=%s)", run_tag)


def get_logger(name: str) -> logging.Logger:
    """
    Retrieve a module-specific logger under the `icp` namespace.
    """
    if name != ROOT_NAME and not name.startswith(ROOT_NAME + "."):
        name = f"{ROOT_NAME}.{name}"
    return logging.getLogger(name)
