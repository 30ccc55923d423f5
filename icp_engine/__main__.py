# FILE: icp_engine/__main__.py
# =============================================================================
# Package Entrypoint — enables `python -m icp_engine` to launch the CLI.
#
#     python -m icp_engine --help
#     python -m icp_engine run -c configs/icp.yaml --data data.csv --target Y --env E
# =============================================================================

from __future__ import annotations

import sys


def _run() -> int:
    """
    Import and invoke the Typer CLI entrypoint.

    Returns
    -------
    int
        Process exit code (0 on success).
    """
    # Typer and pandas are CLI-only imports
    from icp_engine.cli import main as _cli_main

    _cli_main()
    return 0


if __name__ == "__main__":
    sys.exit(_run())
