from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

_PROJECT_ROOT = Path(__file__).resolve().parent


def get_input_base() -> str:
    """Return the base directory for scenario XML and input tables.

    Order of precedence:
    1) Environment variable `LAND_ALLOC_INPUT_DIR`
    2) Project default `<project>/input`
    """
    env = os.environ.get("LAND_ALLOC_INPUT_DIR")
    if env:
        return str(Path(env))
    return str(_PROJECT_ROOT / "input")


def get_results_base(scenario: Optional[str] = None) -> str:
    """Return the output directory, optionally for a specific scenario.

    Preference order:
      1) Environment variable `LAND_ALLOC_OUTPUT_DIR`
      2) Project default `<project>/output`
    """
    env = os.environ.get("LAND_ALLOC_OUTPUT_DIR")
    base = Path(env) if env else _PROJECT_ROOT / "output"
    if scenario:
        base = base / scenario
    return str(base)
