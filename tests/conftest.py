"""Pytest configuration for path setup.

The service modules live at the repository root (config, core, adapters,
workers) without being installed; make the root importable regardless of
how pytest is invoked.
"""

from __future__ import annotations

import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]

root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)
