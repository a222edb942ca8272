"""Pytest configuration shared by the gateway tests."""

from __future__ import annotations

import sys
from pathlib import Path


# Make ``app`` importable from a plain checkout, without installing the
# project first.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
