"""
backend/tests/conftest.py

Purpose:
    Shared pytest bootstrap: puts the backend package root and this tests
    directory (for the shared ``mongo_fakes`` helpers) on the import path.
"""

from __future__ import annotations

import sys
from pathlib import Path

_THIS_FILE = Path(__file__).resolve()
_TESTS_DIR = _THIS_FILE.parent
_BACKEND_DIR = _THIS_FILE.parents[1]

for candidate in (str(_BACKEND_DIR), str(_TESTS_DIR)):
    if candidate not in sys.path:
        sys.path.insert(0, candidate)
