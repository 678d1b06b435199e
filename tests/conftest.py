"""Pytest configuration.

The application packages (config, domain, application, ...) live at the
repository root without a wrapping package, so the root must be importable
regardless of how pytest is invoked.
"""

from __future__ import annotations

import sys
from pathlib import Path


REPO_ROOT = Path(__file__).resolve().parents[1]

if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))
