"""Pytest configuration and test helpers."""

from __future__ import annotations

import os
import sys
from pathlib import Path


# Make ``app`` importable without an editable install; it sits at the
# project root next to ``tests``.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Module level settings are read on import; keep the live search socket quick
# and the default database out of the working tree.
os.environ.setdefault("SEARCH_DEBOUNCE_MS", "50")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
