"""MovieWatch FastAPI application package."""

from __future__ import annotations

from importlib import import_module
from typing import Any

__all__ = ["app", "create_app"]


def __getattr__(name: str) -> Any:
    # Importing app.main builds the FastAPI app; defer it until requested.
    if name not in __all__:
        raise AttributeError(f"module 'app' has no attribute {name}")
    return getattr(import_module("app.main"), name)
