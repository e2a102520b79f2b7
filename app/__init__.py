"""Movie Recs FastAPI application package.

``app.app`` and ``app.create_app`` are resolved lazily so that importing a
service module does not build the FastAPI application.
"""

from __future__ import annotations

from importlib import import_module
from typing import Any

__version__ = "1.0.0"
__all__ = ["app", "create_app", "__version__"]


def __getattr__(name: str) -> Any:
    if name in {"app", "create_app"}:
        return getattr(import_module("app.main"), name)
    raise AttributeError(f"module 'app' has no attribute {name}")
