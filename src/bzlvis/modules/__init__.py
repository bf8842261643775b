"""Build-language module runtime."""

from __future__ import annotations

from .context import EvalThread, ModuleInitContext
from .loader import LoadedModule, ModuleLoader

__all__ = ["EvalThread", "LoadedModule", "ModuleInitContext", "ModuleLoader"]
