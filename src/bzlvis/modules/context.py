"""Per-module initialization state and the evaluation thread."""

from __future__ import annotations

import inspect
from collections.abc import Set
from dataclasses import dataclass, field
from types import FrameType
from typing import TYPE_CHECKING, Any

from ..errors import AlreadySetError
from ..visibility import TOPLEVEL_FRAME

if TYPE_CHECKING:
    from ..fragments import FragmentRegistry
    from ..packagespec import ModuleVisibility
    from ..semantics import BuildLanguageOptions
    from ..types import Label

_MODULE_BODY = "<module>"


@dataclass
class ModuleInitContext:
    """Mutable state owned by a single module initialization."""

    label: Label
    visibility: ModuleVisibility | None = None

    def set_visibility(self, visibility: ModuleVisibility) -> None:
        if self.visibility is not None:
            raise AlreadySetError(".bzl visibility may not be set more than once")
        self.visibility = visibility


@dataclass
class EvalThread:
    """Everything a builtin can see while a module body executes."""

    options: BuildLanguageOptions
    fragments: FragmentRegistry
    tools_repository: str
    init_context: ModuleInitContext | None = None
    namespace: dict[str, Any] = field(default_factory=dict)
    module_files: Set[str] = field(default_factory=set)
    native_calls: list[tuple[FrameType, str]] = field(default_factory=list)

    def profile(self, frame: FrameType, event: str, arg: Any) -> None:
        """Track builtins called from module code, for use with ``sys.setprofile``.

        Native functions have no Python frame, so a callback they make would
        otherwise look like a direct call from the caller's frame.
        """

        if frame.f_code.co_filename not in self.module_files:
            return
        if event == "c_call":
            self.native_calls.append((frame, getattr(arg, "__name__", repr(arg))))
        elif event in ("c_return", "c_exception") and self.native_calls:
            self.native_calls.pop()

    def call_stack(self, function_name: str) -> list[str]:
        """Return the build-language call stack, outermost first.

        Only frames that belong to module files count. The walk stops at the
        first module body so that modules loaded by other modules see their
        own top level. ``function_name`` is appended as the innermost frame.
        """

        names: list[str] = []
        frame = inspect.currentframe()
        try:
            while frame is not None:
                code = frame.f_code
                if code.co_filename in self.module_files:
                    names.extend(
                        name for caller, name in reversed(self.native_calls) if caller is frame
                    )
                    if code.co_name == _MODULE_BODY:
                        names.append(TOPLEVEL_FRAME)
                        break
                    names.append(code.co_name)
                frame = frame.f_back
        finally:
            del frame
        names.reverse()
        names.append(function_name)
        return names


__all__ = ["ModuleInitContext", "EvalThread"]
