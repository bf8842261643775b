"""Global functions available to every build-language module."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from . import fragments
from .errors import InvalidArgumentTypeError, LabelSyntaxError, LoadError, WrongPhaseError
from .labels import parse_label
from .visibility import VISIBILITY_FUNCTION, declare_visibility

if TYPE_CHECKING:
    from .modules.loader import ModuleLoader

BUILTIN_NAMES = frozenset({"visibility", "configuration_field", "load"})


def build_globals(loader: ModuleLoader) -> dict[str, Any]:
    """Return the builtins injected into module namespaces.

    Each builtin acts on the loader's current thread, i.e. the innermost
    module being initialized, regardless of which module defined the caller.
    """

    def visibility(value: Any) -> None:
        thread = loader.current_thread()
        declare_visibility(
            thread.init_context,
            thread.call_stack(VISIBILITY_FUNCTION),
            thread.options,
            value,
        )

    def configuration_field(fragment: Any, name: Any) -> fragments.LateBoundDefault:
        if not isinstance(fragment, str) or not isinstance(name, str):
            raise InvalidArgumentTypeError(
                "configuration_field() expects string fragment and name, got "
                f"'{type(fragment).__name__}' and '{type(name).__name__}'"
            )
        thread = loader.current_thread()
        return fragments.configuration_field(
            thread.fragments, fragment, name, thread.tools_repository
        )

    def load(module: Any, *symbols: str, **aliases: str) -> None:
        thread = loader.current_thread()
        context = thread.init_context
        if context is None:
            raise WrongPhaseError("load() can only be used during .bzl initialization")
        if not isinstance(module, str):
            raise InvalidArgumentTypeError(
                f"load() expects a string label, got '{type(module).__name__}'"
            )
        requester = context.label.package
        try:
            label = parse_label(module, requester.repository, relative_to=requester)
        except LabelSyntaxError as exc:
            raise LoadError(f"invalid load label '{module}': {exc}") from exc
        loaded = loader.load(label, requesting_package=requester)
        bindings = [(symbol, symbol) for symbol in symbols] + list(aliases.items())
        for local, symbol in bindings:
            thread.namespace[local] = loaded.symbol(symbol)

    return {
        "visibility": visibility,
        "configuration_field": configuration_field,
        "load": load,
    }


__all__ = ["BUILTIN_NAMES", "build_globals"]
