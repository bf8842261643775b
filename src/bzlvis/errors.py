"""Error types raised while evaluating build-language modules."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .types import Label, PackageIdentifier


class LabelSyntaxError(ValueError):
    """Raised when a label or package identifier cannot be parsed."""


class EvalError(RuntimeError):
    """Raised when a build-language statement fails to evaluate."""


class FeatureDisabledError(EvalError):
    """The builtin is gated behind a flag that is switched off."""


class WrongPhaseError(EvalError):
    """The builtin was called outside of module initialization."""


class NotTopLevelError(EvalError):
    """The builtin was called from inside a function."""


class NotAllowlistedError(EvalError):
    """The calling package is not covered by the feature allowlist."""

    def __init__(self, package: PackageIdentifier, option: str) -> None:
        super().__init__(
            f"`visibility()` is not enabled for package {package.canonical_form}; "
            f"consider adding it to --{option}"
        )
        self.package = package
        self.option = option


class AlreadySetError(EvalError):
    """The module's visibility was declared more than once."""


class MalformedPatternError(EvalError):
    """A package pattern is not public, private, a package or a subtree."""

    def __init__(self, message: str, *, pattern: str) -> None:
        super().__init__(message)
        self.pattern = pattern


class InvalidArgumentTypeError(EvalError):
    """A builtin received an argument of an unsupported type."""


class UnknownFragmentError(EvalError):
    """No configuration fragment is registered under the given name."""

    def __init__(self, fragment: str) -> None:
        super().__init__(f"invalid configuration fragment name '{fragment}'")
        self.fragment = fragment


class InvalidConfigurationFieldError(EvalError):
    """The fragment exists but does not expose the requested field."""


class LoadError(EvalError):
    """A module could not be loaded."""


class LoadVisibilityError(LoadError):
    """The requesting package may not load the module."""

    def __init__(self, label: Label, requesting_package: PackageIdentifier) -> None:
        super().__init__(
            f"Starlark file {label.canonical_form} is not visible for loading from package "
            f"{requesting_package.canonical_form}. Check the file's `visibility()` declaration."
        )
        self.label = label
        self.requesting_package = requesting_package


class ModuleEvaluationError(EvalError):
    """Raised when a module body fails to initialize."""

    def __init__(
        self,
        message: str,
        *,
        label: Label,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.label = label
        self.cause = cause


__all__ = [
    "LabelSyntaxError",
    "EvalError",
    "FeatureDisabledError",
    "WrongPhaseError",
    "NotTopLevelError",
    "NotAllowlistedError",
    "AlreadySetError",
    "MalformedPatternError",
    "InvalidArgumentTypeError",
    "UnknownFragmentError",
    "InvalidConfigurationFieldError",
    "LoadError",
    "LoadVisibilityError",
    "ModuleEvaluationError",
]
