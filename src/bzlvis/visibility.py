"""Declaration and enforcement of module visibility."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from .allowlist import check_visibility_allowlist
from .errors import (
    AlreadySetError,
    FeatureDisabledError,
    InvalidArgumentTypeError,
    LoadVisibilityError,
    NotTopLevelError,
    WrongPhaseError,
)
from .packagespec import ModuleVisibility, parse_module_visibility
from .semantics import EXPERIMENTAL_BZL_VISIBILITY

if TYPE_CHECKING:
    from .modules.context import ModuleInitContext
    from .semantics import BuildLanguageOptions
    from .types import Label, PackageIdentifier

LOGGER = logging.getLogger(__name__)
VISIBILITY_FUNCTION = "visibility"
TOPLEVEL_FRAME = "<toplevel>"


def validate_top_level_call(call_stack: Sequence[str], function_name: str) -> None:
    """Require the call to come straight from a module's top level."""

    if not (
        len(call_stack) == 2
        and call_stack[0] == TOPLEVEL_FRAME
        and call_stack[1] == function_name
    ):
        raise NotTopLevelError(
            ".bzl visibility may only be set at the top level, not inside a function"
        )


def declare_visibility(
    context: ModuleInitContext | None,
    call_stack: Sequence[str],
    options: BuildLanguageOptions,
    value: Any,
) -> None:
    """Validate and record a module's `visibility()` declaration."""

    if not options.experimental_bzl_visibility:
        raise FeatureDisabledError(
            f"Use of `visibility()` requires --{EXPERIMENTAL_BZL_VISIBILITY}"
        )
    if context is None:
        raise WrongPhaseError("visibility() can only be used during .bzl initialization")
    validate_top_level_call(call_stack, VISIBILITY_FUNCTION)

    package = context.label.package
    check_visibility_allowlist(
        package,
        options.experimental_bzl_visibility_allowlist,
        ignore_repository=options.bzl_visibility_allowlist_ignores_repository,
    )

    # Checked before the argument is looked at.
    if context.visibility is not None:
        raise AlreadySetError(".bzl visibility may not be set more than once")

    visibility = _parse_visibility_value(package.repository, value)
    context.set_visibility(visibility)
    LOGGER.debug("Module %s declared visibility %s", context.label, visibility)


def _parse_visibility_value(repository: str, value: Any) -> ModuleVisibility:
    if isinstance(value, str):
        # visibility("public"), visibility("private"), visibility("//pkg")
        return parse_module_visibility([value], repository)
    if isinstance(value, (list, tuple)):
        # visibility(["//pkg1", "//pkg2/...", ...])
        for index, element in enumerate(value):
            if not isinstance(element, str):
                raise InvalidArgumentTypeError(
                    f"visibility list: at index {index}, got element of type "
                    f"{type(element).__name__}, want string"
                )
        return parse_module_visibility(value, repository)
    raise InvalidArgumentTypeError(
        f"Invalid bzl-visibility: got '{type(value).__name__}', want string or list of strings"
    )


def check_load_visibility(
    label: Label,
    visibility: ModuleVisibility | None,
    requesting_package: PackageIdentifier,
) -> None:
    """Raise unless ``requesting_package`` may load the module at ``label``."""

    if visibility is None:
        return
    if requesting_package == label.package:
        return
    if visibility.allows(requesting_package):
        return
    raise LoadVisibilityError(label, requesting_package)


__all__ = [
    "VISIBILITY_FUNCTION",
    "TOPLEVEL_FRAME",
    "validate_top_level_call",
    "declare_visibility",
    "check_load_visibility",
]
