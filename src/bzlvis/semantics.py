"""Process-wide build-language options consulted during evaluation."""

from __future__ import annotations

from dataclasses import dataclass

EXPERIMENTAL_BZL_VISIBILITY = "experimental_bzl_visibility"
EXPERIMENTAL_BZL_VISIBILITY_ALLOWLIST = "experimental_bzl_visibility_allowlist"
BZL_VISIBILITY_ALLOWLIST_IGNORES_REPOSITORY = "bzl_visibility_allowlist_ignores_repository"


@dataclass(frozen=True)
class BuildLanguageOptions:
    """Flags that gate build-language features.

    Established once before any module is evaluated and never mutated while
    modules are initializing.
    """

    experimental_bzl_visibility: bool = False
    experimental_bzl_visibility_allowlist: tuple[str, ...] = ()
    bzl_visibility_allowlist_ignores_repository: bool = False


__all__ = [
    "BuildLanguageOptions",
    "EXPERIMENTAL_BZL_VISIBILITY",
    "EXPERIMENTAL_BZL_VISIBILITY_ALLOWLIST",
    "BZL_VISIBILITY_ALLOWLIST_IGNORES_REPOSITORY",
]
