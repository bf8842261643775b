"""Allowlist gate for the `visibility()` builtin."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from .errors import LabelSyntaxError, MalformedPatternError, NotAllowlistedError
from .packagespec import Everyone, PackagesBeneath, PackageSpecification, parse_path_pattern
from .semantics import EXPERIMENTAL_BZL_VISIBILITY_ALLOWLIST
from .types import MAIN_REPOSITORY, PackageIdentifier

LOGGER = logging.getLogger(__name__)

# Disables allowlisting altogether, for enabling the feature globally.
ALLOW_EVERYONE = "everyone"


def parse_allowlist_entry(text: str) -> PackageSpecification:
    """Parse one allowlist entry; unqualified packages belong to the main repository."""

    if text == ALLOW_EVERYONE:
        return Everyone()
    try:
        return parse_path_pattern(MAIN_REPOSITORY, text)
    except LabelSyntaxError as exc:
        raise MalformedPatternError(
            f"Invalid bzl-visibility allowlist: {exc}", pattern=text
        ) from exc


def check_visibility_allowlist(
    package: PackageIdentifier,
    allowlist: Iterable[str],
    *,
    ignore_repository: bool = False,
) -> None:
    """Raise ``NotAllowlistedError`` unless some entry covers ``package``.

    Entries are parsed on every call. The allowlist is expected to stay small
    and `visibility()` calls are infrequent.
    """

    for entry in allowlist:
        spec = parse_allowlist_entry(entry)
        if _entry_matches(spec, package, ignore_repository):
            LOGGER.debug("Package %s allowlisted by entry '%s'", package, entry)
            return
    raise NotAllowlistedError(package, EXPERIMENTAL_BZL_VISIBILITY_ALLOWLIST)


def _entry_matches(
    spec: PackageSpecification,
    package: PackageIdentifier,
    ignore_repository: bool,
) -> bool:
    # Only subtree entries drop the repository; exact entries compare it.
    if ignore_repository and isinstance(spec, PackagesBeneath):
        package = PackageIdentifier(repository=spec.package.repository, path=package.path)
    return spec.matches(package)


__all__ = ["ALLOW_EVERYONE", "parse_allowlist_entry", "check_visibility_allowlist"]
