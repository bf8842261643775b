"""Parsing and validation of package identifiers and labels."""

from __future__ import annotations

import re

from .errors import LabelSyntaxError
from .types import MAIN_REPOSITORY, Label, PackageIdentifier

_REPOSITORY_RE = re.compile(r"^[A-Za-z0-9_.~+-]*$")
_SEGMENT_RE = re.compile(r"^[A-Za-z0-9_.+=,@~ !#$%&()-]+$")
_TARGET_RE = re.compile(r"^[A-Za-z0-9_.+=,@~ !#$%&()/-]+$")
_RESERVED_SEGMENTS = frozenset({".", "..", "..."})


def validate_repository_name(name: str) -> str:
    """Return ``name`` if it is a valid repository name."""

    if not _REPOSITORY_RE.match(name):
        raise LabelSyntaxError(f"invalid repository name '@{name}'")
    return name


def validate_package_path(path: str) -> str:
    """Return ``path`` if it is a valid package path; the empty path is the root."""

    if not path:
        return path
    if path.startswith("/"):
        raise LabelSyntaxError(f"invalid package name '{path}': package names may not start with '/'")
    if path.endswith("/"):
        raise LabelSyntaxError(f"invalid package name '{path}': package names may not end with '/'")
    for segment in path.split("/"):
        if not segment:
            raise LabelSyntaxError(f"invalid package name '{path}': package names may not contain '//'")
        if segment in _RESERVED_SEGMENTS:
            raise LabelSyntaxError(
                f"invalid package name '{path}': package name component '{segment}' is reserved"
            )
        if not _SEGMENT_RE.match(segment):
            raise LabelSyntaxError(
                f"invalid package name '{path}': package names may contain A-Z, a-z, 0-9, "
                "or any of ' !#$%&()+,-.=@_~'"
            )
    return path


def parse_package_identifier(text: str, default_repository: str = MAIN_REPOSITORY) -> PackageIdentifier:
    """Parse ``//path`` or ``@repo//path``; unqualified paths use ``default_repository``."""

    if text.startswith("@"):
        repository, sep, path = text[1:].partition("//")
        if not sep:
            raise LabelSyntaxError(f"invalid package name '{text}': must contain '//' after the repository")
        repository = validate_repository_name(repository)
    elif text.startswith("//"):
        repository = default_repository
        path = text[2:]
    else:
        raise LabelSyntaxError(f"invalid package name '{text}': must start with '//' or '@'")
    if ":" in path:
        raise LabelSyntaxError(f"invalid package name '{text}': package names may not contain ':'")
    return PackageIdentifier(repository=repository, path=validate_package_path(path))


def parse_label(
    text: str,
    default_repository: str = MAIN_REPOSITORY,
    relative_to: PackageIdentifier | None = None,
) -> Label:
    """Parse an absolute label, or ``:name`` relative to ``relative_to``."""

    if text.startswith(":"):
        if relative_to is None:
            raise LabelSyntaxError(f"invalid label '{text}': relative label without a package")
        package = relative_to
        name = text[1:]
    else:
        package_text, sep, name = text.partition(":")
        package = parse_package_identifier(package_text, default_repository)
        if not sep:
            if not package.segments:
                raise LabelSyntaxError(f"invalid label '{text}': empty target name")
            name = package.segments[-1]
    if not name:
        raise LabelSyntaxError(f"invalid label '{text}': empty target name")
    if not _TARGET_RE.match(name) or name.startswith("/") or name.endswith("/"):
        raise LabelSyntaxError(f"invalid label '{text}': invalid target name '{name}'")
    return Label(package=package, name=name)


__all__ = [
    "validate_repository_name",
    "validate_package_path",
    "parse_package_identifier",
    "parse_label",
]
