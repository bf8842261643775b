"""Package specifications: which packages a declaration applies to."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from .errors import LabelSyntaxError, MalformedPatternError
from .labels import parse_package_identifier
from .types import MAIN_REPOSITORY, PackageIdentifier

PUBLIC = "public"
PRIVATE = "private"
SUBTREE_MARKER = "/..."


class PackageSpecification:
    """Closed union of the package patterns below."""

    __slots__ = ()

    def matches(self, package: PackageIdentifier) -> bool:  # pragma: no cover - abstract
        raise NotImplementedError


@dataclass(frozen=True)
class Everyone(PackageSpecification):
    def matches(self, package: PackageIdentifier) -> bool:
        return True

    def __str__(self) -> str:
        return PUBLIC


@dataclass(frozen=True)
class Nobody(PackageSpecification):
    def matches(self, package: PackageIdentifier) -> bool:
        return False

    def __str__(self) -> str:
        return PRIVATE


@dataclass(frozen=True)
class ExactPackage(PackageSpecification):
    """Matches one package in one repository."""

    package: PackageIdentifier

    def matches(self, package: PackageIdentifier) -> bool:
        return package == self.package

    def __str__(self) -> str:
        return self.package.canonical_form


@dataclass(frozen=True)
class PackagesBeneath(PackageSpecification):
    """Matches a package and all of its descendants in the same repository."""

    package: PackageIdentifier

    def matches(self, package: PackageIdentifier) -> bool:
        if package.repository != self.package.repository:
            return False
        prefix = self.package.segments
        return package.segments[: len(prefix)] == prefix

    def __str__(self) -> str:
        if not self.package.path:
            return f"{self.package.canonical_form}..."
        return f"{self.package.canonical_form}{SUBTREE_MARKER}"


@dataclass(frozen=True)
class ModuleVisibility:
    """The packages allowed to load a module, in declaration order."""

    specs: tuple[PackageSpecification, ...]

    def allows(self, package: PackageIdentifier) -> bool:
        return any(spec.matches(package) for spec in self.specs)

    def __str__(self) -> str:
        return "[" + ", ".join(str(spec) for spec in self.specs) + "]"


def split_subtree_marker(text: str) -> tuple[str, bool]:
    """Strip a trailing ``/...``; ``//...`` becomes the repository root ``//``."""

    if not text.endswith(SUBTREE_MARKER):
        return text, False
    stripped = text[: -len(SUBTREE_MARKER)]
    if stripped.endswith("/"):
        # "//..." or "@repo//..."
        stripped += "/"
    return stripped, True


def parse_path_pattern(repository: str, text: str) -> PackageSpecification:
    """Parse ``//pkg`` or ``//pkg/...`` into an exact or subtree specification."""

    stripped, beneath = split_subtree_marker(text)
    package = parse_package_identifier(stripped, repository)
    if beneath:
        return PackagesBeneath(package)
    return ExactPackage(package)


def parse_package_specification(repository: str, text: str) -> PackageSpecification:
    """Parse a visibility pattern declared by a module in ``repository``."""

    if text == PUBLIC:
        return Everyone()
    if text == PRIVATE:
        return Nobody()
    try:
        return parse_path_pattern(repository, text)
    except LabelSyntaxError as exc:
        raise MalformedPatternError(
            f"Invalid bzl-visibility pattern '{text}': {exc}", pattern=text
        ) from exc


def parse_module_visibility(
    patterns: Iterable[str], repository: str = MAIN_REPOSITORY
) -> ModuleVisibility:
    return ModuleVisibility(
        tuple(parse_package_specification(repository, pattern) for pattern in patterns)
    )


__all__ = [
    "PUBLIC",
    "PRIVATE",
    "SUBTREE_MARKER",
    "PackageSpecification",
    "Everyone",
    "Nobody",
    "ExactPackage",
    "PackagesBeneath",
    "ModuleVisibility",
    "split_subtree_marker",
    "parse_path_pattern",
    "parse_package_specification",
    "parse_module_visibility",
]
