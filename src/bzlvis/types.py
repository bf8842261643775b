"""Core immutable data structures used throughout bzlvis."""

from __future__ import annotations

from dataclasses import dataclass

MAIN_REPOSITORY = ""


@dataclass(frozen=True, order=True)
class PackageIdentifier:
    """A package path qualified by the repository it lives in."""

    repository: str
    path: str

    @property
    def segments(self) -> tuple[str, ...]:
        if not self.path:
            return ()
        return tuple(self.path.split("/"))

    @property
    def canonical_form(self) -> str:
        if self.repository == MAIN_REPOSITORY:
            return f"//{self.path}"
        return f"@{self.repository}//{self.path}"

    def __str__(self) -> str:
        return self.canonical_form


@dataclass(frozen=True, order=True)
class Label:
    """A file inside a package, e.g. ``//pkg:defs.bzl``."""

    package: PackageIdentifier
    name: str

    @property
    def canonical_form(self) -> str:
        return f"{self.package.canonical_form}:{self.name}"

    def __str__(self) -> str:
        return self.canonical_form


__all__ = ["MAIN_REPOSITORY", "PackageIdentifier", "Label"]
