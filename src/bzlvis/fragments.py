"""Configuration fragments and late-bound configuration fields."""

from __future__ import annotations

from collections import OrderedDict
from collections.abc import Mapping
from dataclasses import dataclass
from typing import ClassVar

from .errors import InvalidConfigurationFieldError, LabelSyntaxError, UnknownFragmentError
from .labels import parse_label
from .types import Label, PackageIdentifier

DEFAULT_TOOLS_REPOSITORY = "bazel_tools"


@dataclass(frozen=True)
class ConfigurationField:
    """A field a fragment exposes to `configuration_field()`."""

    name: str
    default_label: str
    default_in_tools_repository: bool = False


class Fragment:
    """Base class for configuration fragments."""

    name: ClassVar[str]
    fields: ClassVar[tuple[ConfigurationField, ...]] = ()

    @classmethod
    def field(cls, name: str) -> ConfigurationField:
        for candidate in cls.fields:
            if candidate.name == name:
                return candidate
        raise InvalidConfigurationFieldError(
            f"invalid configuration field name '{name}' on fragment '{cls.name}'"
        )


class CoverageFragment(Fragment):
    name = "coverage"
    fields = (
        ConfigurationField(
            "output_generator",
            "//tools/test:lcov_merger",
            default_in_tools_repository=True,
        ),
    )


class CppFragment(Fragment):
    name = "cpp"
    fields = (
        ConfigurationField(
            "cc_toolchain",
            "//tools/cpp:current_cc_toolchain",
            default_in_tools_repository=True,
        ),
        ConfigurationField("zipper", "//tools/zip:zipper", default_in_tools_repository=True),
    )


@dataclass(frozen=True)
class LateBoundDefault:
    """A configuration value resolved once a build configuration is known."""

    fragment: str
    field: str
    default: Label

    def resolve(self, build_configuration: Mapping[str, Mapping[str, str]]) -> Label:
        override = build_configuration.get(self.fragment, {}).get(self.field)
        if override is None:
            return self.default
        try:
            return parse_label(override)
        except LabelSyntaxError as exc:
            raise InvalidConfigurationFieldError(
                f"invalid value for {self.fragment}.{self.field}: {exc}"
            ) from exc

    def __str__(self) -> str:
        return f"<late-bound {self.fragment}.{self.field}, default {self.default}>"


class FragmentRegistry:
    """Registry of configuration fragments addressable by name."""

    def __init__(self) -> None:
        self._fragments: OrderedDict[str, type[Fragment]] = OrderedDict()

    def register(self, fragment: type[Fragment]) -> None:
        if fragment.name in self._fragments:
            raise ValueError(f"Fragment '{fragment.name}' is already registered.")
        self._fragments[fragment.name] = fragment

    def get(self, name: str) -> type[Fragment]:
        try:
            return self._fragments[name]
        except KeyError as exc:
            raise UnknownFragmentError(name) from exc

    def names(self) -> list[str]:
        return list(self._fragments)


def default_registry() -> FragmentRegistry:
    registry = FragmentRegistry()
    registry.register(CoverageFragment)
    registry.register(CppFragment)
    return registry


def configuration_field(
    registry: FragmentRegistry,
    fragment: str,
    name: str,
    tools_repository: str = DEFAULT_TOOLS_REPOSITORY,
) -> LateBoundDefault:
    """Look up ``fragment.name`` and return its late-bound default."""

    fragment_class = registry.get(fragment)
    config_field = fragment_class.field(name)
    default = parse_label(config_field.default_label)
    if config_field.default_in_tools_repository:
        default = Label(
            package=PackageIdentifier(repository=tools_repository, path=default.package.path),
            name=default.name,
        )
    return LateBoundDefault(fragment=fragment, field=name, default=default)


__all__ = [
    "DEFAULT_TOOLS_REPOSITORY",
    "ConfigurationField",
    "Fragment",
    "CoverageFragment",
    "CppFragment",
    "LateBoundDefault",
    "FragmentRegistry",
    "default_registry",
    "configuration_field",
]
