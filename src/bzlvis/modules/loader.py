"""Discovery and evaluation of build-language modules."""

from __future__ import annotations

import logging
import sys
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from types import CodeType, ModuleType
from typing import Any

from ..build_api import BUILTIN_NAMES, build_globals
from ..errors import EvalError, LabelSyntaxError, LoadError, ModuleEvaluationError
from ..fragments import (
    DEFAULT_TOOLS_REPOSITORY,
    FragmentRegistry,
    LateBoundDefault,
    default_registry,
)
from ..labels import parse_label, validate_package_path
from ..packagespec import ModuleVisibility
from ..semantics import BuildLanguageOptions
from ..types import MAIN_REPOSITORY, Label, PackageIdentifier
from ..visibility import check_load_visibility
from .context import EvalThread, ModuleInitContext

LOGGER = logging.getLogger(__name__)
MODULE_SUFFIX = ".bzl"
_MODULE_PREFIX = "bzlvis.loaded"


@dataclass(frozen=True)
class LoadedModule:
    """A successfully initialized module."""

    label: Label
    module: ModuleType
    visibility: ModuleVisibility | None

    @property
    def exports(self) -> dict[str, Any]:
        return {
            name: value
            for name, value in vars(self.module).items()
            if not name.startswith("_") and name not in BUILTIN_NAMES
        }

    def symbol(self, name: str) -> Any:
        if name.startswith("_"):
            raise LoadError(f"symbol '{name}' is private and cannot be loaded from {self.label}")
        exports = self.exports
        if name not in exports:
            raise LoadError(f"file '{self.label}' does not contain symbol '{name}'")
        return exports[name]


class ModuleLoader:
    """Evaluate ``.bzl`` modules from the workspace and external repositories.

    Independent modules may be loaded from several OS threads at once. Each
    thread keeps its own stack of modules being initialized; the cache of
    initialized modules is shared.
    """

    def __init__(
        self,
        workspace: Path,
        *,
        options: BuildLanguageOptions,
        repositories: Mapping[str, Path] | None = None,
        fragments: FragmentRegistry | None = None,
        tools_repository: str = DEFAULT_TOOLS_REPOSITORY,
        build_configuration: Mapping[str, Mapping[str, str]] | None = None,
    ) -> None:
        self._roots: dict[str, Path] = {MAIN_REPOSITORY: Path(workspace).expanduser()}
        for name, path in (repositories or {}).items():
            self._roots[name] = Path(path).expanduser()
        self.options = options
        self.fragments = fragments or default_registry()
        self.tools_repository = tools_repository
        self.build_configuration = {
            fragment: dict(values) for fragment, values in (build_configuration or {}).items()
        }
        self._globals = build_globals(self)
        self._modules: dict[Label, LoadedModule] = {}
        self._module_files: set[str] = set()
        self._lock = threading.Lock()
        self._local = threading.local()

    @property
    def roots(self) -> dict[str, Path]:
        return dict(self._roots)

    @property
    def module_labels(self) -> list[Label]:
        """Return labels of initialized modules in load order."""
        with self._lock:
            return list(self._modules)

    def discover(self) -> list[Label]:
        """Return labels of every module file under the repository roots."""

        labels: list[Label] = []
        for repository, root in self._roots.items():
            if not root.is_dir():
                LOGGER.warning("Repository root for '%s' missing: %s", repository or "main", root)
                continue
            for path in root.rglob(f"*{MODULE_SUFFIX}"):
                relative = path.relative_to(root)
                if not path.is_file() or any(part.startswith(".") for part in relative.parts):
                    continue
                try:
                    labels.append(_label_for(repository, relative))
                except LabelSyntaxError as exc:
                    LOGGER.warning("Skipping %s: %s", path, exc)
        return sorted(labels)

    def load(
        self,
        label: Label | str,
        *,
        requesting_package: PackageIdentifier | None = None,
    ) -> LoadedModule:
        """Return the initialized module, evaluating it on first use.

        When ``requesting_package`` is given the module's visibility must
        allow that package.
        """

        if isinstance(label, str):
            label = parse_label(label)
        if not label.name.endswith(MODULE_SUFFIX):
            raise LoadError(
                f"The label must reference a file with extension '{MODULE_SUFFIX}': {label}"
            )
        with self._lock:
            loaded = self._modules.get(label)
        if loaded is None:
            loaded = self._evaluate(label)
        if requesting_package is not None:
            check_load_visibility(label, loaded.visibility, requesting_package)
        return loaded

    def load_all(self) -> dict[Label, EvalError]:
        """Initialize every discovered module and return the failures."""

        failures: dict[Label, EvalError] = {}
        for label in self.discover():
            try:
                self.load(label)
            except (ModuleEvaluationError, LoadError) as exc:
                LOGGER.warning("%s", exc)
                failures[label] = exc
        return failures

    def reload_all(self) -> dict[Label, EvalError]:
        """Drop every initialized module and initialize them again."""
        with self._lock:
            self._modules.clear()
        return self.load_all()

    def get(self, label: Label) -> LoadedModule:
        with self._lock:
            loaded = self._modules.get(label)
            available = [str(item) for item in self._modules]
        if loaded is None:
            raise KeyError(f"Module '{label}' not loaded. Available: {available}")
        return loaded

    def resolve(self, value: LateBoundDefault) -> Label:
        """Resolve a ``configuration_field()`` value against the build configuration."""
        return value.resolve(self.build_configuration)

    def current_thread(self) -> EvalThread:
        """Return the thread of the innermost module being initialized.

        Outside of initialization an idle thread without init context is returned.
        """

        threads = self._threads()
        if threads:
            return threads[-1]
        return self._new_thread(None)

    def path_for(self, label: Label) -> Path:
        repository = label.package.repository
        try:
            root = self._roots[repository]
        except KeyError as exc:
            raise LoadError(f"Unknown repository '@{repository}' for {label}") from exc
        path = root.joinpath(*label.package.segments, label.name)
        if not path.is_file():
            raise LoadError(f"cannot load '{label}': no such file {path}")
        return path

    def _threads(self) -> list[EvalThread]:
        """Return the calling OS thread's stack of initializing modules."""
        try:
            return self._local.threads
        except AttributeError:
            self._local.threads = []
            return self._local.threads

    def _evaluate(self, label: Label) -> LoadedModule:
        threads = self._threads()
        in_progress = [thread.init_context.label for thread in threads if thread.init_context]
        if label in in_progress:
            cycle = in_progress[in_progress.index(label) :] + [label]
            raise LoadError("cycle in load graph: " + " -> ".join(str(item) for item in cycle))

        path = self.path_for(label)
        try:
            source = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise LoadError(f"cannot load '{label}': {exc}") from exc
        code = self._compile(source, path, label)
        context = ModuleInitContext(label=label)
        module = ModuleType(f"{_MODULE_PREFIX}.{label}")
        module.__file__ = str(path)
        module.__dict__.update(self._globals)
        thread = self._new_thread(context, module.__dict__)
        with self._lock:
            self._module_files.add(code.co_filename)

        LOGGER.debug("Initializing module %s from %s", label, path)
        threads.append(thread)
        previous_profile = sys.getprofile()
        sys.setprofile(thread.profile)
        try:
            exec(code, module.__dict__)
        except Exception as exc:
            raise ModuleEvaluationError(
                f"Failed to initialize {label}: {exc}", label=label, cause=exc
            ) from exc
        finally:
            sys.setprofile(previous_profile)
            threads.pop()

        loaded = LoadedModule(label=label, module=module, visibility=context.visibility)
        with self._lock:
            # Another OS thread may have initialized the same module meanwhile.
            loaded = self._modules.setdefault(label, loaded)
        LOGGER.debug("Initialized module %s (visibility=%s)", label, loaded.visibility)
        return loaded

    def _new_thread(
        self,
        context: ModuleInitContext | None,
        namespace: dict[str, Any] | None = None,
    ) -> EvalThread:
        return EvalThread(
            options=self.options,
            fragments=self.fragments,
            tools_repository=self.tools_repository,
            init_context=context,
            namespace=namespace if namespace is not None else {},
            module_files=self._module_files,
        )

    def _compile(self, source: str, path: Path, label: Label) -> CodeType:
        try:
            return compile(source, str(path), "exec")
        except SyntaxError as exc:
            raise ModuleEvaluationError(
                f"Syntax error in {label}: {exc.msg} (line {exc.lineno})",
                label=label,
                cause=exc,
            ) from exc


def _label_for(repository: str, relative: Path) -> Label:
    package_path = validate_package_path("/".join(relative.parent.parts))
    return Label(
        package=PackageIdentifier(repository=repository, path=package_path),
        name=relative.name,
    )


__all__ = ["MODULE_SUFFIX", "LoadedModule", "ModuleLoader"]
