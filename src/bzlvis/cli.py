"""bzlvis command-line interface."""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, NoReturn

import typer

from . import __version__
from .allowlist import check_visibility_allowlist
from .config import Config, ConfigError, load_config, resolve_config_path
from .errors import EvalError, LabelSyntaxError
from .fragments import LateBoundDefault, configuration_field
from .labels import parse_label, parse_package_identifier
from .logging import configure_logging
from .modules import ModuleLoader
from .semantics import EXPERIMENTAL_BZL_VISIBILITY
from .types import Label
from .watcher import ModuleWatcher

app = typer.Typer(help="Evaluate .bzl modules and enforce their visibility declarations.")
LOGGER = logging.getLogger(__name__)


@dataclass
class CLIState:
    """Stores shared CLI options."""

    config_path: Path | None
    verbose: bool = False


@app.callback()
def _bzlvis(
    ctx: typer.Context,
    config: Annotated[
        Path | None,
        typer.Option(
            "-c",
            "--config",
            help="Path to bzlvis config (env BZLVIS_CONFIG or ~/.config/bzlvis/config.yaml).",
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("-v", "--verbose", help="Echo log records below WARNING to stderr."),
    ] = False,
) -> None:
    """Capture global CLI options."""

    resolved = config.expanduser() if config else None
    ctx.obj = CLIState(config_path=resolved, verbose=verbose)


@app.command()
def check(
    ctx: typer.Context,
    labels: Annotated[
        list[str] | None,
        typer.Argument(help="Module labels to check (defaults to every module)."),
    ] = None,
) -> None:
    """Initialize modules and report their visibility or failure."""

    config = _load_environment(_state(ctx))
    loader = build_loader(config)
    if labels:
        failures: dict[Label, EvalError] = {}
        for text in labels:
            label = _parse_label(text)
            try:
                loader.load(label)
            except EvalError as exc:
                failures[label] = exc
    else:
        failures = dict(loader.load_all())

    report(loader, failures)
    if failures:
        raise typer.Exit(1)


@app.command()
def show(
    ctx: typer.Context,
    label: Annotated[str, typer.Argument(..., help="Label of the module, e.g. //pkg:defs.bzl.")],
) -> None:
    """Print the declared visibility and exports of one module."""

    config = _load_environment(_state(ctx))
    loader = build_loader(config)
    target = _parse_label(label)
    try:
        loaded = loader.load(target)
    except EvalError as exc:
        _fail(str(exc))

    typer.echo(f"Module: {loaded.label}")
    typer.echo(f"Package: {loaded.label.package}")
    if loaded.visibility is None:
        typer.echo("Visibility: not declared (loadable from any package)")
    else:
        typer.echo("Visibility:")
        for spec in loaded.visibility.specs:
            typer.echo(f"  - {spec}")
    exports = sorted(loaded.exports)
    typer.echo(f"Exports: {', '.join(exports) if exports else '(none)'}")
    for name in exports:
        value = loaded.exports[name]
        if not isinstance(value, LateBoundDefault):
            continue
        try:
            typer.echo(f"  {name} -> {loader.resolve(value)}")
        except EvalError as exc:
            _fail(str(exc))


@app.command()
def allowlist(
    ctx: typer.Context,
    package: Annotated[str, typer.Argument(..., help="Package, e.g. //pkg or @repo//pkg.")],
) -> None:
    """Tell whether modules in PACKAGE may call visibility()."""

    config = _load_environment(_state(ctx))
    options = config.options
    try:
        package_id = parse_package_identifier(package)
    except LabelSyntaxError as exc:
        _fail(str(exc))
    try:
        check_visibility_allowlist(
            package_id,
            options.experimental_bzl_visibility_allowlist,
            ignore_repository=options.bzl_visibility_allowlist_ignores_repository,
        )
    except EvalError as exc:
        _fail(str(exc))
    typer.echo(f"Package {package_id} is allowlisted for visibility().")
    if not options.experimental_bzl_visibility:
        typer.secho(
            f"Note: {EXPERIMENTAL_BZL_VISIBILITY} is disabled, so visibility() still fails.",
            fg=typer.colors.YELLOW,
        )


@app.command()
def field(
    ctx: typer.Context,
    fragment: Annotated[str, typer.Argument(..., help="Configuration fragment name.")],
    name: Annotated[str, typer.Argument(..., help="Field of the fragment.")],
) -> None:
    """Resolve a configuration field against the configured fragments."""

    config = _load_environment(_state(ctx))
    loader = build_loader(config)
    try:
        late_bound = configuration_field(
            loader.fragments, fragment, name, config.tools_repository
        )
        resolved = loader.resolve(late_bound)
    except EvalError as exc:
        _fail(str(exc))
    typer.echo(f"{fragment}.{name}: {resolved}")
    if resolved != late_bound.default:
        typer.echo(f"  (default: {late_bound.default})")


@app.command()
def watch(
    ctx: typer.Context,
    interval: Annotated[
        float,
        typer.Option("--interval", help="Seconds between liveness checks of the watcher."),
    ] = 1.0,
) -> None:
    """Re-initialize every module whenever a module file changes."""

    config = _load_environment(_state(ctx))
    loader = build_loader(config)
    lock = threading.Lock()
    report(loader, loader.load_all())

    def _on_change(path: Path) -> None:
        with lock:
            LOGGER.info("Module file changed: %s", path)
            typer.echo(f"→ change detected in {path}, reloading")
            report(loader, loader.reload_all())

    watcher = ModuleWatcher(loader.roots.values())
    watcher.on_change(_on_change)
    watcher.start()
    typer.echo("Watching for module changes (Ctrl+C to stop).")
    try:
        while watcher.is_running:
            time.sleep(interval)
    except KeyboardInterrupt:
        typer.echo("Stopping.")
    finally:
        watcher.stop()


@app.command()
def version() -> None:
    """Print the installed bzlvis version."""

    typer.echo(__version__)


def build_loader(config: Config) -> ModuleLoader:
    return ModuleLoader(
        config.workspace,
        options=config.options,
        repositories=config.repositories,
        tools_repository=config.tools_repository,
        build_configuration=config.fragments,
    )


def report(loader: ModuleLoader, failures: Mapping[Label, Exception]) -> None:
    """Print one line per initialized module and per failure."""

    for label in sorted(loader.module_labels):
        loaded = loader.get(label)
        visibility = "not declared" if loaded.visibility is None else str(loaded.visibility)
        typer.echo(f"ok    {label}  visibility: {visibility}")
    for label, exc in sorted(failures.items()):
        typer.secho(f"FAIL  {label}  {exc}", fg=typer.colors.RED, err=True)
    typer.echo(f"{len(loader.module_labels)} module(s) initialized, {len(failures)} failed.")


def _state(ctx: typer.Context) -> CLIState:
    state = ctx.obj
    if not isinstance(state, CLIState):
        raise RuntimeError("CLI state missing from context.")
    return state


def _load_environment(state: CLIState) -> Config:
    try:
        config = load_config(state.config_path)
        configure_logging(config.logging, config.root_dir, verbose=state.verbose)
    except ConfigError as exc:
        _config_failure(exc, state.config_path)
    return config


def _config_failure(exc: ConfigError, path: Path | None) -> NoReturn:
    typer.secho(
        f"Configuration error ({resolve_config_path(path)}): {exc}",
        fg=typer.colors.RED,
        err=True,
    )
    raise typer.Exit(2) from exc


def _parse_label(text: str) -> Label:
    try:
        return parse_label(text)
    except LabelSyntaxError as exc:
        _fail(str(exc))


def _fail(message: str) -> NoReturn:
    typer.secho(message, fg=typer.colors.RED, err=True)
    raise typer.Exit(1)


def main() -> None:  # pragma: no cover - delegated to Typer
    app()


__all__ = ["app", "main", "build_loader", "report"]
