from __future__ import annotations

import sys
import threading
from pathlib import Path
from textwrap import dedent
from types import SimpleNamespace

import pytest

from bzlvis.errors import (
    AlreadySetError,
    FeatureDisabledError,
    LoadError,
    LoadVisibilityError,
    ModuleEvaluationError,
    NotAllowlistedError,
    NotTopLevelError,
    UnknownFragmentError,
    WrongPhaseError,
)
from bzlvis.fragments import LateBoundDefault
from bzlvis.labels import parse_label
from bzlvis.modules import ModuleLoader
from bzlvis.packagespec import Everyone, ExactPackage, ModuleVisibility, Nobody, PackagesBeneath
from bzlvis.semantics import BuildLanguageOptions
from bzlvis.types import PackageIdentifier

ENABLED = BuildLanguageOptions(
    experimental_bzl_visibility=True,
    experimental_bzl_visibility_allowlist=("everyone",),
)


@pytest.fixture()
def workspace(tmp_path: Path) -> Path:
    root = tmp_path / "workspace"
    root.mkdir()
    return root


def _write_module(root: Path, relative: str, body: str) -> None:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(dedent(body), encoding="utf-8")


def _cause(exc: ModuleEvaluationError) -> Exception | None:
    cause = exc.cause
    while isinstance(cause, ModuleEvaluationError):
        cause = cause.cause
    return cause


def test_discover_lists_modules_with_packages(workspace: Path, tmp_path: Path) -> None:
    _write_module(workspace, "defs.bzl", "X = 1\n")
    _write_module(workspace, "pkg/sub/rules.bzl", "X = 2\n")
    _write_module(workspace, "pkg/notes.txt", "ignored\n")
    _write_module(workspace, ".hidden/skip.bzl", "X = 3\n")
    external = tmp_path / "ext"
    _write_module(external, "lib/lib.bzl", "X = 4\n")

    loader = ModuleLoader(workspace, options=ENABLED, repositories={"ext": external})

    assert [str(label) for label in loader.discover()] == [
        "//:defs.bzl",
        "//pkg/sub:rules.bzl",
        "@ext//lib:lib.bzl",
    ]


def test_load_evaluates_once_and_caches(workspace: Path) -> None:
    _write_module(workspace, "pkg/defs.bzl", "VALUE = [1]\n")
    loader = ModuleLoader(workspace, options=ENABLED)

    first = loader.load("//pkg:defs.bzl")
    second = loader.load("//pkg:defs.bzl")

    assert first is second
    assert first.exports == {"VALUE": [1]}
    assert first.visibility is None
    assert loader.module_labels == [parse_label("//pkg:defs.bzl")]


def test_top_level_visibility_is_recorded(workspace: Path) -> None:
    _write_module(workspace, "pkg/defs.bzl", 'visibility(["//a", "//b/..."])\n')
    loader = ModuleLoader(workspace, options=ENABLED)

    loaded = loader.load("//pkg:defs.bzl")

    assert loaded.visibility == ModuleVisibility(
        (
            ExactPackage(PackageIdentifier("", "a")),
            PackagesBeneath(PackageIdentifier("", "b")),
        )
    )


def test_visibility_inside_function_fails(workspace: Path) -> None:
    _write_module(
        workspace,
        "pkg/defs.bzl",
        """
        def _declare():
            visibility("public")

        _declare()
        """,
    )
    loader = ModuleLoader(workspace, options=ENABLED)

    with pytest.raises(ModuleEvaluationError) as excinfo:
        loader.load("//pkg:defs.bzl")

    assert isinstance(excinfo.value.cause, NotTopLevelError)
    assert loader.module_labels == []


def test_visibility_through_loaded_helper_fails(workspace: Path) -> None:
    _write_module(
        workspace,
        "helpers/defs.bzl",
        """
        def declare_public():
            visibility("public")
        """,
    )
    _write_module(
        workspace,
        "pkg/defs.bzl",
        """
        load("//helpers:defs.bzl", "declare_public")
        declare_public()
        """,
    )
    loader = ModuleLoader(workspace, options=ENABLED)

    with pytest.raises(ModuleEvaluationError) as excinfo:
        loader.load("//pkg:defs.bzl")

    assert isinstance(excinfo.value.cause, NotTopLevelError)


def test_second_declaration_fails(workspace: Path) -> None:
    _write_module(workspace, "pkg/defs.bzl", 'visibility("public")\nvisibility(42)\n')
    loader = ModuleLoader(workspace, options=ENABLED)

    with pytest.raises(ModuleEvaluationError) as excinfo:
        loader.load("//pkg:defs.bzl")

    assert isinstance(excinfo.value.cause, AlreadySetError)


def test_feature_flag_and_allowlist(workspace: Path) -> None:
    _write_module(workspace, "pkg/defs.bzl", 'visibility("public")\n')
    _write_module(workspace, "other/defs.bzl", 'visibility("public")\n')

    disabled = ModuleLoader(workspace, options=BuildLanguageOptions())
    with pytest.raises(ModuleEvaluationError) as excinfo:
        disabled.load("//pkg:defs.bzl")
    assert isinstance(excinfo.value.cause, FeatureDisabledError)

    options = BuildLanguageOptions(
        experimental_bzl_visibility=True,
        experimental_bzl_visibility_allowlist=("//pkg",),
    )
    loader = ModuleLoader(workspace, options=options)
    assert loader.load("//pkg:defs.bzl").visibility == ModuleVisibility((Everyone(),))
    with pytest.raises(ModuleEvaluationError) as excinfo:
        loader.load("//other:defs.bzl")
    assert isinstance(excinfo.value.cause, NotAllowlistedError)


def test_builtins_outside_initialization(workspace: Path) -> None:
    _write_module(
        workspace,
        "pkg/defs.bzl",
        """
        def later():
            visibility("public")

        def later_load():
            load("//pkg:defs.bzl", "later")
        """,
    )
    loader = ModuleLoader(workspace, options=ENABLED)
    loaded = loader.load("//pkg:defs.bzl")

    with pytest.raises(WrongPhaseError):
        loaded.symbol("later")()
    with pytest.raises(WrongPhaseError):
        loaded.symbol("later_load")()


def test_load_binds_symbols_and_aliases(workspace: Path) -> None:
    _write_module(workspace, "lib/defs.bzl", "A = 1\nB = 2\n_PRIVATE = 3\n")
    _write_module(
        workspace,
        "pkg/defs.bzl",
        """
        load("//lib:defs.bzl", "A", renamed="B")
        TOTAL = A + renamed
        """,
    )
    loader = ModuleLoader(workspace, options=ENABLED)

    assert loader.load("//pkg:defs.bzl").symbol("TOTAL") == 3


def test_relative_load_resolves_in_same_package(workspace: Path) -> None:
    _write_module(workspace, "pkg/a.bzl", "A = 'a'\n")
    _write_module(workspace, "pkg/b.bzl", 'load(":a.bzl", "A")\nB = A + "b"\n')
    loader = ModuleLoader(workspace, options=ENABLED)

    assert loader.load("//pkg:b.bzl").symbol("B") == "ab"


@pytest.mark.parametrize(
    "body, message",
    [
        ('load("//lib:defs.bzl", "_PRIVATE")\n', "private"),
        ('load("//lib:defs.bzl", "MISSING")\n', "does not contain symbol 'MISSING'"),
        ('load("//lib:missing.bzl", "A")\n', "no such file"),
        ('load("//lib:BUILD", "A")\n', "extension '.bzl'"),
        ('load("@nowhere//lib:defs.bzl", "A")\n', "Unknown repository '@nowhere'"),
        ('load("lib", "A")\n', "invalid load label 'lib'"),
    ],
)
def test_load_errors(workspace: Path, body: str, message: str) -> None:
    _write_module(workspace, "lib/defs.bzl", "A = 1\n_PRIVATE = 3\n")
    _write_module(workspace, "pkg/defs.bzl", body)
    loader = ModuleLoader(workspace, options=ENABLED)

    with pytest.raises(ModuleEvaluationError) as excinfo:
        loader.load("//pkg:defs.bzl")

    assert isinstance(excinfo.value.cause, LoadError)
    assert message in str(excinfo.value)


def test_load_cycle_is_reported(workspace: Path) -> None:
    _write_module(workspace, "a/a.bzl", 'load("//b:b.bzl", "B")\nA = 1\n')
    _write_module(workspace, "b/b.bzl", 'load("//a:a.bzl", "A")\nB = 1\n')
    loader = ModuleLoader(workspace, options=ENABLED)

    with pytest.raises(ModuleEvaluationError) as excinfo:
        loader.load("//a:a.bzl")

    root = _cause(excinfo.value)
    assert isinstance(root, LoadError)
    assert "//a:a.bzl -> //b:b.bzl -> //a:a.bzl" in str(root)


def test_load_visibility_enforced(workspace: Path) -> None:
    _write_module(workspace, "lib/defs.bzl", 'visibility(["//allowed/..."])\nA = 1\n')
    _write_module(workspace, "allowed/sub/defs.bzl", 'load("//lib:defs.bzl", "A")\n')
    _write_module(workspace, "denied/defs.bzl", 'load("//lib:defs.bzl", "A")\n')
    loader = ModuleLoader(workspace, options=ENABLED)

    loader.load("//allowed/sub:defs.bzl")
    with pytest.raises(ModuleEvaluationError) as excinfo:
        loader.load("//denied:defs.bzl")

    assert isinstance(excinfo.value.cause, LoadVisibilityError)
    assert excinfo.value.cause.requesting_package == PackageIdentifier("", "denied")


def test_private_module_loadable_from_own_package(workspace: Path) -> None:
    _write_module(workspace, "lib/private.bzl", 'visibility("private")\nA = 1\n')
    _write_module(workspace, "lib/user.bzl", 'load(":private.bzl", "A")\n')
    loader = ModuleLoader(workspace, options=ENABLED)

    loader.load("//lib:user.bzl")


def test_nested_load_sees_own_top_level(workspace: Path) -> None:
    _write_module(workspace, "lib/defs.bzl", 'visibility("public")\nA = 1\n')
    _write_module(workspace, "pkg/defs.bzl", 'load("//lib:defs.bzl", "A")\nvisibility("private")\n')
    loader = ModuleLoader(workspace, options=ENABLED)

    assert loader.load("//pkg:defs.bzl").visibility == ModuleVisibility((Nobody(),))
    assert loader.get(parse_label("//lib:defs.bzl")).visibility == ModuleVisibility(
        (Everyone(),)
    )


def test_configuration_field_builtin(workspace: Path) -> None:
    _write_module(
        workspace,
        "pkg/defs.bzl",
        'GENERATOR = configuration_field("coverage", "output_generator")\n',
    )
    loader = ModuleLoader(workspace, options=ENABLED, tools_repository="tools")

    value = loader.load("//pkg:defs.bzl").symbol("GENERATOR")

    assert isinstance(value, LateBoundDefault)
    assert str(value.default) == "@tools//tools/test:lcov_merger"


def test_configuration_field_unknown_fragment(workspace: Path) -> None:
    _write_module(workspace, "pkg/defs.bzl", 'X = configuration_field("nope", "field")\n')
    loader = ModuleLoader(workspace, options=ENABLED)

    with pytest.raises(ModuleEvaluationError) as excinfo:
        loader.load("//pkg:defs.bzl")

    assert isinstance(excinfo.value.cause, UnknownFragmentError)


def test_syntax_error_is_reported(workspace: Path) -> None:
    _write_module(workspace, "pkg/defs.bzl", "def broken(:\n")
    loader = ModuleLoader(workspace, options=ENABLED)

    with pytest.raises(ModuleEvaluationError) as excinfo:
        loader.load("//pkg:defs.bzl")

    assert "Syntax error in //pkg:defs.bzl" in str(excinfo.value)


def test_load_all_collects_failures(workspace: Path) -> None:
    _write_module(workspace, "good/defs.bzl", 'visibility("public")\n')
    _write_module(workspace, "bad/defs.bzl", "raise ValueError('boom')\n")
    loader = ModuleLoader(workspace, options=ENABLED)

    failures = loader.load_all()

    assert list(failures) == [parse_label("//bad:defs.bzl")]
    assert "boom" in str(failures[parse_label("//bad:defs.bzl")])
    assert loader.module_labels == [parse_label("//good:defs.bzl")]


def test_reload_creates_fresh_contexts(workspace: Path) -> None:
    _write_module(workspace, "pkg/defs.bzl", 'visibility("public")\n')
    loader = ModuleLoader(workspace, options=ENABLED)
    loader.load_all()

    _write_module(workspace, "pkg/defs.bzl", 'visibility("private")\n')
    failures = loader.reload_all()

    assert failures == {}
    assert str(loader.get(parse_label("//pkg:defs.bzl")).visibility) == "[private]"


def test_get_unknown_module(workspace: Path) -> None:
    loader = ModuleLoader(workspace, options=ENABLED)

    with pytest.raises(KeyError):
        loader.get(parse_label("//pkg:defs.bzl"))


def test_visibility_through_native_callback_fails(workspace: Path) -> None:
    _write_module(workspace, "pkg/defs.bzl", 'sorted(["public"], key=visibility)\n')
    _write_module(workspace, "ok/defs.bzl", 'SIZE = len(sorted([2, 1]))\nvisibility("public")\n')
    loader = ModuleLoader(workspace, options=ENABLED)

    with pytest.raises(ModuleEvaluationError) as excinfo:
        loader.load("//pkg:defs.bzl")

    assert isinstance(excinfo.value.cause, NotTopLevelError)
    assert loader.load("//ok:defs.bzl").visibility == ModuleVisibility((Everyone(),))


def test_concurrent_loads_keep_their_own_context(
    workspace: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    events = SimpleNamespace(
        a_started=threading.Event(),
        b_started=threading.Event(),
        a_done=threading.Event(),
    )
    monkeypatch.setitem(sys.modules, "_bzlvis_test_events", events)
    _write_module(
        workspace,
        "a/defs.bzl",
        """
        import _bzlvis_test_events as _events
        _events.a_started.set()
        _events.b_started.wait(5)
        visibility("public")
        """,
    )
    _write_module(
        workspace,
        "b/defs.bzl",
        """
        import _bzlvis_test_events as _events
        _events.b_started.set()
        _events.a_done.wait(5)
        visibility("private")
        """,
    )
    loader = ModuleLoader(workspace, options=ENABLED)
    errors: list[Exception] = []

    def _load(label: str) -> None:
        try:
            loader.load(label)
        except Exception as exc:  # surfaced through the assertion below
            errors.append(exc)

    first = threading.Thread(target=_load, args=("//a:defs.bzl",))
    second = threading.Thread(target=_load, args=("//b:defs.bzl",))
    first.start()
    assert events.a_started.wait(5)
    second.start()
    first.join(5)
    events.a_done.set()
    second.join(5)

    assert errors == []
    assert loader.get(parse_label("//a:defs.bzl")).visibility == ModuleVisibility((Everyone(),))
    assert loader.get(parse_label("//b:defs.bzl")).visibility == ModuleVisibility((Nobody(),))


def test_configuration_field_resolves_against_build_configuration(workspace: Path) -> None:
    _write_module(
        workspace,
        "pkg/defs.bzl",
        """
        ZIPPER = configuration_field("cpp", "zipper")
        GENERATOR = configuration_field("coverage", "output_generator")
        """,
    )
    loader = ModuleLoader(
        workspace,
        options=ENABLED,
        build_configuration={"cpp": {"zipper": "//tools:zip"}},
    )

    module = loader.load("//pkg:defs.bzl")

    assert loader.resolve(module.symbol("ZIPPER")) == parse_label("//tools:zip")
    assert str(loader.resolve(module.symbol("GENERATOR"))) == (
        "@bazel_tools//tools/test:lcov_merger"
    )


def test_load_all_collects_vanished_modules(
    workspace: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    _write_module(workspace, "good/defs.bzl", "X = 1\n")
    loader = ModuleLoader(workspace, options=ENABLED)
    vanished = parse_label("//gone:defs.bzl")
    discovered = loader.discover() + [vanished]
    monkeypatch.setattr(loader, "discover", lambda: discovered)

    failures = loader.load_all()

    assert list(failures) == [vanished]
    assert isinstance(failures[vanished], LoadError)
    assert "no such file" in str(failures[vanished])
    assert loader.module_labels == [parse_label("//good:defs.bzl")]
