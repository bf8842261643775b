from __future__ import annotations

import threading
import time
from pathlib import Path
from textwrap import dedent

import pytest


class EventCollector:
    """Thread-safe helper for waiting on asynchronous events."""

    def __init__(self) -> None:
        self.events: list[object] = []
        self._condition = threading.Condition()

    def add(self, event: object) -> None:
        with self._condition:
            self.events.append(event)
            self._condition.notify_all()

    def wait_for(self, count: int, timeout: float = 30.0) -> bool:
        """Wait until a minimum number of events have been collected."""

        deadline = time.monotonic() + timeout
        with self._condition:
            while len(self.events) < count:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._condition.wait(timeout=remaining)
            return True


class Workspace:
    """A throwaway source tree with a main repository and external ones."""

    def __init__(self, root: Path) -> None:
        self.root = root
        self.main = root / "main"
        self.main.mkdir(parents=True)
        self.repositories: dict[str, Path] = {}

    def repository(self, name: str) -> Path:
        path = self.root / "external" / name
        path.mkdir(parents=True, exist_ok=True)
        self.repositories[name] = path
        return path

    def write(self, relative: str, body: str, *, repository: str | None = None) -> Path:
        base = self.main if repository is None else self.repositories[repository]
        path = base / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(dedent(body).lstrip("\n"), encoding="utf-8")
        return path


@pytest.fixture()
def workspace(tmp_path: Path) -> Workspace:
    return Workspace(tmp_path / "src")


@pytest.fixture()
def collector() -> EventCollector:
    return EventCollector()


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Automatically mark tests in this package as integration."""

    package_root = Path(__file__).resolve().parent
    integration_mark = pytest.mark.integration
    for item in items:
        try:
            path = Path(item.fspath).resolve()
        except OSError:
            continue
        if package_root in path.parents:
            item.add_marker(integration_mark)
