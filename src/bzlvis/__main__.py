"""Entry point for `python -m bzlvis`."""

from __future__ import annotations

from .cli import app


def main() -> None:
    """Run the Typer application under the `bzlvis` program name."""
    app(prog_name="bzlvis")


if __name__ == "__main__":  # pragma: no cover - module execution guard
    main()
