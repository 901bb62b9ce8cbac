"""Shared test fixtures for devcontainer_credprovider.

Provides reusable fixtures for isolating configuration and environment,
managing output state, writing fake auth helpers, and running the CLI.
These fixtures are automatically discovered by pytest and available to
all test modules without explicit imports.
"""

from __future__ import annotations

import stat
from pathlib import Path
from typing import Callable

import pytest

from devcontainer_credprovider.output import OutputManager, reset_output, set_output

ENV_VARS = (
    "DEVCONTAINER_CREDPROVIDER_DISABLED",
    "DEVCONTAINER_CREDPROVIDER_VERBOSITY",
    "NUGET_CREDPROVIDER_2FA_ENABLED",
    "NUGET_CREDPROVIDER_2FA_SECRET",
    "NUGET_CREDPROVIDER_2FA_CODE",
    "VSS_NUGET_ACCESSTOKEN",
    "NUGET_PLUGIN_HANDSHAKE_TIMEOUT_IN_SECONDS",
    "NUGET_PLUGIN_REQUEST_TIMEOUT_IN_SECONDS",
    "NO_COLOR",
)


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests() -> None:
    """Reset the global OutputManager after every test.

    The OutputManager caches a Rich console bound to sys.stderr at creation
    time. When Typer's CliRunner redirects the streams and the test
    finishes, the cached reference becomes stale. Resetting forces a fresh
    manager to be created on next use.
    """
    yield
    reset_output()


# ---------------------------------------------------------------------------
# Environment isolation
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration, home directory and provider env vars.

    Points HOME and the XDG directories at *tmp_path* so that tests never
    read the real config file or 2FA secret, and clears every variable the
    provider reads.

    Returns:
        The fake home directory.
    """
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("USERPROFILE", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setattr(
        "devcontainer_credprovider.config._is_xdg_platform", lambda: True
    )
    return home


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_output() -> OutputManager:
    """Install a colourless, non-verbose OutputManager as the global output."""
    output = OutputManager(no_color=True)
    set_output(output)
    yield output
    reset_output()


@pytest.fixture
def verbose_output() -> OutputManager:
    """Install a colourless, verbose OutputManager as the global output."""
    output = OutputManager(no_color=True, verbose=True)
    set_output(output)
    yield output
    reset_output()


# ---------------------------------------------------------------------------
# Fake auth helpers
# ---------------------------------------------------------------------------


HelperFactory = Callable[..., Path]


@pytest.fixture
def make_helper(tmp_path: Path) -> HelperFactory:
    """Factory writing executable ``/bin/sh`` scripts that act as auth helpers.

    ``make_helper(body, name="helper")`` writes ``#!/bin/sh`` followed by
    *body* and returns the script path. The script receives the same
    ``get-access-token`` argument the real helper does.
    """
    helpers_dir = tmp_path / "helpers"
    helpers_dir.mkdir()

    def _make(body: str, name: str = "helper") -> Path:
        path = helpers_dir / name
        path.write_text(f"#!/bin/sh\n{body}\n", encoding="utf-8")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    return _make


@pytest.fixture
def counting_helper(make_helper: HelperFactory, tmp_path: Path) -> Callable[..., tuple[Path, Path]]:
    """Factory for helpers that append a line to a counter file on every run.

    Returns ``(script, counter_file)``; ``len(counter_file.read_text().splitlines())``
    is the number of times the script was started.
    """

    def _make(body: str, name: str = "counting-helper") -> tuple[Path, Path]:
        counter = tmp_path / f"{name}.count"
        script = make_helper(f'echo run >> "{counter}"\n{body}', name=name)
        return script, counter

    return _make


# ---------------------------------------------------------------------------
# CLI runner fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner():
    """Typer CLI test runner.

    Returns a CliRunner instance that captures stdout/stderr and
    provides a consistent interface for invoking Typer apps in tests.
    """
    from typer.testing import CliRunner

    return CliRunner()
