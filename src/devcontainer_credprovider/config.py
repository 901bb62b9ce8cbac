"""Configuration resolution with XDG paths and precedence rules.

This module is the process edge for configuration: it is the only place that
reads the config file and the ``DEVCONTAINER_CREDPROVIDER_*`` /
``NUGET_CREDPROVIDER_*`` environment variables. The result is an immutable
:class:`~devcontainer_credprovider.models.PluginConfig` snapshot that is
handed to the session and the credential pipeline.

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.config/`` and ``~/.local/share/`` equivalents elsewhere. See
  :func:`get_config_dir` and :func:`get_data_dir`.
* **Precedence resolution** -- :func:`load_config` merges environment
  variables over the config file over defaults. A broken config file never
  prevents the plugin from starting.
* **Helper discovery** -- :func:`default_helper_paths` lists the auth helper
  executables to probe, in order.
"""

from __future__ import annotations

import json
import os
import platform
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from devcontainer_credprovider.models import PluginConfig
from devcontainer_credprovider.output import warning

_APP_NAME = "devcontainer-credprovider"
_CONFIG_FILENAME = "config.json"

ENV_DISABLED = "DEVCONTAINER_CREDPROVIDER_DISABLED"
ENV_VERBOSITY = "DEVCONTAINER_CREDPROVIDER_VERBOSITY"
ENV_TWO_FACTOR_ENABLED = "NUGET_CREDPROVIDER_2FA_ENABLED"
ENV_TWO_FACTOR_SECRET = "NUGET_CREDPROVIDER_2FA_SECRET"
ENV_TWO_FACTOR_CODE = "NUGET_CREDPROVIDER_2FA_CODE"
ENV_ACCESS_TOKEN = "VSS_NUGET_ACCESSTOKEN"

HELPER_NAMES = ("ado-auth-helper", "azure-auth-helper")
HELPER_SYSTEM_DIR = Path("/usr/local/bin")

# Keys the config file may set; matched case-insensitively.
_FILE_KEYS = ("disabled", "verbosity")


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def _xdg_base(env_var: str, default_segments: tuple[str, ...]) -> Path:
    """Resolve an XDG base directory from an env var with fallback segments under $HOME."""
    env_value = os.environ.get(env_var, "")
    if env_value and _is_xdg_platform():
        return Path(env_value)
    base = Path.home()
    for seg in default_segments:
        base = base / seg
    return base


def get_config_dir() -> Path:
    """Return the configuration directory (not created).

    ``$XDG_CONFIG_HOME/devcontainer-credprovider/`` on Linux/BSD, otherwise
    ``~/.config/devcontainer-credprovider/``.
    """
    return _xdg_base("XDG_CONFIG_HOME", (".config",)) / _APP_NAME


def get_data_dir() -> Path:
    """Return the data directory (crash logs), creating it if necessary.

    ``$XDG_DATA_HOME/devcontainer-credprovider/`` on Linux/BSD, otherwise
    ``~/.local/share/devcontainer-credprovider/``.
    """
    path = _xdg_base("XDG_DATA_HOME", (".local", "share")) / _APP_NAME
    path.mkdir(parents=True, exist_ok=True)
    return path


def config_file_path() -> Path:
    """Path to the config file (``<config_dir>/config.json``)."""
    return get_config_dir() / _CONFIG_FILENAME


# --- Config file ---


def load_config_file(path: Optional[Path] = None) -> dict[str, Any]:
    """Read the recognised settings from the config file.

    Property names are matched case-insensitively, so ``{"Disabled": true}``
    and ``{"disabled": true}`` are equivalent. ``null`` values and unknown
    keys are ignored.

    Args:
        path: Config file to read. Defaults to :func:`config_file_path`.

    Returns:
        A dict containing only the settings present in the file. An empty
        dict when the file is missing, empty, or not a JSON object; a
        warning is written for unreadable or invalid files.
    """
    path = path or config_file_path()
    if not path.is_file():
        return {}
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        warning(f"Cannot read config file {path}: {exc}")
        return {}
    if not text.strip():
        return {}
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        warning(f"Ignoring invalid config file {path}: {exc}")
        return {}
    if not isinstance(data, dict):
        warning(f"Ignoring config file {path}: expected a JSON object")
        return {}

    settings: dict[str, Any] = {}
    for key, value in data.items():
        normalised = str(key).lower()
        if normalised in _FILE_KEYS and value is not None:
            settings[normalised] = value
    return settings


# --- Environment parsing ---


def parse_disabled_flag(value: str) -> bool:
    """Interpret ``DEVCONTAINER_CREDPROVIDER_DISABLED``: only ``true``/``1`` disable."""
    return value.strip().lower() in ("true", "1")


def parse_bool(value: Optional[str]) -> bool:
    """Strict boolean parse: ``true``/``false`` in any case; anything else is False."""
    if value is None:
        return False
    return value.strip().lower() == "true"


def _env_text(name: str) -> Optional[str]:
    """Return the trimmed env var value, or None when unset or blank."""
    value = os.environ.get(name)
    if value is None or not value.strip():
        return None
    return value.strip()


# --- Precedence resolution ---


def load_config(path: Optional[Path] = None) -> PluginConfig:
    """Resolve the configuration snapshot.

    Precedence (high to low):
        1. Environment variables
        2. Config file (``~/.config/devcontainer-credprovider/config.json``)
        3. Defaults

    Every call builds a new snapshot, so tests can "reload" after changing
    the environment simply by calling this again.

    Args:
        path: Optional config file override.

    Returns:
        A frozen :class:`~devcontainer_credprovider.models.PluginConfig`.
    """
    settings = load_config_file(path)

    disabled_env = os.environ.get(ENV_DISABLED)
    if disabled_env:
        settings["disabled"] = parse_disabled_flag(disabled_env)

    verbosity_env = os.environ.get(ENV_VERBOSITY)
    if verbosity_env:
        settings["verbosity"] = verbosity_env.lower()

    settings["two_factor_enabled"] = parse_bool(os.environ.get(ENV_TWO_FACTOR_ENABLED))
    settings["two_factor_secret"] = _env_text(ENV_TWO_FACTOR_SECRET)
    settings["two_factor_code"] = _env_text(ENV_TWO_FACTOR_CODE)
    # Used exactly as supplied, surrounding whitespace included.
    settings["access_token"] = os.environ.get(ENV_ACCESS_TOKEN) or None

    try:
        return PluginConfig.model_validate(settings)
    except ValidationError as exc:
        warning(f"Ignoring invalid config file values: {exc.error_count()} error(s)")
        for key in _FILE_KEYS:
            settings.pop(key, None)
        if disabled_env:
            settings["disabled"] = parse_disabled_flag(disabled_env)
        if verbosity_env:
            settings["verbosity"] = verbosity_env.lower()
        return PluginConfig.model_validate(settings)


# --- Auth helper discovery ---


def default_helper_paths() -> list[Path]:
    """Return the auth helper executables to probe, in priority order.

    POSIX: ``~/ado-auth-helper``, ``~/azure-auth-helper``,
    ``/usr/local/bin/ado-auth-helper``, ``/usr/local/bin/azure-auth-helper``.
    Windows: the two home-directory helpers with an ``.exe`` suffix.
    """
    home = Path.home()
    if platform.system() == "Windows":
        return [home / f"{name}.exe" for name in HELPER_NAMES]
    return [home / name for name in HELPER_NAMES] + [
        HELPER_SYSTEM_DIR / name for name in HELPER_NAMES
    ]
