"""Typer application and console-script entry point.

NuGet discovers credential providers on disk and launches them with
``-Plugin``; everything else on this command line is for humans:

* ``-Plugin`` -- run the plugin protocol over stdin/stdout.
* ``--version`` / ``-v`` -- print the version.
* ``--setup-2fa`` -- show (creating if needed) the two-factor secret and
  the details needed to enrol it in an authenticator app.
* ``--test`` -- run the credential pipeline once against a sample feed.
* ``--config`` -- print the config file path and the effective settings.

Flags are checked in that order, so ``-Plugin`` wins over everything else.
The :func:`main` function is the console-script entry point declared in
``pyproject.toml``. Unhandled exceptions are written to a crash log under
the data directory.

See Also:
    :mod:`devcontainer_credprovider.config`: Configuration resolution.
    :mod:`devcontainer_credprovider.protocol.host`: Plugin mode.
"""

from __future__ import annotations

import asyncio
import signal
import sys
import traceback
from datetime import datetime
from typing import Any

import typer

from devcontainer_credprovider import __version__
from devcontainer_credprovider.exit_codes import (
    EXIT_GENERIC_FAILURE,
    EXIT_INTERRUPTED,
    EXIT_SUCCESS,
)
from devcontainer_credprovider.models import PluginConfig

PRODUCT_NAME = "CredentialProvider.Devcontainer"
TEST_FEED_URI = "https://pkgs.dev.azure.com/test/"
TOTP_ACCOUNT = "NuGetCredProvider"
TOTP_ISSUER = "DevcontainerCredProvider"

app = typer.Typer(
    name="devcontainer-credprovider",
    help="NuGet credential provider for Azure Artifacts feeds in devcontainers.",
    add_completion=False,
    rich_markup_mode="rich",
    context_settings={
        "help_option_names": ["-h", "--help"],
        "ignore_unknown_options": True,
        "allow_extra_args": True,
    },
)


def totp_uri(secret: str) -> str:
    """Return the ``otpauth://`` enrolment URI for *secret*."""
    return f"otpauth://totp/{TOTP_ACCOUNT}?secret={secret}&issuer={TOTP_ISSUER}"


@app.command()
def run(
    plugin: bool = typer.Option(
        False, "-Plugin", "-plugin", "--plugin", help="Run as a NuGet plugin."
    ),
    version: bool = typer.Option(
        False, "--version", "-v", help="Show version and exit."
    ),
    setup_2fa: bool = typer.Option(
        False, "--setup-2fa", help="Set up or view two-factor authentication."
    ),
    test: bool = typer.Option(
        False, "--test", help="Test credential acquisition."
    ),
    show_config: bool = typer.Option(
        False, "--config", help="Show the configuration file path and settings."
    ),
    no_color: bool = typer.Option(
        False, "--no-color", help="Disable color output."
    ),
) -> None:
    """Run as a NuGet plugin, or a diagnostic command for humans."""
    from devcontainer_credprovider.config import load_config
    from devcontainer_credprovider.output import OutputManager, set_output

    set_output(OutputManager(no_color=no_color))
    config = load_config()
    set_output(OutputManager(no_color=no_color, verbose=config.is_verbose))

    if plugin:
        from devcontainer_credprovider.protocol.host import run_plugin

        raise typer.Exit(run_plugin(config))
    if version:
        from devcontainer_credprovider.output import print_data

        print_data(f"{PRODUCT_NAME} {__version__}")
        raise typer.Exit(EXIT_SUCCESS)
    if setup_2fa:
        raise typer.Exit(_setup_two_factor(config))
    if test:
        raise typer.Exit(_test_credentials(config))
    if show_config:
        raise typer.Exit(_show_config(config))

    from devcontainer_credprovider.output import log

    log("Use -Plugin to run as NuGet credential provider, or --test to test credentials", always=True)
    raise typer.Exit(EXIT_GENERIC_FAILURE)


def _setup_two_factor(config: PluginConfig) -> int:
    """Print the shared secret, the enrolment URI and the current code."""
    from devcontainer_credprovider.credentials.secret_store import TwoFactorSecretStore
    from devcontainer_credprovider.credentials.two_factor import current_code
    from devcontainer_credprovider.output import print_data, warning

    store = TwoFactorSecretStore()
    secret = config.two_factor_secret or store.get_or_create()
    source = "NUGET_CREDPROVIDER_2FA_SECRET" if config.two_factor_secret else str(store.path)

    print_data(f"{PRODUCT_NAME} v{__version__}")
    print_data("Two-Factor Authentication Setup")
    print_data("================================")
    print_data("")
    warning("Keep your secret private! Do not share or commit it to source control.")
    print_data(f"Secret: {secret}")
    print_data(f"Stored in: {source}")
    print_data("")
    print_data(f"Setup URL: {totp_uri(secret)}")
    print_data("")
    print_data("Or enter this information manually in your authenticator app:")
    print_data(f"  Account: {TOTP_ACCOUNT}")
    print_data(f"  Secret: {secret}")
    print_data("  Type: Time-based (TOTP)")
    print_data("")
    print_data(f"Current code (for verification): {current_code(secret)}")
    print_data("This code changes every 30 seconds.")
    return EXIT_SUCCESS


def _test_credentials(config: PluginConfig) -> int:
    """Run the default pipeline once for :data:`TEST_FEED_URI`."""
    from devcontainer_credprovider.credentials.base import CredentialQuery
    from devcontainer_credprovider.credentials.pipeline import create_default_pipeline
    from devcontainer_credprovider.output import print_data

    print_data(f"{PRODUCT_NAME} v{__version__}")
    print_data("Testing credential acquisition...")

    pipeline = create_default_pipeline(config)
    result = asyncio.run(pipeline.acquire(CredentialQuery(uri=TEST_FEED_URI)))
    if result.is_success:
        print_data(f"✓ Successfully acquired token (length: {len(result.secret or '')})")
        return EXIT_SUCCESS
    print_data("✗ Failed to acquire token")
    if result.message:
        print_data(f"  {result.message}")
    return EXIT_GENERIC_FAILURE


def _show_config(config: PluginConfig) -> int:
    """Print the config file location and the effective settings."""
    from devcontainer_credprovider.config import config_file_path
    from devcontainer_credprovider.output import print_data

    path = config_file_path()
    print_data(f"Config file: {path}{'' if path.is_file() else ' (not found)'}")
    print_data(f"  disabled: {str(config.disabled).lower()}")
    print_data(f"  verbosity: {config.verbosity}")
    print_data(f"  2fa enabled: {str(config.two_factor_enabled).lower()}")
    print_data(f"  access token: {'set' if config.access_token else 'not set'}")
    return EXIT_SUCCESS


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly outside plugin mode."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(EXIT_INTERRUPTED)

    signal.signal(signal.SIGINT, _handler)


def _write_crash_log(exc: Exception) -> str:
    """Write a crash traceback to disk and return the log file path.

    Args:
        exc: The unhandled exception to log.

    Returns:
        Absolute path to the written crash log file.
    """
    from devcontainer_credprovider.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text(traceback.format_exc())
    return str(log_path)


def main() -> None:
    """CLI entry point invoked by the ``devcontainer-credprovider`` console script.

    Unhandled :class:`~devcontainer_credprovider.exceptions.CredProviderError`
    instances cause a clean exit with the error's ``exit_code``. All other
    exceptions produce a crash log and a generic failure exit.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    _setup_signal_handlers()
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(EXIT_INTERRUPTED)
    except Exception as exc:
        from devcontainer_credprovider.exceptions import CredProviderError
        from devcontainer_credprovider.output import error

        if isinstance(exc, CredProviderError):
            error(str(exc))
            sys.exit(exc.exit_code)
        else:
            log_path = _write_crash_log(exc)
            error(f"Unexpected error. Debug log: {log_path}")
            sys.exit(EXIT_GENERIC_FAILURE)
