"""Diagnostics output with strict stdout/stderr discipline.

In plugin mode stdout carries the NuGet protocol stream, so every diagnostic
line must go to **stderr**. Command-line modes (``--test``, ``--setup-2fa``,
``--config``) print their primary output to stdout through
:meth:`OutputManager.print_data`.

* **Prefix** -- every stderr line starts with ``[CredentialProvider.Devcontainer]``
  so that it is recognisable inside NuGet's own output.
* **Verbosity** -- ``debug`` and ``log(always=False)`` messages are only
  written when the configuration asks for ``debug``/``verbose`` or when the
  client lowered its log level to ``Debug``/``Verbose`` via ``SetLogLevel``.
* **Colour control** -- respects ``NO_COLOR``, ``TERM=dumb``, and the
  ``no_color`` constructor flag.

The module exposes two layers:

1. :class:`OutputManager` -- a stateful object holding the Rich console and
   the verbosity threshold. Created once in :func:`~devcontainer_credprovider.app.main`
   and installed via :func:`set_output`.
2. Module-level convenience functions (:func:`log`, :func:`info`,
   :func:`error`, :func:`debug`, etc.) that delegate to the global
   ``OutputManager`` so callers do not need to pass the manager around.

Secret material is never passed to this module; callers log token lengths,
never token values.
"""

from __future__ import annotations

import os
import sys
from typing import Optional

from rich.console import Console
from rich.markup import escape

from devcontainer_credprovider.models import LogLevel

LOG_PREFIX = "[CredentialProvider.Devcontainer]"

_VERBOSE_LOG_LEVELS = frozenset({LogLevel.DEBUG, LogLevel.VERBOSE})


class OutputManager:
    """Central manager for diagnostics on stderr and data on stdout.

    Args:
        no_color: Disable all colour and Rich markup.
        quiet: Suppress informational messages (warnings and errors are
            still written).
        verbose: Enable debug-level messages.
    """

    def __init__(
        self,
        no_color: bool = False,
        quiet: bool = False,
        verbose: bool = False,
    ) -> None:
        self._no_color = no_color or _should_disable_color()
        self._quiet = quiet
        self._verbose = verbose
        self._log_level: Optional[LogLevel] = None

        self._stderr = Console(
            file=sys.stderr,
            no_color=self._no_color,
            stderr=True,
            highlight=False,
            soft_wrap=True,
        )

    @property
    def is_quiet(self) -> bool:
        """Whether quiet mode is enabled."""
        return self._quiet

    @property
    def is_verbose(self) -> bool:
        """Whether debug output is enabled by config or by the client's log level."""
        return self._verbose or self._log_level in _VERBOSE_LOG_LEVELS

    @property
    def log_level(self) -> Optional[LogLevel]:
        """The log level last requested by the client, if any."""
        return self._log_level

    def set_log_level(self, level: Optional[LogLevel]) -> None:
        """Apply the client's ``SetLogLevel`` threshold.

        ``Debug`` and ``Verbose`` turn on debug output; any other level
        leaves only the configuration's own verbosity in effect.
        """
        self._log_level = level

    # ------------------------------------------------------------------ #
    # Data output (stdout)
    # ------------------------------------------------------------------ #

    def print_data(self, text: str) -> None:
        """Print raw text to stdout. Never used in plugin mode."""
        print(text, file=sys.stdout, flush=True)

    # ------------------------------------------------------------------ #
    # Diagnostics (stderr)
    # ------------------------------------------------------------------ #

    def log(self, message: str, always: bool = False) -> None:
        """Write a prefixed diagnostic line.

        Args:
            message: The message text.
            always: Write even when verbose output is off.
        """
        if always or self.is_verbose:
            self._emit(message)

    def info(self, message: str) -> None:
        """Write an informational line. Suppressed by ``quiet``."""
        if not self._quiet:
            self._emit(message)

    def success(self, message: str) -> None:
        """Write a green success line. Suppressed by ``quiet``."""
        if not self._quiet:
            self._emit(message, style="green")

    def warning(self, message: str) -> None:
        """Write a yellow warning. NOT suppressed by ``quiet``."""
        self._emit(f"Warning: {message}", style="yellow")

    def error(self, message: str) -> None:
        """Write a bold-red error. Never suppressed."""
        self._emit(f"Error: {message}", style="bold red")

    def debug(self, message: str) -> None:
        """Write a debug line, only when verbose."""
        if self.is_verbose:
            self._emit(f"[debug] {message}", style="dim")

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _emit(self, message: str, style: Optional[str] = None) -> None:
        line = f"{LOG_PREFIX} {message}"
        if self._no_color or style is None:
            print(line, file=sys.stderr, flush=True)
        else:
            self._stderr.print(f"[{style}]{escape(line)}[/{style}]")


# ------------------------------------------------------------------ #
# Module-level helpers
# ------------------------------------------------------------------ #


def _should_disable_color() -> bool:
    """Return True when NO_COLOR is set (any value) or TERM=dumb."""
    if os.environ.get("NO_COLOR") is not None:
        return True
    if os.environ.get("TERM") == "dumb":
        return True
    return False


# ------------------------------------------------------------------ #
# Global output instance (set during app startup)
# ------------------------------------------------------------------ #

_output: Optional[OutputManager] = None


def get_output() -> OutputManager:
    """Return the global :class:`OutputManager`, creating a default one lazily."""
    global _output
    if _output is None:
        _output = OutputManager()
    return _output


def set_output(output: OutputManager) -> None:
    """Install *output* as the global :class:`OutputManager` instance."""
    global _output
    _output = output


def reset_output() -> None:
    """Reset the global :class:`OutputManager` to ``None``.

    Primarily useful in test suites to ensure a clean state between tests.
    """
    global _output
    _output = None


# ------------------------------------------------------------------ #
# Convenience functions that use the global instance
# ------------------------------------------------------------------ #


def print_data(text: str) -> None:
    """Print raw data to stdout via the global OutputManager."""
    get_output().print_data(text)


def log(message: str, always: bool = False) -> None:
    """Write a prefixed diagnostic via the global OutputManager."""
    get_output().log(message, always=always)


def info(message: str) -> None:
    """Print info message to stderr via the global OutputManager."""
    get_output().info(message)


def error(message: str) -> None:
    """Print error to stderr via the global OutputManager."""
    get_output().error(message)


def success(message: str) -> None:
    """Print success message to stderr via the global OutputManager."""
    get_output().success(message)


def warning(message: str) -> None:
    """Print warning to stderr via the global OutputManager."""
    get_output().warning(message)


def debug(message: str) -> None:
    """Print debug message to stderr via the global OutputManager."""
    get_output().debug(message)
