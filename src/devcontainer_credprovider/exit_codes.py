"""Numeric process exit codes.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~devcontainer_credprovider.exceptions.CredProviderError`
subclass. Install scripts and CI checks inspect the exit code of
``--test`` to decide whether the auth helper is usable without parsing
stderr.

Example::

    $ devcontainer-credprovider --test
    $ echo $?
    1   # EXIT_GENERIC_FAILURE -- no token could be acquired
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred, or no credential could be acquired."""

EXIT_INVALID_USAGE = 2
"""Command-line usage error, reported by Typer before any command runs."""

EXIT_CONFIG_ERROR = 3
"""The configuration or the two-factor secret could not be used."""

EXIT_PROTOCOL_ERROR = 4
"""The plugin protocol stream could not be established or decoded."""

EXIT_INTERRUPTED = 130
"""The process was interrupted (Ctrl-C)."""
