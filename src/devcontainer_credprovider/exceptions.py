"""Exception hierarchy for devcontainer_credprovider.

All exceptions inherit from :class:`CredProviderError`, which carries an
``exit_code`` attribute mapped to a constant from
:mod:`devcontainer_credprovider.exit_codes`. The top-level error handler in
:func:`devcontainer_credprovider.app.main` catches ``CredProviderError`` and
exits with the appropriate code.

These exceptions are only raised at the edges of the process (command line,
configuration, transport). The credential pipeline itself never lets an
exception escape: every failure there is folded into a ``NotApplicable``
result so that NuGet can try the next provider.

Subclass hierarchy::

    CredProviderError (exit 1)
    +-- ConfigError            (exit 3)
    |   +-- TwoFactorConfigError
    +-- ProtocolError          (exit 4)
"""

from devcontainer_credprovider.exit_codes import (
    EXIT_CONFIG_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_PROTOCOL_ERROR,
)


class CredProviderError(Exception):
    """Base exception for all devcontainer_credprovider errors.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class ConfigError(CredProviderError):
    """Raised for configuration problems that cannot be defaulted away."""

    exit_code = EXIT_CONFIG_ERROR


class TwoFactorConfigError(ConfigError):
    """Raised when the two-factor shared secret is not valid base32."""


class ProtocolError(CredProviderError):
    """Raised when a plugin protocol frame cannot be decoded or the handshake fails."""

    exit_code = EXIT_PROTOCOL_ERROR
