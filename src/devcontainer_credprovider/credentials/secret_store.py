"""Persistent storage for the single two-factor shared secret.

The secret lives in ``~/.nuget-credprovider-2fa-secret`` as a bare base32
string. Writes are atomic via :func:`tempfile.NamedTemporaryFile` and
``os.replace`` with ``0o600`` permissions so that the secret is never
world-readable, even momentarily.

The plugin core never generates secrets: only ``--setup-2fa`` calls
:meth:`TwoFactorSecretStore.get_or_create`. The gate resolves the secret
through :func:`resolve_two_factor_secret`, which reads the environment
override and then this store.

See Also:
    :class:`~devcontainer_credprovider.credentials.two_factor.TwoFactorGate`
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Optional

import pyotp

from devcontainer_credprovider.models import PluginConfig
from devcontainer_credprovider.output import warning

SECRET_FILENAME = ".nuget-credprovider-2fa-secret"


def default_secret_path() -> Path:
    """Return ``~/.nuget-credprovider-2fa-secret``."""
    return Path.home() / SECRET_FILENAME


class TwoFactorSecretStore:
    """Read/write the two-factor shared secret.

    Args:
        path: Secret file location. Defaults to :func:`default_secret_path`.

    Example::

        store = TwoFactorSecretStore(tmp_path / "secret")
        secret = store.get_or_create()
        assert store.load() == secret
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self._path = path or default_secret_path()

    @property
    def path(self) -> Path:
        """The filesystem path to the secret file."""
        return self._path

    def load(self) -> Optional[str]:
        """Return the stored secret, trimmed.

        Returns:
            The secret, or ``None`` if the file does not exist, is blank,
            or cannot be read.
        """
        if not self._path.is_file():
            return None
        try:
            secret = self._path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            warning(f"Could not read 2FA secret file: {exc}")
            return None
        return secret or None

    def save(self, secret: str) -> None:
        """Persist *secret* atomically with ``0o600`` permissions.

        Raises:
            OSError: If the file cannot be written.
        """
        self._path.parent.mkdir(parents=True, exist_ok=True)

        fd = None
        tmp_path: Optional[str] = None
        try:
            fd = tempfile.NamedTemporaryFile(
                mode="w",
                dir=self._path.parent,
                prefix=f".{self._path.name.lstrip('.')}.",
                suffix=".tmp",
                delete=False,
                encoding="utf-8",
            )
            tmp_path = fd.name
            # Restrict permissions before any content is written
            os.chmod(tmp_path, 0o600)
            fd.write(secret)
            fd.flush()
            os.fsync(fd.fileno())
            fd.close()
            fd = None
            os.replace(tmp_path, self._path)
        except BaseException:
            if fd is not None:
                fd.close()
            if tmp_path is not None:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass
            raise

    def get_or_create(self) -> str:
        """Return the stored secret, generating and saving a new one if absent.

        A new secret is 160 random bits, base32-encoded. Failing to save it
        is reported as a warning; the generated secret is still returned.
        """
        existing = self.load()
        if existing is not None:
            return existing

        secret = pyotp.random_base32(length=32)
        try:
            self.save(secret)
        except OSError as exc:
            warning(f"Could not save 2FA secret: {exc}")
        return secret


def resolve_two_factor_secret(
    config: PluginConfig, store: Optional[TwoFactorSecretStore] = None
) -> Optional[str]:
    """Resolve the shared secret: environment override first, then the store.

    Never generates a secret.

    Args:
        config: Snapshot carrying the optional ``two_factor_secret`` override.
        store: Secret store to fall back to.

    Returns:
        The base32 secret, or ``None`` if neither source has one.
    """
    if config.two_factor_secret:
        return config.two_factor_secret
    return (store or TwoFactorSecretStore()).load()
