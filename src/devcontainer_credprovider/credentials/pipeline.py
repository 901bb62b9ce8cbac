"""Credential pipeline -- ordered composition of credential sources.

The :class:`CredentialPipeline` is the coordinator of the credential
subsystem. It asks each :class:`~devcontainer_credprovider.credentials.base.CredentialSource`
in turn; the first one that returns a result ends the run. When every source
declines, the result is ``NOT_APPLICABLE`` so that NuGet moves on to the next
credential provider.

For the plugin itself, call :func:`create_default_pipeline` to get the
standard order: two-factor gate, environment token, auth helper.

See Also:
    :class:`~devcontainer_credprovider.protocol.session.PluginSession` --
    builds a fresh pipeline per ``GetAuthenticationCredentials`` request.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Optional, Sequence

from devcontainer_credprovider.credentials.base import (
    Cancellation,
    CredentialQuery,
    CredentialResult,
    CredentialSource,
)
from devcontainer_credprovider.models import PluginConfig
from devcontainer_credprovider.output import debug, log

if TYPE_CHECKING:
    from devcontainer_credprovider.credentials.secret_store import TwoFactorSecretStore

FALLBACK_MESSAGE = "Auth helper not available. Falling back to other credential providers."
CANCELLED_MESSAGE = "Credential request cancelled"


class CredentialPipeline:
    """Run credential sources in order until one produces a result.

    The pipeline holds no mutable state, so a single instance may serve
    concurrent requests. Each request supplies its own
    :class:`~devcontainer_credprovider.credentials.base.Cancellation`.

    Example::

        pipeline = CredentialPipeline([EnvironmentTokenSource("tok")])
        result = asyncio.run(pipeline.acquire(CredentialQuery(uri=feed)))
    """

    def __init__(self, sources: Sequence[CredentialSource]) -> None:
        self._sources = tuple(sources)

    @property
    def sources(self) -> tuple[CredentialSource, ...]:
        return self._sources

    async def acquire(
        self, query: CredentialQuery, cancelled: Optional[Cancellation] = None
    ) -> CredentialResult:
        """Acquire a credential for *query*.

        Args:
            query: The credential request.
            cancelled: Cancellation signal for this request. A fresh,
                never-cancelled one is used when omitted.

        Returns:
            The first source's result, or ``NOT_APPLICABLE`` when every
            source declines, the request is cancelled, or a source fails
            unexpectedly. Never raises for source failures.
        """
        cancelled = cancelled or Cancellation()
        for source in self._sources:
            if cancelled.is_cancelled:
                log("Credential request cancelled")
                return CredentialResult.not_applicable(CANCELLED_MESSAGE)

            debug(f"Trying credential source '{source.name}'")
            try:
                result = await source.acquire(query, cancelled)
            except Exception as exc:
                log(
                    f"Credential source '{source.name}' failed: "
                    f"{type(exc).__name__}: {exc}",
                    always=True,
                )
                return CredentialResult.not_applicable(FALLBACK_MESSAGE)

            if result is not None:
                debug(f"Credential source '{source.name}' answered: {result!r}")
                return result

        return CredentialResult.not_applicable(FALLBACK_MESSAGE)


def create_default_pipeline(
    config: PluginConfig,
    helper_paths: Optional[Sequence[Path]] = None,
    secret_store: Optional[TwoFactorSecretStore] = None,
) -> CredentialPipeline:
    """Create the standard pipeline for *config*.

    The sources are:

    - ``two-factor`` -- blocks everything without a valid TOTP code when
      two-factor authentication is enabled.
    - ``environment`` -- ``VSS_NUGET_ACCESSTOKEN``, used verbatim.
    - ``auth-helper`` -- runs the devcontainer auth helper.

    Args:
        config: Configuration snapshot.
        helper_paths: Auth helper candidates; defaults to
            :func:`~devcontainer_credprovider.config.default_helper_paths`.
        secret_store: Where the two-factor secret is read from.

    Returns:
        A ready :class:`CredentialPipeline`.
    """
    from devcontainer_credprovider.credentials.environment import EnvironmentTokenSource
    from devcontainer_credprovider.credentials.helper import HelperProcessSource
    from devcontainer_credprovider.credentials.secret_store import (
        TwoFactorSecretStore,
        resolve_two_factor_secret,
    )
    from devcontainer_credprovider.credentials.two_factor import TwoFactorGate

    store = secret_store or TwoFactorSecretStore()
    return CredentialPipeline(
        [
            TwoFactorGate(
                enabled=config.two_factor_enabled,
                code=config.two_factor_code,
                secret_resolver=lambda: resolve_two_factor_secret(config, store),
            ),
            EnvironmentTokenSource(config.access_token),
            HelperProcessSource(helper_paths),
        ]
    )
