"""Credential acquisition for Azure Artifacts feeds.

The subsystem is a small pipeline of credential sources, each of which either
answers a request or defers to the next one:

- :class:`TwoFactorGate` -- optional TOTP check that blocks everything
  without a valid one-time code.
- :class:`EnvironmentTokenSource` -- ``VSS_NUGET_ACCESSTOKEN``, verbatim.
- :class:`HelperProcessSource` -- runs the devcontainer auth helper with
  bounded retries.

The main entry points are:

- :class:`CredentialPipeline` -- runs sources in order.
- :func:`create_default_pipeline` -- the standard pipeline for a
  configuration snapshot.
- :class:`TwoFactorSecretStore` -- the on-disk two-factor shared secret.

Typical usage::

    from devcontainer_credprovider.credentials import (
        CredentialQuery,
        create_default_pipeline,
    )

    pipeline = create_default_pipeline(load_config())
    result = await pipeline.acquire(CredentialQuery(uri=feed_uri))
"""

from devcontainer_credprovider.credentials.base import (
    Cancellation,
    CredentialOutcome,
    CredentialQuery,
    CredentialResult,
    CredentialSource,
)
from devcontainer_credprovider.credentials.environment import EnvironmentTokenSource
from devcontainer_credprovider.credentials.helper import HelperProcessSource
from devcontainer_credprovider.credentials.pipeline import (
    CredentialPipeline,
    create_default_pipeline,
)
from devcontainer_credprovider.credentials.secret_store import (
    TwoFactorSecretStore,
    resolve_two_factor_secret,
)
from devcontainer_credprovider.credentials.two_factor import TwoFactorGate

__all__ = [
    "Cancellation",
    "CredentialOutcome",
    "CredentialPipeline",
    "CredentialQuery",
    "CredentialResult",
    "CredentialSource",
    "EnvironmentTokenSource",
    "HelperProcessSource",
    "TwoFactorGate",
    "TwoFactorSecretStore",
    "create_default_pipeline",
    "resolve_two_factor_secret",
]
