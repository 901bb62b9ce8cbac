"""Credential source for an access token supplied through the environment."""

from __future__ import annotations

from typing import Optional

from devcontainer_credprovider.credentials.base import (
    Cancellation,
    CredentialQuery,
    CredentialResult,
    CredentialSource,
)
from devcontainer_credprovider.output import log


class EnvironmentTokenSource(CredentialSource):
    """Return ``VSS_NUGET_ACCESSTOKEN`` verbatim when it is set.

    The token is captured from the configuration snapshot; this class never
    reads the environment itself.
    """

    def __init__(self, token: Optional[str]) -> None:
        self._token = token

    @property
    def name(self) -> str:
        return "environment"

    async def acquire(
        self, query: CredentialQuery, cancelled: Cancellation
    ) -> Optional[CredentialResult]:
        if not self._token:
            return None
        log(f"Using access token from VSS_NUGET_ACCESSTOKEN (length: {len(self._token)})")
        return CredentialResult.success(self._token)
