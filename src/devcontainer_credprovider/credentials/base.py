"""Abstract base class for credential sources, and the types they exchange.

This module defines the foundational types of the credential subsystem:

- :class:`CredentialQuery` -- what NuGet asked for.
- :class:`CredentialResult` -- the outcome of a pipeline run: ``SUCCESS``,
  ``NOT_APPLICABLE`` or ``FAULT``.
- :class:`Cancellation` -- the external cancellation signal threaded through
  every suspension point.
- :class:`CredentialSource` -- the abstract base class every step of the
  :class:`~devcontainer_credprovider.credentials.pipeline.CredentialPipeline`
  extends.

Outcomes travel by return value, not by exception. A source returns ``None``
to let the pipeline move on to the next source, or a :class:`CredentialResult`
to stop it.

See Also:
    :mod:`devcontainer_credprovider.credentials.pipeline` for composition.
"""

from __future__ import annotations

import asyncio
import enum
from abc import ABC, abstractmethod
from typing import Optional

from pydantic import BaseModel, ConfigDict

DEFAULT_USERNAME = "DevcontainerCredProvider"
BASIC_AUTH_TYPES = ("Basic",)


class CredentialQuery(BaseModel):
    """A single ``GetAuthenticationCredentials`` request, decoupled from the wire."""

    model_config = ConfigDict(frozen=True)

    uri: str
    is_retry: bool = False
    is_non_interactive: bool = True
    can_show_dialog: bool = False


class CredentialOutcome(str, enum.Enum):
    """Tags of :class:`CredentialResult`."""

    SUCCESS = "success"
    NOT_APPLICABLE = "not_applicable"
    FAULT = "fault"


class CredentialResult:
    """Outcome of a credential acquisition.

    Use the :meth:`success`, :meth:`not_applicable` and :meth:`fault`
    constructors. A ``SUCCESS`` result always carries a non-empty secret;
    the secret never appears in ``repr``.

    Example::

        result = CredentialResult.success("tok123")
        assert result.is_success and result.secret == "tok123"
    """

    __slots__ = ("outcome", "username", "secret", "auth_types", "message")

    def __init__(
        self,
        outcome: CredentialOutcome,
        username: Optional[str] = None,
        secret: Optional[str] = None,
        auth_types: tuple[str, ...] = (),
        message: Optional[str] = None,
    ):
        if outcome is CredentialOutcome.SUCCESS and not secret:
            raise ValueError("A successful credential result requires a non-empty secret")
        self.outcome = outcome
        self.username = username
        self.secret = secret
        self.auth_types = auth_types
        self.message = message

    @classmethod
    def success(
        cls,
        secret: str,
        username: str = DEFAULT_USERNAME,
        auth_types: tuple[str, ...] = BASIC_AUTH_TYPES,
    ) -> CredentialResult:
        return cls(
            CredentialOutcome.SUCCESS,
            username=username,
            secret=secret,
            auth_types=auth_types,
        )

    @classmethod
    def not_applicable(cls, message: str) -> CredentialResult:
        return cls(CredentialOutcome.NOT_APPLICABLE, message=message)

    @classmethod
    def fault(cls, message: str) -> CredentialResult:
        return cls(CredentialOutcome.FAULT, message=message)

    @property
    def is_success(self) -> bool:
        return self.outcome is CredentialOutcome.SUCCESS

    def __repr__(self) -> str:
        if self.is_success:
            return (
                f"CredentialResult(success, username={self.username!r}, "
                f"secret=<{len(self.secret or '')} chars>)"
            )
        return f"CredentialResult({self.outcome.value}, message={self.message!r})"


class Cancellation:
    """External cancellation signal for one request.

    Wraps an :class:`asyncio.Event`. Every suspension point in the pipeline
    races its work against :meth:`wait` so that cancelling stops subprocesses
    and backoff delays promptly.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


class CredentialSource(ABC):
    """Abstract base class for one step of the credential pipeline.

    Every concrete source must provide:

    1. A :attr:`name` property used in diagnostics.
    2. An :meth:`acquire` coroutine returning ``None`` (nothing from this
       source, continue) or a :class:`CredentialResult` (stop here).

    Sources must not raise for expected failures; they return ``None`` or a
    ``NOT_APPLICABLE`` result instead.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Short identifier such as ``"two-factor"`` or ``"auth-helper"``."""
        ...

    @abstractmethod
    async def acquire(
        self, query: CredentialQuery, cancelled: Cancellation
    ) -> Optional[CredentialResult]:
        """Try to produce a credential for *query*.

        Args:
            query: The credential request.
            cancelled: Cancellation signal to honour at every await.

        Returns:
            ``None`` to defer to the next source, or a result that ends the
            pipeline.
        """
        ...
