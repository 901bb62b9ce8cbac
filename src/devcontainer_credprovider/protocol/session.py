"""Plugin session -- request handlers for the NuGet credential provider protocol.

:class:`PluginSession` answers every request method except ``Handshake``
(which belongs to the transport). Dispatch goes through :data:`DISPATCH`, a
read-only table built once at import time over the closed set of
:class:`~devcontainer_credprovider.models.MessageMethod` values.

Lifecycle::

    CREATED --Initialize--> READY --Close, disconnect or signal--> TERMINATED

Requests are not rejected based on state; NuGet may pipeline
``GetOperationClaims`` before ``Initialize`` has been answered.

Handlers only read the configuration snapshot. Each
``GetAuthenticationCredentials`` call builds a fresh credential pipeline, so
concurrent calls never share mutable state.
"""

from __future__ import annotations

import asyncio
import enum
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Mapping, Optional

from pydantic import BaseModel, ValidationError

from devcontainer_credprovider import feeds
from devcontainer_credprovider.credentials.base import (
    Cancellation,
    CredentialOutcome,
    CredentialQuery,
)
from devcontainer_credprovider.credentials.pipeline import (
    CredentialPipeline,
    create_default_pipeline,
)
from devcontainer_credprovider.exceptions import ProtocolError
from devcontainer_credprovider.models import (
    GetAuthenticationCredentialsRequest,
    GetAuthenticationCredentialsResponse,
    GetOperationClaimsRequest,
    GetOperationClaimsResponse,
    InitializeRequest,
    MessageMethod,
    MessageResponseCode,
    MonitorNuGetProcessExitRequest,
    OperationClaim,
    PluginConfig,
    SetLogLevelRequest,
    StatusResponse,
)
from devcontainer_credprovider.output import get_output, log
from devcontainer_credprovider.protocol.transport import ConnectionOptions

DISABLED_MESSAGE = (
    "Plugin disabled via DEVCONTAINER_CREDPROVIDER_DISABLED or config file. "
    "Falling back to other providers."
)
OUT_OF_SCOPE_MESSAGE = "Not an Azure DevOps feed"

PipelineFactory = Callable[[PluginConfig], CredentialPipeline]


class SessionState(str, enum.Enum):
    CREATED = "created"
    READY = "ready"
    TERMINATED = "terminated"


def _parse(model: type[BaseModel], method: MessageMethod, payload: Optional[dict[str, Any]]) -> Any:
    try:
        return model.model_validate(payload or {})
    except ValidationError as exc:
        raise ProtocolError(
            f"Invalid {method.value} payload: {exc.error_count()} error(s)"
        ) from exc


class PluginSession:
    """Protocol handlers bound to one configuration snapshot.

    Args:
        config: The resolved configuration snapshot.
        options: Connection options; ``Initialize`` updates the request
            timeout here.
        pipeline_factory: Builds the credential pipeline for each
            ``GetAuthenticationCredentials`` request.
    """

    def __init__(
        self,
        config: PluginConfig,
        options: Optional[ConnectionOptions] = None,
        pipeline_factory: PipelineFactory = create_default_pipeline,
    ) -> None:
        self._config = config
        self._options = options or ConnectionOptions()
        self._pipeline_factory = pipeline_factory
        self._state = SessionState.CREATED
        self.closed = asyncio.Event()

    @property
    def config(self) -> PluginConfig:
        return self._config

    @property
    def state(self) -> SessionState:
        return self._state

    async def handle(
        self,
        method: MessageMethod,
        payload: Optional[dict[str, Any]],
        cancelled: Cancellation,
    ) -> Optional[BaseModel]:
        """Dispatch one request.

        Returns:
            The response payload model, or ``None`` when the method sends no
            response (``Close``).

        Raises:
            ProtocolError: If *method* has no handler or its payload cannot
                be parsed.
        """
        handler = DISPATCH.get(method)
        if handler is None:
            raise ProtocolError(f"Unsupported method: {method.value}")
        return await handler(self, payload, cancelled)

    def terminate(self) -> None:
        """Move to ``TERMINATED`` and signal :attr:`closed`. Idempotent.

        Called by ``Close`` and by the host when the connection is lost or
        the process is interrupted.
        """
        self._state = SessionState.TERMINATED
        self.closed.set()

    # ------------------------------------------------------------------ #
    # Handlers
    # ------------------------------------------------------------------ #

    async def initialize(
        self, payload: Optional[dict[str, Any]], cancelled: Cancellation
    ) -> StatusResponse:
        request = _parse(InitializeRequest, MessageMethod.INITIALIZE, payload)
        log(
            f"Initialize: client {request.client_version or 'unknown'}, "
            f"culture {request.culture or 'unknown'}"
        )
        if request.request_timeout is not None:
            seconds = request.request_timeout.total_seconds()
            self._options.set_request_timeout(seconds)
            log(f"Request timeout set to {seconds:g}s")
        if self._state is SessionState.CREATED:
            self._state = SessionState.READY
        return StatusResponse(response_code=MessageResponseCode.SUCCESS)

    async def set_log_level(
        self, payload: Optional[dict[str, Any]], cancelled: Cancellation
    ) -> StatusResponse:
        request = _parse(SetLogLevelRequest, MessageMethod.SET_LOG_LEVEL, payload)
        get_output().set_log_level(request.log_level)
        log(f"Log level set to {request.log_level.value if request.log_level else 'default'}")
        return StatusResponse(response_code=MessageResponseCode.SUCCESS)

    async def get_operation_claims(
        self, payload: Optional[dict[str, Any]], cancelled: Cancellation
    ) -> GetOperationClaimsResponse:
        request = _parse(GetOperationClaimsRequest, MessageMethod.GET_OPERATION_CLAIMS, payload)
        source = request.package_source_repository
        if self._config.disabled:
            log("Plugin disabled, claiming nothing")
            return GetOperationClaimsResponse(claims=[])
        # An empty source is NuGet asking what the plugin can do at all.
        if not source or feeds.matches(source):
            log(f"Claiming authentication for {source or '(any source)'}")
            return GetOperationClaimsResponse(claims=[OperationClaim.AUTHENTICATION])
        log(f"Not claiming {source}")
        return GetOperationClaimsResponse(claims=[])

    async def get_authentication_credentials(
        self, payload: Optional[dict[str, Any]], cancelled: Cancellation
    ) -> GetAuthenticationCredentialsResponse:
        request = _parse(
            GetAuthenticationCredentialsRequest,
            MessageMethod.GET_AUTHENTICATION_CREDENTIALS,
            payload,
        )
        if self._config.disabled:
            log("Plugin disabled, returning NotFound")
            return GetAuthenticationCredentialsResponse(
                response_code=MessageResponseCode.NOT_FOUND, message=DISABLED_MESSAGE
            )
        if not feeds.matches(request.uri):
            log(f"Not handling {request.uri or '(no uri)'}")
            return GetAuthenticationCredentialsResponse(
                response_code=MessageResponseCode.NOT_FOUND, message=OUT_OF_SCOPE_MESSAGE
            )

        log(f"Getting credentials for {request.uri} (retry: {request.is_retry})")
        query = CredentialQuery(
            uri=request.uri,
            is_retry=request.is_retry,
            is_non_interactive=request.is_non_interactive,
            can_show_dialog=request.can_show_dialog,
        )
        result = await self._pipeline_factory(self._config).acquire(query, cancelled)

        if result.outcome is CredentialOutcome.SUCCESS:
            return GetAuthenticationCredentialsResponse(
                response_code=MessageResponseCode.SUCCESS,
                username=result.username,
                password=result.secret,
                authentication_types=list(result.auth_types),
            )
        if result.outcome is CredentialOutcome.FAULT:
            return GetAuthenticationCredentialsResponse(
                response_code=MessageResponseCode.ERROR, message=result.message
            )
        log(result.message or "No credentials available")
        return GetAuthenticationCredentialsResponse(
            response_code=MessageResponseCode.NOT_FOUND, message=result.message
        )

    async def monitor_nuget_process_exit(
        self, payload: Optional[dict[str, Any]], cancelled: Cancellation
    ) -> StatusResponse:
        request = _parse(
            MonitorNuGetProcessExitRequest, MessageMethod.MONITOR_NUGET_PROCESS_EXIT, payload
        )
        log(f"MonitorNuGetProcessExit acknowledged (pid {request.process_id})")
        return StatusResponse(response_code=MessageResponseCode.SUCCESS)

    async def close(
        self, payload: Optional[dict[str, Any]], cancelled: Cancellation
    ) -> None:
        log("Close requested")
        self.terminate()
        return None


Handler = Callable[
    [PluginSession, Optional[dict[str, Any]], Cancellation], Awaitable[Optional[BaseModel]]
]

DISPATCH: Mapping[MessageMethod, Handler] = MappingProxyType(
    {
        MessageMethod.INITIALIZE: PluginSession.initialize,
        MessageMethod.SET_LOG_LEVEL: PluginSession.set_log_level,
        MessageMethod.GET_OPERATION_CLAIMS: PluginSession.get_operation_claims,
        MessageMethod.GET_AUTHENTICATION_CREDENTIALS: PluginSession.get_authentication_credentials,
        MessageMethod.MONITOR_NUGET_PROCESS_EXIT: PluginSession.monitor_nuget_process_exit,
        MessageMethod.CLOSE: PluginSession.close,
    }
)
