"""Canonical Pydantic models shared across all devcontainer_credprovider modules.

The models fall into two groups:

**Configuration snapshot** -- resolved once at process start by
:func:`~devcontainer_credprovider.config.load_config`:
    :class:`PluginConfig`.

**Wire protocol models** -- the NuGet plugin protocol exchanges one JSON
object per line, using PascalCase property names:
    :class:`MessageType`, :class:`MessageMethod`, :class:`MessageResponseCode`,
    :class:`OperationClaim`, :class:`LogLevel`, :class:`Message`, and the
    request/response payload models.

All wire models accept both the PascalCase wire names and the snake_case
attribute names, and are serialised with :func:`dump_payload` which drops
``None`` fields the way NuGet's own serializer does.
"""

from __future__ import annotations

import enum
import re
from datetime import timedelta
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_pascal


# --- Configuration snapshot ---


VERBOSE_LEVELS = frozenset({"debug", "verbose"})


class PluginConfig(BaseModel):
    """Immutable configuration snapshot consumed by the plugin core.

    Built by :func:`~devcontainer_credprovider.config.load_config` from the
    config file and environment variables, then passed by reference to the
    session and the credential pipeline. Calling ``load_config()`` again
    produces a new snapshot; an existing snapshot never changes.

    Example::

        PluginConfig(disabled=True)
        PluginConfig(two_factor_enabled=True, two_factor_code="123456")
    """

    model_config = ConfigDict(frozen=True)

    disabled: bool = Field(
        default=False, description="Force NotFound for every request"
    )
    verbosity: str = Field(
        default="normal", description="normal, debug, verbose, info, ..."
    )
    two_factor_enabled: bool = Field(
        default=False, description="Require a TOTP code before acquiring tokens"
    )
    two_factor_secret: Optional[str] = Field(
        default=None, description="Base32 shared secret override"
    )
    two_factor_code: Optional[str] = Field(
        default=None, description="Current one-time code supplied by the user"
    )
    access_token: Optional[str] = Field(
        default=None, description="Externally supplied token, used verbatim"
    )

    @field_validator("verbosity", mode="before")
    @classmethod
    def _normalise_verbosity(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.lower()
        return value

    @property
    def is_verbose(self) -> bool:
        """Whether diagnostic logging is enabled (``debug`` or ``verbose``)."""
        return self.verbosity in VERBOSE_LEVELS

    def __repr__(self) -> str:
        return (
            f"PluginConfig(disabled={self.disabled}, verbosity={self.verbosity!r}, "
            f"two_factor_enabled={self.two_factor_enabled}, "
            f"two_factor_secret={'***' if self.two_factor_secret else None}, "
            f"two_factor_code={'***' if self.two_factor_code else None}, "
            f"access_token={'***' if self.access_token else None})"
        )

    __str__ = __repr__


# --- Protocol enumerations ---


class MessageType(str, enum.Enum):
    """Kinds of frames exchanged on the plugin connection."""

    REQUEST = "Request"
    RESPONSE = "Response"
    PROGRESS = "Progress"
    FAULT = "Fault"
    CANCEL = "Cancel"


class MessageMethod(str, enum.Enum):
    """Request methods this plugin understands.

    NuGet defines more methods than these; frames with any other method are
    answered with a ``Fault`` by the transport.
    """

    HANDSHAKE = "Handshake"
    INITIALIZE = "Initialize"
    SET_LOG_LEVEL = "SetLogLevel"
    GET_OPERATION_CLAIMS = "GetOperationClaims"
    GET_AUTHENTICATION_CREDENTIALS = "GetAuthenticationCredentials"
    MONITOR_NUGET_PROCESS_EXIT = "MonitorNuGetProcessExit"
    CLOSE = "Close"


class MessageResponseCode(str, enum.Enum):
    """Response codes. ``NotFound`` means "try the next provider"."""

    SUCCESS = "Success"
    ERROR = "Error"
    NOT_FOUND = "NotFound"


class OperationClaim(str, enum.Enum):
    """Capabilities a plugin can advertise."""

    AUTHENTICATION = "Authentication"


class LogLevel(str, enum.Enum):
    """NuGet client log levels, most to least detailed."""

    DEBUG = "Debug"
    VERBOSE = "Verbose"
    INFORMATION = "Information"
    MINIMAL = "Minimal"
    WARNING = "Warning"
    ERROR = "Error"


# --- Wire models ---


class WireModel(BaseModel):
    """Base for protocol models: PascalCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_pascal,
        populate_by_name=True,
        extra="ignore",
    )


class Message(WireModel):
    """A single protocol frame.

    ``method`` is kept as a plain string so that frames carrying methods
    this plugin does not implement can still be decoded and answered.
    """

    request_id: str
    type: MessageType
    method: str
    payload: Optional[dict[str, Any]] = None


class HandshakeRequest(WireModel):
    protocol_version: str = "2.0.0"
    minimum_protocol_version: str = "1.0.0"


class HandshakeResponse(WireModel):
    response_code: MessageResponseCode
    protocol_version: Optional[str] = None


_TIMESPAN_RE = re.compile(
    r"^(?P<sign>-)?(?:(?P<days>\d+)\.)?(?P<hours>\d{1,2}):(?P<minutes>\d{1,2})"
    r"(?::(?P<seconds>\d{1,2})(?:\.(?P<fraction>\d{1,7}))?)?$"
)


def parse_timespan(value: Any) -> Optional[timedelta]:
    """Parse a .NET ``TimeSpan`` (``[-][d.]hh:mm[:ss[.fffffff]]``) or a number of seconds.

    Args:
        value: A ``TimeSpan`` string, a number of seconds, a ``timedelta``
            or ``None``.

    Returns:
        The parsed :class:`~datetime.timedelta`, or ``None`` for ``None``
        or an empty string.

    Raises:
        ValueError: If *value* is a string in neither format.
    """
    if value is None or isinstance(value, timedelta):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return timedelta(seconds=value)
    text = str(value).strip()
    if not text:
        return None
    match = _TIMESPAN_RE.match(text)
    if match is None:
        try:
            return timedelta(seconds=float(text))
        except ValueError:
            raise ValueError(f"Invalid TimeSpan: {text!r}") from None
    fraction = match.group("fraction") or "0"
    result = timedelta(
        days=int(match.group("days") or 0),
        hours=int(match.group("hours")),
        minutes=int(match.group("minutes")),
        seconds=int(match.group("seconds") or 0),
        microseconds=int(fraction.ljust(7, "0")[:6]),
    )
    return -result if match.group("sign") else result


class InitializeRequest(WireModel):
    client_version: Optional[str] = None
    culture: Optional[str] = None
    request_timeout: Optional[timedelta] = None

    @field_validator("request_timeout", mode="before")
    @classmethod
    def _parse_request_timeout(cls, value: Any) -> Optional[timedelta]:
        return parse_timespan(value)


class StatusResponse(WireModel):
    """Response carrying only a code (``Initialize``, ``SetLogLevel``, ...)."""

    response_code: MessageResponseCode


class SetLogLevelRequest(WireModel):
    log_level: Optional[LogLevel] = None


class GetOperationClaimsRequest(WireModel):
    package_source_repository: Optional[str] = None
    service_index: Optional[dict[str, Any]] = None


class GetOperationClaimsResponse(WireModel):
    claims: list[OperationClaim] = Field(default_factory=list)


class GetAuthenticationCredentialsRequest(WireModel):
    uri: Optional[str] = None
    is_retry: bool = False
    is_non_interactive: bool = False
    can_show_dialog: bool = False

    @field_validator("is_retry", "is_non_interactive", "can_show_dialog", mode="before")
    @classmethod
    def _none_as_false(cls, value: Any) -> Any:
        return False if value is None else value


class GetAuthenticationCredentialsResponse(WireModel):
    username: Optional[str] = None
    password: Optional[str] = None
    message: Optional[str] = None
    authentication_types: Optional[list[str]] = None
    response_code: MessageResponseCode

    def __repr__(self) -> str:
        return (
            f"GetAuthenticationCredentialsResponse(response_code={self.response_code.value!r}, "
            f"username={self.username!r}, password={'***' if self.password else None}, "
            f"message={self.message!r}, authentication_types={self.authentication_types!r})"
        )


class MonitorNuGetProcessExitRequest(WireModel):
    process_id: Optional[int] = None


class FaultPayload(WireModel):
    message: str


class ProgressPayload(WireModel):
    percentage: Optional[float] = None


def dump_payload(model: BaseModel) -> dict[str, Any]:
    """Serialise a wire model to a JSON-ready dict with PascalCase keys.

    ``None`` fields are omitted.
    """
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)
