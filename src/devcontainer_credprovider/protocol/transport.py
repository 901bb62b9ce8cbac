"""Newline-delimited JSON transport for the NuGet plugin protocol.

NuGet launches a plugin with ``-Plugin`` and talks to it over stdin/stdout:
one JSON :class:`~devcontainer_credprovider.models.Message` per line, in
both directions. :class:`PluginConnection` implements the plugin side:

* **Handshake** -- symmetric. Each side sends a ``Handshake`` request and
  answers the other's. The connection is usable once both have succeeded.
* **Requests** -- every inbound request runs in its own task with its own
  :class:`~devcontainer_credprovider.credentials.base.Cancellation`, so
  requests may be pipelined. An inbound ``Cancel`` frame signals that
  cancellation.
* **Keep-alive** -- while a handler is running, a ``Progress`` frame is
  sent every half request timeout so NuGet does not give up on it.
* **Faults** -- unknown methods and handler exceptions are answered with a
  ``Fault`` frame carrying the same request id.
* **Disconnect** -- EOF on the input or a broken output pipe sets
  :attr:`PluginConnection.disconnected`.

All writes go through one lock so frames never interleave.
"""

from __future__ import annotations

import asyncio
import json
import os
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional, Protocol

from pydantic import BaseModel, ValidationError

from devcontainer_credprovider.credentials.base import Cancellation
from devcontainer_credprovider.exceptions import ProtocolError
from devcontainer_credprovider.models import (
    FaultPayload,
    HandshakeRequest,
    HandshakeResponse,
    Message,
    MessageMethod,
    MessageResponseCode,
    MessageType,
    ProgressPayload,
    dump_payload,
)
from devcontainer_credprovider.output import debug, log, warning

if TYPE_CHECKING:
    from devcontainer_credprovider.protocol.session import PluginSession

PROTOCOL_VERSION = "2.0.0"
MINIMUM_PROTOCOL_VERSION = "1.0.0"

ENV_HANDSHAKE_TIMEOUT = "NUGET_PLUGIN_HANDSHAKE_TIMEOUT_IN_SECONDS"
ENV_REQUEST_TIMEOUT = "NUGET_PLUGIN_REQUEST_TIMEOUT_IN_SECONDS"

DEFAULT_HANDSHAKE_TIMEOUT = 10.0
DEFAULT_REQUEST_TIMEOUT = 30.0


class FrameWriter(Protocol):
    """The subset of :class:`asyncio.StreamWriter` the connection needs."""

    def write(self, data: bytes) -> None: ...

    async def drain(self) -> None: ...


@dataclass
class ConnectionOptions:
    """Timeouts for one plugin connection.

    ``request_timeout`` is the only value that changes after start-up: the
    ``Initialize`` request may replace it once.
    """

    handshake_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT

    @classmethod
    def from_environment(cls) -> ConnectionOptions:
        """Build options, honouring NuGet's ``NUGET_PLUGIN_*_TIMEOUT_IN_SECONDS`` variables."""
        return cls(
            handshake_timeout=_env_seconds(ENV_HANDSHAKE_TIMEOUT, DEFAULT_HANDSHAKE_TIMEOUT),
            request_timeout=_env_seconds(ENV_REQUEST_TIMEOUT, DEFAULT_REQUEST_TIMEOUT),
        )

    def set_request_timeout(self, seconds: float) -> None:
        """Apply a request timeout announced by the client. Non-positive values are ignored."""
        if seconds > 0:
            self.request_timeout = seconds


def _env_seconds(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw.strip())
    except ValueError:
        warning(f"Ignoring {name}={raw!r}: not a number of seconds")
        return default
    if value <= 0:
        warning(f"Ignoring {name}={raw!r}: must be positive")
        return default
    return value


def _version_tuple(version: str) -> tuple[int, ...]:
    try:
        return tuple(int(part) for part in version.split("."))
    except ValueError:
        raise ProtocolError(f"Invalid protocol version: {version!r}") from None


def negotiate_version(request: HandshakeRequest) -> Optional[str]:
    """Pick the protocol version for a client handshake.

    Returns:
        The highest version both sides support, or ``None`` when the ranges
        do not overlap.

    Raises:
        ProtocolError: If a version string is malformed.
    """
    ours = _version_tuple(PROTOCOL_VERSION)
    theirs = _version_tuple(request.protocol_version)
    their_minimum = _version_tuple(request.minimum_protocol_version)
    if their_minimum > ours or theirs < _version_tuple(MINIMUM_PROTOCOL_VERSION):
        return None
    return PROTOCOL_VERSION if theirs >= ours else request.protocol_version


def encode_frame(message: Message) -> bytes:
    """Serialise *message* as one UTF-8 JSON line."""
    body = message.model_dump(mode="json", by_alias=True, exclude_none=True)
    return (json.dumps(body, separators=(",", ":")) + "\n").encode("utf-8")


def decode_frame(line: bytes) -> Message:
    """Parse one JSON line into a :class:`Message`.

    Raises:
        ProtocolError: If the line is not a valid frame.
    """
    try:
        return Message.model_validate_json(line)
    except ValidationError as exc:
        raise ProtocolError(f"Malformed frame: {exc.error_count()} error(s)") from exc


def _make_message(
    request_id: str,
    message_type: MessageType,
    method: str,
    payload: Optional[BaseModel] = None,
) -> Message:
    return Message(
        request_id=request_id,
        type=message_type,
        method=method,
        payload=dump_payload(payload) if payload is not None else None,
    )


class PluginConnection:
    """Plugin side of a NuGet plugin connection.

    Args:
        reader: Source of inbound frames (stdin in production).
        writer: Sink for outbound frames (stdout in production).
        session: Handles every request except ``Handshake``.
        options: Timeouts; shared with the session so ``Initialize`` can
            change the request timeout.

    Example::

        connection = PluginConnection(reader, writer, session, options)
        serve = asyncio.create_task(connection.serve())
        await connection.handshake()
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: FrameWriter,
        session: PluginSession,
        options: Optional[ConnectionOptions] = None,
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._session = session
        self._options = options or ConnectionOptions()
        self._write_lock = asyncio.Lock()
        self._in_flight: dict[str, tuple[asyncio.Task[None], Cancellation]] = {}
        self._pending: dict[str, asyncio.Future[Message]] = {}
        self._inbound_handshake = asyncio.Event()
        self.disconnected = asyncio.Event()

    @property
    def options(self) -> ConnectionOptions:
        return self._options

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    # ------------------------------------------------------------------ #
    # Outbound
    # ------------------------------------------------------------------ #

    async def send(self, message: Message) -> None:
        """Write one frame. A broken pipe marks the connection disconnected."""
        data = encode_frame(message)
        async with self._write_lock:
            if self.disconnected.is_set():
                debug(f"Dropping {message.type.value} {message.method}: disconnected")
                return
            try:
                self._writer.write(data)
                await self._writer.drain()
            except (ConnectionError, OSError) as exc:
                log(f"Output pipe closed: {exc}", always=True)
                self.disconnected.set()

    async def send_request(
        self, method: MessageMethod, payload: BaseModel, timeout: float
    ) -> Message:
        """Send a request to the client and wait for its response.

        Raises:
            ProtocolError: If no response arrives within *timeout* seconds
                or the connection drops first.
        """
        request_id = str(uuid.uuid4())
        future: asyncio.Future[Message] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self.send(
                _make_message(request_id, MessageType.REQUEST, method.value, payload)
            )
            disconnect = asyncio.ensure_future(self.disconnected.wait())
            try:
                done, _ = await asyncio.wait(
                    {future, disconnect},
                    timeout=timeout,
                    return_when=asyncio.FIRST_COMPLETED,
                )
            finally:
                disconnect.cancel()
            if future not in done:
                if disconnect in done:
                    raise ProtocolError(f"Connection closed while waiting for {method.value}")
                raise ProtocolError(f"Timed out waiting for {method.value} response")
            return future.result()
        finally:
            self._pending.pop(request_id, None)

    # ------------------------------------------------------------------ #
    # Handshake
    # ------------------------------------------------------------------ #

    async def handshake(self) -> None:
        """Complete the symmetric handshake.

        Sends this plugin's ``Handshake`` request and waits, within the
        handshake timeout, for both the client's response and the client's
        own ``Handshake`` request (answered by the read loop).

        Raises:
            ProtocolError: On timeout, disconnect or an unsuccessful response.
        """
        timeout = self._options.handshake_timeout
        response = await self.send_request(
            MessageMethod.HANDSHAKE,
            HandshakeRequest(
                protocol_version=PROTOCOL_VERSION,
                minimum_protocol_version=MINIMUM_PROTOCOL_VERSION,
            ),
            timeout,
        )
        try:
            answer = HandshakeResponse.model_validate(response.payload or {})
        except ValidationError as exc:
            raise ProtocolError("Malformed handshake response") from exc
        if answer.response_code is not MessageResponseCode.SUCCESS:
            raise ProtocolError(f"Handshake rejected: {answer.response_code.value}")

        try:
            await asyncio.wait_for(self._inbound_handshake.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            raise ProtocolError("Timed out waiting for the client handshake") from None
        log(f"Handshake complete (protocol {answer.protocol_version or PROTOCOL_VERSION})")

    def _answer_handshake(self, payload: Optional[dict[str, Any]]) -> HandshakeResponse:
        try:
            request = HandshakeRequest.model_validate(payload or {})
            version = negotiate_version(request)
        except (ValidationError, ProtocolError) as exc:
            log(f"Invalid handshake request: {exc}", always=True)
            return HandshakeResponse(response_code=MessageResponseCode.ERROR)
        if version is None:
            log(
                f"Incompatible client protocol {request.protocol_version} "
                f"(minimum {request.minimum_protocol_version})",
                always=True,
            )
            return HandshakeResponse(response_code=MessageResponseCode.ERROR)
        self._inbound_handshake.set()
        return HandshakeResponse(
            response_code=MessageResponseCode.SUCCESS, protocol_version=version
        )

    # ------------------------------------------------------------------ #
    # Inbound
    # ------------------------------------------------------------------ #

    async def serve(self) -> None:
        """Read frames until EOF, then set :attr:`disconnected`."""
        try:
            while True:
                try:
                    line = await self._reader.readline()
                except (ConnectionError, ValueError) as exc:
                    log(f"Input stream error: {exc}", always=True)
                    break
                if not line:
                    debug("Input stream closed")
                    break
                if not line.strip():
                    continue
                try:
                    message = decode_frame(line)
                except ProtocolError as exc:
                    warning(f"Ignoring frame: {exc}")
                    continue
                self._route(message)
        finally:
            self.disconnected.set()

    def _route(self, message: Message) -> None:
        if message.type is MessageType.REQUEST:
            self._start_request(message)
        elif message.type is MessageType.RESPONSE:
            future = self._pending.get(message.request_id)
            if future is not None and not future.done():
                future.set_result(message)
            else:
                debug(f"Unexpected response {message.request_id} ({message.method})")
        elif message.type is MessageType.CANCEL:
            entry = self._in_flight.get(message.request_id)
            if entry is not None:
                debug(f"Cancelling request {message.request_id} ({message.method})")
                entry[1].cancel()
        elif message.type is MessageType.FAULT:
            fault = (message.payload or {}).get("Message")
            log(f"Client reported fault for {message.method}: {fault}", always=True)
        else:
            debug(f"Ignoring {message.type.value} frame for {message.request_id}")

    def _start_request(self, message: Message) -> None:
        cancelled = Cancellation()
        task = asyncio.create_task(self._process_request(message, cancelled))
        self._in_flight[message.request_id] = (task, cancelled)

        def _forget(_: asyncio.Task[None]) -> None:
            entry = self._in_flight.get(message.request_id)
            if entry is not None and entry[0] is task:
                del self._in_flight[message.request_id]

        task.add_done_callback(_forget)

    async def _process_request(self, message: Message, cancelled: Cancellation) -> None:
        debug(f"Received {message.method} request {message.request_id}")
        try:
            method = MessageMethod(message.method)
        except ValueError:
            await self._send_fault(message, f"Unsupported method: {message.method}")
            return

        if method is MessageMethod.HANDSHAKE:
            response: Optional[BaseModel] = self._answer_handshake(message.payload)
        else:
            keep_alive = asyncio.create_task(self._keep_alive(message))
            try:
                response = await self._session.handle(method, message.payload, cancelled)
            except ProtocolError as exc:
                await self._send_fault(message, str(exc))
                return
            except Exception as exc:
                log(f"{method.value} handler failed: {type(exc).__name__}: {exc}", always=True)
                await self._send_fault(message, f"{type(exc).__name__}: {exc}")
                return
            finally:
                keep_alive.cancel()

        if response is not None:
            await self.send(
                _make_message(message.request_id, MessageType.RESPONSE, message.method, response)
            )

    async def _keep_alive(self, message: Message) -> None:
        while True:
            await asyncio.sleep(max(self._options.request_timeout / 2, 0.01))
            await self.send(
                _make_message(
                    message.request_id, MessageType.PROGRESS, message.method, ProgressPayload()
                )
            )

    async def _send_fault(self, message: Message, text: str) -> None:
        await self.send(
            _make_message(
                message.request_id, MessageType.FAULT, message.method, FaultPayload(message=text)
            )
        )

    # ------------------------------------------------------------------ #
    # Shutdown
    # ------------------------------------------------------------------ #

    async def close(self) -> None:
        """Cancel every in-flight request and wait for the handlers to finish.

        Each request's :class:`Cancellation` is signalled first so that
        helper processes are killed; the tasks are then cancelled outright.
        """
        entries = list(self._in_flight.values())
        for _, cancelled in entries:
            cancelled.cancel()
        tasks = [task for task, _ in entries]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        for future in self._pending.values():
            if not future.done():
                future.cancel()
