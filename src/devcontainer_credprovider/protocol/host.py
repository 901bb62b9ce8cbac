"""Plugin-mode host: wires stdio, the session and the connection together.

:func:`run_plugin` is what ``devcontainer-credprovider -Plugin`` runs. It
blocks until the first of:

* a ``Close`` request,
* EOF or a broken pipe on the NuGet connection,
* SIGINT or SIGTERM,

then cancels every in-flight request (killing any helper processes) and
returns.
"""

from __future__ import annotations

import asyncio
import signal
import sys
from typing import Optional

from devcontainer_credprovider.exceptions import ProtocolError
from devcontainer_credprovider.exit_codes import EXIT_PROTOCOL_ERROR, EXIT_SUCCESS
from devcontainer_credprovider.models import PluginConfig
from devcontainer_credprovider.output import debug, error, log
from devcontainer_credprovider.protocol.session import PipelineFactory, PluginSession
from devcontainer_credprovider.protocol.transport import (
    ConnectionOptions,
    FrameWriter,
    PluginConnection,
)

STREAM_LIMIT = 1024 * 1024


async def open_stdio() -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    """Wrap the process's stdin and stdout as asyncio streams."""
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader(limit=STREAM_LIMIT)
    await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)
    transport, protocol = await loop.connect_write_pipe(
        asyncio.streams.FlowControlMixin, sys.stdout
    )
    writer = asyncio.StreamWriter(transport, protocol, reader, loop)
    return reader, writer


def _install_signal_handlers(stop: asyncio.Event) -> list[signal.Signals]:
    loop = asyncio.get_running_loop()
    installed = []
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop.set)
        except (NotImplementedError, RuntimeError):
            # Windows event loops have no add_signal_handler.
            continue
        installed.append(signum)
    return installed


async def serve_plugin(
    config: PluginConfig,
    reader: asyncio.StreamReader,
    writer: FrameWriter,
    options: Optional[ConnectionOptions] = None,
    pipeline_factory: Optional[PipelineFactory] = None,
    stop: Optional[asyncio.Event] = None,
    session: Optional[PluginSession] = None,
) -> int:
    """Serve one NuGet connection until it is closed, lost or stopped.

    Args:
        config: Configuration snapshot.
        reader: Inbound frames.
        writer: Outbound frames.
        options: Connection timeouts; defaults to
            :meth:`ConnectionOptions.from_environment`.
        pipeline_factory: Credential pipeline factory passed to the session.
        stop: Set externally (signal handlers) to shut down.
        session: Pre-built session; when given, *pipeline_factory* is
            ignored. The session is terminated on return.

    Returns:
        :data:`EXIT_SUCCESS`, or :data:`EXIT_PROTOCOL_ERROR` when the
        handshake fails.
    """
    options = options or ConnectionOptions.from_environment()
    stop = stop or asyncio.Event()
    if session is None:
        session = (
            PluginSession(config, options, pipeline_factory)
            if pipeline_factory is not None
            else PluginSession(config, options)
        )
    connection = PluginConnection(reader, writer, session, options)
    reader_task = asyncio.create_task(connection.serve())

    try:
        try:
            await connection.handshake()
        except ProtocolError as exc:
            error(f"Handshake failed: {exc}")
            return EXIT_PROTOCOL_ERROR

        waiters = {
            asyncio.ensure_future(session.closed.wait()): "close request",
            asyncio.ensure_future(connection.disconnected.wait()): "disconnect",
            asyncio.ensure_future(stop.wait()): "interrupt",
        }
        try:
            done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()
        reason = next(waiters[w] for w in waiters if w in done)
        log(f"Shutting down ({reason})")
    finally:
        session.terminate()
        await connection.close()
        reader_task.cancel()
        try:
            await reader_task
        except asyncio.CancelledError:
            pass
        debug("Plugin host stopped")
    return EXIT_SUCCESS


async def _run_stdio(config: PluginConfig) -> int:
    stop = asyncio.Event()
    installed = _install_signal_handlers(stop)
    loop = asyncio.get_running_loop()
    try:
        reader, writer = await open_stdio()
        return await serve_plugin(config, reader, writer, stop=stop)
    finally:
        for signum in installed:
            loop.remove_signal_handler(signum)


def run_plugin(config: PluginConfig) -> int:
    """Run plugin mode over stdin/stdout and return the process exit code."""
    log("Running in plugin mode")
    return asyncio.run(_run_stdio(config))
