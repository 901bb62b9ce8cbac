"""NuGet plugin protocol: transport, session handlers and the plugin-mode host.

- :class:`PluginConnection` -- newline-delimited JSON frames over stdio,
  handshake, per-request tasks, cancellation and keep-alives.
- :class:`PluginSession` -- the request handlers.
- :func:`run_plugin` -- runs plugin mode until ``Close``, disconnect or a
  signal.
"""

from devcontainer_credprovider.protocol.host import run_plugin, serve_plugin
from devcontainer_credprovider.protocol.session import (
    DISPATCH,
    PluginSession,
    SessionState,
)
from devcontainer_credprovider.protocol.transport import (
    ConnectionOptions,
    PluginConnection,
)

__all__ = [
    "ConnectionOptions",
    "DISPATCH",
    "PluginConnection",
    "PluginSession",
    "SessionState",
    "run_plugin",
    "serve_plugin",
]
