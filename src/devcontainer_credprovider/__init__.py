"""devcontainer_credprovider -- headless NuGet credential provider for devcontainers.

This package implements a NuGet cross-platform credential provider plugin.
When a restore needs credentials for an Azure Artifacts feed, NuGet launches
the plugin with ``-Plugin`` and talks to it over stdin/stdout. The plugin
obtains a bearer token from a local auth helper executable (optionally gated
behind a time-based one-time code) and answers ``NotFound`` whenever it has
nothing to offer so that NuGet can fall back to the next provider.

Typical workflow::

    devcontainer-credprovider --test        # check that a token can be acquired
    devcontainer-credprovider --setup-2fa   # show or create the 2FA secret
    devcontainer-credprovider -Plugin       # started by NuGet itself

Modules:
    app: Typer application and CLI entry point.
    models: Pydantic models for the configuration snapshot and wire messages.
    config: Configuration file and environment resolution.
    feeds: Host-pattern matching for in-scope feeds.
    credentials: Credential sources and the acquisition pipeline.
    protocol: Plugin session state machine, transport and process host.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes.
    output: stderr diagnostics with Rich support.
"""

__version__ = "0.3.0"
