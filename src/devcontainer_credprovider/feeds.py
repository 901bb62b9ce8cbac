"""Host-pattern matching for the feeds this provider is willing to authenticate.

The test is a plain case-insensitive substring search against a fixed list of
host fragments; the URI is never parsed, so the scheme does not matter and
even a schemeless string such as ``pkgs.dev.azure.com/org`` matches.

Note that the claims negotiation in
:class:`~devcontainer_credprovider.protocol.session.PluginSession` treats an
*empty* package source as in scope (a source-agnostic capability probe),
while :func:`matches` itself returns ``False`` for it.
"""

from __future__ import annotations

from typing import Optional

FEED_HOST_FRAGMENTS: tuple[str, ...] = (
    "dev.azure.com",
    "pkgs.dev.azure.com",
    "visualstudio.com",
    "azure.com/_packaging",
)


def matches(uri: Optional[str]) -> bool:
    """Return True if *uri* contains any known Azure Artifacts host fragment.

    Args:
        uri: Feed URI, or ``None``.

    Returns:
        ``False`` for ``None`` or an empty string, otherwise whether any
        fragment in :data:`FEED_HOST_FRAGMENTS` occurs in *uri*, ignoring
        case.
    """
    if not uri:
        return False
    folded = uri.casefold()
    return any(fragment in folded for fragment in FEED_HOST_FRAGMENTS)
