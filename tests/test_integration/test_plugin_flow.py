"""End-to-end plugin sessions: a fake NuGet client talking to serve_plugin.

The client side is driven through an in-memory StreamReader (frames the
plugin reads) and a sink that decodes every frame the plugin writes.
"""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Callable, Optional

import pytest

from devcontainer_credprovider.credentials.pipeline import create_default_pipeline
from devcontainer_credprovider.exit_codes import EXIT_PROTOCOL_ERROR, EXIT_SUCCESS
from devcontainer_credprovider.models import PluginConfig
from devcontainer_credprovider.protocol.host import serve_plugin
from devcontainer_credprovider.protocol.session import PluginSession, SessionState
from devcontainer_credprovider.protocol.transport import ConnectionOptions

FEED = "https://pkgs.dev.azure.com/org/_packaging/feed/nuget/v3/index.json"

posix_only = pytest.mark.skipif(
    sys.platform == "win32", reason="fake auth helpers are POSIX shell scripts"
)


class _FakeClient:
    """Plays the NuGet side of the connection."""

    def __init__(self) -> None:
        self.reader = asyncio.StreamReader()
        self.frames: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self._next_id = 0

    # FrameWriter interface used by the plugin
    def write(self, data: bytes) -> None:
        for line in data.decode("utf-8").splitlines():
            self.frames.put_nowait(json.loads(line))

    async def drain(self) -> None:
        return None

    def send(self, frame: dict[str, Any]) -> None:
        self.reader.feed_data((json.dumps(frame) + "\n").encode("utf-8"))

    async def receive(self) -> dict[str, Any]:
        return await asyncio.wait_for(self.frames.get(), timeout=10)

    async def request(self, method: str, payload: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        """Send a request and return its response, skipping Progress frames."""
        self._next_id += 1
        request_id = f"client-{self._next_id}"
        self.send({"RequestId": request_id, "Type": "Request", "Method": method, "Payload": payload})
        while True:
            frame = await self.receive()
            if frame["RequestId"] == request_id and frame["Type"] != "Progress":
                return frame

    async def handshake(self) -> dict[str, Any]:
        outbound = await self.receive()
        assert outbound["Method"] == "Handshake"
        self.send(
            {
                "RequestId": outbound["RequestId"],
                "Type": "Response",
                "Method": "Handshake",
                "Payload": {"ResponseCode": "Success", "ProtocolVersion": "2.0.0"},
            }
        )
        return await self.request(
            "Handshake", {"ProtocolVersion": "2.0.0", "MinimumProtocolVersion": "1.0.0"}
        )


def _serve(
    client: _FakeClient,
    config: PluginConfig,
    helper_paths: Optional[list[Path]] = None,
    options: Optional[ConnectionOptions] = None,
    stop: Optional[asyncio.Event] = None,
) -> asyncio.Task[int]:
    def factory(cfg: PluginConfig):
        return create_default_pipeline(cfg, helper_paths=helper_paths or [])

    return asyncio.create_task(
        serve_plugin(
            config,
            client.reader,
            client,
            options=options or ConnectionOptions(handshake_timeout=2.0),
            pipeline_factory=factory,
            stop=stop,
        )
    )


def _run(scenario: Callable[[], Any]) -> Any:
    async def _bounded() -> Any:
        return await asyncio.wait_for(scenario(), timeout=30)

    return asyncio.run(_bounded())


class TestPluginSession:
    @posix_only
    def test_full_session_with_helper(
        self, make_helper: Callable[..., Path], quiet_output: object
    ) -> None:
        helper = make_helper("echo helper-token")

        async def scenario() -> tuple[list[dict[str, Any]], int]:
            client = _FakeClient()
            host = _serve(client, PluginConfig(), helper_paths=[helper])
            responses = [
                await client.handshake(),
                await client.request("Initialize", {"ClientVersion": "6.8.0", "RequestTimeout": "00:01:00"}),
                await client.request("GetOperationClaims", {"PackageSourceRepository": None}),
                await client.request("GetAuthenticationCredentials", {"Uri": FEED, "IsRetry": False}),
            ]
            client.send({"RequestId": "bye", "Type": "Request", "Method": "Close"})
            return responses, await host

        responses, exit_code = _run(scenario)
        handshake, initialize, claims, credentials = responses
        assert handshake["Payload"]["ResponseCode"] == "Success"
        assert initialize["Payload"] == {"ResponseCode": "Success"}
        assert claims["Payload"] == {"Claims": ["Authentication"]}
        assert credentials["Payload"] == {
            "Username": "DevcontainerCredProvider",
            "Password": "helper-token",
            "AuthenticationTypes": ["Basic"],
            "ResponseCode": "Success",
        }
        assert exit_code == EXIT_SUCCESS

    def test_no_helper_falls_back(self, quiet_output: object) -> None:
        async def scenario() -> tuple[dict[str, Any], int]:
            client = _FakeClient()
            host = _serve(client, PluginConfig())
            await client.handshake()
            response = await client.request("GetAuthenticationCredentials", {"Uri": FEED})
            client.send({"RequestId": "bye", "Type": "Request", "Method": "Close"})
            return response, await host

        response, exit_code = _run(scenario)
        assert response["Payload"]["ResponseCode"] == "NotFound"
        assert "Falling back" in response["Payload"]["Message"]
        assert exit_code == EXIT_SUCCESS

    def test_environment_token(self, quiet_output: object) -> None:
        async def scenario() -> dict[str, Any]:
            client = _FakeClient()
            host = _serve(client, PluginConfig(access_token="env-token"))
            await client.handshake()
            response = await client.request("GetAuthenticationCredentials", {"Uri": FEED})
            client.reader.feed_eof()
            await host
            return response

        assert _run(scenario)["Payload"]["Password"] == "env-token"

    def test_disabled_plugin(self, quiet_output: object) -> None:
        async def scenario() -> tuple[dict[str, Any], dict[str, Any]]:
            client = _FakeClient()
            host = _serve(client, PluginConfig(disabled=True, access_token="env-token"))
            await client.handshake()
            claims = await client.request("GetOperationClaims", {"PackageSourceRepository": FEED})
            credentials = await client.request("GetAuthenticationCredentials", {"Uri": FEED})
            client.reader.feed_eof()
            await host
            return claims, credentials

        claims, credentials = _run(scenario)
        assert claims["Payload"] == {"Claims": []}
        assert credentials["Payload"]["ResponseCode"] == "NotFound"
        assert "Password" not in credentials["Payload"]


class TestHostShutdown:
    def test_eof_ends_host(self, quiet_output: object) -> None:
        async def scenario() -> int:
            client = _FakeClient()
            host = _serve(client, PluginConfig())
            await client.handshake()
            client.reader.feed_eof()
            return await host

        assert _run(scenario) == EXIT_SUCCESS

    def test_stop_event_ends_host(self, quiet_output: object) -> None:
        async def scenario() -> int:
            client = _FakeClient()
            stop = asyncio.Event()
            host = _serve(client, PluginConfig(), stop=stop)
            await client.handshake()
            stop.set()
            return await host

        assert _run(scenario) == EXIT_SUCCESS

    def test_handshake_timeout_is_protocol_error(self, quiet_output: object) -> None:
        async def scenario() -> int:
            client = _FakeClient()
            host = _serve(client, PluginConfig(), options=ConnectionOptions(handshake_timeout=0.2))
            return await host

        assert _run(scenario) == EXIT_PROTOCOL_ERROR

    @posix_only
    def test_close_kills_running_helper(
        self, make_helper: Callable[..., Path], tmp_path: Path, quiet_output: object
    ) -> None:
        marker = tmp_path / "finished"
        helper = make_helper(f'sleep 1\ntouch "{marker}"\necho late-token')

        async def scenario() -> int:
            client = _FakeClient()
            host = _serve(client, PluginConfig(), helper_paths=[helper])
            await client.handshake()
            client.send(
                {
                    "RequestId": "slow",
                    "Type": "Request",
                    "Method": "GetAuthenticationCredentials",
                    "Payload": {"Uri": FEED},
                }
            )
            await asyncio.sleep(0.3)
            client.reader.feed_eof()
            exit_code = await host
            # Long enough for a surviving helper to reach the touch.
            await asyncio.sleep(1.5)
            return exit_code

        assert _run(scenario) == EXIT_SUCCESS
        assert not marker.exists()


class TestSessionTermination:
    def _session(self, options: ConnectionOptions) -> PluginSession:
        return PluginSession(
            PluginConfig(), options, lambda cfg: create_default_pipeline(cfg, helper_paths=[])
        )

    def test_eof_terminates_session(self, quiet_output: object) -> None:
        async def scenario() -> tuple[SessionState, SessionState]:
            client = _FakeClient()
            options = ConnectionOptions(handshake_timeout=2.0)
            session = self._session(options)
            host = asyncio.create_task(
                serve_plugin(PluginConfig(), client.reader, client, options=options, session=session)
            )
            await client.handshake()
            await client.request("Initialize", {})
            before = session.state
            client.reader.feed_eof()
            await host
            return before, session.state

        before, after = _run(scenario)
        assert before is SessionState.READY
        assert after is SessionState.TERMINATED

    def test_interrupt_terminates_session(self, quiet_output: object) -> None:
        async def scenario() -> SessionState:
            client = _FakeClient()
            options = ConnectionOptions(handshake_timeout=2.0)
            session = self._session(options)
            stop = asyncio.Event()
            host = asyncio.create_task(
                serve_plugin(
                    PluginConfig(), client.reader, client, options=options, stop=stop, session=session
                )
            )
            await client.handshake()
            stop.set()
            await host
            return session.state

        assert _run(scenario) is SessionState.TERMINATED

    def test_failed_handshake_terminates_session(self, quiet_output: object) -> None:
        async def scenario() -> tuple[int, SessionState]:
            client = _FakeClient()
            options = ConnectionOptions(handshake_timeout=0.2)
            session = self._session(options)
            exit_code = await serve_plugin(
                PluginConfig(), client.reader, client, options=options, session=session
            )
            return exit_code, session.state

        exit_code, state = _run(scenario)
        assert exit_code == EXIT_PROTOCOL_ERROR
        assert state is SessionState.TERMINATED
