"""Tests for the command-line surface (--version, --test, --setup-2fa, --config)."""

from __future__ import annotations

import re
from pathlib import Path

import pytest

from devcontainer_credprovider import __version__
from devcontainer_credprovider.app import app, main, totp_uri
from devcontainer_credprovider.exceptions import ConfigError

SECRET = "JBSWY3DPEHPK3PXP"


@pytest.fixture
def no_helpers(monkeypatch: pytest.MonkeyPatch) -> None:
    """Make the auth helper probe find nothing."""
    monkeypatch.setattr(
        "devcontainer_credprovider.credentials.helper.default_helper_paths", lambda: []
    )


class TestTotpUri:
    def test_format(self) -> None:
        assert totp_uri(SECRET) == (
            "otpauth://totp/NuGetCredProvider?secret=JBSWY3DPEHPK3PXP"
            "&issuer=DevcontainerCredProvider"
        )


class TestBasicFlags:
    def test_version(self, cli_runner, isolated_env: Path) -> None:
        result = cli_runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"CredentialProvider.Devcontainer {__version__}" in result.output

    def test_version_short(self, cli_runner, isolated_env: Path) -> None:
        result = cli_runner.invoke(app, ["-v"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_help(self, cli_runner, isolated_env: Path) -> None:
        result = cli_runner.invoke(app, ["-h"])
        assert result.exit_code == 0
        assert "--setup-2fa" in result.output

    def test_no_flags_prints_usage_hint(self, cli_runner, isolated_env: Path) -> None:
        result = cli_runner.invoke(app, [])
        assert result.exit_code == 1
        assert "Use -Plugin" in result.output

    def test_unknown_arguments_are_ignored(self, cli_runner, isolated_env: Path) -> None:
        result = cli_runner.invoke(app, ["--version", "--something-nuget-added"])
        assert result.exit_code == 0


class TestShowConfig:
    def test_defaults(self, cli_runner, isolated_env: Path) -> None:
        result = cli_runner.invoke(app, ["--config"])
        assert result.exit_code == 0
        assert "Config file:" in result.output
        assert "(not found)" in result.output
        assert "disabled: false" in result.output
        assert "access token: not set" in result.output

    def test_token_is_never_printed(
        self, cli_runner, isolated_env: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("VSS_NUGET_ACCESSTOKEN", "very-secret-token")
        result = cli_runner.invoke(app, ["--config"])
        assert "access token: set" in result.output
        assert "very-secret-token" not in result.output

    def test_disabled_from_environment(
        self, cli_runner, isolated_env: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("DEVCONTAINER_CREDPROVIDER_DISABLED", "true")
        result = cli_runner.invoke(app, ["--config"])
        assert "disabled: true" in result.output


class TestTestCredentials:
    def test_environment_token(
        self,
        cli_runner,
        isolated_env: Path,
        no_helpers: None,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setenv("VSS_NUGET_ACCESSTOKEN", "abcdef")
        result = cli_runner.invoke(app, ["--test"])
        assert result.exit_code == 0
        assert "Successfully acquired token (length: 6)" in result.output
        assert "abcdef" not in result.output

    def test_no_source_fails(self, cli_runner, isolated_env: Path, no_helpers: None) -> None:
        result = cli_runner.invoke(app, ["--test"])
        assert result.exit_code == 1
        assert "Failed to acquire token" in result.output

    def test_two_factor_without_code_fails(
        self,
        cli_runner,
        isolated_env: Path,
        no_helpers: None,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        monkeypatch.setenv("VSS_NUGET_ACCESSTOKEN", "abcdef")
        monkeypatch.setenv("NUGET_CREDPROVIDER_2FA_ENABLED", "true")
        monkeypatch.setenv("NUGET_CREDPROVIDER_2FA_SECRET", SECRET)
        result = cli_runner.invoke(app, ["--test"])
        assert result.exit_code == 1


class TestSetupTwoFactor:
    def test_creates_secret(self, cli_runner, isolated_env: Path) -> None:
        result = cli_runner.invoke(app, ["--setup-2fa"])
        assert result.exit_code == 0

        secret_file = isolated_env / ".nuget-credprovider-2fa-secret"
        assert secret_file.is_file()
        secret = secret_file.read_text(encoding="utf-8").strip()
        assert f"Secret: {secret}" in result.output
        assert totp_uri(secret) in result.output
        assert re.search(r"Current code \(for verification\): \d{6}", result.output)

    def test_reuses_existing_secret(self, cli_runner, isolated_env: Path) -> None:
        first = cli_runner.invoke(app, ["--setup-2fa"])
        second = cli_runner.invoke(app, ["--setup-2fa"])
        secret = (isolated_env / ".nuget-credprovider-2fa-secret").read_text(encoding="utf-8").strip()
        assert f"Secret: {secret}" in first.output
        assert f"Secret: {secret}" in second.output

    def test_environment_secret_wins(
        self, cli_runner, isolated_env: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("NUGET_CREDPROVIDER_2FA_SECRET", SECRET)
        result = cli_runner.invoke(app, ["--setup-2fa"])
        assert result.exit_code == 0
        assert "Stored in: NUGET_CREDPROVIDER_2FA_SECRET" in result.output
        assert totp_uri(SECRET) in result.output
        assert not (isolated_env / ".nuget-credprovider-2fa-secret").exists()


class TestMain:
    @pytest.fixture(autouse=True)
    def _no_signal_handlers(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("devcontainer_credprovider.app._setup_signal_handlers", lambda: None)

    def test_known_error_uses_its_exit_code(
        self, isolated_env: Path, quiet_output: object, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def _fail() -> None:
            raise ConfigError("bad secret")

        monkeypatch.setattr("devcontainer_credprovider.app.app", _fail)
        with pytest.raises(SystemExit) as exc_info:
            main()
        assert exc_info.value.code == 3

    def test_crash_writes_log(
        self, isolated_env: Path, quiet_output: object, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def _crash() -> None:
            raise RuntimeError("unexpected")

        monkeypatch.setattr("devcontainer_credprovider.app.app", _crash)
        with pytest.raises(SystemExit) as exc_info:
            main()
        assert exc_info.value.code == 1
        logs = list((isolated_env.parent / "data" / "devcontainer-credprovider" / "logs").glob("crash-*.log"))
        assert len(logs) == 1
        assert "RuntimeError: unexpected" in logs[0].read_text()
