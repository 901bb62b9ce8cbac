"""Tests for the two-factor secret store and secret resolution."""

from __future__ import annotations

import base64
import os
import stat
import sys
from pathlib import Path

import pytest

from devcontainer_credprovider.credentials.secret_store import (
    SECRET_FILENAME,
    TwoFactorSecretStore,
    default_secret_path,
    resolve_two_factor_secret,
)
from devcontainer_credprovider.models import PluginConfig


class TestTwoFactorSecretStore:
    def test_default_path_is_in_home(self, isolated_env: Path) -> None:
        assert default_secret_path() == isolated_env / SECRET_FILENAME
        assert TwoFactorSecretStore().path == isolated_env / SECRET_FILENAME

    def test_load_missing(self, tmp_path: Path) -> None:
        assert TwoFactorSecretStore(tmp_path / "secret").load() is None

    def test_load_trims(self, tmp_path: Path) -> None:
        path = tmp_path / "secret"
        path.write_text("  JBSWY3DPEHPK3PXP\n", encoding="utf-8")
        assert TwoFactorSecretStore(path).load() == "JBSWY3DPEHPK3PXP"

    def test_load_blank_is_none(self, tmp_path: Path) -> None:
        path = tmp_path / "secret"
        path.write_text("\n", encoding="utf-8")
        assert TwoFactorSecretStore(path).load() is None

    def test_save_round_trip(self, tmp_path: Path) -> None:
        store = TwoFactorSecretStore(tmp_path / "nested" / "secret")
        store.save("JBSWY3DPEHPK3PXP")
        assert store.load() == "JBSWY3DPEHPK3PXP"

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_save_is_owner_only(self, tmp_path: Path) -> None:
        store = TwoFactorSecretStore(tmp_path / "secret")
        store.save("JBSWY3DPEHPK3PXP")
        mode = stat.S_IMODE(os.stat(store.path).st_mode)
        assert mode == 0o600

    def test_save_leaves_no_temp_files(self, tmp_path: Path) -> None:
        store = TwoFactorSecretStore(tmp_path / "secret")
        store.save("JBSWY3DPEHPK3PXP")
        assert [p.name for p in tmp_path.iterdir()] == ["secret"]

    def test_get_or_create_generates_160_bit_secret(self, tmp_path: Path) -> None:
        store = TwoFactorSecretStore(tmp_path / "secret")
        secret = store.get_or_create()
        assert len(base64.b32decode(secret)) == 20
        assert store.load() == secret

    def test_get_or_create_reuses_existing(self, tmp_path: Path) -> None:
        store = TwoFactorSecretStore(tmp_path / "secret")
        store.save("JBSWY3DPEHPK3PXP")
        assert store.get_or_create() == "JBSWY3DPEHPK3PXP"

    def test_get_or_create_warns_when_unsaveable(
        self,
        tmp_path: Path,
        monkeypatch: pytest.MonkeyPatch,
        quiet_output: object,
        capsys: pytest.CaptureFixture[str],
    ) -> None:
        store = TwoFactorSecretStore(tmp_path / "secret")

        def _fail(secret: str) -> None:
            raise PermissionError("read-only")

        monkeypatch.setattr(store, "save", _fail)
        secret = store.get_or_create()
        assert secret
        assert "Could not save 2FA secret" in capsys.readouterr().err


class TestResolveTwoFactorSecret:
    def test_env_override_wins(self, tmp_path: Path) -> None:
        store = TwoFactorSecretStore(tmp_path / "secret")
        store.save("STOREDSECRETAAAA")
        config = PluginConfig(two_factor_secret="ENVSECRETAAAAAAA")
        assert resolve_two_factor_secret(config, store) == "ENVSECRETAAAAAAA"

    def test_falls_back_to_store(self, tmp_path: Path) -> None:
        store = TwoFactorSecretStore(tmp_path / "secret")
        store.save("STOREDSECRETAAAA")
        assert resolve_two_factor_secret(PluginConfig(), store) == "STOREDSECRETAAAA"

    def test_never_generates(self, tmp_path: Path) -> None:
        store = TwoFactorSecretStore(tmp_path / "secret")
        assert resolve_two_factor_secret(PluginConfig(), store) is None
        assert not store.path.exists()
