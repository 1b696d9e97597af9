"""Tests for deployment settings."""

import os
from pathlib import Path

import pytest

from agtrace.errors import ValidationError
from agtrace.mirror.anchor import SEPOLIA_CHAIN_ID
from agtrace.settings import DEFAULT_DATA_DIR, Settings


class TestSettings:
    def test_defaults(self) -> None:
        settings = Settings.from_env(environ={})
        assert settings.data_dir == DEFAULT_DATA_DIR
        assert settings.log_level == "INFO"
        assert settings.policy_dir is None
        assert settings.mirror_chain_id == SEPOLIA_CHAIN_ID
        assert settings.mirror_max_attempts == 5
        assert not settings.mirror_enabled

    def test_environment_overrides(self) -> None:
        settings = Settings.from_env(environ={
            "AGTRACE_DATA_DIR": "/var/lib/agtrace",
            "AGTRACE_LOG_LEVEL": "debug",
            "AGTRACE_POLICY_DIR": "/etc/agtrace",
            "AGTRACE_MIRROR_MAX_ATTEMPTS": "3",
            "AGTRACE_MIRROR_BACKOFF_SECONDS": "0.5",
        })
        assert settings.data_dir == Path("/var/lib/agtrace")
        assert settings.log_level == "DEBUG"
        assert settings.policy_dir == Path("/etc/agtrace")
        assert settings.mirror_max_attempts == 3
        assert settings.mirror_backoff_seconds == 0.5

    def test_mirror_needs_url_and_key(self) -> None:
        assert not Settings.from_env(environ={
            "AGTRACE_MIRROR_RPC_URL": "https://rpc.sepolia.test",
        }).mirror_enabled
        assert Settings.from_env(environ={
            "AGTRACE_MIRROR_RPC_URL": "https://rpc.sepolia.test",
            "AGTRACE_MIRROR_PRIVATE_KEY": "0x" + "11" * 32,
        }).mirror_enabled

    def test_bad_integer(self) -> None:
        with pytest.raises(ValidationError, match="AGTRACE_MIRROR_CHAIN_ID"):
            Settings.from_env(environ={"AGTRACE_MIRROR_CHAIN_ID": "sepolia"})

    def test_bad_float(self) -> None:
        with pytest.raises(ValidationError):
            Settings.from_env(environ={"AGTRACE_MIRROR_BACKOFF_SECONDS": "soon"})

    def test_env_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(os, "environ", {"AGTRACE_LOG_LEVEL": "WARNING"})
        env_file = tmp_path / ".env"
        env_file.write_text(
            "AGTRACE_DATA_DIR=/srv/agtrace\nAGTRACE_LOG_LEVEL=DEBUG\n", encoding="utf-8",
        )
        settings = Settings.from_env(env_file)
        assert settings.data_dir == Path("/srv/agtrace")
        # Process environment wins over the file
        assert settings.log_level == "WARNING"
