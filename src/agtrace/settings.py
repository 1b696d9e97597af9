"""Runtime settings read from the environment and an optional ``.env`` file.

Business rules (permissions, order parties, KYC documents and tiers)
live in ``runtime_policy.json``; this module only carries deployment
settings: where data lives, how loud to log, and how to reach the
mirror network.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from agtrace.errors import ValidationError
from agtrace.mirror.anchor import SEPOLIA_CHAIN_ID, SEPOLIA_EXPLORER_URL

DEFAULT_DATA_DIR = Path(".agtrace")


@dataclass(frozen=True)
class Settings:
    data_dir: Path = DEFAULT_DATA_DIR
    log_level: str = "INFO"
    policy_dir: Optional[Path] = None
    mirror_rpc_url: Optional[str] = None
    mirror_private_key: Optional[str] = None
    mirror_chain_id: int = SEPOLIA_CHAIN_ID
    mirror_explorer_url: str = SEPOLIA_EXPLORER_URL
    mirror_max_attempts: int = 5
    mirror_backoff_seconds: float = 2.0

    @property
    def mirror_enabled(self) -> bool:
        """The mirror runs only when both an RPC URL and a key are set."""
        return bool(self.mirror_rpc_url and self.mirror_private_key)

    @classmethod
    def from_env(
        cls,
        env_file: Optional[Path] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> Settings:
        """Load settings from ``environ`` (default ``os.environ``).

        ``env_file`` is loaded with python-dotenv first; variables already
        set in the process environment win.
        """
        if env_file is not None:
            load_dotenv(env_file)
        env = os.environ if environ is None else environ

        def _int(name: str, default: int) -> int:
            raw = env.get(name)
            if not raw:
                return default
            try:
                return int(raw)
            except ValueError:
                raise ValidationError(f"{name} must be an integer, got {raw!r}") from None

        def _float(name: str, default: float) -> float:
            raw = env.get(name)
            if not raw:
                return default
            try:
                return float(raw)
            except ValueError:
                raise ValidationError(f"{name} must be a number, got {raw!r}") from None

        policy_dir = env.get("AGTRACE_POLICY_DIR")
        return cls(
            data_dir=Path(env.get("AGTRACE_DATA_DIR") or DEFAULT_DATA_DIR),
            log_level=(env.get("AGTRACE_LOG_LEVEL") or "INFO").upper(),
            policy_dir=Path(policy_dir) if policy_dir else None,
            mirror_rpc_url=env.get("AGTRACE_MIRROR_RPC_URL") or None,
            mirror_private_key=env.get("AGTRACE_MIRROR_PRIVATE_KEY") or None,
            mirror_chain_id=_int("AGTRACE_MIRROR_CHAIN_ID", SEPOLIA_CHAIN_ID),
            mirror_explorer_url=env.get("AGTRACE_MIRROR_EXPLORER_URL") or SEPOLIA_EXPLORER_URL,
            mirror_max_attempts=_int("AGTRACE_MIRROR_MAX_ATTEMPTS", 5),
            mirror_backoff_seconds=_float("AGTRACE_MIRROR_BACKOFF_SECONDS", 2.0),
        )
