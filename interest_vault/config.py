"""
Client configuration.

There is no process-wide client: build a VaultConfig once and pass it to
every call that talks to the network.

Usage:
    from interest_vault.config import VaultConfig

    config = VaultConfig.from_env()          # VAULT_* variables
    config = VaultConfig(rpc_url="http://127.0.0.1:8899")
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Type, TypeVar, Union

from dotenv import load_dotenv

from interest_vault.errors import ConfigurationError

logger = logging.getLogger(__name__)

T = TypeVar("T")

COMMITMENTS = ("processed", "confirmed", "finalized")

RPC_MONIKERS = {
    "localnet": "http://127.0.0.1:8899",
    "devnet": "https://api.devnet.solana.com",
    "testnet": "https://api.testnet.solana.com",
    "mainnet": "https://api.mainnet-beta.solana.com",
}


def _get_env(key: str, default: T = None, cast: Type[T] = str) -> T:
    """Get environment variable with type casting."""
    value = os.environ.get(key)

    if value is None:
        return default

    if cast == bool:
        return value.lower() in ('true', '1', 'yes', 'on')

    if cast == int:
        try:
            return int(value)
        except ValueError:
            logger.warning(f"Ignoring non-integer {key}={value!r}")
            return default

    if cast == float:
        try:
            return float(value)
        except ValueError:
            logger.warning(f"Ignoring non-numeric {key}={value!r}")
            return default

    return value


def resolve_rpc_url(url_or_moniker: str) -> str:
    """Map localnet/devnet/testnet/mainnet to their public endpoints."""
    return RPC_MONIKERS.get(url_or_moniker, url_or_moniker)


@dataclass(frozen=True)
class VaultConfig:
    """Network settings for submitting vault transactions."""
    rpc_url: str = RPC_MONIKERS["localnet"]
    commitment: str = "confirmed"
    program_id: Optional[str] = None
    max_attempts: int = 3
    checkpoint_timeout: float = 10.0
    signing_timeout: float = 30.0
    submit_timeout: float = 20.0
    confirm_timeout: float = 60.0
    poll_interval: float = 0.5
    retry_base_delay: float = 0.5
    skip_preflight: bool = False

    @classmethod
    def from_env(cls, env_file: Optional[Union[str, Path]] = None) -> "VaultConfig":
        """Read VAULT_* variables, loading ``env_file`` first if given.

        Existing environment variables are never overridden by the file.
        """
        if env_file is not None:
            path = Path(env_file)
            if not path.exists():
                raise ConfigurationError(f"env file not found: {path}")
            load_dotenv(path, override=False)

        defaults = cls()
        config = cls(
            rpc_url=resolve_rpc_url(_get_env("VAULT_RPC_URL", defaults.rpc_url)),
            commitment=_get_env("VAULT_COMMITMENT", defaults.commitment),
            program_id=_get_env("VAULT_PROGRAM_ID", defaults.program_id),
            max_attempts=_get_env("VAULT_MAX_ATTEMPTS", defaults.max_attempts, int),
            checkpoint_timeout=_get_env("VAULT_CHECKPOINT_TIMEOUT", defaults.checkpoint_timeout, float),
            signing_timeout=_get_env("VAULT_SIGNING_TIMEOUT", defaults.signing_timeout, float),
            submit_timeout=_get_env("VAULT_SUBMIT_TIMEOUT", defaults.submit_timeout, float),
            confirm_timeout=_get_env("VAULT_CONFIRM_TIMEOUT", defaults.confirm_timeout, float),
            poll_interval=_get_env("VAULT_POLL_INTERVAL", defaults.poll_interval, float),
            retry_base_delay=_get_env("VAULT_RETRY_BASE_DELAY", defaults.retry_base_delay, float),
            skip_preflight=_get_env("VAULT_SKIP_PREFLIGHT", defaults.skip_preflight, bool),
        )
        config.validate()
        return config

    def validate(self) -> None:
        if not self.rpc_url.startswith(("http://", "https://")):
            raise ConfigurationError(f"rpc_url must be http(s), got {self.rpc_url!r}")
        if self.commitment not in COMMITMENTS:
            raise ConfigurationError(
                f"commitment must be one of {', '.join(COMMITMENTS)}",
                {"commitment": self.commitment},
            )
        if self.max_attempts < 1:
            raise ConfigurationError("max_attempts must be at least 1", {"max_attempts": self.max_attempts})
        for name in ("checkpoint_timeout", "signing_timeout", "submit_timeout", "confirm_timeout", "poll_interval"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive", {name: getattr(self, name)})
        if self.retry_base_delay < 0:
            raise ConfigurationError("retry_base_delay must not be negative")
