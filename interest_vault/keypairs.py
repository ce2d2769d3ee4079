"""Signer keypair loading for fee payers and vault signers."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Optional, Union

import base58
from solders.keypair import Keypair

from interest_vault.errors import ConfigurationError

DEFAULT_KEYPAIR_PATH = Path.home() / ".config" / "solana" / "id.json"


def keypair_from_json(path: Union[str, Path]) -> Keypair:
    """Load a keypair written by ``solana-keygen`` (JSON array of 64 ints)."""
    path = Path(path)
    try:
        data = json.loads(path.read_text())
    except (OSError, ValueError) as exc:
        raise ConfigurationError(f"cannot read keypair file {path}: {exc}") from exc
    if not isinstance(data, list):
        raise ConfigurationError(f"keypair file {path} must contain a JSON array")
    try:
        return Keypair.from_bytes(bytes(data))
    except Exception as exc:
        raise ConfigurationError(f"invalid keypair in {path}: {exc}") from exc


def keypair_from_base58(value: str) -> Keypair:
    """Load a keypair from a base58-encoded 64-byte secret."""
    try:
        return Keypair.from_bytes(base58.b58decode(value.strip()))
    except Exception as exc:
        raise ConfigurationError(f"invalid base58 keypair: {exc}") from exc


def load_keypair(path: Optional[Union[str, Path]] = None, env_var: str = "VAULT_SIGNER_KEY") -> Keypair:
    """Load a keypair from ``path``, then ``env_var``, then the Solana CLI default."""
    if path:
        return keypair_from_json(path)

    env_key = os.environ.get(env_var)
    if env_key:
        return keypair_from_base58(env_key)

    if DEFAULT_KEYPAIR_PATH.exists():
        return keypair_from_json(DEFAULT_KEYPAIR_PATH)

    raise ConfigurationError(
        f"no keypair found: pass a path, set {env_var}, or create {DEFAULT_KEYPAIR_PATH}"
    )
