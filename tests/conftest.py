"""
Interest vault test configuration.

Shared fixtures: a fixed vault identity, a complete VaultAccounts set,
signer keypairs and a scripted in-memory LedgerGateway.
"""

import asyncio
import os
import sys

# Add project root to path FIRST
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from interest_vault.assembler import Checkpoint
from interest_vault.builder import VaultAccounts
from interest_vault.config import VaultConfig
from interest_vault.gateway import Confirmation, ConfirmationStatus
from interest_vault.pda import VaultIdentity

PROGRAM_ID = Pubkey.from_bytes(bytes([7]) * 32)
USDC_MINT = Pubkey.from_string("EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v")
# Known Solana devnet address, no funds
ADMIN = Pubkey.from_string("9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM")


def fixed_pubkey(n: int) -> Pubkey:
    return Pubkey.from_bytes(bytes([n]) * 32)


class FakeGateway:
    """Scripted LedgerGateway.

    ``submit_script`` entries are exceptions to raise or None to accept.
    ``confirmations`` entries are Confirmation values, or "hang" to block
    until cancelled.
    """

    def __init__(self, confirmations=None, submit_script=None, checkpoint_script=None):
        self.confirmations = list(confirmations or [])
        self.submit_script = list(submit_script or [])
        self.checkpoint_script = list(checkpoint_script or [])
        self.checkpoints = []
        self.submitted = []
        self.entered = 0
        self.closed = 0
        self.statuses = {}

    async def __aenter__(self):
        self.entered += 1
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.closed += 1

    async def get_latest_checkpoint(self):
        if self.checkpoint_script:
            step = self.checkpoint_script.pop(0)
            if step == "hang":
                await asyncio.Event().wait()
            if isinstance(step, Exception):
                raise step
        checkpoint = Checkpoint(Hash.new_unique(), 1_000 + len(self.checkpoints))
        self.checkpoints.append(checkpoint)
        return checkpoint

    async def submit(self, transaction):
        self.submitted.append(transaction)
        if self.submit_script:
            step = self.submit_script.pop(0)
            if step is not None:
                raise step
        return transaction.signatures[0]

    async def await_confirmation(self, signature, checkpoint, timeout):
        step = self.confirmations.pop(0) if self.confirmations else Confirmation(ConfirmationStatus.CONFIRMED, slot=1)
        if step == "hang":
            await asyncio.Event().wait()
        return step

    async def get_status(self, signature):
        return self.statuses.get(str(signature))


@pytest.fixture
def program_id():
    return PROGRAM_ID


@pytest.fixture
def identity():
    return VaultIdentity(program_id=PROGRAM_ID, admin=ADMIN, usdc_mint=USDC_MINT)


@pytest.fixture
def vault_accounts():
    return VaultAccounts(
        vault_state=fixed_pubkey(11),
        operator=fixed_pubkey(12),
        share_mint=fixed_pubkey(13),
        vault_usdc_ata=fixed_pubkey(14),
        boost_usdc_ata=fixed_pubkey(15),
    )


@pytest.fixture
def payer():
    return Keypair()


@pytest.fixture
def fast_config():
    return VaultConfig(
        rpc_url="http://127.0.0.1:8899",
        max_attempts=3,
        checkpoint_timeout=1.0,
        signing_timeout=1.0,
        submit_timeout=1.0,
        confirm_timeout=1.0,
        poll_interval=0.01,
        retry_base_delay=0.0,
    )


@pytest.fixture
def checkpoint():
    return Checkpoint(Hash.new_unique(), 500)


@pytest.fixture
def make_gateway():
    """Build a FakeGateway plus a factory usable as VaultSubmitter's gateway_factory."""
    def _make(**script):
        gateway = FakeGateway(**script)
        return gateway, lambda config: gateway
    return _make
