"""Network boundary: latest blockhash, send, and confirmation polling over Solana RPC."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol

import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solana.rpc.core import RPCException
from solana.rpc.types import TxOpts
from solders.rpc.errors import NodeUnhealthyMessage, SendTransactionPreflightFailureMessage
from solders.signature import Signature
from solders.transaction import Transaction
from solders.transaction_status import (
    InstructionErrorCustom,
    TransactionErrorFieldless,
    TransactionErrorInstructionError,
)

from interest_vault.assembler import Checkpoint
from interest_vault.config import VaultConfig
from interest_vault.errors import (
    CheckpointExpired,
    SubmissionError,
    SubmissionRejected,
    TransientSubmissionError,
)

logger = logging.getLogger(__name__)

_COMMITMENT_RANK = {"processed": 0, "confirmed": 1, "finalized": 2}


class ConfirmationStatus(str, Enum):
    CONFIRMED = "confirmed"
    FAILED = "failed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Confirmation:
    status: ConfirmationStatus
    error: Optional[str] = None
    slot: Optional[int] = None


class LedgerGateway(Protocol):
    async def get_latest_checkpoint(self) -> Checkpoint:
        ...

    async def submit(self, transaction: Transaction) -> Signature:
        ...

    async def await_confirmation(self, signature: Signature, checkpoint: Checkpoint, timeout: float) -> Confirmation:
        ...

    async def get_status(self, signature: Signature) -> Optional[Confirmation]:
        ...


def is_checkpoint_expired(error: Optional[str]) -> bool:
    if not error:
        return False
    lower = error.lower()
    return "blockhashnotfound" in lower or "blockhash not found" in lower or "blockhash expired" in lower


def describe_rejection(error: Optional[str]) -> Optional[str]:
    """Return a short, human-readable hint for common Solana transaction errors."""
    if not error:
        return None

    lower = error.lower()
    if "alreadyprocessed" in lower:
        return "Transaction already processed; likely duplicate or replayed."
    if is_checkpoint_expired(error):
        return "Blockhash expired; rebuild and re-sign the transaction."
    if "accountinuse" in lower:
        return "Account in use; retry with backoff."
    if "insufficientfunds" in lower:
        return "Insufficient funds for fee or transfer."
    if "invalidaccountdata" in lower:
        return "Invalid account data; verify vault state and mint ownership."
    if "invalidseeds" in lower:
        return "Derived address mismatch; check vault identity and epoch."
    if "notenoughaccountkeys" in lower:
        return "Instruction is missing accounts the program expects."
    if "missingrequiredsignature" in lower:
        return "A required signer did not sign."
    if "signatureverificationfailed" in lower:
        return "Signature verification failed; ensure signer and recent blockhash match."

    match = re.search(r"Custom\((\d+)\)", error)
    if match:
        return custom_error_hint(int(match.group(1)))
    return None


def custom_error_hint(code: int) -> str:
    if code == 1:
        return "Reward for this index was already claimed."
    return f"Custom program error {code}; program-specific constraint failed."


def classify_rejection(error: Optional[str]) -> str:
    """Classify a send or status error as retryable, permanent or unknown."""
    if not error:
        return "unknown"

    lower = error.lower()
    if "alreadyprocessed" in lower:
        return "permanent"
    if is_checkpoint_expired(error):
        return "retryable"
    if "accountinuse" in lower:
        return "retryable"
    if "timeout" in lower or "timed out" in lower:
        return "retryable"
    if "connection" in lower or "network error" in lower:
        return "retryable"
    if "unhealthy" in lower or "node is behind" in lower:
        return "retryable"
    if "rate limit" in lower or "too many requests" in lower or "429" in lower or "503" in lower:
        return "retryable"
    if "insufficientfunds" in lower:
        return "permanent"
    if "invalidaccountdata" in lower or "uninitializedaccount" in lower:
        return "permanent"
    if "signatureverificationfailed" in lower:
        return "permanent"
    if "instructionerror" in lower or "custom" in lower:
        return "permanent"
    return "unknown"


def _instruction_error_code(err) -> Optional[int]:
    if isinstance(err, TransactionErrorInstructionError) and isinstance(err.err, InstructionErrorCustom):
        return err.err.code
    return None


def rejection_from_rpc_error(exc: RPCException) -> SubmissionError:
    """Map a sendTransaction JSON-RPC error onto the submission error types.

    solana-py wraps the parsed solders message in ``exc.args[0]``. Preflight
    failures carry the simulated ``TransactionError``, which is read directly.
    Anything else falls back to classifying its message text.
    """
    payload = exc.args[0] if exc.args else None

    if isinstance(payload, SendTransactionPreflightFailureMessage):
        err = payload.data.err
        if err is None:
            return SubmissionRejected(payload.message, hint=describe_rejection(payload.message))
        if err == TransactionErrorFieldless.BlockhashNotFound:
            return CheckpointExpired(payload.message)
        reason = str(err)
        if err == TransactionErrorFieldless.AccountInUse:
            return TransientSubmissionError(reason)
        code = _instruction_error_code(err)
        hint = custom_error_hint(code) if code is not None else describe_rejection(reason)
        return SubmissionRejected(reason, hint=hint)

    if isinstance(payload, NodeUnhealthyMessage):
        return TransientSubmissionError(payload.message)

    error = getattr(payload, "message", None) or str(exc)
    if is_checkpoint_expired(error):
        return CheckpointExpired(error)
    if classify_rejection(error) == "retryable":
        return TransientSubmissionError(error)
    return SubmissionRejected(error, hint=describe_rejection(error))


def _status_name(confirmation_status) -> str:
    if confirmation_status is None:
        return "processed"
    return str(confirmation_status).rsplit(".", 1)[-1].lower()


def commitment_reached(confirmation_status, commitment: str) -> bool:
    reached = _COMMITMENT_RANK.get(_status_name(confirmation_status), -1)
    return reached >= _COMMITMENT_RANK[commitment]


class RpcGateway:
    """LedgerGateway backed by solana-py's AsyncClient.

    Use as an async context manager; the HTTP session is closed on exit,
    whatever the outcome.
    """

    def __init__(self, config: VaultConfig):
        self.config = config
        self._client: Optional[AsyncClient] = None

    async def __aenter__(self) -> "RpcGateway":
        self._client = AsyncClient(
            self.config.rpc_url,
            commitment=Commitment(self.config.commitment),
            timeout=self.config.submit_timeout,
        )
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.close()

    @property
    def client(self) -> AsyncClient:
        if self._client is None:
            raise RuntimeError("RpcGateway used outside its async context")
        return self._client

    async def get_latest_checkpoint(self) -> Checkpoint:
        try:
            resp = await self.client.get_latest_blockhash()
        except (SolanaRpcException, httpx.HTTPError, RPCException) as exc:
            raise TransientSubmissionError(f"getLatestBlockhash failed: {exc}") from exc
        checkpoint = Checkpoint(resp.value.blockhash, resp.value.last_valid_block_height)
        logger.debug(f"Got blockhash {str(checkpoint.blockhash)[:16]}... valid to height {checkpoint.last_valid_block_height}")
        return checkpoint

    async def submit(self, transaction: Transaction) -> Signature:
        opts = TxOpts(
            skip_preflight=self.config.skip_preflight,
            preflight_commitment=Commitment(self.config.commitment),
        )
        try:
            resp = await self.client.send_raw_transaction(bytes(transaction), opts=opts)
        except RPCException as exc:
            rejection = rejection_from_rpc_error(exc)
            logger.debug(f"sendTransaction error mapped to {type(rejection).__name__}: {rejection}")
            raise rejection from exc
        except (SolanaRpcException, httpx.HTTPError) as exc:
            raise TransientSubmissionError(f"sendTransaction failed: {exc}") from exc

        signature = resp.value
        logger.info(f"Transaction sent via {self.config.rpc_url}: {str(signature)[:16]}...")
        return signature

    def _interpret(self, status) -> Optional[Confirmation]:
        """Outcome for a TransactionStatus, or None while it is still pending."""
        if status.err is not None:
            return Confirmation(ConfirmationStatus.FAILED, str(status.err), status.slot)
        if commitment_reached(status.confirmation_status, self.config.commitment):
            return Confirmation(ConfirmationStatus.CONFIRMED, slot=status.slot)
        return None

    async def _lookup(self, signature: Signature, history: bool = False):
        resp = await self.client.get_signature_statuses([signature], search_transaction_history=history)
        return resp.value[0] if resp.value else None

    async def get_status(self, signature: Signature) -> Optional[Confirmation]:
        """Current outcome of ``signature``; None if unknown to the ledger or still pending."""
        status = await self._lookup(signature, history=True)
        if status is None:
            return None
        return self._interpret(status)

    async def _block_height(self) -> int:
        return (await self.client.get_block_height()).value

    async def await_confirmation(self, signature: Signature, checkpoint: Checkpoint, timeout: float) -> Confirmation:
        """Poll until confirmed, failed, expired, or ``timeout`` seconds pass (CANCELLED)."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        poll_count = 0

        while loop.time() < deadline:
            try:
                status = await self._lookup(signature)
                if status is None and await self._block_height() > checkpoint.last_valid_block_height:
                    # the blockhash can no longer land; one last look through history
                    status = await self._lookup(signature, history=True)
                    if status is None:
                        return Confirmation(
                            ConfirmationStatus.EXPIRED,
                            f"blockhash expired at height {checkpoint.last_valid_block_height}",
                        )
                if status is not None:
                    outcome = self._interpret(status)
                    if outcome is not None:
                        if outcome.status is ConfirmationStatus.FAILED:
                            logger.warning(f"Transaction {str(signature)[:16]}... failed: {outcome.error}")
                        else:
                            logger.info(f"Transaction {str(signature)[:16]}... {_status_name(status.confirmation_status)}")
                        return outcome
            except (SolanaRpcException, httpx.HTTPError, RPCException) as exc:
                logger.debug(f"Status check failed: {exc}")

            poll_count += 1
            wait_time = min(self.config.poll_interval * (1.2 ** min(poll_count, 10)), 2.0)
            await asyncio.sleep(max(0.0, min(wait_time, deadline - loop.time())))

        logger.warning(f"Transaction {str(signature)[:16]}... confirmation timeout after {timeout}s")
        return Confirmation(ConfirmationStatus.CANCELLED, "confirmation_timeout")
