"""
Transaction submission with blockhash refresh and bounded retries.

Per attempt the transaction moves through

    UNSIGNED -> SIGNED -> SUBMITTED -> CONFIRMED | FAILED | EXPIRED

EXPIRED and transient send errors rebuild the transaction against a fresh
blockhash, up to ``VaultConfig.max_attempts``. FAILED is terminal and the
ledger's error is raised verbatim. A confirmation wait that times out raises
ConfirmationUnknown: the transaction may still land, so it is never
resubmitted automatically.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncContextManager, Awaitable, Callable, List, Optional, Sequence, TypeVar

from solders.instruction import Instruction
from solders.pubkey import Pubkey
from solders.signature import Signature

from interest_vault.assembler import Checkpoint, MessageSigner, assemble_transaction
from interest_vault.config import VaultConfig
from interest_vault.errors import (
    CheckpointExpired,
    ConfirmationUnknown,
    ConstructionError,
    RetriesExhausted,
    SubmissionRejected,
    TransientSubmissionError,
)
from interest_vault.gateway import (
    Confirmation,
    ConfirmationStatus,
    LedgerGateway,
    RpcGateway,
    describe_rejection,
)
from interest_vault.logging_config import SubmissionContext
from interest_vault.opcodes import Opcode

logger = logging.getLogger(__name__)

T = TypeVar("T")

GatewayFactory = Callable[[VaultConfig], AsyncContextManager[LedgerGateway]]


class SubmissionState(str, Enum):
    UNSIGNED = "unsigned"
    SIGNED = "signed"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    EXPIRED = "expired"


@dataclass
class SubmissionResult:
    signature: str
    attempts: int
    slot: Optional[int] = None
    states: List[SubmissionState] = field(default_factory=list)
    endpoint: Optional[str] = None

    @property
    def status(self) -> Optional[SubmissionState]:
        return self.states[-1] if self.states else None


def _backoff_delay(base: float, attempt: int, max_delay: float = 30.0) -> float:
    """Exponential backoff with jitter to prevent thundering herd."""
    delay = min(max_delay, base * (2 ** attempt))
    jitter = delay * 0.1 * random.random()
    return delay + jitter


def describe_instructions(instructions: Sequence[Instruction], program_id: Optional[Pubkey] = None) -> List[str]:
    """Opcode names for log context; instructions for other programs show as 'external'."""
    names = []
    for ix in instructions:
        data = bytes(ix.data)
        if (program_id is not None and ix.program_id != program_id) or not data:
            names.append("external")
            continue
        try:
            names.append(Opcode(data[0]).name)
        except ValueError:
            names.append("external")
    return names


class VaultSubmitter:
    """Submits vault instructions through a LedgerGateway opened per call."""

    def __init__(self, config: VaultConfig, gateway_factory: GatewayFactory = RpcGateway):
        config.validate()
        self.config = config
        self._gateway_factory = gateway_factory
        self._program_id = Pubkey.from_string(config.program_id) if config.program_id else None

    async def _step(self, awaitable: Awaitable[T], timeout: float, what: str) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout)
        except asyncio.TimeoutError:
            raise TransientSubmissionError(f"{what} timed out after {timeout}s") from None

    async def _confirm(
        self,
        gateway: LedgerGateway,
        signature: Signature,
        checkpoint: Checkpoint,
        timeout: float,
    ) -> Confirmation:
        try:
            # grace period for gateways that overrun their own deadline
            return await asyncio.wait_for(
                gateway.await_confirmation(signature, checkpoint, timeout),
                timeout + self.config.poll_interval,
            )
        except asyncio.TimeoutError:
            return Confirmation(ConfirmationStatus.CANCELLED, "confirmation_timeout")

    async def submit(
        self,
        instructions: Sequence[Instruction],
        fee_payer: Pubkey,
        signers: Sequence[MessageSigner],
        *,
        confirm_timeout: Optional[float] = None,
    ) -> SubmissionResult:
        """Sign, send and confirm ``instructions`` as one transaction, in order."""
        if not instructions:
            raise ConstructionError("a transaction needs at least one instruction")

        opcodes = describe_instructions(instructions, self._program_id)
        with SubmissionContext(opcodes):
            logger.info(f"Submitting {len(instructions)} instruction(s): {', '.join(opcodes)}")
            async with self._gateway_factory(self.config) as gateway:
                return await self._submit_with_retries(
                    gateway,
                    list(instructions),
                    fee_payer,
                    signers,
                    opcodes,
                    confirm_timeout or self.config.confirm_timeout,
                )

    async def _submit_with_retries(
        self,
        gateway: LedgerGateway,
        instructions: List[Instruction],
        fee_payer: Pubkey,
        signers: Sequence[MessageSigner],
        opcodes: List[str],
        confirm_timeout: float,
    ) -> SubmissionResult:
        cfg = self.config
        opcode = self._single_opcode(opcodes)
        context = {"opcodes": opcodes}
        states: List[SubmissionState] = []
        last_error: Optional[Exception] = None

        for attempt in range(1, cfg.max_attempts + 1):
            states.append(SubmissionState.UNSIGNED)
            try:
                checkpoint = await self._step(gateway.get_latest_checkpoint(), cfg.checkpoint_timeout, "checkpoint fetch")
                transaction = await self._step(
                    assemble_transaction(instructions, fee_payer, checkpoint, signers),
                    cfg.signing_timeout,
                    "signing",
                )
                states.append(SubmissionState.SIGNED)
                signature = await self._step(gateway.submit(transaction), cfg.submit_timeout, "submit")
                states.append(SubmissionState.SUBMITTED)
            except TransientSubmissionError as exc:
                last_error = exc
                logger.warning(f"Attempt {attempt}/{cfg.max_attempts} failed transiently: {exc.message}")
                await self._pause(attempt)
                continue
            except (SubmissionRejected, ConstructionError) as exc:
                exc.opcode = exc.opcode or opcode
                exc.details.setdefault("opcodes", opcodes)
                raise

            confirmation = await self._confirm(gateway, signature, checkpoint, confirm_timeout)

            if confirmation.status is ConfirmationStatus.CONFIRMED:
                states.append(SubmissionState.CONFIRMED)
                logger.info(f"Confirmed {str(signature)[:16]}... after {attempt} attempt(s)")
                return SubmissionResult(str(signature), attempt, confirmation.slot, states, cfg.rpc_url)

            if confirmation.status is ConfirmationStatus.FAILED:
                states.append(SubmissionState.FAILED)
                raise SubmissionRejected(
                    confirmation.error or "transaction failed",
                    hint=describe_rejection(confirmation.error),
                    details=dict(context),
                    opcode=opcode,
                    signature=str(signature),
                )

            if confirmation.status is ConfirmationStatus.EXPIRED:
                states.append(SubmissionState.EXPIRED)
                last_error = CheckpointExpired(
                    confirmation.error or "blockhash expired before confirmation",
                    opcode=opcode,
                    signature=str(signature),
                )
                logger.warning(f"Attempt {attempt}/{cfg.max_attempts} expired; rebuilding with a fresh blockhash")
                await self._pause(attempt)
                continue

            raise ConfirmationUnknown(
                f"no outcome within {confirm_timeout}s; query the signature before resubmitting",
                details=dict(context),
                opcode=opcode,
                signature=str(signature),
            )

        raise RetriesExhausted(
            f"gave up after {cfg.max_attempts} attempt(s)",
            attempts=cfg.max_attempts,
            last_error=last_error,
            details=dict(context),
            opcode=opcode,
        )

    async def _pause(self, attempt: int) -> None:
        if attempt < self.config.max_attempts:
            await asyncio.sleep(_backoff_delay(self.config.retry_base_delay, attempt - 1))

    @staticmethod
    def _single_opcode(opcodes: List[str]) -> Optional[Opcode]:
        if len(opcodes) == 1 and opcodes[0] in Opcode.__members__:
            return Opcode[opcodes[0]]
        return None

    async def query_status(self, signature: Any) -> Optional[Confirmation]:
        """Look up a signature, e.g. after ConfirmationUnknown. None if unknown or pending."""
        if isinstance(signature, str):
            signature = Signature.from_string(signature)
        async with self._gateway_factory(self.config) as gateway:
            return await gateway.get_status(signature)
