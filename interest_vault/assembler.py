"""
Transaction assembly: instructions + fee payer + recent blockhash + signatures.

Instructions are compiled in the order given. Signers may be solders
Keypairs or any object exposing ``pubkey()`` and ``sign_message(bytes)``,
where ``sign_message`` may be a coroutine (hardware wallets, remote signers).
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Protocol, Sequence

from solders.hash import Hash
from solders.instruction import Instruction
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction

from interest_vault.errors import ConstructionError

logger = logging.getLogger(__name__)


class MessageSigner(Protocol):
    def pubkey(self) -> Pubkey:
        ...

    def sign_message(self, message: bytes) -> Any:
        ...


@dataclass(frozen=True)
class Checkpoint:
    """Recent blockhash and the last block height at which it is accepted."""
    blockhash: Hash
    last_valid_block_height: int


def build_message(instructions: Sequence[Instruction], fee_payer: Pubkey, checkpoint: Checkpoint) -> Message:
    """Compile instructions into a legacy message bound to ``checkpoint``."""
    if not instructions:
        raise ConstructionError("a transaction needs at least one instruction")
    return Message.new_with_blockhash(list(instructions), fee_payer, checkpoint.blockhash)


def required_signers(message: Message) -> List[Pubkey]:
    return list(message.account_keys[: message.header.num_required_signatures])


async def collect_signatures(message: Message, signers: Sequence[MessageSigner]) -> List[Signature]:
    """One signature per required signer, in message order."""
    by_key: Dict[Pubkey, MessageSigner] = {}
    for signer in signers:
        by_key.setdefault(signer.pubkey(), signer)
    required = required_signers(message)

    missing = [str(key) for key in required if key not in by_key]
    if missing:
        raise ConstructionError(
            f"no signer supplied for: {', '.join(missing)}",
            {"missing_signers": missing},
        )

    unused = [str(key) for key in by_key if key not in required]
    if unused:
        logger.debug(f"Ignoring {len(unused)} signer(s) not required by the message")

    payload = bytes(message)
    signatures: List[Signature] = []
    for key in required:
        result = by_key[key].sign_message(payload)
        if inspect.isawaitable(result):
            result = await result
        if not isinstance(result, Signature):
            raise ConstructionError(
                f"signer {key} returned {type(result).__name__}, expected Signature",
                {"signer": str(key)},
            )
        signatures.append(result)
    return signatures


async def assemble_transaction(
    instructions: Sequence[Instruction],
    fee_payer: Pubkey,
    checkpoint: Checkpoint,
    signers: Sequence[MessageSigner],
) -> Transaction:
    """Build, sign and return a ready-to-send transaction."""
    message = build_message(instructions, fee_payer, checkpoint)
    signatures = await collect_signatures(message, signers)
    transaction = Transaction.populate(message, signatures)
    logger.debug(
        f"Assembled transaction: {len(instructions)} instruction(s), "
        f"{len(signatures)} signature(s), blockhash {str(checkpoint.blockhash)[:16]}..."
    )
    return transaction
