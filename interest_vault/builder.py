"""
Instruction builder for the interest vault program.

Combines an encoded payload with the ordered account list the program
expects for that opcode. The vault PDA, the per-epoch boost distributor and
claims bitmap, the admin and the USDC mint come from the VaultIdentity.
Every other account must be supplied, either once in VaultAccounts or per
call; a missing account is a ConstructionError, never a placeholder.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from interest_vault.codec import (
    ClaimArgs,
    DepositArgs,
    DonateArgs,
    InitArgs,
    InstructionArgs,
    PostRootArgs,
    WithdrawArgs,
    encode_instruction,
)
from interest_vault.errors import ConstructionError, DerivationError
from interest_vault.opcodes import Opcode
from interest_vault.pda import TOKEN_PROGRAM_ID, AddressLike, VaultIdentity, as_pubkey

logger = logging.getLogger(__name__)

DEFAULT_USDC_DECIMALS = 6

# (name, is_signer, is_writable), in the order the program reads them
ACCOUNT_LAYOUTS: Dict[Opcode, Tuple[Tuple[str, bool, bool], ...]] = {
    Opcode.INIT: (
        ("vault_state", True, True),
        ("admin", True, False),
        ("operator", False, False),
        ("usdc_mint", False, False),
        ("share_mint", False, False),
        ("vault_pda", False, False),
    ),
    Opcode.DEPOSIT: (
        ("vault_state", False, True),
        ("vault_pda", False, False),
        ("user", True, False),
        ("user_usdc_ata", False, True),
        ("vault_usdc_ata", False, True),
        ("share_mint", False, True),
        ("user_share_ata", False, True),
        ("token_program", False, False),
        ("usdc_mint", False, False),
    ),
    Opcode.WITHDRAW: (
        ("vault_state", False, True),
        ("vault_pda", False, False),
        ("user", True, False),
        ("user_usdc_ata", False, True),
        ("vault_usdc_ata", False, True),
        ("share_mint", False, True),
        ("user_share_ata", False, True),
        ("token_program", False, False),
        ("usdc_mint", False, False),
    ),
    Opcode.DONATE: (
        ("vault_state", False, True),
        ("vault_pda", False, False),
        ("operator", True, False),
        ("operator_usdc_ata", False, True),
        ("vault_usdc_ata", False, True),
        ("boost_usdc_ata", False, True),
        ("token_program", False, False),
        ("usdc_mint", False, False),
        ("boost_distributor", False, True),
    ),
    Opcode.POST_ROOT: (
        ("vault_state", False, True),
        ("operator", True, False),
        ("boost_distributor", False, True),
    ),
    Opcode.CLAIM: (
        ("vault_state", False, True),
        ("vault_pda", False, False),
        ("claimer", True, False),
        ("boost_distributor", False, True),
        ("claims_bitmap", False, True),
        ("boost_usdc_ata", False, True),
        ("claimer_usdc_ata", False, True),
        ("token_program", False, False),
        ("usdc_mint", False, False),
    ),
}


@dataclass(frozen=True)
class VaultAccounts:
    """Vault accounts that are not derived from the identity.

    ``token_program`` defaults to the SPL Token program, a fixed program id.
    """
    vault_state: Optional[AddressLike] = None
    operator: Optional[AddressLike] = None
    share_mint: Optional[AddressLike] = None
    vault_usdc_ata: Optional[AddressLike] = None
    boost_usdc_ata: Optional[AddressLike] = None
    token_program: AddressLike = TOKEN_PROGRAM_ID

    def with_vault_token_account(self, identity: VaultIdentity) -> "VaultAccounts":
        """Fill vault_usdc_ata with the vault PDA's associated token account."""
        return replace(self, vault_usdc_ata=identity.vault_token_account())


def _to_pubkey(opcode: Opcode, name: str, value: AddressLike) -> Pubkey:
    try:
        return as_pubkey(value)
    except DerivationError as exc:
        raise ConstructionError(f"account {name}: {exc.message}", {"account": name}, opcode=opcode) from exc


def account_metas(opcode: Opcode, resolved: Mapping[str, Optional[AddressLike]]) -> List[AccountMeta]:
    """Ordered AccountMeta list for an opcode; every slot must be filled."""
    layout = ACCOUNT_LAYOUTS[Opcode(opcode)]
    missing = [name for name, _, _ in layout if resolved.get(name) is None]
    if missing:
        raise ConstructionError(
            f"missing required accounts: {', '.join(missing)}",
            {"missing": missing},
            opcode=opcode,
        )
    return [
        AccountMeta(_to_pubkey(opcode, name, resolved[name]), is_signer, is_writable)
        for name, is_signer, is_writable in layout
    ]


def _resolve(
    identity: VaultIdentity,
    accounts: VaultAccounts,
    opcode: Opcode,
    epoch: Optional[int],
    per_call: Mapping[str, Optional[AddressLike]],
) -> Dict[str, Optional[AddressLike]]:
    names = {name for name, _, _ in ACCOUNT_LAYOUTS[opcode]}
    unexpected = sorted(set(per_call) - names)
    if unexpected:
        raise ConstructionError(
            f"accounts not used by this instruction: {', '.join(unexpected)}",
            {"unexpected": unexpected},
            opcode=opcode,
        )

    resolved: Dict[str, Optional[AddressLike]] = {
        "vault_state": accounts.vault_state,
        "operator": accounts.operator,
        "share_mint": accounts.share_mint,
        "vault_usdc_ata": accounts.vault_usdc_ata,
        "boost_usdc_ata": accounts.boost_usdc_ata,
        "token_program": accounts.token_program,
        "admin": identity.admin,
        "usdc_mint": identity.usdc_mint,
    }
    try:
        if "vault_pda" in names:
            resolved["vault_pda"] = identity.vault().address
        if "boost_distributor" in names:
            resolved["boost_distributor"] = identity.boost_distributor(epoch).address
        if "claims_bitmap" in names:
            resolved["claims_bitmap"] = identity.claims_bitmap(epoch).address
    except DerivationError as exc:
        exc.opcode = opcode
        raise

    for name, value in per_call.items():
        if value is not None:
            resolved[name] = value
    return resolved


def build_instruction(
    identity: VaultIdentity,
    accounts: VaultAccounts,
    args: InstructionArgs,
    **per_call: Optional[AddressLike],
) -> Instruction:
    """Build any vault instruction from its typed arguments.

    ``per_call`` supplies caller-specific accounts (user, claimer, token
    accounts) and may override entries from ``accounts``.
    """
    data = encode_instruction(args)
    opcode = args.OPCODE
    resolved = _resolve(identity, accounts, opcode, getattr(args, "epoch", None), per_call)
    metas = account_metas(opcode, resolved)
    logger.debug(f"Built {opcode.name} instruction: {len(data)} bytes, {len(metas)} accounts")
    return Instruction(identity.program_id, data, metas)


def build_init_instruction(
    identity: VaultIdentity,
    accounts: VaultAccounts,
    decimals: int = DEFAULT_USDC_DECIMALS,
) -> Instruction:
    return build_instruction(identity, accounts, InitArgs(decimals=decimals))


def build_deposit_instruction(
    identity: VaultIdentity,
    accounts: VaultAccounts,
    *,
    user: AddressLike,
    user_usdc_ata: AddressLike,
    user_share_ata: AddressLike,
    amount: int,
    usdc_decimals: int = DEFAULT_USDC_DECIMALS,
) -> Instruction:
    return build_instruction(
        identity,
        accounts,
        DepositArgs(amount=amount, usdc_decimals=usdc_decimals),
        user=user,
        user_usdc_ata=user_usdc_ata,
        user_share_ata=user_share_ata,
    )


def build_withdraw_instruction(
    identity: VaultIdentity,
    accounts: VaultAccounts,
    *,
    user: AddressLike,
    user_usdc_ata: AddressLike,
    user_share_ata: AddressLike,
    shares: int,
    usdc_decimals: int = DEFAULT_USDC_DECIMALS,
) -> Instruction:
    return build_instruction(
        identity,
        accounts,
        WithdrawArgs(shares=shares, usdc_decimals=usdc_decimals),
        user=user,
        user_usdc_ata=user_usdc_ata,
        user_share_ata=user_share_ata,
    )


def build_donate_instruction(
    identity: VaultIdentity,
    accounts: VaultAccounts,
    *,
    operator_usdc_ata: AddressLike,
    amount: int,
    epoch: int,
    boost_bps: int,
    usdc_decimals: int = DEFAULT_USDC_DECIMALS,
    donor: Optional[AddressLike] = None,
) -> Instruction:
    """Donate USDC; ``donor`` signs in place of the configured operator when given."""
    return build_instruction(
        identity,
        accounts,
        DonateArgs(amount=amount, epoch=epoch, boost_bps=boost_bps, usdc_decimals=usdc_decimals),
        operator=donor,
        operator_usdc_ata=operator_usdc_ata,
    )


def build_post_root_instruction(
    identity: VaultIdentity,
    accounts: VaultAccounts,
    *,
    epoch: int,
    total_weight: int,
    root: bytes,
) -> Instruction:
    return build_instruction(
        identity,
        accounts,
        PostRootArgs(epoch=epoch, total_weight=total_weight, root=root),
    )


def build_claim_instruction(
    identity: VaultIdentity,
    accounts: VaultAccounts,
    *,
    claimer: AddressLike,
    claimer_usdc_ata: AddressLike,
    epoch: int,
    index: int,
    weight: int,
    proof: Sequence[bytes] = (),
) -> Instruction:
    return build_instruction(
        identity,
        accounts,
        ClaimArgs(epoch=epoch, index=index, weight=weight, proof=tuple(proof)),
        claimer=claimer,
        claimer_usdc_ata=claimer_usdc_ata,
    )
