"""
Client-side wire protocol for the interest vault program.

Layers, leaves first:
    opcodes    - instruction tags
    codec      - byte-exact instruction payloads
    pda        - program-derived addresses (explicit bump search)
    builder    - instructions with the program's account lists
    assembler  - message assembly and signature collection
    gateway    - Solana RPC boundary
    submitter  - retries, blockhash refresh and confirmation

Codec, derivation and builder are pure functions. Only submission touches
the network, through a VaultConfig passed in explicitly.
"""

from interest_vault.builder import (
    ACCOUNT_LAYOUTS,
    VaultAccounts,
    account_metas,
    build_claim_instruction,
    build_deposit_instruction,
    build_donate_instruction,
    build_init_instruction,
    build_instruction,
    build_post_root_instruction,
    build_withdraw_instruction,
)
from interest_vault.codec import (
    ClaimArgs,
    DepositArgs,
    DonateArgs,
    InitArgs,
    PostRootArgs,
    WithdrawArgs,
    decode_instruction,
    encode,
    encode_instruction,
    instruction_size,
    mask_u8,
)
from interest_vault.config import VaultConfig
from interest_vault.errors import (
    CheckpointExpired,
    ConfigurationError,
    ConfirmationUnknown,
    ConstructionError,
    DecodingError,
    DerivationError,
    EncodingError,
    RetriesExhausted,
    SubmissionError,
    SubmissionRejected,
    TransientSubmissionError,
    VaultProtocolError,
)
from interest_vault.opcodes import Opcode
from interest_vault.pda import (
    DerivedAddress,
    VaultIdentity,
    build_pda_map,
    create_program_address,
    derive_address,
    derive_associated_token_address,
    derive_boost_distributor,
    derive_claims_bitmap,
    derive_vault_address,
    derive_vault_authority,
)
from interest_vault.assembler import Checkpoint, assemble_transaction
from interest_vault.gateway import Confirmation, ConfirmationStatus, RpcGateway
from interest_vault.submitter import SubmissionResult, SubmissionState, VaultSubmitter

__all__ = [
    "Opcode",
    "InitArgs", "DepositArgs", "WithdrawArgs", "DonateArgs", "PostRootArgs", "ClaimArgs",
    "encode", "encode_instruction", "decode_instruction", "instruction_size", "mask_u8",
    "DerivedAddress", "VaultIdentity", "build_pda_map", "create_program_address", "derive_address",
    "derive_associated_token_address", "derive_boost_distributor", "derive_claims_bitmap",
    "derive_vault_address", "derive_vault_authority",
    "ACCOUNT_LAYOUTS", "VaultAccounts", "account_metas", "build_instruction",
    "build_init_instruction", "build_deposit_instruction", "build_withdraw_instruction",
    "build_donate_instruction", "build_post_root_instruction", "build_claim_instruction",
    "Checkpoint", "assemble_transaction",
    "Confirmation", "ConfirmationStatus", "RpcGateway",
    "SubmissionResult", "SubmissionState", "VaultSubmitter",
    "VaultConfig",
    "VaultProtocolError", "EncodingError", "DecodingError", "DerivationError", "ConstructionError",
    "ConfigurationError", "SubmissionError", "SubmissionRejected", "TransientSubmissionError",
    "CheckpointExpired", "RetriesExhausted", "ConfirmationUnknown",
]
