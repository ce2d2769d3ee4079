"""
Read-only decoders for the vault program's account data.

Layouts mirror the program's #[repr(C)] structs (little-endian, 8-byte
alignment on the SBF target). Accounts may be allocated larger than the
struct; only the prefix is read.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from borsh_construct import CStruct, U8, U64, U128
from construct import Bytes, ConstructError, Padding
from solders.pubkey import Pubkey

from interest_vault.errors import DecodingError

CLAIM_BITMAP_BITS = 256

_PUBKEY = Bytes(32)

VAULT_STATE_LAYOUT = CStruct(
    "admin" / _PUBKEY,
    "operator" / _PUBKEY,
    "usdc_mint" / _PUBKEY,
    "share_mint" / _PUBKEY,
    "vault_pda" / _PUBKEY,
    "vault_bump" / U8,
    "reserved0" / Padding(7),
    "total_shares" / U128,
    "pps" / U128,
    "buffered_base" / U64,
    "last_settle_slot" / U64,
)

BOOST_DISTRIBUTOR_LAYOUT = CStruct(
    "epoch" / U64,
    "root" / Bytes(32),
    "total_weight" / U128,
    "boost_total" / U64,
    "reserved" / Padding(8),
)

VAULT_STATE_SIZE = VAULT_STATE_LAYOUT.sizeof()
BOOST_DISTRIBUTOR_SIZE = BOOST_DISTRIBUTOR_LAYOUT.sizeof()
CLAIM_BITMAP_SIZE = CLAIM_BITMAP_BITS // 8


@dataclass(frozen=True)
class VaultState:
    admin: Pubkey
    operator: Pubkey
    usdc_mint: Pubkey
    share_mint: Pubkey
    vault_pda: Pubkey
    vault_bump: int
    total_shares: int
    pps: int
    buffered_base: int
    last_settle_slot: int


@dataclass(frozen=True)
class BoostDistributor:
    epoch: int
    root: bytes
    total_weight: int
    boost_total: int


@dataclass(frozen=True)
class ClaimBitmap:
    words: bytes

    def is_claimed(self, index: int) -> bool:
        if not 0 <= index < CLAIM_BITMAP_BITS:
            raise DecodingError(
                f"claim index {index} outside bitmap of {CLAIM_BITMAP_BITS} bits",
                {"index": index},
            )
        return bool(self.words[index // 8] & (1 << (index & 7)))

    def claimed_indexes(self):
        return [i for i in range(CLAIM_BITMAP_BITS) if self.words[i // 8] & (1 << (i & 7))]


def _parse(layout, data: bytes, size: int, name: str):
    data = bytes(data)
    if len(data) < size:
        raise DecodingError(
            f"{name} account data is {len(data)} bytes, need {size}",
            {"account": name, "expected_min": size, "actual": len(data)},
        )
    try:
        return layout.parse(data[:size])
    except ConstructError as exc:
        raise DecodingError(f"{name}: {exc}", {"account": name}) from exc


def decode_vault_state(data: Union[bytes, bytearray]) -> VaultState:
    parsed = _parse(VAULT_STATE_LAYOUT, data, VAULT_STATE_SIZE, "vault_state")
    return VaultState(
        admin=Pubkey.from_bytes(parsed.admin),
        operator=Pubkey.from_bytes(parsed.operator),
        usdc_mint=Pubkey.from_bytes(parsed.usdc_mint),
        share_mint=Pubkey.from_bytes(parsed.share_mint),
        vault_pda=Pubkey.from_bytes(parsed.vault_pda),
        vault_bump=parsed.vault_bump,
        total_shares=parsed.total_shares,
        pps=parsed.pps,
        buffered_base=parsed.buffered_base,
        last_settle_slot=parsed.last_settle_slot,
    )


def decode_boost_distributor(data: Union[bytes, bytearray]) -> BoostDistributor:
    parsed = _parse(BOOST_DISTRIBUTOR_LAYOUT, data, BOOST_DISTRIBUTOR_SIZE, "boost_distributor")
    return BoostDistributor(
        epoch=parsed.epoch,
        root=bytes(parsed.root),
        total_weight=parsed.total_weight,
        boost_total=parsed.boost_total,
    )


def decode_claims_bitmap(data: Union[bytes, bytearray]) -> ClaimBitmap:
    data = bytes(data)
    if len(data) < CLAIM_BITMAP_SIZE:
        raise DecodingError(
            f"claims_bitmap account data is {len(data)} bytes, need {CLAIM_BITMAP_SIZE}",
            {"account": "claims_bitmap", "expected_min": CLAIM_BITMAP_SIZE, "actual": len(data)},
        )
    return ClaimBitmap(data[:CLAIM_BITMAP_SIZE])
