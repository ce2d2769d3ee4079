"""
Program-derived address (PDA) derivation for the interest vault.

The bump search is done here rather than through Pubkey.find_program_address
so that every step is explicit:

    sha256(seed_0 || ... || seed_n || bump || program_id || "ProgramDerivedAddress")

Bumps are tried from 255 downwards and the first digest that is not a valid
ed25519 point is the canonical address. The on-chain program recomputes the
same function, so seed order and encoding must never change.

Seed tables (vault program):
    vault              "vault", usdc_mint, admin
    vault authority    "vault_auth", vault
    boost distributor  "boost", vault, LE8(epoch)
    claims bitmap      "claims", vault, LE8(epoch)
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Dict, Iterable, List, NamedTuple, Optional, Sequence, Union

from solders.pubkey import Pubkey

from interest_vault.errors import DerivationError

PDA_MARKER = b"ProgramDerivedAddress"
MAX_SEEDS = 16
MAX_SEED_LEN = 32
MAX_BUMP = 255

SEED_VAULT = b"vault"
SEED_AUTH = b"vault_auth"
SEED_BOOST = b"boost"
SEED_CLAIMS = b"claims"

TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")

AddressLike = Union[Pubkey, str]
Seed = Union[bytes, bytearray, Pubkey]


class DerivedAddress(NamedTuple):
    address: Pubkey
    bump: int


def as_pubkey(value: AddressLike) -> Pubkey:
    """Accept a Pubkey or a base58 string."""
    if isinstance(value, Pubkey):
        return value
    if isinstance(value, str):
        try:
            return Pubkey.from_string(value)
        except Exception as exc:
            raise DerivationError(f"invalid address {value!r}: {exc}") from exc
    raise DerivationError(f"expected Pubkey or base58 string, got {type(value).__name__}")


def _seed_bytes(seed: Seed) -> bytes:
    if isinstance(seed, Pubkey):
        return bytes(seed)
    if isinstance(seed, (bytes, bytearray)):
        return bytes(seed)
    raise DerivationError(f"seed must be bytes or Pubkey, got {type(seed).__name__}")


def _check_seeds(seeds: List[bytes], limit: int) -> None:
    if len(seeds) > limit:
        raise DerivationError(
            f"{len(seeds)} seeds given, at most {limit} allowed",
            {"seeds": len(seeds), "limit": limit},
        )
    for i, seed in enumerate(seeds):
        if len(seed) > MAX_SEED_LEN:
            raise DerivationError(
                f"seed {i} is {len(seed)} bytes, max {MAX_SEED_LEN}",
                {"index": i, "size": len(seed)},
            )


def _candidate(seeds: List[bytes], program_id: Pubkey) -> Optional[Pubkey]:
    hasher = hashlib.sha256()
    for seed in seeds:
        hasher.update(seed)
    hasher.update(bytes(program_id))
    hasher.update(PDA_MARKER)
    address = Pubkey.from_bytes(hasher.digest())
    if address.is_on_curve():
        return None
    return address


def create_program_address(seeds: Sequence[Seed], program_id: AddressLike) -> Pubkey:
    """Hash seeds (bump included by the caller) into an off-curve address."""
    raw = [_seed_bytes(s) for s in seeds]
    _check_seeds(raw, MAX_SEEDS)
    address = _candidate(raw, as_pubkey(program_id))
    if address is None:
        raise DerivationError("seeds hash to a point on the ed25519 curve", {"reason": "on_curve"})
    return address


def derive_address(program_id: AddressLike, seeds: Sequence[Seed]) -> DerivedAddress:
    """Find the canonical (highest bump) program-derived address for seeds."""
    program = as_pubkey(program_id)
    raw = [_seed_bytes(s) for s in seeds]
    # one slot is reserved for the bump
    _check_seeds(raw, MAX_SEEDS - 1)

    for bump in range(MAX_BUMP, -1, -1):
        address = _candidate(raw + [bytes([bump])], program)
        if address is not None:
            return DerivedAddress(address, bump)

    raise DerivationError(
        "no bump in 0..255 yields an off-curve address",
        {"program_id": str(program), "seeds": [s.hex() for s in raw]},
    )


def epoch_seed(epoch: int) -> bytes:
    """8-byte little-endian epoch counter."""
    if isinstance(epoch, bool) or not isinstance(epoch, int) or not 0 <= epoch < (1 << 64):
        raise DerivationError(f"epoch {epoch!r} does not fit in u64", {"epoch": epoch})
    return epoch.to_bytes(8, "little")


def derive_vault_address(program_id: AddressLike, usdc_mint: AddressLike, admin: AddressLike) -> DerivedAddress:
    return derive_address(program_id, [SEED_VAULT, as_pubkey(usdc_mint), as_pubkey(admin)])


def derive_vault_authority(program_id: AddressLike, vault: AddressLike) -> DerivedAddress:
    return derive_address(program_id, [SEED_AUTH, as_pubkey(vault)])


def derive_boost_distributor(program_id: AddressLike, vault: AddressLike, epoch: int) -> DerivedAddress:
    return derive_address(program_id, [SEED_BOOST, as_pubkey(vault), epoch_seed(epoch)])


def derive_claims_bitmap(program_id: AddressLike, vault: AddressLike, epoch: int) -> DerivedAddress:
    return derive_address(program_id, [SEED_CLAIMS, as_pubkey(vault), epoch_seed(epoch)])


def derive_associated_token_address(
    owner: AddressLike,
    mint: AddressLike,
    token_program: AddressLike = TOKEN_PROGRAM_ID,
) -> Pubkey:
    """Associated token account of ``owner`` for ``mint``."""
    seeds = [as_pubkey(owner), as_pubkey(token_program), as_pubkey(mint)]
    return derive_address(ASSOCIATED_TOKEN_PROGRAM_ID, seeds).address


@dataclass(frozen=True)
class VaultIdentity:
    """(program, admin, usdc mint) triple that seeds the vault address."""
    program_id: Pubkey
    admin: Pubkey
    usdc_mint: Pubkey

    @classmethod
    def from_strings(cls, program_id: AddressLike, admin: AddressLike, usdc_mint: AddressLike) -> "VaultIdentity":
        return cls(as_pubkey(program_id), as_pubkey(admin), as_pubkey(usdc_mint))

    def vault(self) -> DerivedAddress:
        return derive_vault_address(self.program_id, self.usdc_mint, self.admin)

    def authority(self) -> DerivedAddress:
        return derive_vault_authority(self.program_id, self.vault().address)

    def boost_distributor(self, epoch: int) -> DerivedAddress:
        return derive_boost_distributor(self.program_id, self.vault().address, epoch)

    def claims_bitmap(self, epoch: int) -> DerivedAddress:
        return derive_claims_bitmap(self.program_id, self.vault().address, epoch)

    def vault_token_account(self) -> Pubkey:
        """USDC associated token account owned by the vault PDA."""
        return derive_associated_token_address(self.vault().address, self.usdc_mint)

    def addresses(self, epochs: Iterable[int] = ()) -> Dict[str, object]:
        return build_pda_map(self, epochs)


def build_pda_map(identity: VaultIdentity, epochs: Iterable[int] = ()) -> Dict[str, object]:
    """String map of every derived vault account, for logs and diagnostics."""
    vault = identity.vault()
    result: Dict[str, object] = {
        "program_id": str(identity.program_id),
        "vault": str(vault.address),
        "vault_bump": vault.bump,
        "vault_authority": str(identity.authority().address),
        "epochs": {},
    }
    for epoch in epochs:
        result["epochs"][epoch] = {
            "boost_distributor": str(identity.boost_distributor(epoch).address),
            "claims_bitmap": str(identity.claims_bitmap(epoch).address),
        }
    return result
