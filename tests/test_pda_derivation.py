"""
test_pda_derivation.py - Tests for deterministic vault PDA derivation.

Tests:
    1. derive_address() agrees with Pubkey.find_program_address (address and bump)
    2. Vault, authority, boost and claims PDAs are deterministic
    3. Seed order and epoch change the address
    4. Seed count and length limits raise DerivationError
    5. Derivation in a separate process yields the same address
    6. build_pda_map() returns the expected structure
"""

import json
import os
import subprocess
import sys

import pytest
from solders.pubkey import Pubkey

from interest_vault.errors import DerivationError
from interest_vault.pda import (
    ASSOCIATED_TOKEN_PROGRAM_ID,
    MAX_SEED_LEN,
    SEED_BOOST,
    SEED_CLAIMS,
    SEED_VAULT,
    TOKEN_PROGRAM_ID,
    VaultIdentity,
    _candidate,
    build_pda_map,
    create_program_address,
    derive_address,
    derive_associated_token_address,
    derive_boost_distributor,
    derive_claims_bitmap,
    derive_vault_address,
    derive_vault_authority,
    epoch_seed,
)

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))

# Test wallet (known Solana devnet address, no funds)
TEST_WALLET = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"

# Same identity as the conftest fixtures
PROGRAM_ID = Pubkey.from_bytes(bytes([7]) * 32)
USDC_MINT = Pubkey.from_string("EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v")
ADMIN = Pubkey.from_string(TEST_WALLET)


class TestBumpSearch:
    def test_matches_find_program_address(self):
        seeds = [SEED_VAULT, bytes(USDC_MINT), bytes(ADMIN)]
        expected, expected_bump = Pubkey.find_program_address(seeds, PROGRAM_ID)
        derived = derive_address(PROGRAM_ID, seeds)
        assert derived.address == expected
        assert derived.bump == expected_bump

    @pytest.mark.parametrize("epoch", [0, 1, 42, 2**64 - 1])
    def test_epoch_seeds_match_find_program_address(self, epoch):
        vault = derive_vault_address(PROGRAM_ID, USDC_MINT, ADMIN).address
        seeds = [SEED_BOOST, bytes(vault), epoch.to_bytes(8, "little")]
        expected, bump = Pubkey.find_program_address(seeds, PROGRAM_ID)
        assert derive_boost_distributor(PROGRAM_ID, vault, epoch) == (expected, bump)

    def test_result_is_off_curve(self):
        derived = derive_vault_address(PROGRAM_ID, USDC_MINT, ADMIN)
        assert not derived.address.is_on_curve()

    def test_create_program_address_with_canonical_bump(self):
        seeds = [SEED_VAULT, bytes(USDC_MINT), bytes(ADMIN)]
        derived = derive_address(PROGRAM_ID, seeds)
        assert create_program_address(seeds + [bytes([derived.bump])], PROGRAM_ID) == derived.address
        assert Pubkey.create_program_address(seeds + [bytes([derived.bump])], PROGRAM_ID) == derived.address

    def test_create_program_address_rejects_on_curve(self):
        seeds = [SEED_CLAIMS, b"on-curve-search"]
        for bump in range(255, -1, -1):
            if _candidate(seeds + [bytes([bump])], PROGRAM_ID) is None:
                break
        else:
            pytest.skip("every bump was off-curve for these seeds")

        with pytest.raises(DerivationError) as exc_info:
            create_program_address(seeds + [bytes([bump])], PROGRAM_ID)
        assert exc_info.value.details["reason"] == "on_curve"

    def test_accepts_base58_program_id(self):
        seeds = [SEED_VAULT]
        assert derive_address(str(PROGRAM_ID), seeds) == derive_address(PROGRAM_ID, seeds)


class TestVaultPdas:
    def test_vault_is_deterministic(self):
        pda1 = derive_vault_address(PROGRAM_ID, USDC_MINT, TEST_WALLET)
        pda2 = derive_vault_address(str(PROGRAM_ID), str(USDC_MINT), TEST_WALLET)
        assert pda1 == pda2

    def test_vault_is_not_program_id(self):
        assert derive_vault_address(PROGRAM_ID, USDC_MINT, ADMIN).address != PROGRAM_ID

    def test_seed_order_matters(self):
        forward = derive_address(PROGRAM_ID, [SEED_VAULT, USDC_MINT, ADMIN])
        swapped = derive_address(PROGRAM_ID, [SEED_VAULT, ADMIN, USDC_MINT])
        assert forward.address != swapped.address

    def test_admin_changes_vault(self):
        other_admin = Pubkey.from_bytes(bytes([9]) * 32)
        assert (
            derive_vault_address(PROGRAM_ID, USDC_MINT, ADMIN).address
            != derive_vault_address(PROGRAM_ID, USDC_MINT, other_admin).address
        )

    def test_authority_differs_from_vault(self):
        vault = derive_vault_address(PROGRAM_ID, USDC_MINT, ADMIN).address
        assert derive_vault_authority(PROGRAM_ID, vault).address != vault

    def test_epochs_produce_distinct_addresses(self):
        vault = derive_vault_address(PROGRAM_ID, USDC_MINT, ADMIN).address
        boosts = {derive_boost_distributor(PROGRAM_ID, vault, e).address for e in range(5)}
        assert len(boosts) == 5

    def test_boost_and_claims_differ_for_same_epoch(self):
        vault = derive_vault_address(PROGRAM_ID, USDC_MINT, ADMIN).address
        assert (
            derive_boost_distributor(PROGRAM_ID, vault, 42).address
            != derive_claims_bitmap(PROGRAM_ID, vault, 42).address
        )

    def test_identity_helpers_match_functions(self, identity):
        vault = derive_vault_address(PROGRAM_ID, USDC_MINT, ADMIN)
        assert identity.vault() == vault
        assert identity.authority() == derive_vault_authority(PROGRAM_ID, vault.address)
        assert identity.boost_distributor(7) == derive_boost_distributor(PROGRAM_ID, vault.address, 7)
        assert identity.claims_bitmap(7) == derive_claims_bitmap(PROGRAM_ID, vault.address, 7)

    def test_identity_from_strings(self, identity):
        parsed = VaultIdentity.from_strings(str(PROGRAM_ID), TEST_WALLET, str(USDC_MINT))
        assert parsed == identity


class TestEpochSeed:
    def test_little_endian(self):
        assert epoch_seed(42) == bytes([42, 0, 0, 0, 0, 0, 0, 0])
        assert epoch_seed(256) == bytes([0, 1, 0, 0, 0, 0, 0, 0])

    @pytest.mark.parametrize("epoch", [-1, 2**64, "1", True])
    def test_rejects_out_of_range(self, epoch):
        with pytest.raises(DerivationError):
            epoch_seed(epoch)


class TestSeedLimits:
    def test_seed_too_long(self):
        with pytest.raises(DerivationError) as exc_info:
            derive_address(PROGRAM_ID, [b"x" * (MAX_SEED_LEN + 1)])
        assert exc_info.value.details["size"] == 33

    def test_seed_at_max_length(self):
        derived = derive_address(PROGRAM_ID, [b"x" * MAX_SEED_LEN])
        expected = Pubkey.find_program_address([b"x" * MAX_SEED_LEN], PROGRAM_ID)
        assert derived == expected

    def test_bump_slot_is_reserved(self):
        derive_address(PROGRAM_ID, [b"s"] * 15)
        with pytest.raises(DerivationError):
            derive_address(PROGRAM_ID, [b"s"] * 16)

    def test_invalid_seed_type(self):
        with pytest.raises(DerivationError):
            derive_address(PROGRAM_ID, ["vault"])

    def test_invalid_program_id(self):
        with pytest.raises(DerivationError):
            derive_address("not-a-key", [SEED_VAULT])


class TestAssociatedTokenAddress:
    def test_matches_find_program_address(self):
        owner = Pubkey.from_string(TEST_WALLET)
        expected, _ = Pubkey.find_program_address(
            [bytes(owner), bytes(TOKEN_PROGRAM_ID), bytes(USDC_MINT)],
            ASSOCIATED_TOKEN_PROGRAM_ID,
        )
        assert derive_associated_token_address(owner, USDC_MINT) == expected

    def test_matches_spl_helper(self):
        from spl.token.instructions import get_associated_token_address

        owner = Pubkey.from_string(TEST_WALLET)
        assert derive_associated_token_address(owner, USDC_MINT) == get_associated_token_address(owner, USDC_MINT)

    def test_vault_token_account(self, identity):
        vault = identity.vault().address
        assert identity.vault_token_account() == derive_associated_token_address(vault, USDC_MINT)


class TestCrossProcessDeterminism:
    def test_fresh_interpreter_derives_same_addresses(self):
        script = (
            "import json\n"
            "from solders.pubkey import Pubkey\n"
            "from interest_vault.pda import VaultIdentity\n"
            f"identity = VaultIdentity.from_strings({str(PROGRAM_ID)!r}, {str(ADMIN)!r}, {str(USDC_MINT)!r})\n"
            "vault = identity.vault()\n"
            "print(json.dumps([str(vault.address), vault.bump, str(identity.claims_bitmap(42).address)]))\n"
        )
        proc = subprocess.run(
            [sys.executable, "-c", script],
            capture_output=True,
            text=True,
            cwd=PROJECT_ROOT,
            timeout=60,
        )
        assert proc.returncode == 0, proc.stderr

        address, bump, claims = json.loads(proc.stdout)
        identity = VaultIdentity(PROGRAM_ID, ADMIN, USDC_MINT)
        assert address == str(identity.vault().address)
        assert bump == identity.vault().bump
        assert claims == str(identity.claims_bitmap(42).address)


class TestPdaMap:
    def test_structure(self, identity):
        pda_map = build_pda_map(identity, epochs=[1, 2])
        assert pda_map["program_id"] == str(PROGRAM_ID)
        assert pda_map["vault"] == str(identity.vault().address)
        assert 0 <= pda_map["vault_bump"] <= 255
        assert set(pda_map["epochs"]) == {1, 2}
        for entry in pda_map["epochs"].values():
            assert set(entry) == {"boost_distributor", "claims_bitmap"}

    def test_all_values_are_valid_pubkeys(self, identity):
        pda_map = build_pda_map(identity, epochs=[5])
        for key in ("program_id", "vault", "vault_authority"):
            assert str(Pubkey.from_string(pda_map[key])) == pda_map[key]

    def test_no_epochs(self, identity):
        assert build_pda_map(identity)["epochs"] == {}

    def test_identity_addresses_matches_map(self, identity):
        assert identity.addresses(epochs=[3]) == build_pda_map(identity, epochs=[3])
        assert identity.addresses()["epochs"] == {}
