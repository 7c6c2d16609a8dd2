# tests/test_taproot.py
"""Tests for taproot tweaking and commitments."""

import pytest

from btcodid.errors import InvalidInputError
from btcodid.inscription.taproot import (
    commit_to_script,
    compact_size,
    generate_reveal_keypair,
    key_path_address,
    tagged_hash,
    tweak_private_key,
    tweak_public_key,
    xonly_public_key,
)

# BIP86 first receiving key (m/86'/0'/0'/0/0)
BIP86_INTERNAL = bytes.fromhex("cc8a4bc64d897bddc5fbc2f670f7a8ba0b386779106cf1223c6fc5d7cd6fc115")
BIP86_OUTPUT = bytes.fromhex("a60869f0dbcf1dc659c9cecbaf8050135ea9e8cdc487053f1dc6880949dc684c")


class TestTweak:
    """Test key tweaking."""

    def test_bip86_vector(self):
        """Test the key-path tweak against BIP86."""
        output_key, _ = tweak_public_key(BIP86_INTERNAL)
        assert output_key == BIP86_OUTPUT
        assert key_path_address(BIP86_INTERNAL, "mainnet") == (
            "bc1p5cyxnuxmeuwuvkwfem96lqzszd02n6xdcjrs20cac6yqjjwudpxqkedrcr"
        )

    def test_private_tweak_matches_public(self):
        """Test the tweaked private key derives the tweaked output key."""
        private, internal = generate_reveal_keypair()
        root = tagged_hash("TapLeaf", b"leaf")
        output_key, _ = tweak_public_key(internal, root)
        assert xonly_public_key(tweak_private_key(private, root)) == output_key

    def test_internal_key_length(self):
        """Test internal keys must be x-only."""
        with pytest.raises(InvalidInputError):
            tweak_public_key(b"\x02" * 33)


class TestCommitment:
    """Test script commitments."""

    def test_control_block(self):
        """Test the control block layout."""
        _, internal = generate_reveal_keypair()
        commitment = commit_to_script(internal, b"\x51", "testnet")
        assert commitment.address.startswith("tb1p")
        assert len(commitment.control_block) == 33
        assert commitment.control_block[0] & 0xFE == 0xC0
        assert commitment.control_block[1:] == internal
        assert commitment.script_pubkey == b"\x51\x20" + commitment.output_key

    def test_different_scripts_different_outputs(self):
        """Test the output key depends on the leaf."""
        _, internal = generate_reveal_keypair()
        assert commit_to_script(internal, b"\x51").output_key != commit_to_script(internal, b"\x52").output_key


class TestCompactSize:
    """Test CompactSize encoding."""

    def test_boundaries(self):
        """Test each length class."""
        assert compact_size(0xFC) == b"\xfc"
        assert compact_size(0xFD) == b"\xfd\xfd\x00"
        assert compact_size(0x10000) == b"\xfe\x00\x00\x01\x00"
