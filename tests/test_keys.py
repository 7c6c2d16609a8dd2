# tests/test_keys.py
"""Tests for key management."""

import os
import tempfile
from pathlib import Path

import pytest

from btcodid.errors import (
    InvalidInputError,
    InvalidKeyTypeError,
    InvalidPrivateKeyLengthError,
    KeyNotFoundError,
)
from btcodid.keys import KeyManager, KeyStore, KeyType, derive_public_key, sign_message, verify_message
from btcodid.multikey import public_key_from_did_key


@pytest.fixture
def store_dir():
    """Create temporary key store directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def manager():
    """In-memory key manager on testnet."""
    return KeyManager(network="testnet")


class TestKeyType:
    """Test KeyType parsing."""

    def test_case_insensitive(self):
        """Test names match regardless of case."""
        assert KeyType.from_value("ed25519") == KeyType.ED25519
        assert KeyType.from_value("SECP256K1") == KeyType.SECP256K1
        assert KeyType.from_value(KeyType.SCHNORR) == KeyType.SCHNORR

    def test_unknown(self):
        """Test unknown types fail."""
        with pytest.raises(InvalidKeyTypeError):
            KeyType.from_value("rsa")


class TestSignVerify:
    """Test signing for every key type."""

    @pytest.mark.parametrize("key_type", list(KeyType))
    def test_sign_then_verify(self, manager, key_type):
        """Test a signature verifies and tampering breaks it."""
        key_id = manager.create_key(key_type)
        message = b"anchored to a satoshi"
        signature = manager.sign(key_id, message)

        assert manager.verify(key_id, message, signature)

        flipped_message = bytes([message[0] ^ 1]) + message[1:]
        assert not manager.verify(key_id, flipped_message, signature)

        flipped_signature = signature[:-1] + bytes([signature[-1] ^ 1])
        assert not manager.verify(key_id, message, flipped_signature)

    @pytest.mark.parametrize("key_type", list(KeyType))
    def test_public_key_lengths(self, manager, key_type):
        """Test public key sizes per type."""
        key_id = manager.create_key(key_type)
        expected = 33 if key_type == KeyType.SECP256K1 else 32
        assert len(manager.public_key(key_id)) == expected

    def test_module_level_helpers(self):
        """Test sign_message / verify_message on raw keys."""
        private = os.urandom(32)
        public = derive_public_key(private, KeyType.ED25519)
        signature = sign_message(KeyType.ED25519, private, b"m")
        assert verify_message(KeyType.ED25519, public, b"m", signature)
        assert not verify_message(KeyType.ED25519, public, b"n", signature)

    def test_schnorr_rejects_short_signature(self, manager):
        """Test a truncated schnorr signature fails cleanly."""
        key_id = manager.create_key("schnorr")
        assert not manager.verify(key_id, b"m", b"\x00" * 10)


class TestKeyManager:
    """Test KeyManager operations."""

    def test_import_wrong_length(self, manager):
        """Test import with a bad key size fails."""
        with pytest.raises(InvalidPrivateKeyLengthError) as exc:
            manager.import_key(os.urandom(31), "Ed25519")
        assert exc.value.code == "INVALID_PRIVATE_KEY_LENGTH"

    def test_import_derives_public_key(self, manager):
        """Test imported keys get the derived public key."""
        private = os.urandom(32)
        key_id = manager.import_key(private, KeyType.ED25519, alias="imported")
        assert manager.public_key("imported") == derive_public_key(private, KeyType.ED25519)
        assert manager.get_key(key_id)["alias"] == "imported"

    def test_get_key_hides_private_material(self, manager):
        """Test get_key never returns the private key."""
        key_id = manager.create_key()
        info = manager.get_key(key_id)
        assert "private_key" not in info
        assert info["type"] == "Ed25519"

    def test_duplicate_alias(self, manager):
        """Test aliases are unique."""
        manager.create_key(alias="main")
        with pytest.raises(InvalidInputError):
            manager.create_key(alias="main")

    def test_missing_key(self, manager):
        """Test lookups of unknown keys."""
        assert manager.get_key("nope") is None
        with pytest.raises(KeyNotFoundError):
            manager.sign("nope", b"m")
        assert manager.delete_key("nope") is False

    def test_delete_and_list(self, manager):
        """Test deletion removes the key from listings."""
        first = manager.create_key()
        second = manager.create_key("secp256k1")
        assert [k["id"] for k in manager.list_keys()] == [first, second]
        assert manager.delete_key(first)
        assert [k["id"] for k in manager.list_keys()] == [second]

    def test_derive_address(self, manager):
        """Test addresses per key type on testnet."""
        assert manager.derive_address(manager.create_key("Ed25519")) is None
        assert manager.derive_address(manager.create_key("secp256k1")).startswith("tb1q")
        assert manager.derive_address(manager.create_key("schnorr")).startswith("tb1p")
        assert manager.derive_address(manager.create_key("schnorr", network="mainnet")).startswith("bc1p")

    def test_to_did(self, manager):
        """Test did:key derivation for Ed25519 keys only."""
        key_id = manager.create_key()
        did = manager.to_did(key_id)
        assert did.startswith("did:key:z6Mk")
        assert public_key_from_did_key(did).key == manager.public_key(key_id)

        with pytest.raises(InvalidKeyTypeError) as exc:
            manager.to_did(manager.create_key("secp256k1"))
        assert exc.value.code == "INVALID_KEY_TYPE"

    def test_rotate_moves_alias(self, manager):
        """Test rotation replaces the key and keeps its alias."""
        old = manager.create_key(alias="signing")
        new = manager.rotate_key("signing")
        assert new != old
        assert manager.get_key(old) is None
        info = manager.get_key("signing")
        assert info["id"] == new
        assert info["metadata"]["rotatedFrom"] == old

    def test_rotate_archive(self, manager):
        """Test archived rotation keeps the old key."""
        old = manager.create_key(alias="signing")
        new = manager.rotate_key("signing", archive_old=True)
        archived = manager.get_key(old)
        assert archived["metadata"]["archived"] is True
        assert archived["metadata"]["replacedBy"] == new
        assert archived["alias"].startswith("signing-archived-")

    def test_revoked_key_cannot_sign(self, manager):
        """Test revocation blocks signing but not verification."""
        key_id = manager.create_key()
        signature = manager.sign(key_id, b"m")
        manager.revoke_key(key_id, reason="compromised")

        assert manager.is_key_revoked(key_id)
        assert manager.verify(key_id, b"m", signature)
        with pytest.raises(InvalidKeyTypeError):
            manager.sign(key_id, b"m")
        assert manager.list_active_keys() == []


class TestKeyStore:
    """Test persistent key storage."""

    def test_persists_across_instances(self, store_dir):
        """Test keys reload from disk."""
        manager = KeyManager(KeyStore(store_dir))
        key_id = manager.create_key("schnorr", alias="taproot")
        signature = manager.sign(key_id, b"m")

        reloaded = KeyManager(KeyStore(store_dir))
        assert reloaded.get_key("taproot")["id"] == key_id
        assert reloaded.verify(key_id, b"m", signature)

    def test_delete_removes_file(self, store_dir):
        """Test deletion removes the key file."""
        store = KeyStore(store_dir)
        manager = KeyManager(store)
        key_id = manager.create_key()
        assert (store_dir / f"{key_id}.json").exists()
        manager.delete_key(key_id)
        assert not (store_dir / f"{key_id}.json").exists()

    def test_corrupt_file_skipped(self, store_dir):
        """Test unreadable key files are skipped."""
        (store_dir / "broken.json").write_text("{not json")
        assert len(KeyStore(store_dir)) == 0

    def test_query(self):
        """Test query by field."""
        manager = KeyManager()
        manager.create_key("secp256k1")
        manager.create_key("Ed25519")
        assert len(manager.store.query("type", "secp256k1")) == 1
