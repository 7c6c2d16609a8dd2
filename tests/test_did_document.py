# tests/test_did_document.py
"""Tests for DID document construction and updates."""

import os

import pytest

from btcodid.did.document import (
    active_key_ids,
    add_key,
    create_did_document,
    deactivate,
    deserialize_did_document,
    find_verification_method,
    revoke_key,
    rotate_key,
    serialize_did_document,
    validate_did_document,
)
from btcodid.errors import InvalidInputError, KeyNotFoundError
from btcodid.keys import KeyType, derive_public_key
from btcodid.multikey import MultikeyType, decode_public_key


@pytest.fixture
def created():
    """Fresh mainnet DID document."""
    return create_did_document(12345, "mainnet")


class TestCreateDidDocument:
    """Test DID document creation."""

    def test_mainnet_document(self, created):
        """Test id, key and authentication of a new document."""
        document = created.document
        assert document["id"] == "did:btco:12345"
        assert len(document["verificationMethod"]) == 1
        method = document["verificationMethod"][0]
        assert method["type"] == "Ed25519VerificationKey2020"
        decoded = decode_public_key(method["publicKeyMultibase"])
        assert decoded.key_type == MultikeyType.ED25519
        assert len(decoded.key) == 32
        assert decoded.key == created.public_key
        assert document["authentication"] == ["did:btco:12345#key-1"]

    def test_key_pair_matches(self, created):
        """Test the returned secret derives the document key."""
        assert derive_public_key(created.secret_key, KeyType.ED25519) == created.public_key

    def test_network_prefix(self):
        """Test non-mainnet DIDs carry the network prefix."""
        assert create_did_document(7, "testnet").document["id"] == "did:btco:test:7"
        assert create_did_document(7, "signet").document["id"] == "did:btco:sig:7"

    def test_controller_and_services(self):
        """Test optional controller, services and deactivation."""
        service = {"id": "did:btco:7#web", "type": "LinkedDomains", "serviceEndpoint": "https://example.com"}
        document = create_did_document(7, controller="did:btco:1", services=[service], deactivated=True).document
        assert document["controller"] == "did:btco:1"
        assert document["verificationMethod"][0]["controller"] == "did:btco:1"
        assert document["service"] == [service]
        assert document["deactivated"] is True
        assert validate_did_document(document).is_valid


class TestValidation:
    """Test DID document validation."""

    def test_valid(self, created):
        """Test a created document validates."""
        result = validate_did_document(created.document)
        assert result.is_valid
        assert result.errors == []

    def test_collects_all_errors(self):
        """Test every problem is reported."""
        result = validate_did_document({"verificationMethod": [{"id": "x"}], "service": [{}]})
        assert not result.is_valid
        assert "Missing required field: @context" in result.errors
        assert "Missing required field: id" in result.errors
        assert any("missing type" in e for e in result.errors)
        assert any("publicKeyMultibase" in e for e in result.errors)
        assert any(e.startswith("service[0]") for e in result.errors)

    def test_curve_mismatch(self, created):
        """Test key material must match the method type."""
        document = add_key(created.document, b"\x02" + os.urandom(32), KeyType.SECP256K1)
        document["verificationMethod"][1]["type"] = "Ed25519VerificationKey2020"
        result = validate_did_document(document)
        assert not result.is_valid
        assert "requires Ed25519" in result.errors[0]

    def test_not_an_object(self):
        """Test non-dict input."""
        assert not validate_did_document(["did:btco:1"]).is_valid


class TestSerialization:
    """Test serialization round trips."""

    def test_roundtrip(self, created):
        """Test serialize then deserialize."""
        text = serialize_did_document(created.document)
        assert deserialize_did_document(text) == created.document

    def test_invalid_json(self):
        """Test malformed JSON gives None."""
        assert deserialize_did_document("{not json") is None

    def test_invalid_document(self):
        """Test structurally invalid documents give None."""
        assert deserialize_did_document('{"id": "did:btco:1"}') is None


class TestUpdates:
    """Test key management on documents."""

    def test_add_key(self, created):
        """Test adding a key with relationships."""
        public = derive_public_key(os.urandom(32), KeyType.ED25519)
        updated = add_key(created.document, public, relationships=["assertionMethod"])
        assert updated["verificationMethod"][1]["id"] == "did:btco:12345#key-2"
        assert updated["assertionMethod"] == ["did:btco:12345#key-2"]
        assert len(created.document["verificationMethod"]) == 1

    def test_add_key_unknown_relationship(self, created):
        """Test relationships are checked."""
        with pytest.raises(InvalidInputError):
            add_key(created.document, os.urandom(32), relationships=["signing"])

    def test_schnorr_key_encoding(self, created):
        """Test x-only keys are encoded as compressed secp256k1."""
        updated = add_key(created.document, os.urandom(32), KeyType.SCHNORR)
        method = updated["verificationMethod"][1]
        assert method["type"] == "SchnorrSecp256k1VerificationKey2019"
        assert method["publicKeyMultibase"].startswith("zQ3s")

    def test_rotate_in_place(self, created):
        """Test rotation replaces the method and repoints references."""
        public = derive_public_key(os.urandom(32), KeyType.ED25519)
        updated = rotate_key(created.document, "did:btco:12345#key-1", public, fragment="key-2")
        assert [m["id"] for m in updated["verificationMethod"]] == ["did:btco:12345#key-2"]
        assert updated["authentication"] == ["did:btco:12345#key-2"]

    def test_rotate_keeps_revoked(self, created):
        """Test rotation with mark_as_revoked keeps the old method."""
        public = derive_public_key(os.urandom(32), KeyType.ED25519)
        updated = rotate_key(created.document, "did:btco:12345#key-1", public,
                             mark_as_revoked=True, fragment="key-2")
        assert "revoked" in updated["verificationMethod"][0]
        assert active_key_ids(updated) == ["did:btco:12345#key-2"]

    def test_rotate_unknown(self, created):
        """Test rotating a missing method."""
        with pytest.raises(KeyNotFoundError):
            rotate_key(created.document, "did:btco:12345#nope", os.urandom(32))

    def test_revoke(self, created):
        """Test revocation drops relationship references."""
        updated = revoke_key(created.document, "did:btco:12345#key-1")
        assert updated["authentication"] == []
        assert active_key_ids(updated) == []
        assert find_verification_method(updated, "#key-1")["revoked"]

    def test_deactivated_is_frozen(self, created):
        """Test a deactivated document refuses key changes."""
        dead = deactivate(created.document)
        assert dead["deactivated"] is True
        assert "deactivatedAt" in dead
        with pytest.raises(InvalidInputError):
            add_key(dead, os.urandom(32))
        with pytest.raises(InvalidInputError):
            revoke_key(dead, "did:btco:12345#key-1")

    def test_find_by_fragment(self, created):
        """Test lookups by full id and fragment."""
        assert find_verification_method(created.document, "#key-1")["id"] == "did:btco:12345#key-1"
        assert find_verification_method(created.document, "did:btco:12345#key-1") is not None
        assert find_verification_method(created.document, "#key-9") is None
