# tests/test_vc.py
"""Tests for verifiable credentials about inscribed content."""

import os
from datetime import datetime, timezone

import pytest

from btcodid.content import content_info
from btcodid.did.document import create_did_document
from btcodid.errors import InvalidInputError
from btcodid.proofs.eddsa import get_proofs
from btcodid.proofs.loader import CREDENTIALS_V1, ORDINALS_PLUS_V1, StaticDocumentLoader
from btcodid.proofs.signer import Ed25519Signer
from btcodid.vc import (
    format_credential,
    is_expired,
    issue_credential,
    issuer_id,
    validate_credential,
    verify_credential,
)

SUBJECT = "did:btco:5000000000"
HELLO_SHA256 = "2cf24dba5fb0a30e26e83b2ac5b9e29e1b161e5c1fa7425e73043362938b9824"


@pytest.fixture
def signer():
    return Ed25519Signer(os.urandom(32))


@pytest.fixture
def issuer(signer):
    """did:key DID of the signer."""
    return signer.get_verification_method_id().split("#")[0]


@pytest.fixture
def info():
    return content_info(b"hello", "text/plain")


class TestFormatCredential:
    """Test building unsigned credentials."""

    def test_structure(self, issuer, info):
        """Test the credential layout."""
        credential = format_credential(SUBJECT, issuer, info, title="Hello", description="A greeting",
                                       issuance_date="2024-01-01T00:00:00.000Z")
        assert credential["@context"] == [CREDENTIALS_V1, ORDINALS_PLUS_V1]
        assert credential["type"] == ["VerifiableCredential", "VerifiableCollectible"]
        assert credential["issuer"] == {"id": issuer}
        assert credential["issuanceDate"] == "2024-01-01T00:00:00.000Z"
        subject = credential["credentialSubject"]
        assert subject["id"] == SUBJECT
        assert subject["type"] == "Collectible"
        assert subject["title"] == "Hello"
        assert subject["description"] == "A greeting"
        assert subject["creator"] == issuer
        assert subject["contentInfo"] == {"mimeType": "text/plain", "hash": HELLO_SHA256, "size": 5}
        assert "expirationDate" not in credential
        assert "id" not in credential

    def test_properties(self, issuer, info):
        """Test content properties are merged in."""
        credential = format_credential(SUBJECT, issuer, info, properties={"rarity": "rare"})
        properties = credential["credentialSubject"]["properties"]
        assert properties == {"medium": "Digital", "rarity": "rare",
                              "format": "text/plain", "contentHash": HELLO_SHA256}

    def test_optional_fields(self, issuer, info):
        """Test id, creator and expiration."""
        credential = format_credential(SUBJECT, issuer, info, creator="did:btco:1",
                                       expiration="2099-01-01T00:00:00Z", credential_id="urn:uuid:1")
        assert credential["id"] == "urn:uuid:1"
        assert credential["expirationDate"] == "2099-01-01T00:00:00Z"
        assert credential["credentialSubject"]["creator"] == "did:btco:1"


class TestValidateCredential:
    """Test structural validation."""

    def test_valid(self, issuer, info):
        """Test a formatted credential is valid."""
        assert validate_credential(format_credential(SUBJECT, issuer, info)).is_valid

    def test_not_object(self):
        """Test non-objects."""
        assert validate_credential([]).errors == ["Credential must be a JSON object"]

    def test_collects_errors(self):
        """Test every problem is reported."""
        result = validate_credential({"@context": ["https://example.com"], "type": ["Other"]})
        assert not result.is_valid
        assert len(result.errors) == 5
        assert "Missing required field: issuanceDate" in result.errors

    def test_dates(self, issuer, info):
        """Test timestamp checks."""
        credential = format_credential(SUBJECT, issuer, info, issuance_date="2024-01-02T00:00:00Z",
                                       expiration="2024-01-01T00:00:00Z")
        assert validate_credential(credential).errors == ["expirationDate is before issuanceDate"]
        credential["issuanceDate"] = "yesterday"
        assert "issuanceDate is not a valid timestamp: yesterday" in validate_credential(credential).errors

    def test_content_info_fields(self, issuer, info):
        """Test contentInfo must be complete."""
        credential = format_credential(SUBJECT, issuer, info)
        del credential["credentialSubject"]["contentInfo"]["hash"]
        assert validate_credential(credential).errors == ["credentialSubject.contentInfo is missing hash"]

    def test_issuer_forms(self):
        """Test string and object issuers."""
        assert issuer_id({"issuer": "did:btco:1"}) == "did:btco:1"
        assert issuer_id({"issuer": {"id": "did:btco:2"}}) == "did:btco:2"
        assert issuer_id({"issuer": 3}) is None


class TestIssueVerify:
    """Test signing and verifying credentials."""

    def test_round_trip(self, signer, issuer, info):
        """Test an issued credential verifies."""
        credential = format_credential(SUBJECT, issuer, info, title="Hello")
        signed = issue_credential(credential, signer)
        assert "proof" not in credential
        proof = get_proofs(signed)[0]
        assert proof["proofPurpose"] == "assertionMethod"
        assert proof["verificationMethod"] == signer.get_verification_method_id()
        result = verify_credential(signed)
        assert result.verified, result.errors

    def test_did_btco_issuer(self, info):
        """Test issuing as a did:btco DID."""
        created = create_did_document(12345)
        loader = StaticDocumentLoader()
        loader.register_did_document(created.document)
        signer = Ed25519Signer(created.secret_key, "did:btco:12345#key-1", loader)
        signed = issue_credential(format_credential(SUBJECT, "did:btco:12345", info), signer, loader)
        assert verify_credential(signed, loader).verified

    def test_tampered(self, signer, issuer, info):
        """Test edits after signing are detected."""
        signed = issue_credential(format_credential(SUBJECT, issuer, info, title="Hello"), signer)
        signed["credentialSubject"]["title"] = "Goodbye"
        assert not verify_credential(signed).verified

    def test_issuer_mismatch(self, signer, info):
        """Test proofs must come from the issuer."""
        signed = issue_credential(format_credential(SUBJECT, "did:btco:999", info), signer)
        result = verify_credential(signed)
        assert not result.verified
        assert "does not belong to issuer did:btco:999" in result.errors[0]

    def test_expired(self, signer, issuer, info):
        """Test expired credentials fail before proofs are checked."""
        credential = format_credential(SUBJECT, issuer, info, issuance_date="1999-01-01T00:00:00Z",
                                       expiration="2000-01-01T00:00:00Z")
        signed = issue_credential(credential, signer)
        assert verify_credential(signed).errors == ["Credential expired at 2000-01-01T00:00:00Z"]
        assert verify_credential(signed, now=datetime(1999, 6, 1, tzinfo=timezone.utc)).verified

    def test_is_expired(self):
        """Test expiry relative to a given time."""
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert not is_expired({}, now)
        assert is_expired({"expirationDate": "2023-12-31T23:59:59Z"}, now)
        assert not is_expired({"expirationDate": "2024-01-02T00:00:00"}, now)

    def test_unsigned(self, issuer, info):
        """Test credentials without proofs."""
        result = verify_credential(format_credential(SUBJECT, issuer, info))
        assert result.errors == ["Credential has no proof"]

    def test_invalid_credential_not_issued(self, signer):
        """Test invalid credentials are refused."""
        with pytest.raises(InvalidInputError):
            issue_credential({"@context": [CREDENTIALS_V1]}, signer)
