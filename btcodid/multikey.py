# btcodid/multikey.py
"""
Multikey / multibase encoding of keys.

A multikey is the raw key prefixed with its two byte multicodec header,
rendered as multibase base58btc (leading 'z'):

    z + base58btc(header || key)

The header identifies both the curve and whether the key is public or
private, so a decoder can check the key length against the curve.
"""

from dataclasses import dataclass
from enum import Enum

import base58

from .errors import InvalidInputError, InvalidKeyTypeError

MULTIBASE_BASE58BTC = "z"


class MultikeyType(Enum):
    """Curves a multikey can carry."""
    ED25519 = "Ed25519"
    SECP256K1 = "Secp256k1"
    P256 = "P256"
    BLS12381G2 = "Bls12381G2"


# (public header, private header, public length, private length)
_CODECS = {
    MultikeyType.ED25519: (b"\xed\x01", b"\x80\x26", 32, 32),
    MultikeyType.SECP256K1: (b"\xe7\x01", b"\x13\x01", 33, 32),
    MultikeyType.P256: (b"\x80\x24", b"\x81\x26", 33, 32),
    MultikeyType.BLS12381G2: (b"\xeb\x01", b"\x82\x26", 96, 32),
}


@dataclass(frozen=True)
class DecodedMultikey:
    """Result of decoding a multikey string."""
    key_type: MultikeyType
    key: bytes
    is_private: bool


def encode_multibase(data: bytes) -> str:
    """Encode bytes as multibase base58btc."""
    return MULTIBASE_BASE58BTC + base58.b58encode(data).decode("ascii")


def decode_multibase(value: str) -> bytes:
    """
    Decode a multibase base58btc string.

    Raises:
        InvalidInputError: If the prefix is not 'z' or the body is not base58
    """
    if not isinstance(value, str) or not value:
        raise InvalidInputError("Multibase value must be a non-empty string")
    if value[0] != MULTIBASE_BASE58BTC:
        raise InvalidInputError(
            f"Unsupported multibase prefix {value[0]!r}; only base58btc ('z') is supported"
        )
    try:
        return base58.b58decode(value[1:])
    except ValueError as e:
        raise InvalidInputError(f"Invalid base58btc encoding: {e}")


def _encode(key: bytes, key_type: MultikeyType, private: bool) -> str:
    pub_header, priv_header, pub_len, priv_len = _CODECS[key_type]
    header, expected = (priv_header, priv_len) if private else (pub_header, pub_len)
    if len(key) != expected:
        kind = "private" if private else "public"
        raise InvalidInputError(
            f"{key_type.value} {kind} key must be {expected} bytes, got {len(key)}"
        )
    return encode_multibase(header + bytes(key))


def encode_public_key(public_key: bytes, key_type: MultikeyType) -> str:
    """Encode a public key as a multikey string."""
    return _encode(public_key, key_type, private=False)


def encode_private_key(private_key: bytes, key_type: MultikeyType) -> str:
    """Encode a private key as a multikey string."""
    return _encode(private_key, key_type, private=True)


def decode_multikey(value: str) -> DecodedMultikey:
    """
    Decode any supported multikey string.

    Raises:
        InvalidInputError: If the value is not multibase or has the wrong length
        InvalidKeyTypeError: If the multicodec header is not recognized
    """
    data = decode_multibase(value)
    if len(data) < 2:
        raise InvalidInputError("Multikey is missing its multicodec header")
    header, key = data[:2], data[2:]
    for key_type, (pub_header, priv_header, pub_len, priv_len) in _CODECS.items():
        if header == pub_header:
            is_private, expected = False, pub_len
        elif header == priv_header:
            is_private, expected = True, priv_len
        else:
            continue
        if len(key) != expected:
            kind = "private" if is_private else "public"
            raise InvalidInputError(
                f"{key_type.value} {kind} key must be {expected} bytes, got {len(key)}"
            )
        return DecodedMultikey(key_type=key_type, key=key, is_private=is_private)
    raise InvalidKeyTypeError(f"Unknown multicodec header: 0x{header.hex()}")


def decode_public_key(value: str) -> DecodedMultikey:
    """Decode a public multikey; private keys are rejected."""
    decoded = decode_multikey(value)
    if decoded.is_private:
        raise InvalidKeyTypeError("Expected a public key but got a private key")
    return decoded


def decode_private_key(value: str) -> DecodedMultikey:
    """Decode a private multikey; public keys are rejected."""
    decoded = decode_multikey(value)
    if not decoded.is_private:
        raise InvalidKeyTypeError("Expected a private key but got a public key")
    return decoded


def ed25519_did_key(public_key: bytes) -> str:
    """did:key identifier for an Ed25519 public key."""
    return f"did:key:{encode_public_key(public_key, MultikeyType.ED25519)}"


def public_key_from_did_key(did_key: str) -> DecodedMultikey:
    """
    Extract the public key from a did:key identifier or verification method id.

    Accepts ``did:key:z6Mk...`` and ``did:key:z6Mk...#z6Mk...``.
    """
    if not did_key.startswith("did:key:"):
        raise InvalidInputError(f"Not a did:key identifier: {did_key}")
    multibase = did_key[len("did:key:"):].split("#", 1)[0]
    return decode_public_key(multibase)
