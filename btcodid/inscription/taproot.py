# btcodid/inscription/taproot.py
"""
Taproot key tweaking and script commitments (BIP340/BIP341).

An inscription commits to a single tapscript leaf. The output key is

    Q = P + H_TapTweak(P || H_TapLeaf(0xc0 || compact_size(len) || script)) * G

where P is the x-only internal key. The control block needed to spend the
leaf is ``(0xc0 | parity(Q)) || P`` since the tree has only one leaf.
"""

import hashlib
import secrets
from dataclasses import dataclass
from typing import Optional, Tuple, Union

from coincurve import PrivateKey, PublicKey

from ..addresses import p2tr_address, p2tr_script
from ..errors import InvalidInputError
from ..satoshi import Network

TAPSCRIPT_LEAF_VERSION = 0xC0

# secp256k1 group order
CURVE_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141


def tagged_hash(tag: str, data: bytes) -> bytes:
    """BIP340 tagged hash: sha256(sha256(tag) || sha256(tag) || data)."""
    tag_hash = hashlib.sha256(tag.encode()).digest()
    return hashlib.sha256(tag_hash + tag_hash + data).digest()


def compact_size(n: int) -> bytes:
    """Bitcoin CompactSize length prefix."""
    if n < 0xFD:
        return bytes([n])
    if n <= 0xFFFF:
        return b"\xfd" + n.to_bytes(2, "little")
    if n <= 0xFFFFFFFF:
        return b"\xfe" + n.to_bytes(4, "little")
    return b"\xff" + n.to_bytes(8, "little")


def tapleaf_hash(script: bytes, leaf_version: int = TAPSCRIPT_LEAF_VERSION) -> bytes:
    return tagged_hash("TapLeaf", bytes([leaf_version]) + compact_size(len(script)) + script)


def xonly_public_key(private_key: bytes) -> bytes:
    """32 byte x-only public key of a secp256k1 private key."""
    return PrivateKey(private_key).public_key.format(compressed=True)[1:]


def tweak_public_key(internal_key: bytes, merkle_root: Optional[bytes] = None) -> Tuple[bytes, int]:
    """
    Tweak an x-only internal key.

    Args:
        internal_key: 32 byte x-only key
        merkle_root: Script tree root, or None for a key-path only output

    Returns:
        (x-only output key, parity of its y coordinate)
    """
    if len(internal_key) != 32:
        raise InvalidInputError("Taproot internal key must be 32 bytes")
    tweak = tagged_hash("TapTweak", internal_key + (merkle_root or b""))
    if int.from_bytes(tweak, "big") >= CURVE_ORDER:
        raise InvalidInputError("Taproot tweak is out of range")
    point = PublicKey(b"\x02" + internal_key).add(tweak)
    compressed = point.format(compressed=True)
    return compressed[1:], compressed[0] & 1


def tweak_private_key(private_key: bytes, merkle_root: Optional[bytes] = None) -> bytes:
    """Private key matching tweak_public_key(), for key-path spends."""
    secret = int.from_bytes(private_key, "big")
    public = PrivateKey(private_key).public_key.format(compressed=True)
    if public[0] == 0x03:
        secret = CURVE_ORDER - secret
    xonly = public[1:]
    tweak = int.from_bytes(tagged_hash("TapTweak", xonly + (merkle_root or b"")), "big")
    return ((secret + tweak) % CURVE_ORDER).to_bytes(32, "big")


def generate_reveal_keypair() -> Tuple[bytes, bytes]:
    """Random (private key, x-only public key) for an inscription reveal."""
    private_key = PrivateKey(secrets.token_bytes(32))
    return private_key.secret, private_key.public_key.format(compressed=True)[1:]


@dataclass
class TaprootCommitment:
    """
    A taproot output committing to one tapscript leaf.

    Attributes:
        internal_key: x-only internal key P
        output_key: x-only tweaked key Q
        parity: y parity of Q
        leaf_script: The committed tapscript
        address: Network address paying to Q
    """
    internal_key: bytes
    output_key: bytes
    parity: int
    leaf_script: bytes
    address: str
    leaf_version: int = TAPSCRIPT_LEAF_VERSION

    @property
    def leaf_hash(self) -> bytes:
        return tapleaf_hash(self.leaf_script, self.leaf_version)

    @property
    def control_block(self) -> bytes:
        return bytes([self.leaf_version | self.parity]) + self.internal_key

    @property
    def script_pubkey(self) -> bytes:
        return p2tr_script(self.output_key)

    def to_dict(self) -> dict:
        return {
            "internal_key": self.internal_key.hex(),
            "output_key": self.output_key.hex(),
            "parity": self.parity,
            "leaf_script": self.leaf_script.hex(),
            "control_block": self.control_block.hex(),
            "address": self.address,
        }


def commit_to_script(
    internal_key: bytes,
    leaf_script: bytes,
    network: Union[Network, str, None] = None,
) -> TaprootCommitment:
    """Build the taproot output that commits to a single leaf script."""
    output_key, parity = tweak_public_key(internal_key, tapleaf_hash(leaf_script))
    return TaprootCommitment(
        internal_key=internal_key,
        output_key=output_key,
        parity=parity,
        leaf_script=leaf_script,
        address=p2tr_address(output_key, network),
    )


def key_path_address(xonly_key: bytes, network: Union[Network, str, None] = None) -> str:
    """BIP86 style address for a key with no script tree."""
    output_key, _ = tweak_public_key(xonly_key)
    return p2tr_address(output_key, network)
