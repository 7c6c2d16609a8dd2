# btcodid/inscription/script.py
"""
Reveal script construction for ordinal inscriptions.

The reveal tapscript locks to the reveal key and carries the inscription
in an unexecuted envelope:

    <xonly pubkey> OP_CHECKSIG
    OP_FALSE OP_IF
      "ord"
      01 <content type>
      02 <pointer>            (optional, little endian, trailing zeros trimmed)
      05 <cbor metadata>      (optional, repeated per 520 byte chunk)
      OP_0
      <body chunk> ...        (520 byte pushes)
    OP_ENDIF
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Tuple

import cbor2

from ..content import InscriptionContent
from ..errors import InvalidInputError

OP_0 = 0x00
OP_FALSE = OP_0
OP_PUSHDATA1 = 0x4C
OP_PUSHDATA2 = 0x4D
OP_PUSHDATA4 = 0x4E
OP_IF = 0x63
OP_ENDIF = 0x68
OP_CHECKSIG = 0xAC

MAX_SCRIPT_ELEMENT_SIZE = 520
ENVELOPE_PROTOCOL_ID = b"ord"

TAG_CONTENT_TYPE = 1
TAG_POINTER = 2
TAG_METADATA = 5

_PUSHDATA_SIZES = {OP_PUSHDATA1: 1, OP_PUSHDATA2: 2, OP_PUSHDATA4: 4}


def push_data(data: bytes) -> bytes:
    """Encode a data push with the smallest length prefix."""
    n = len(data)
    if n < OP_PUSHDATA1:
        return bytes([n]) + data
    if n <= 0xFF:
        return bytes([OP_PUSHDATA1, n]) + data
    if n <= 0xFFFF:
        return bytes([OP_PUSHDATA2]) + n.to_bytes(2, "little") + data
    return bytes([OP_PUSHDATA4]) + n.to_bytes(4, "little") + data


def iter_script(script: bytes) -> Iterator[Tuple[int, Optional[bytes]]]:
    """
    Walk a script yielding (opcode, pushed data or None).

    Raises:
        InvalidInputError: If a push runs past the end of the script
    """
    i = 0
    while i < len(script):
        op = script[i]
        i += 1
        if op == OP_0:
            yield op, b""
            continue
        if op < OP_PUSHDATA1:
            length = op
        elif op in _PUSHDATA_SIZES:
            size = _PUSHDATA_SIZES[op]
            if i + size > len(script):
                raise InvalidInputError("Script ends inside a push length")
            length = int.from_bytes(script[i:i + size], "little")
            i += size
        else:
            yield op, None
            continue
        if i + length > len(script):
            raise InvalidInputError("Script push runs past end of script")
        yield op, script[i:i + length]
        i += length


def encode_pointer(pointer: int) -> bytes:
    encoded = pointer.to_bytes(8, "little").rstrip(b"\x00")
    return encoded or b"\x00"


def decode_pointer(data: bytes) -> int:
    return int.from_bytes(data, "little")


def _chunks(data: bytes, size: int = MAX_SCRIPT_ELEMENT_SIZE) -> List[bytes]:
    return [data[i:i + size] for i in range(0, len(data), size)]


def build_envelope(inscription: InscriptionContent) -> bytes:
    """The OP_FALSE OP_IF ... OP_ENDIF envelope for one inscription."""
    script = bytearray([OP_FALSE, OP_IF])
    script += push_data(ENVELOPE_PROTOCOL_ID)
    script += push_data(bytes([TAG_CONTENT_TYPE]))
    script += push_data(inscription.content_type.encode("utf-8"))
    if inscription.pointer is not None:
        script += push_data(bytes([TAG_POINTER]))
        script += push_data(encode_pointer(inscription.pointer))
    if inscription.metadata:
        for chunk in _chunks(cbor2.dumps(inscription.metadata)):
            script += push_data(bytes([TAG_METADATA]))
            script += push_data(chunk)
    script.append(OP_0)
    for chunk in _chunks(inscription.content):
        script += push_data(chunk)
    script.append(OP_ENDIF)
    return bytes(script)


def build_reveal_script(xonly_pubkey: bytes, inscription: InscriptionContent) -> bytes:
    """
    Tapscript leaf for revealing an inscription.

    Args:
        xonly_pubkey: 32 byte reveal key that must sign the spend
        inscription: Prepared content

    Returns:
        The leaf script bytes
    """
    if len(xonly_pubkey) != 32:
        raise InvalidInputError("Reveal public key must be 32 bytes (x-only)")
    return push_data(xonly_pubkey) + bytes([OP_CHECKSIG]) + build_envelope(inscription)


@dataclass
class ParsedEnvelope:
    """An inscription recovered from a reveal script."""
    content_type: str
    body: bytes
    pointer: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = None


def parse_envelope(script: bytes) -> Optional[ParsedEnvelope]:
    """
    Recover the first inscription envelope in a script.

    Returns None if the script carries no ord envelope.
    """
    ops = list(iter_script(script))
    for i in range(len(ops) - 2):
        if ops[i] == (OP_FALSE, b"") and ops[i + 1][0] == OP_IF and ops[i + 2][1] == ENVELOPE_PROTOCOL_ID:
            return _parse_fields(ops[i + 3:])
    return None


def _parse_fields(ops: List[Tuple[int, Optional[bytes]]]) -> ParsedEnvelope:
    fields: Dict[int, List[bytes]] = {}
    body = bytearray()
    in_body = False
    i = 0
    while i < len(ops):
        op, data = ops[i]
        if op == OP_ENDIF:
            break
        if in_body:
            if data is None:
                raise InvalidInputError(f"Unexpected opcode 0x{op:02x} in inscription body")
            body += data
            i += 1
            continue
        if op == OP_0:
            in_body = True
            i += 1
            continue
        if data is None or len(data) != 1 or i + 1 >= len(ops):
            raise InvalidInputError("Malformed inscription envelope field")
        value = ops[i + 1][1]
        if value is None:
            raise InvalidInputError("Inscription envelope field has no value")
        fields.setdefault(data[0], []).append(value)
        i += 2

    content_type = b"".join(fields.get(TAG_CONTENT_TYPE, [b""])[:1]).decode("utf-8")
    pointer = decode_pointer(fields[TAG_POINTER][0]) if TAG_POINTER in fields else None
    metadata = cbor2.loads(b"".join(fields[TAG_METADATA])) if TAG_METADATA in fields else None
    return ParsedEnvelope(content_type=content_type, body=bytes(body), pointer=pointer, metadata=metadata)
