# btcodid/content.py
"""
Content pipeline for inscriptions.

Turns arbitrary content into an InscriptionContent ready for the reveal
script:

1. detect_content_type() - extension lookup, then content sniffing
2. validate_content()    - size ceiling and JSON well-formedness
3. prepare_content()     - bytes + content type + metadata + pointer
4. chunk_content()       - split payloads that need several inscriptions
"""

import hashlib
import json
import logging
import math
import re
import struct
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from .errors import ContentTooLargeError, InvalidInputError, InvalidJsonContentError

logger = logging.getLogger(__name__)

MAX_INSCRIPTION_SIZE = 350 * 1024

Content = Union[str, bytes, bytearray, dict, list]


class MimeType(Enum):
    """Content types with first class support."""
    PLAIN_TEXT = "text/plain"
    HTML = "text/html"
    CSS = "text/css"
    JSON = "application/json"
    JAVASCRIPT = "application/javascript"
    PNG = "image/png"
    JPEG = "image/jpeg"
    SVG = "image/svg+xml"
    GIF = "image/gif"
    WEBP = "image/webp"
    MP3 = "audio/mpeg"
    WAV = "audio/wav"
    MP4 = "video/mp4"
    WEBM = "video/webm"
    OCTET_STREAM = "application/octet-stream"


EXTENSION_TYPES = {
    ".txt": MimeType.PLAIN_TEXT,
    ".html": MimeType.HTML,
    ".htm": MimeType.HTML,
    ".css": MimeType.CSS,
    ".json": MimeType.JSON,
    ".js": MimeType.JAVASCRIPT,
    ".png": MimeType.PNG,
    ".jpg": MimeType.JPEG,
    ".jpeg": MimeType.JPEG,
    ".svg": MimeType.SVG,
    ".gif": MimeType.GIF,
    ".webp": MimeType.WEBP,
    ".mp3": MimeType.MP3,
    ".wav": MimeType.WAV,
    ".mp4": MimeType.MP4,
    ".webm": MimeType.WEBM,
}

# Types that take a ;charset= parameter
TEXT_TYPES = {MimeType.PLAIN_TEXT, MimeType.HTML, MimeType.CSS, MimeType.JSON,
              MimeType.JAVASCRIPT, MimeType.SVG}

_MIME_PATTERN = re.compile(
    r"^[a-zA-Z0-9][a-zA-Z0-9!#$&^_.+-]{0,126}/[a-zA-Z0-9][a-zA-Z0-9!#$&^_.+-]{0,126}$"
)


@dataclass
class InscriptionContent:
    """
    Content ready to be embedded in a reveal script.

    Attributes:
        content: Body bytes
        content_type: MIME type, possibly with a charset parameter
        metadata: Optional metadata (encoded as CBOR in tag 5)
        pointer: Optional sat offset within the reveal output (tag 2)
    """
    content: bytes
    content_type: str
    metadata: Optional[Dict[str, Any]] = None
    pointer: Optional[int] = None

    @property
    def size(self) -> int:
        return len(self.content)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": self.content.hex(),
            "content_type": self.content_type,
            "metadata": self.metadata,
            "pointer": self.pointer,
        }


@dataclass
class ContentInfo:
    """Description of anchored content, embedded in credential subjects."""
    mime_type: str
    hash: str
    size: int
    dimensions: Optional[Dict[str, int]] = None
    duration: Optional[float] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"mimeType": self.mime_type, "hash": self.hash, "size": self.size}
        if self.dimensions:
            data["dimensions"] = self.dimensions
        if self.duration is not None:
            data["duration"] = self.duration
        data.update(self.extra)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ContentInfo":
        known = ("mimeType", "hash", "size", "dimensions", "duration")
        return cls(
            mime_type=data["mimeType"],
            hash=data["hash"],
            size=int(data["size"]),
            dimensions=data.get("dimensions"),
            duration=data.get("duration"),
            extra={k: v for k, v in data.items() if k not in known},
        )


def base_type(content_type: str) -> str:
    """MIME type without parameters: 'text/plain;charset=utf-8' -> 'text/plain'."""
    return content_type.split(";", 1)[0].strip().lower()


def is_valid_mime_type(content_type: str) -> bool:
    return bool(content_type) and bool(_MIME_PATTERN.match(base_type(content_type)))


def _is_json_text(text: str) -> bool:
    stripped = text.strip()
    if not stripped or (stripped[0], stripped[-1]) not in (("{", "}"), ("[", "]")):
        return False
    try:
        json.loads(stripped)
        return True
    except ValueError:
        return False


def _sniff_text(text: str) -> MimeType:
    if _is_json_text(text):
        return MimeType.JSON
    lowered = text.lstrip().lower()
    if lowered.startswith("<html") or lowered.startswith("<!doctype html"):
        return MimeType.HTML
    if lowered.startswith("<svg") or (lowered.startswith("<?xml") and "<svg" in lowered[:512]):
        return MimeType.SVG
    return MimeType.PLAIN_TEXT


def _sniff_bytes(data: bytes) -> Optional[MimeType]:
    if data.startswith(b"\x89PNG"):
        return MimeType.PNG
    if data.startswith(b"\xff\xd8\xff"):
        return MimeType.JPEG
    if data.startswith(b"GIF8"):
        return MimeType.GIF
    if data.startswith(b"ID3") or data.startswith(b"\xff\xfb"):
        return MimeType.MP3
    if len(data) >= 8 and data[4:8] == b"ftyp":
        return MimeType.MP4
    if data.startswith(b"RIFF") and data[8:12] == b"WEBP":
        return MimeType.WEBP
    if data.startswith(b"RIFF") and data[8:12] == b"WAVE":
        return MimeType.WAV
    if data.startswith(b"\x1a\x45\xdf\xa3"):
        return MimeType.WEBM
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        return None
    return _sniff_text(text)


def detect_content_type(
    filename: Optional[str] = None,
    content: Optional[Content] = None,
    charset: Optional[str] = None,
) -> str:
    """
    Work out the MIME type of some content.

    Extension lookup wins; otherwise the content is sniffed (JSON parse,
    HTML prefix, binary magic numbers). Unknown content is
    application/octet-stream.

    Args:
        filename: Optional file name whose extension is consulted first
        content: Optional content to sniff
        charset: Optional charset appended to text types

    Returns:
        MIME type string, e.g. 'text/plain;charset=utf-8'
    """
    mime: Optional[MimeType] = None
    if filename:
        mime = EXTENSION_TYPES.get(Path(filename).suffix.lower())

    if mime is None and content is not None:
        if isinstance(content, (dict, list)):
            mime = MimeType.JSON
        elif isinstance(content, str):
            mime = _sniff_text(content)
        else:
            mime = _sniff_bytes(bytes(content))

    if mime is None:
        mime = MimeType.OCTET_STREAM

    if charset and mime in TEXT_TYPES:
        return f"{mime.value};charset={charset}"
    return mime.value


def extension_for(content_type: str) -> Optional[str]:
    """File extension for a MIME type, or None if unknown."""
    wanted = base_type(content_type)
    for ext, mime in EXTENSION_TYPES.items():
        if mime.value == wanted:
            return ext
    return None


def _to_bytes(content: Content, content_type: str) -> bytes:
    if isinstance(content, (dict, list)):
        return json.dumps(content, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    if isinstance(content, str):
        return content.encode("utf-8")
    if isinstance(content, (bytes, bytearray)):
        return bytes(content)
    raise InvalidInputError(f"Unsupported content type: {type(content).__name__}")


def validate_content(content: Content, content_type: str) -> bool:
    """
    Check content against the inscription constraints.

    Raises:
        InvalidInputError: Empty content or malformed MIME type
        ContentTooLargeError: Encoded content exceeds MAX_INSCRIPTION_SIZE
        InvalidJsonContentError: JSON content that does not parse
    """
    if not is_valid_mime_type(content_type):
        raise InvalidInputError(f"Invalid MIME type format: {content_type!r}")
    data = _to_bytes(content, content_type)
    if not data:
        raise InvalidInputError("Content cannot be empty")
    if len(data) > MAX_INSCRIPTION_SIZE:
        raise ContentTooLargeError(
            f"Content size ({len(data)} bytes) exceeds maximum allowed size "
            f"({MAX_INSCRIPTION_SIZE} bytes)",
            {"size": len(data), "max": MAX_INSCRIPTION_SIZE},
        )
    if base_type(content_type) == MimeType.JSON.value and not isinstance(content, (dict, list)):
        try:
            json.loads(data.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise InvalidJsonContentError(f"Invalid JSON content: {e}")
    return True


def prepare_content(
    content: Content,
    content_type: str,
    metadata: Optional[Dict[str, Any]] = None,
    pointer: Optional[int] = None,
) -> InscriptionContent:
    """
    Normalize content into an InscriptionContent.

    Strings are UTF-8 encoded, JSON is re-serialized in compact form and
    binary content passes through unchanged.

    Raises:
        Same errors as validate_content(); InvalidInputError for a
        negative pointer.
    """
    validate_content(content, content_type)
    if pointer is not None and (not isinstance(pointer, int) or pointer < 0):
        raise InvalidInputError(f"Pointer must be a non-negative integer: {pointer!r}")

    if base_type(content_type) == MimeType.JSON.value:
        if isinstance(content, (dict, list)):
            parsed = content
        else:
            parsed = json.loads(_to_bytes(content, content_type).decode("utf-8"))
        data = json.dumps(parsed, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
    else:
        data = _to_bytes(content, content_type)

    logger.debug(f"Prepared {len(data)} bytes of {content_type}")
    return InscriptionContent(
        content=data,
        content_type=content_type,
        metadata=dict(metadata) if metadata else None,
        pointer=pointer,
    )


def chunk_content(content: Union[bytes, bytearray], chunk_size: int = MAX_INSCRIPTION_SIZE) -> List[bytes]:
    """
    Split content into sequential chunks of at most chunk_size bytes.

    Concatenating the result reproduces the input; the number of chunks
    is ceil(len(content) / chunk_size).
    """
    if chunk_size <= 0:
        raise InvalidInputError(f"Chunk size must be positive: {chunk_size}")
    data = bytes(content)
    return [data[i:i + chunk_size] for i in range(0, len(data), chunk_size)]


def chunk_count(size: int, chunk_size: int = MAX_INSCRIPTION_SIZE) -> int:
    return math.ceil(size / chunk_size) if size else 0


def _jpeg_dimensions(data: bytes) -> Optional[Tuple[int, int]]:
    i = 2
    while i + 9 < len(data):
        if data[i] != 0xFF:
            return None
        marker = data[i + 1]
        length = struct.unpack(">H", data[i + 2:i + 4])[0]
        # SOF0..SOF15 except DHT, JPG and DAC
        if 0xC0 <= marker <= 0xCF and marker not in (0xC4, 0xC8, 0xCC):
            height, width = struct.unpack(">HH", data[i + 5:i + 9])
            return width, height
        i += 2 + length
    return None


def image_dimensions(data: bytes, content_type: str) -> Optional[Tuple[int, int]]:
    """(width, height) read from PNG, GIF or JPEG headers."""
    if content_type == MimeType.PNG.value and data[:8] == b"\x89PNG\r\n\x1a\n" and len(data) >= 24:
        return struct.unpack(">II", data[16:24])
    if content_type == MimeType.GIF.value and data[:3] == b"GIF" and len(data) >= 10:
        return struct.unpack("<HH", data[6:10])
    if content_type == MimeType.JPEG.value and data[:2] == b"\xff\xd8":
        return _jpeg_dimensions(data)
    return None


def content_info(
    content: Content,
    content_type: Optional[str] = None,
    dimensions: Optional[Tuple[int, int]] = None,
    duration: Optional[float] = None,
) -> ContentInfo:
    """
    Describe content by type, SHA-256 hash and size.

    Image dimensions are read from the header when not given.
    """
    mime = content_type or detect_content_type(content=content)
    data = _to_bytes(content, mime)
    dimensions = dimensions or image_dimensions(data, base_type(mime))
    return ContentInfo(
        mime_type=base_type(mime),
        hash=hashlib.sha256(data).hexdigest(),
        size=len(data),
        dimensions={"width": dimensions[0], "height": dimensions[1]} if dimensions else None,
        duration=duration,
    )
