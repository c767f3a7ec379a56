"""
Segment classification and text encoding.

Every ordinary segment becomes a single element. The body encoding is picked
by a fixed priority: 64-bit quad, bare arg, hex for ``*md5`` segments,
escaped text for printable payloads, and base64 for everything else.
"""

from __future__ import annotations

import base64
import enum
import logging
from dataclasses import dataclass
from typing import Optional

from .container import Segment, decode_quad, display_as_quad

logger = logging.getLogger(__name__)

ENTITIES = {
    "<": "&lt;",
    ">": "&gt;",
    "&": "&amp;",
    "'": "&apos;",
    '"': "&quot;",
}

# Older affxml builds emitted '<' and '>' with their entities swapped.
LEGACY_ENTITIES = dict(ENTITIES, **{"<": "&gt;", ">": "&lt;"})


class Encoding(enum.Enum):
    QUAD64 = "quad64"
    RAW_ARGUMENT = "raw_argument"
    HEX = "hex"
    ESCAPED_TEXT = "escaped_text"
    BASE64 = "base64"

    @property
    def coding(self) -> Optional[str]:
        """Value of the ``coding`` attribute, or None for plain text."""

        return _CODING[self]


_CODING = {
    Encoding.QUAD64: "base10",
    Encoding.RAW_ARGUMENT: "base10",
    Encoding.HEX: "base16",
    Encoding.ESCAPED_TEXT: None,
    Encoding.BASE64: "base64",
}


@dataclass(frozen=True)
class EncodedSegment:
    tag: str
    encoding: Encoding
    body: str

    def render(self, indent: str = "    ") -> str:
        return render_element(
            self.tag, self.body, coding=self.encoding.coding, indent=indent
        )


def is_printable_safe(data: bytes) -> bool:
    """True if ``data`` can be written verbatim: LF, CR or 32..126 only."""

    for byte in data:
        if byte == 0 or byte >= 128:
            return False
        if byte in (10, 13):
            continue
        if byte < 32 or byte >= 127:
            return False
    return True


def sanitize_tag_name(name: str) -> str:
    tag = "".join(ch if ch.isascii() and ch.isalnum() else "_" for ch in name)
    if not tag:
        return "_"
    if tag[0].isdigit():
        return "_" + tag
    return tag


def escape_text(text: str, *, legacy: bool = False) -> str:
    table = LEGACY_ENTITIES if legacy else ENTITIES
    return "".join(table.get(ch, ch) for ch in text)


def _xml_char(ch: str) -> str:
    cp = ord(ch)
    if cp in (0x9, 0xA, 0xD) or 0x20 <= cp <= 0xD7FF or 0xE000 <= cp <= 0xFFFD:
        return ch
    if cp >= 0x10000:
        return ch
    # lone surrogates carry undecodable filename bytes (surrogateescape)
    if 0xDC80 <= cp <= 0xDCFF:
        return f"\\x{cp - 0xDC00:02x}"
    if cp < 0x100:
        return f"\\x{cp:02x}"
    return f"\\u{cp:04x}"


def escape_attribute(value: str) -> str:
    """Escape ``value`` for a quoted attribute, backslash-escaping non-XML chars."""

    return escape_text("".join(_xml_char(ch) for ch in value))


def render_element(
    tag: str, body: str, *, coding: Optional[str] = None, indent: str = "    "
) -> str:
    attrs = f" coding='{coding}'" if coding else ""
    return f"{indent}<{tag}{attrs}>{body}</{tag}>\n"


def choose_encoding(segment: Segment, tag: Optional[str] = None) -> Encoding:
    tag = tag if tag is not None else sanitize_tag_name(segment.name)
    payload = segment.payload
    if len(payload) == 8 and (segment.quadword_hint or display_as_quad(segment.name)):
        return Encoding.QUAD64
    if not payload:
        return Encoding.RAW_ARGUMENT
    if len(payload) >= 3 and tag.endswith("md5"):
        return Encoding.HEX
    if is_printable_safe(payload):
        return Encoding.ESCAPED_TEXT
    return Encoding.BASE64


def encode_segment(
    segment: Segment, *, legacy_entities: bool = False
) -> EncodedSegment:
    """Classify ``segment`` and render its element body."""

    tag = sanitize_tag_name(segment.name)
    encoding = choose_encoding(segment, tag)
    payload = segment.payload

    if encoding is Encoding.QUAD64:
        body = str(decode_quad(payload))
    elif encoding is Encoding.RAW_ARGUMENT:
        body = str(segment.arg & 0xFFFFFFFF)
    elif encoding is Encoding.HEX:
        body = payload.hex()
    elif encoding is Encoding.ESCAPED_TEXT:
        body = escape_text(payload.decode("ascii"), legacy=legacy_entities)
    else:
        body = base64.b64encode(payload).decode("ascii")

    logger.debug(
        "segment %r -> <%s> %s (%d bytes)",
        segment.name,
        tag,
        encoding.value,
        len(payload),
    )
    return EncodedSegment(tag=tag, encoding=encoding, body=body)


__all__ = [
    "EncodedSegment",
    "Encoding",
    "choose_encoding",
    "encode_segment",
    "escape_attribute",
    "escape_text",
    "is_printable_safe",
    "render_element",
    "sanitize_tag_name",
]
