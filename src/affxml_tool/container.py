"""
Container access layer for segmented forensic images.

A container is an ordered set of named segments. Segments whose names encode
a page index (``page0``, ``page1``, ... or the legacy ``seg0`` form) carry the
image data; every other segment is metadata. Naming follows the AFF
conventions: ``pagesize``/``sectorsize`` hold geometry in their arg field and
``badflag`` holds the marker written in place of unreadable sectors.
"""

from __future__ import annotations

import abc
import json
import logging
import re
import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional, Sequence

logger = logging.getLogger(__name__)

SEG_QUADWORD = 0x0002

DIRECTORY_SEGMENT = "dir"
AES256_SUFFIX = "/aes256"
PAGESIZE_SEGMENT = "pagesize"
LEGACY_PAGESIZE_SEGMENT = "segsize"
SECTORSIZE_SEGMENT = "sectorsize"
IMAGESIZE_SEGMENT = "imagesize"
BADFLAG_SEGMENT = "badflag"

DEFAULT_PAGE_SIZE = 16 * 1024 * 1024
DEFAULT_SECTOR_SIZE = 512

# Early writers stored these as 8-byte quads without setting SEG_QUADWORD.
QUAD_SEGMENT_NAMES = frozenset(
    {
        IMAGESIZE_SEGMENT,
        "badsectors",
        "blanksectors",
        "devicesectors",
        "acquisition_seconds",
    }
)

PAGE_NAME_RE = re.compile(r"(?:page|seg)([0-9]+)")


class ContainerError(Exception):
    """Base class for container access failures."""


class ContainerOpenError(ContainerError):
    """The path could not be opened as a container."""

    def __init__(self, path: Path | str, reason: str):
        super().__init__(f"{path}: {reason}")
        self.path = str(path)
        self.reason = reason


class SegmentReadError(ContainerError):
    def __init__(self, segment_name: str, reason: str):
        super().__init__(f"Can't read segment '{segment_name}': {reason}")
        self.segment_name = segment_name
        self.reason = reason


class PageReadError(ContainerError):
    def __init__(self, page_index: int, reason: str):
        super().__init__(f"Can't read page {page_index}: {reason}")
        self.page_index = page_index
        self.reason = reason


@dataclass(frozen=True)
class Segment:
    name: str
    arg: int = 0
    payload: bytes = b""
    flags: int = 0

    @property
    def quadword_hint(self) -> bool:
        return bool(self.flags & SEG_QUADWORD)


def segment_page_number(name: str) -> Optional[int]:
    """Return the page index encoded in ``name``, or None for other segments."""

    match = PAGE_NAME_RE.fullmatch(name)
    if match is None:
        return None
    return int(match.group(1))


def display_as_quad(name: str) -> bool:
    return name in QUAD_SEGMENT_NAMES


def decode_quad(data: bytes) -> int:
    """
    Decode an 8-byte quad payload into a signed 64-bit integer.

    The quad is stored as two big-endian 32-bit words, low word first.
    """

    if len(data) != 8:
        raise ValueError(f"quad payload must be 8 bytes, got {len(data)}")
    low, high = struct.unpack(">II", data)
    value = (high << 32) | low
    if value >= 1 << 63:
        value -= 1 << 64
    return value


def encode_quad(value: int) -> bytes:
    value &= (1 << 64) - 1
    return struct.pack(">II", value & 0xFFFFFFFF, value >> 32)


class Container(abc.ABC):
    """
    Read-only view of a segmented image.

    Subclasses provide ``segment_names`` and ``read_segment``; geometry, page
    lookup and bad-sector detection are derived from the standard segments.
    The segment list never changes once a container is open, so name and page
    lookups are built on first use and kept.
    """

    def __init__(self, path: Path | str = "") -> None:
        self.path = str(path)
        self._names: Optional[frozenset[str]] = None
        self._pages: Optional[dict[int, str]] = None
        self._badflag: Optional[bytes] = None
        self._badflag_loaded = False

    def __enter__(self) -> "Container":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        pass

    @abc.abstractmethod
    def segment_names(self) -> Iterator[str]:
        """Yield segment names in stored order, starting from the beginning."""

    @abc.abstractmethod
    def read_segment(self, name: str) -> Segment:
        pass

    def has_segment(self, name: str) -> bool:
        if self._names is None:
            self._names = frozenset(self.segment_names())
        return name in self._names

    def page_number(self, name: str) -> Optional[int]:
        return segment_page_number(name)

    def _segment_arg(self, name: str) -> Optional[int]:
        if not self.has_segment(name):
            return None
        return self.read_segment(name).arg

    @property
    def page_size(self) -> int:
        for name in (PAGESIZE_SEGMENT, LEGACY_PAGESIZE_SEGMENT):
            arg = self._segment_arg(name)
            if arg:
                return arg
        return DEFAULT_PAGE_SIZE

    @property
    def sector_size(self) -> int:
        arg = self._segment_arg(SECTORSIZE_SEGMENT)
        return arg or DEFAULT_SECTOR_SIZE

    def _page_segment_name(self, index: int) -> Optional[str]:
        if self._pages is None:
            pages: dict[int, str] = {}
            for name in self.segment_names():
                number = self.page_number(name)
                if number is not None:
                    # page<N> and seg<N> can both exist; the first stored wins
                    pages.setdefault(number, name)
            self._pages = pages
        return self._pages.get(index)

    def read_page(self, index: int) -> bytes:
        name = self._page_segment_name(index)
        if name is None:
            raise PageReadError(index, "no such page")
        try:
            data = self.read_segment(name).payload
        except SegmentReadError as exc:
            raise PageReadError(index, exc.reason) from exc
        page_size = self.page_size
        if len(data) > page_size:
            raise PageReadError(
                index, f"{len(data)} bytes exceeds page size {page_size}"
            )
        return data

    def is_bad_sector(self, sector: bytes) -> bool:
        if not self._badflag_loaded:
            self._badflag_loaded = True
            if self.has_segment(BADFLAG_SEGMENT):
                self._badflag = self.read_segment(BADFLAG_SEGMENT).payload or None
        if self._badflag is None:
            return False
        return sector == self._badflag


class MemoryContainer(Container):
    """Container backed by an in-memory list of segments."""

    def __init__(self, segments: Sequence[Segment], path: Path | str = "") -> None:
        super().__init__(path)
        self._segments = list(segments)
        self._by_name = {seg.name: seg for seg in self._segments}

    def segment_names(self) -> Iterator[str]:
        return iter([seg.name for seg in self._segments])

    def has_segment(self, name: str) -> bool:
        return name in self._by_name

    def read_segment(self, name: str) -> Segment:
        try:
            return self._by_name[name]
        except KeyError:
            raise SegmentReadError(name, "no such segment") from None


@dataclass(frozen=True)
class _SegmentEntry:
    name: str
    arg: int
    flags: int
    file: Optional[Path]


class DirectoryContainer(Container):
    """
    Container stored as a directory of payload files.

    ``manifest.json`` lists the segments in stored order::

        {"segments": [{"name": "case_num", "arg": 0, "file": "segments/0000.bin"}]}

    ``arg`` and ``flags`` default to 0; an entry without ``file`` has an
    empty payload. When ``flags`` is absent the quadword hint is taken from
    the arg, as AFF writers record it there.
    """

    def __init__(self, path: Path | str) -> None:
        super().__init__(path)
        self.root = Path(path)
        self._entries = self._load_manifest(self.root)
        self._by_name = {entry.name: entry for entry in self._entries}

    @staticmethod
    def _load_manifest(root: Path) -> list[_SegmentEntry]:
        manifest_path = root / "manifest.json"
        if not manifest_path.exists():
            raise ContainerOpenError(root, "manifest.json not found")
        try:
            manifest = json.loads(manifest_path.read_text())
        except (json.JSONDecodeError, OSError, UnicodeDecodeError) as exc:
            raise ContainerOpenError(root, f"unreadable manifest: {exc}") from exc

        segments = manifest.get("segments") if isinstance(manifest, dict) else None
        if not isinstance(segments, list):
            raise ContainerOpenError(root, "manifest has no segment list")

        entries: list[_SegmentEntry] = []
        for idx, raw in enumerate(segments):
            if not isinstance(raw, dict) or not isinstance(raw.get("name"), str):
                raise ContainerOpenError(root, f"segment entry {idx} has no name")
            try:
                arg = int(raw.get("arg", 0)) & 0xFFFFFFFF
                flags = int(raw.get("flags", arg & SEG_QUADWORD))
            except (TypeError, ValueError) as exc:
                raise ContainerOpenError(
                    root, f"segment entry {idx} has a bad arg/flags value"
                ) from exc
            file_name = raw.get("file")
            entries.append(
                _SegmentEntry(
                    name=raw["name"],
                    arg=arg,
                    flags=flags,
                    file=root / file_name if file_name else None,
                )
            )
        return entries

    def segment_names(self) -> Iterator[str]:
        return iter([entry.name for entry in self._entries])

    def has_segment(self, name: str) -> bool:
        return name in self._by_name

    def read_segment(self, name: str) -> Segment:
        entry = self._by_name.get(name)
        if entry is None:
            raise SegmentReadError(name, "no such segment")
        payload = b""
        if entry.file is not None:
            try:
                payload = entry.file.read_bytes()
            except OSError as exc:
                raise SegmentReadError(name, str(exc)) from exc
        return Segment(
            name=entry.name, arg=entry.arg, payload=payload, flags=entry.flags
        )


class RawImageContainer(Container):
    """
    Flat raw image presented as a container.

    The image is split into ``page0``.. pages of ``page_size`` bytes (the last
    one may be short) and exposes ``pagesize``, ``sectorsize`` and
    ``imagesize`` pseudo segments.
    """

    def __init__(
        self,
        path: Path | str,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        sector_size: int = DEFAULT_SECTOR_SIZE,
    ) -> None:
        super().__init__(path)
        if page_size <= 0 or sector_size <= 0:
            raise ValueError("page and sector sizes must be positive")
        try:
            self._fh = open(path, "rb")
        except OSError as exc:
            raise ContainerOpenError(path, exc.strerror or str(exc)) from exc
        self._fh.seek(0, 2)
        self.image_size = self._fh.tell()
        self._page_size = page_size
        self._sector_size = sector_size
        self.page_count = -(-self.image_size // page_size)

    def close(self) -> None:
        self._fh.close()

    @property
    def page_size(self) -> int:
        return self._page_size

    @property
    def sector_size(self) -> int:
        return self._sector_size

    def _pseudo_segments(self) -> dict[str, Segment]:
        return {
            PAGESIZE_SEGMENT: Segment(PAGESIZE_SEGMENT, arg=self._page_size),
            SECTORSIZE_SEGMENT: Segment(SECTORSIZE_SEGMENT, arg=self._sector_size),
            IMAGESIZE_SEGMENT: Segment(
                IMAGESIZE_SEGMENT,
                payload=encode_quad(self.image_size),
                flags=SEG_QUADWORD,
            ),
        }

    def segment_names(self) -> Iterator[str]:
        yield from self._pseudo_segments()
        for index in range(self.page_count):
            yield f"page{index}"

    def has_segment(self, name: str) -> bool:
        if name in self._pseudo_segments():
            return True
        index = self.page_number(name)
        return index is not None and index < self.page_count

    def read_segment(self, name: str) -> Segment:
        pseudo = self._pseudo_segments().get(name)
        if pseudo is not None:
            return pseudo
        index = self.page_number(name)
        if index is None or index >= self.page_count:
            raise SegmentReadError(name, "no such segment")
        try:
            return Segment(name=name, payload=self.read_page(index))
        except PageReadError as exc:
            raise SegmentReadError(name, exc.reason) from exc

    def read_page(self, index: int) -> bytes:
        if index < 0 or index >= self.page_count:
            raise PageReadError(index, "no such page")
        offset = index * self._page_size
        expected = min(self._page_size, self.image_size - offset)
        try:
            self._fh.seek(offset)
            data = self._fh.read(expected)
        except OSError as exc:
            raise PageReadError(index, str(exc)) from exc
        if len(data) != expected:
            raise PageReadError(index, f"short read ({len(data)} of {expected} bytes)")
        return data

    def is_bad_sector(self, sector: bytes) -> bool:
        return False


def open_container(
    path: Path | str,
    *,
    page_size: int = DEFAULT_PAGE_SIZE,
    sector_size: int = DEFAULT_SECTOR_SIZE,
) -> Container:
    """Open a segment directory or a raw image file."""

    target = Path(path)
    if target.is_dir():
        return DirectoryContainer(target)
    if not target.exists():
        raise ContainerOpenError(target, "No such file or directory")
    logger.debug("%s: opening as raw image", target)
    return RawImageContainer(target, page_size=page_size, sector_size=sector_size)


__all__ = [
    "Container",
    "ContainerError",
    "ContainerOpenError",
    "DirectoryContainer",
    "MemoryContainer",
    "PageReadError",
    "RawImageContainer",
    "SEG_QUADWORD",
    "Segment",
    "SegmentReadError",
    "decode_quad",
    "display_as_quad",
    "encode_quad",
    "open_container",
    "segment_page_number",
]
