"""Page integrity statistics: blank, bad and total sector counts."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from .container import Container, PageReadError

logger = logging.getLogger(__name__)


@dataclass
class IntegrityTally:
    pages: int = 0
    zero_pages: int = 0
    sectors: int = 0
    zero_sectors: int = 0
    bad_sectors: int = 0

    def as_elements(self) -> list[tuple[str, int]]:
        return [
            ("pages", self.pages),
            ("zpages", self.zero_pages),
            ("sectors", self.sectors),
            ("zsectors", self.zero_sectors),
            ("badsectors", self.bad_sectors),
        ]


def is_blank(sector: bytes) -> bool:
    return not any(sector)


def tally_page(
    tally: IntegrityTally, container: Container, page: bytes, sector_size: int
) -> None:
    """
    Classify every sector of one page into ``tally``.

    A trailing chunk shorter than ``sector_size`` still counts as a sector.
    Blank sectors are never checked against the bad-sector marker.
    """

    if sector_size <= 0:
        raise ValueError(f"sector size must be positive, got {sector_size}")

    tally.pages += 1
    all_blank = True
    for offset in range(0, len(page), sector_size):
        sector = page[offset : offset + sector_size]
        tally.sectors += 1
        if is_blank(sector):
            tally.zero_sectors += 1
            continue
        all_blank = False
        if container.is_bad_sector(sector):
            tally.bad_sectors += 1
    if all_blank:
        tally.zero_pages += 1


def scan_pages(container: Container, page_indices: Iterable[int]) -> IntegrityTally:
    """
    Read every listed page and accumulate sector statistics.

    Pages are visited in the order given. A page that cannot be read raises
    ``PageReadError`` and no partial tally is returned.
    """

    sector_size = container.sector_size
    if sector_size <= 0:
        raise ValueError(f"sector size must be positive, got {sector_size}")

    tally = IntegrityTally()
    for index in page_indices:
        try:
            page = container.read_page(index)
        except MemoryError as exc:
            raise PageReadError(index, "out of memory") from exc
        if len(page) % sector_size:
            logger.debug(
                "page %d: %d bytes is not a multiple of sector size %d",
                index,
                len(page),
                sector_size,
            )
        tally_page(tally, container, page, sector_size)
    logger.debug("scanned %d pages, %d sectors", tally.pages, tally.sectors)
    return tally


__all__ = ["IntegrityTally", "is_blank", "scan_pages", "tally_page"]
