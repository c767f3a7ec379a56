"""XML report over the segments and pages of forensic image containers."""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional, Sequence, TextIO

from . import __version__
from .container import (
    AES256_SUFFIX,
    DEFAULT_PAGE_SIZE,
    DEFAULT_SECTOR_SIZE,
    DIRECTORY_SEGMENT,
    Container,
    ContainerOpenError,
    PageReadError,
    SegmentReadError,
    open_container,
)
from .encoding import encode_segment, escape_attribute, render_element
from .pagescan import scan_pages

logger = logging.getLogger(__name__)

XML_DECLARATION = "<?xml version='1.0' encoding='UTF-8'?>\n"
ROOT_TAG = "affobjects"
CONTAINER_TAG = "affinfo"
STATS_TAG = "calculated"


@dataclass(frozen=True)
class ReportOptions:
    exclude_filename: bool = False
    segment_allow_list: frozenset[str] = field(default_factory=frozenset)
    compute_stats: bool = False
    legacy_entities: bool = False


@dataclass
class SegmentSelection:
    page_indices: list[int]
    segment_names: list[str]


def _is_reportable(name: str) -> bool:
    if not name:
        return False
    if name == DIRECTORY_SEGMENT:
        return False
    # Encrypted segments only show up under this name when the key is absent.
    return AES256_SUFFIX not in name


def select_segments(container: Container, options: ReportOptions) -> SegmentSelection:
    """Split the container's segments into page indices and ordinary names."""

    selection = SegmentSelection(page_indices=[], segment_names=[])
    seen_pages: set[int] = set()
    for name in container.segment_names():
        if not _is_reportable(name):
            continue
        if options.segment_allow_list and name not in options.segment_allow_list:
            continue
        page = container.page_number(name)
        if page is not None:
            if page in seen_pages:
                logger.warning(
                    "%s: page %d stored twice, keeping the first", name, page
                )
                continue
            seen_pages.add(page)
            selection.page_indices.append(page)
        else:
            selection.segment_names.append(name)
    return selection


def build_report(
    container: Container,
    options: ReportOptions = ReportOptions(),
    filename: Optional[str] = None,
) -> str:
    """
    Render the ``<affinfo>`` element for one container.

    The text is returned only once every selected segment and page has been
    read; a read failure raises ``SegmentReadError`` or ``PageReadError``.
    """

    selection = select_segments(container, options)
    lines: list[str] = []
    lines.append(f"<!-- XML generated by affxml_tool version {__version__} -->\n")

    filename = filename if filename is not None else container.path
    if options.exclude_filename or not filename:
        lines.append(f"<{CONTAINER_TAG}>\n")
    else:
        attr = escape_attribute(filename)
        lines.append(f"<{CONTAINER_TAG} image_filename='{attr}'>\n")

    lines.append(
        render_element("pages", str(len(selection.page_indices)), coding="base10")
    )

    if options.compute_stats:
        tally = scan_pages(container, selection.page_indices)
        lines.append(f"  <{STATS_TAG}>\n")
        for tag, value in tally.as_elements():
            lines.append(render_element(tag, str(value), coding="base10"))
        lines.append(f"  </{STATS_TAG}>\n")

    for name in selection.segment_names:
        try:
            segment = container.read_segment(name)
        except MemoryError as exc:
            raise SegmentReadError(name, "out of memory") from exc
        encoded = encode_segment(segment, legacy_entities=options.legacy_entities)
        lines.append(encoded.render())

    lines.append(f"</{CONTAINER_TAG}>\n")
    return "".join(lines)


def write_reports(
    infiles: Iterable[Path | str],
    options: ReportOptions,
    out: TextIO,
    *,
    page_size: int = DEFAULT_PAGE_SIZE,
    sector_size: int = DEFAULT_SECTOR_SIZE,
) -> int:
    """
    Write the full document for ``infiles`` to ``out``.

    Inputs that cannot be opened are skipped with a warning and make the
    return value 1. Read failures after a container is opened propagate.
    """

    status = 0
    out.write(XML_DECLARATION)
    out.write(f"<{ROOT_TAG}>\n")
    for infile in infiles:
        try:
            container = open_container(
                infile, page_size=page_size, sector_size=sector_size
            )
        except ContainerOpenError as exc:
            logger.warning("%s", exc)
            status = 1
            continue
        with container:
            text = build_report(container, options, filename=str(infile))
        out.write(text)
    out.write(f"</{ROOT_TAG}>\n")
    return status


def _positive_int(value: str) -> int:
    number = int(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"{value} is not a positive integer")
    return number


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="affxml",
        description="Print segment information for forensic image containers as XML",
    )
    parser.add_argument(
        "infiles",
        nargs="+",
        type=Path,
        help="Segment directories or raw image files",
    )
    parser.add_argument(
        "-V",
        "--version",
        action="version",
        version=f"%(prog)s version {__version__}",
    )
    parser.add_argument(
        "-x",
        dest="exclude_filename",
        action="store_true",
        help="Don't include the infile filename in output",
    )
    parser.add_argument(
        "-j",
        dest="segments",
        action="append",
        default=[],
        metavar="SEGNAME",
        help="Just print information about SEGNAME (may be repeated)",
    )
    parser.add_argument(
        "-s",
        dest="stats",
        action="store_true",
        help="Output sector statistics for the image data (may take a long time)",
    )
    parser.add_argument(
        "--legacy-entities",
        action="store_true",
        help="Swap the < and > entities the way older affxml builds did",
    )
    parser.add_argument(
        "--page-size",
        type=_positive_int,
        default=DEFAULT_PAGE_SIZE,
        help="Page size used when reading raw images",
    )
    parser.add_argument(
        "--sector-size",
        type=_positive_int,
        default=DEFAULT_SECTOR_SIZE,
        help="Sector size used when reading raw images",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log per-segment and per-page progress to stderr",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="affxml: %(message)s",
        stream=sys.stderr,
    )

    options = ReportOptions(
        exclude_filename=args.exclude_filename,
        segment_allow_list=frozenset(args.segments),
        compute_stats=args.stats,
        legacy_entities=args.legacy_entities,
    )
    try:
        return write_reports(
            args.infiles,
            options,
            sys.stdout,
            page_size=args.page_size,
            sector_size=args.sector_size,
        )
    except (SegmentReadError, PageReadError) as exc:
        logger.error("%s", exc)
        return 2


__all__ = [
    "ReportOptions",
    "SegmentSelection",
    "build_arg_parser",
    "build_report",
    "main",
    "select_segments",
    "write_reports",
]
