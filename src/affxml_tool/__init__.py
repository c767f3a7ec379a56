"""
Top-level package for forensic image container XML reports.

The package reads segmented image containers (segment directories or raw
images), encodes each metadata segment as text and optionally tallies blank
and bad sectors across the image pages.
"""

__version__ = "0.1.0"

from .container import (
    Container,
    ContainerError,
    ContainerOpenError,
    DirectoryContainer,
    MemoryContainer,
    PageReadError,
    RawImageContainer,
    Segment,
    SegmentReadError,
    open_container,
)
from .encoding import Encoding, EncodedSegment, encode_segment, is_printable_safe
from .pagescan import IntegrityTally, is_blank, scan_pages
from .report import ReportOptions, build_report

__all__ = [
    "__version__",
    "Container",
    "ContainerError",
    "ContainerOpenError",
    "DirectoryContainer",
    "MemoryContainer",
    "PageReadError",
    "RawImageContainer",
    "Segment",
    "SegmentReadError",
    "open_container",
    "Encoding",
    "EncodedSegment",
    "encode_segment",
    "is_printable_safe",
    "IntegrityTally",
    "is_blank",
    "scan_pages",
    "ReportOptions",
    "build_report",
]
