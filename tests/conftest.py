from __future__ import annotations

import importlib.util
import json
import sys
from pathlib import Path
from typing import Sequence

import pytest


def repo_src_path() -> Path:
    """Return the repository's ``src`` directory."""

    return Path(__file__).resolve().parents[1] / "src"


def _ensure_repo_on_path() -> None:
    if importlib.util.find_spec("affxml_tool") is None:
        sys.path.insert(0, str(repo_src_path()))


_ensure_repo_on_path()


def build_segment_dir(
    root: Path, segments: Sequence[tuple[str, int, bytes | None]]
) -> Path:
    """Write a segment directory with one payload file per (name, arg, payload)."""

    seg_dir = root / "segments"
    seg_dir.mkdir(parents=True, exist_ok=True)
    entries = []
    for idx, (name, arg, payload) in enumerate(segments):
        entry: dict = {"name": name, "arg": arg}
        if payload is not None:
            rel = f"segments/{idx:04d}.bin"
            (root / rel).write_bytes(payload)
            entry["file"] = rel
        entries.append(entry)
    (root / "manifest.json").write_text(json.dumps({"segments": entries}, indent=2))
    return root


@pytest.fixture
def case_dir(tmp_path: Path) -> Path:
    """A small container: metadata, an md5, two pages and a bad-sector marker."""

    badflag = b"BAD SECTOR" + b"\x00" * 502
    page0 = b"\x00" * 4096
    page1 = bytearray(b"\x00" * 4096)
    page1[512:1024] = badflag
    page1[1024:1030] = b"hello!"
    return build_segment_dir(
        tmp_path / "case.affd",
        [
            ("", 0, None),
            ("dir", 0, b"\x01\x02"),
            ("pagesize", 4096, None),
            ("sectorsize", 512, None),
            ("badflag", 0, badflag),
            ("case_number", 0, b"2024-001"),
            ("operator_name", 0, b"J. Smith <lab>"),
            ("imagesize", 0, (8192).to_bytes(4, "big") + (0).to_bytes(4, "big")),
            ("image_md5", 0, bytes(range(0, 256, 17))),
            ("keyblob/aes256", 0, b"\xff" * 32),
            ("page0", 0, page0),
            ("page1", 0, bytes(page1)),
        ],
    )
