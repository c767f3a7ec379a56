import json
from pathlib import Path

import pytest

from affxml_tool.container import (
    DEFAULT_PAGE_SIZE,
    DEFAULT_SECTOR_SIZE,
    SEG_QUADWORD,
    Container,
    ContainerOpenError,
    DirectoryContainer,
    MemoryContainer,
    PageReadError,
    RawImageContainer,
    Segment,
    SegmentReadError,
    decode_quad,
    encode_quad,
    open_container,
    segment_page_number,
)


@pytest.mark.parametrize(
    "name, expected",
    [
        ("page0", 0),
        ("page17", 17),
        ("seg3", 3),
        ("page", None),
        ("page1_md5", None),
        ("pagesize", None),
        ("segsize", None),
        ("mypage1", None),
    ],
)
def test_segment_page_number(name: str, expected) -> None:
    assert segment_page_number(name) == expected


def test_decode_quad_word_order() -> None:
    data = (5).to_bytes(4, "big") + (1).to_bytes(4, "big")
    assert decode_quad(data) == (1 << 32) + 5
    assert decode_quad(b"\xff" * 8) == -1
    assert decode_quad(encode_quad(-42)) == -42


def test_decode_quad_requires_eight_bytes() -> None:
    with pytest.raises(ValueError):
        decode_quad(b"\x00" * 4)


def test_memory_container_geometry_defaults() -> None:
    container = MemoryContainer([Segment("case_number", payload=b"1")])
    assert container.page_size == DEFAULT_PAGE_SIZE
    assert container.sector_size == DEFAULT_SECTOR_SIZE
    with pytest.raises(SegmentReadError):
        container.read_segment("missing")


def test_legacy_segsize_sets_page_size() -> None:
    container = MemoryContainer([Segment("segsize", arg=65536)])
    assert container.page_size == 65536


def test_directory_container_reads_manifest(case_dir: Path) -> None:
    with open_container(case_dir) as container:
        assert isinstance(container, DirectoryContainer)
        names = list(container.segment_names())
        assert names[:4] == ["", "dir", "pagesize", "sectorsize"]
        # each call starts again from the first segment
        assert list(container.segment_names()) == names
        assert container.page_size == 4096
        assert container.sector_size == 512
        assert container.read_segment("case_number").payload == b"2024-001"
        assert container.read_segment("pagesize").payload == b""
        assert len(container.read_page(1)) == 4096


def test_directory_container_quad_flag_from_arg(tmp_path: Path) -> None:
    tmp_path.joinpath("manifest.json").write_text(
        json.dumps({"segments": [{"name": "acquired", "arg": SEG_QUADWORD}]})
    )
    segment = DirectoryContainer(tmp_path).read_segment("acquired")
    assert segment.quadword_hint


def test_directory_without_manifest_fails_to_open(tmp_path: Path) -> None:
    with pytest.raises(ContainerOpenError):
        open_container(tmp_path)


@pytest.mark.parametrize(
    "manifest",
    ["not json", json.dumps([1, 2]), json.dumps({"segments": [{"arg": 1}]})],
)
def test_bad_manifest_fails_to_open(tmp_path: Path, manifest: str) -> None:
    tmp_path.joinpath("manifest.json").write_text(manifest)
    with pytest.raises(ContainerOpenError):
        DirectoryContainer(tmp_path)


def test_missing_payload_file_is_segment_error(tmp_path: Path) -> None:
    tmp_path.joinpath("manifest.json").write_text(
        json.dumps({"segments": [{"name": "notes", "file": "gone.bin"}]})
    )
    container = DirectoryContainer(tmp_path)
    with pytest.raises(SegmentReadError) as excinfo:
        container.read_segment("notes")
    assert excinfo.value.segment_name == "notes"


def test_missing_path_fails_to_open(tmp_path: Path) -> None:
    with pytest.raises(ContainerOpenError):
        open_container(tmp_path / "nope.raw")


def test_raw_image_pages(tmp_path: Path) -> None:
    image = tmp_path / "disk.raw"
    image.write_bytes(b"\x00" * 4096 + b"\x01" * 1000)
    with open_container(image, page_size=4096, sector_size=512) as container:
        assert isinstance(container, RawImageContainer)
        assert list(container.segment_names()) == [
            "pagesize",
            "sectorsize",
            "imagesize",
            "page0",
            "page1",
        ]
        assert container.read_segment("pagesize").arg == 4096
        assert decode_quad(container.read_segment("imagesize").payload) == 5096
        assert len(container.read_page(1)) == 1000
        assert container.read_segment("page1").payload == b"\x01" * 1000
        with pytest.raises(PageReadError):
            container.read_page(2)
        with pytest.raises(SegmentReadError):
            container.read_segment("page9")


def test_container_base_class_is_abstract() -> None:
    with pytest.raises(TypeError):
        Container()
