# SPDX-License-Identifier: LGPL-2.1-or-later

from pathlib import Path
from typing import Any

import pytest

from bootimg.errors import FileIOError, ValidationError
from bootimg.gadget import (
    Bootloader,
    Content,
    Filesystem,
    OffsetWrite,
    Role,
    Schema,
    Structure,
    load_gadget_yaml,
    parse_gadget,
)


def test_load_gadget_yaml(gadget_dir: Path) -> None:
    layout = load_gadget_yaml(gadget_dir / "meta/gadget.yaml")

    assert list(layout.volumes) == ["pc"]
    volume = layout.volumes["pc"]
    assert volume.schema == Schema.gpt
    assert volume.bootloader == Bootloader.grub
    assert [s.name for s in volume.structures] == ["mbr", "BIOS Boot", "EFI System", "writable"]

    mbr, bios, esp, writable = volume.structures
    assert mbr.role == Role.mbr
    assert mbr.content == [Content(image="boot.img")]
    assert not mbr.is_partition()
    assert bios.offset == 1024**2
    assert bios.offset_write == OffsetWrite(92, "mbr")
    assert bios.is_partition()
    assert bios.gpt_type() == "21686148-6449-6E6F-744E-656564454649"
    assert esp.filesystem == Filesystem.vfat
    assert esp.label == "system-boot"
    assert esp.content == [Content(source="grub.cfg", target="EFI/ubuntu/")]
    assert writable.is_rootfs()
    assert writable.size == 1024**2


def test_load_gadget_yaml_missing(tmp_path: Path) -> None:
    with pytest.raises(FileIOError, match="Error reading gadget.yaml"):
        load_gadget_yaml(tmp_path / "gadget.yaml")


def test_load_gadget_yaml_invalid(tmp_path: Path) -> None:
    (tmp_path / "gadget.yaml").write_text("volumes: [\n")

    with pytest.raises(ValidationError):
        load_gadget_yaml(tmp_path / "gadget.yaml")


@pytest.mark.parametrize("data", [None, [], {"volumes": []}, {"device-trees": "x"}])
def test_parse_gadget_no_volumes(data: Any) -> None:
    with pytest.raises(ValidationError):
        parse_gadget(data)


def gadget(*structures: dict[str, Any], **volume: Any) -> dict[str, Any]:
    return {"volumes": {"v": {**volume, "structure": list(structures)}}}


def test_parse_gadget_defaults() -> None:
    layout = parse_gadget(gadget({"size": 4096}, {"size": "1M", "filesystem-label": "writable", "filesystem": "ext4"}))
    volume = layout.volumes["v"]

    assert volume.schema == Schema.gpt
    assert volume.bootloader is None
    assert volume.structures[0] == Structure("structure0", size=4096)
    assert volume.structures[1].role == Role.system_data
    assert volume.structures[1].name == "structure1"


@pytest.mark.parametrize(
    "structure",
    [
        {"name": "mbr", "type": "mbr", "size": 446, "offset": 512},
        {"name": "mbr", "role": "mbr", "size": 512},
        {"name": "raw", "size": 4096, "content": [{"source": "a", "target": "/"}]},
        {"name": "fs", "size": 4096, "filesystem": "ext4", "content": [{"image": "a.img"}]},
        {"name": "fs", "size": 4096, "filesystem": "btrfs"},
        {"name": "bad", "size": 4096, "role": "system-nope"},
        {"name": "bad", "size": "lots"},
    ],
)
def test_parse_gadget_invalid_structure(structure: dict[str, Any]) -> None:
    with pytest.raises(ValidationError):
        parse_gadget(gadget(structure))


def test_parse_gadget_invalid_volume() -> None:
    with pytest.raises(ValidationError):
        parse_gadget(gadget({"size": 1}, schema="apm"))
    with pytest.raises(ValidationError):
        parse_gadget(gadget({"size": 1}, bootloader="syslinux"))


def test_mbr_schema() -> None:
    layout = parse_gadget(gadget({"name": "boot", "type": "0C", "size": "64M"}, schema="mbr", bootloader="u-boot"))
    volume = layout.volumes["v"]

    assert volume.schema == Schema.mbr
    assert volume.bootloader == Bootloader.u_boot
    assert volume.structures[0].mbr_type() == "0C"
    assert volume.structures[0].gpt_type() is None


def test_hybrid_type() -> None:
    s = Structure("s", type="83,0FC63DAF-8483-4772-8E47-3D2169A4B984")
    assert s.mbr_type() == "83"
    assert s.gpt_type() == "0FC63DAF-8483-4772-8E47-3D2169A4B984"
    assert Structure("bare").mbr_type() is None


def test_offset_write() -> None:
    assert OffsetWrite.parse(92) == OffsetWrite(92)
    assert OffsetWrite.parse("92") == OffsetWrite(92)
    assert OffsetWrite.parse("mbr+92") == OffsetWrite(92, "mbr")
    assert OffsetWrite.parse("label+1K") == OffsetWrite(1024, "label")
    assert str(OffsetWrite(92, "mbr")) == "mbr+92"
    assert str(OffsetWrite(92)) == "92"


def test_structure_roundtrip() -> None:
    s = Structure(
        "s",
        size=4096,
        role=Role.system_boot,
        filesystem=Filesystem.vfat,
        offset_write=OffsetWrite(8, "mbr"),
        content=[Content(source="a", target="b")],
        start_offset=512,
    )
    assert Structure.from_dict(s.to_dict()) == s
