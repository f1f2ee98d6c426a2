# SPDX-License-Identifier: LGPL-2.1-or-later

import dataclasses
import enum
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Optional

import yaml

from bootimg.errors import FileIOError, ValidationError
from bootimg.util import StrEnum, parse_bytes

MBR_SIZE = 446


class Role(StrEnum):
    mbr         = enum.auto()
    system_boot = enum.auto()
    system_data = enum.auto()
    system_seed = enum.auto()
    system_save = enum.auto()


class Bootloader(StrEnum):
    grub   = enum.auto()
    u_boot = enum.auto()
    piboot = enum.auto()
    lk     = enum.auto()


class Schema(StrEnum):
    gpt = enum.auto()
    mbr = enum.auto()


class Filesystem(StrEnum):
    ext4 = enum.auto()
    vfat = enum.auto()


@dataclasses.dataclass(frozen=True)
class OffsetWrite:
    """Where to store the offset of a structure, optionally relative to another structure."""

    offset: int
    relative_to: Optional[str] = None

    @classmethod
    def parse(cls, value: Any) -> "OffsetWrite":
        if isinstance(value, int):
            return cls(offset=value)

        label, sep, offset = str(value).rpartition("+")
        return cls(offset=parse_bytes(offset), relative_to=label if sep else None)

    def __str__(self) -> str:
        return f"{self.relative_to}+{self.offset}" if self.relative_to else str(self.offset)


@dataclasses.dataclass(frozen=True)
class Content:
    # Raw structures reference blobs with "image", filesystem structures copy "source" to "target".
    image: Optional[str] = None
    offset: Optional[int] = None
    size: Optional[int] = None
    source: Optional[str] = None
    target: Optional[str] = None

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "Content":
        return cls(
            image=d.get("image"),
            offset=parse_size(d["offset"]) if d.get("offset") is not None else None,
            size=parse_size(d["size"]) if d.get("size") is not None else None,
            source=d.get("source"),
            target=d.get("target"),
        )


@dataclasses.dataclass
class Structure:
    name: str
    size: int = 0
    type: str = "bare"
    role: Optional[Role] = None
    label: Optional[str] = None
    filesystem: Optional[Filesystem] = None
    offset: Optional[int] = None
    offset_write: Optional[OffsetWrite] = None
    content: list[Content] = dataclasses.field(default_factory=list)
    # Effective offset inside the volume, filled in by the layout resolver.
    start_offset: int = 0

    @property
    def end_offset(self) -> int:
        return self.start_offset + self.size

    def is_partition(self) -> bool:
        return self.type not in ("bare", "mbr") and self.role != Role.mbr

    def is_rootfs(self) -> bool:
        return self.role == Role.system_data

    def mbr_type(self) -> Optional[str]:
        t = self.type.split(",")[0]
        return t if re.fullmatch(r"[0-9A-Fa-f]{2}", t) else None

    def gpt_type(self) -> Optional[str]:
        t = self.type.split(",")[-1]
        return t if re.fullmatch(r"[0-9A-Fa-f-]{36}", t) else None

    def to_dict(self) -> dict[str, Any]:
        d = dataclasses.asdict(self)
        d["offset_write"] = str(self.offset_write) if self.offset_write else None
        return d

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "Structure":
        return cls(
            name=d["name"],
            size=d.get("size", 0),
            type=d.get("type", "bare"),
            role=Role(d["role"]) if d.get("role") else None,
            label=d.get("label"),
            filesystem=Filesystem(d["filesystem"]) if d.get("filesystem") else None,
            offset=d.get("offset"),
            offset_write=OffsetWrite.parse(d["offset_write"]) if d.get("offset_write") is not None else None,
            content=[Content(**c) for c in d.get("content", [])],
            start_offset=d.get("start_offset", 0),
        )


@dataclasses.dataclass
class Volume:
    name: str
    schema: Schema = Schema.gpt
    bootloader: Optional[Bootloader] = None
    structures: list[Structure] = dataclasses.field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "schema": str(self.schema),
            "bootloader": str(self.bootloader) if self.bootloader else None,
            "structures": [s.to_dict() for s in self.structures],
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "Volume":
        return cls(
            name=d["name"],
            schema=Schema(d.get("schema", "gpt")),
            bootloader=Bootloader(d["bootloader"]) if d.get("bootloader") else None,
            structures=[Structure.from_dict(s) for s in d.get("structures", [])],
        )


@dataclasses.dataclass
class Layout:
    volumes: dict[str, Volume] = dataclasses.field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"volumes": [v.to_dict() for v in self.volumes.values()]}

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "Layout":
        volumes = [Volume.from_dict(v) for v in d.get("volumes", [])]
        return cls(volumes={v.name: v for v in volumes})


def parse_size(value: Any) -> int:
    if isinstance(value, int):
        return value

    return parse_bytes(str(value))


def parse_structure(d: Mapping[str, Any], index: int) -> Structure:
    type = str(d.get("type", "bare"))
    role = Role(d["role"]) if d.get("role") else None

    # Legacy gadgets mark the boot sector with "type: mbr" instead of a role.
    if role is None and type == "mbr":
        role = Role.mbr
    if role is None and d.get("filesystem-label") == "writable":
        role = Role.system_data

    structure = Structure(
        name=d.get("name") or f"structure{index}",
        size=parse_size(d.get("size", 0)),
        type=type,
        role=role,
        label=d.get("filesystem-label"),
        filesystem=Filesystem(d["filesystem"]) if d.get("filesystem") else None,
        offset=parse_size(d["offset"]) if d.get("offset") is not None else None,
        offset_write=OffsetWrite.parse(d["offset-write"]) if d.get("offset-write") is not None else None,
        content=[Content.from_dict(c) for c in d.get("content") or []],
    )

    if structure.role == Role.mbr:
        if structure.offset not in (None, 0):
            raise ValidationError(f"Structure {structure.name} with role mbr must be placed at offset 0")
        if structure.size > MBR_SIZE:
            raise ValidationError(f"Structure {structure.name} with role mbr cannot exceed {MBR_SIZE} bytes")

    if structure.filesystem is None and any(c.source for c in structure.content):
        raise ValidationError(f"Structure {structure.name} without a filesystem cannot use source content")
    if structure.filesystem is not None and any(c.image for c in structure.content):
        raise ValidationError(f"Structure {structure.name} with a filesystem cannot use image content")

    return structure


def parse_gadget(data: Any) -> Layout:
    if not isinstance(data, Mapping) or not isinstance(data.get("volumes"), Mapping):
        raise ValidationError("gadget.yaml must contain a mapping of volumes")

    layout = Layout()

    for name, v in data["volumes"].items():
        try:
            volume = Volume(
                name=name,
                schema=Schema(v.get("schema", "gpt")),
                bootloader=Bootloader(v["bootloader"]) if v.get("bootloader") else None,
                structures=[parse_structure(s, i) for i, s in enumerate(v.get("structure") or [])],
            )
        except (ValueError, KeyError, AttributeError, TypeError) as e:
            raise ValidationError(f"Invalid definition of volume {name} in gadget.yaml: {e}") from e

        layout.volumes[name] = volume

    return layout


def load_gadget_yaml(path: Path) -> Layout:
    try:
        with path.open() as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise FileIOError(f"Error reading gadget.yaml: {e}") from e
    except yaml.YAMLError as e:
        raise ValidationError(f"Invalid YAML in {path}: {e}") from e

    return parse_gadget(data)
