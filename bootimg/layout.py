# SPDX-License-Identifier: LGPL-2.1-or-later

import functools
import logging
import os
import struct
from pathlib import Path
from typing import Optional, Union

from bootimg.errors import FileIOError, GeometryError
from bootimg.gadget import Layout, Role, Structure, Volume
from bootimg.host import Host
from bootimg.util import format_bytes, round_up

# Block size of the filesystems we create for the rootfs.
FS_BLOCK_SIZE = 4096


def structure_offset(structure: Structure) -> int:
    return structure.offset if structure.offset is not None else 0


def max_offset(a: int, b: int) -> int:
    return a if a > b else b


def resolve_offsets(volume: Volume) -> Volume:
    """Compute the effective offset of every structure of the volume in declaration order.

    A structure without an explicit offset starts right after the previous structure, the
    first one (and any structure with the mbr role) at the start of the volume.
    """
    end = 0

    for i, structure in enumerate(volume.structures):
        if structure.offset is not None:
            start = structure.offset
        elif structure.role == Role.mbr:
            start = 0
        else:
            start = end

        for other in volume.structures[:i]:
            if start < other.end_offset and other.start_offset < start + structure.size:
                raise GeometryError(
                    f"Structure {structure.name} ({start}+{structure.size}) overlaps with "
                    f"structure {other.name} ({other.start_offset}+{other.size}) in volume {volume.name}"
                )

        structure.start_offset = start
        end = start + structure.size

    return volume


def calculate_image_size(layout: Optional[Layout], volume: Optional[str] = None) -> int:
    if layout is None:
        raise GeometryError("Cannot calculate image size before initializing the layout")

    volumes = [layout.volumes[volume]] if volume is not None else list(layout.volumes.values())
    return functools.reduce(max_offset, (s.end_offset for v in volumes for s in v.structures), 0)


def dir_size(path: Union[Path, os.DirEntry[str]]) -> int:
    dir_sum = FS_BLOCK_SIZE
    for entry in os.scandir(path):
        if entry.is_symlink():
            # Short symlinks are stored inline in the inode, and we never follow them out of the tree.
            continue
        elif entry.is_dir():
            dir_sum += dir_size(entry)
        elif entry.is_file():
            dir_sum += round_up(entry.stat().st_size, FS_BLOCK_SIZE)
    return dir_sum


def calculate_rootfs_size(path: Path) -> int:
    try:
        return dir_size(path)
    except OSError as e:
        raise FileIOError(f"Error calculating size of {path}: {e}") from e


def reconcile_rootfs_size(volume: Volume, index: int, measured: int) -> bool:
    """Grow the rootfs structure to the measured size of its contents.

    Declared sizes are never decreased. Returns whether the structure was resized.
    """
    structure = volume.structures[index]
    if structure.size >= measured:
        return False

    logging.warning(
        f"rootfs structure size {format_bytes(structure.size)} smaller than actual rootfs contents "
        f"{format_bytes(measured)}"
    )
    structure.size = measured
    resolve_offsets(volume)

    return True


def write_offset_value(host: Host, image: Path, offset: int, data: bytes) -> None:
    """Write data at offset into an existing image.

    The whole value has to fit inside the file, since the image is never grown here, so offsets
    less than len(data) bytes before the end of the file are rejected along with those past it.
    """
    try:
        length = host.file_size(image)
    except OSError as e:
        raise FileIOError(f"Failed to write offset to disk: {e}") from e

    if offset < 0 or offset + len(data) > length:
        raise GeometryError(f"write offset beyond end of file ({offset}+{len(data)} > {length})")

    try:
        host.write_at(image, offset, data)
    except OSError as e:
        raise FileIOError(f"Failed to write offset to disk: {e}") from e


def write_offset_values(host: Host, volume: Volume, image: Path, sector_size: int) -> None:
    for structure in volume.structures:
        if structure.offset_write is None:
            continue

        base = 0
        if (name := structure.offset_write.relative_to) is not None:
            other = next((s for s in volume.structures if name in (s.name, s.label)), None)
            if other is None:
                raise GeometryError(f"offset-write of structure {structure.name} refers to unknown structure {name}")
            base = other.start_offset

        write_offset_value(
            host,
            image,
            base + structure.offset_write.offset,
            struct.pack("<I", structure.start_offset // sector_size),
        )
