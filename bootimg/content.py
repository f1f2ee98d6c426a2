# SPDX-License-Identifier: LGPL-2.1-or-later

import logging
import subprocess
from pathlib import Path
from typing import Protocol

from bootimg.context import Context
from bootimg.errors import FileIOError, FilesystemBuildError
from bootimg.gadget import Structure, Volume
from bootimg.host import Host
from bootimg.layout import calculate_rootfs_size, reconcile_rootfs_size
from bootimg.util import format_bytes


class MergeStrategy(Protocol):
    def __call__(self, host: Host, staging: Path, image: Path, offset: int) -> None: ...


def byte_copy_merge(host: Host, staging: Path, image: Path, offset: int) -> None:
    host.copy_blob(staging, image, seek=offset)


def copy_raw_content(context: Context, structure: Structure, image: Path, host: Host) -> None:
    try:
        host.zero_range(image, structure.start_offset, structure.size)
    except (OSError, ValueError) as e:
        raise FileIOError(f"Error zeroing partition {structure.name}: {e}") from e

    running = 0
    for content in structure.content:
        if content.image is None:
            continue

        if content.offset is not None:
            running = content.offset

        blob = context.gadget_tree / content.image

        try:
            blob_size = host.file_size(blob)
            size = content.size if content.size is not None else blob_size
            if blob_size > size or running + size > structure.size:
                raise ValueError(
                    f"{content.image} ({format_bytes(blob_size)}) does not fit at offset {running} "
                    f"of structure {structure.name} ({format_bytes(structure.size)})"
                )

            host.copy_blob(blob, image, seek=structure.start_offset + running)
        except (OSError, ValueError, subprocess.CalledProcessError) as e:
            raise FileIOError(f"Error copying image blob: {e}") from e

        running += size


def copy_filesystem_content(
    context: Context,
    volume: Volume,
    index: int,
    content_root: Path,
    image: Path,
    host: Host,
    merge: MergeStrategy,
) -> None:
    structure = volume.structures[index]

    if structure.is_rootfs():
        measured = context.rootfs_size if context.rootfs_size is not None else calculate_rootfs_size(content_root)
        reconcile_rootfs_size(volume, index, measured)

    assert structure.filesystem is not None
    staging = context.staging_image(volume, index)

    try:
        host.mkdir(staging.parent, parents=True, exist_ok=True)
        host.allocate(staging, structure.size)
    except OSError as e:
        raise FileIOError(f"Error zeroing image file {staging}: {e}") from e

    try:
        host.make_filesystem(
            structure.filesystem,
            staging,
            label=structure.label,
            root=content_root,
            sector_size=context.config.sector_size,
        )
    except (OSError, ValueError, subprocess.CalledProcessError) as e:
        raise FilesystemBuildError(f"Error running mkfs for structure {structure.name}: {e}") from e

    try:
        merge(host, staging, image, structure.start_offset)
    except (OSError, ValueError) as e:
        raise FileIOError(f"Error copying {staging} into {image}: {e}") from e

    logging.debug(f"Placed {structure.filesystem} filesystem {structure.name} at offset {structure.start_offset}")


def copy_structure_content(
    context: Context,
    volume: Volume,
    structure: Structure,
    index: int,
    content_root: Path,
    image: Path,
    *,
    host: Host,
    merge: MergeStrategy = byte_copy_merge,
) -> None:
    """Materialize the content of a single structure inside the volume image.

    Raw structures are zeroed and then filled with their image blobs in place. Structures with a
    filesystem are built in a separate staging image populated from content_root, which is then
    merged into the volume image at the structure's offset.
    """
    # Sizes are reconciled on the volume, so it has to hold the structure we were given.
    if volume.structures[index] is not structure:
        volume.structures[index] = structure

    if structure.filesystem is None:
        copy_raw_content(context, structure, image, host)
    else:
        copy_filesystem_content(context, volume, index, content_root, image, host, merge)
