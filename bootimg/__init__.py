# SPDX-License-Identifier: LGPL-2.1-or-later

import logging
import subprocess
import sys
from pathlib import Path
from typing import Optional

from bootimg.bootloader import handle_bootloader
from bootimg.config import Args, Config
from bootimg.content import copy_structure_content
from bootimg.context import Context
from bootimg.errors import ExternalToolError, FileIOError, GeometryError, ValidationError
from bootimg.gadget import Layout, Role, Schema, Structure, Volume
from bootimg.gadget import load_gadget_yaml as parse_gadget_yaml
from bootimg.hooks import run_hooks
from bootimg.host import Host
from bootimg.layout import (
    FS_BLOCK_SIZE,
    calculate_image_size,
    reconcile_rootfs_size,
    resolve_offsets,
    write_offset_values,
)
from bootimg.layout import calculate_rootfs_size as measure_rootfs
from bootimg.livebuild import run_live_build
from bootimg.log import ARG_DEBUG, complete_step, log_notice
from bootimg.pipeline import Pipeline, StepRegistry
from bootimg.util import format_bytes, round_up

# The backup GPT header and partition entries occupy the last 33 sectors of the disk.
GPT_BACKUP_SECTORS = 33
LINUX_FILESYSTEM_GUID = "0FC63DAF-8483-4772-8E47-3D2169A4B984"
ROOTFS_EXTRA_SPACE = 8 * 1024**2


def require_layout(context: Context) -> Layout:
    if context.layout is None:
        raise GeometryError("Cannot calculate image size before initializing the layout")
    return context.layout


def make_temporary_directories(context: Context, host: Host) -> None:
    for d in context.temporary_directories():
        try:
            host.mkdir(d, parents=True, exist_ok=True)
        except OSError as e:
            raise FileIOError(f"Error creating temporary directory {d}: {e}") from e


def prepare_gadget_tree(context: Context, host: Host) -> None:
    if context.config.gadget_dir is None:
        raise ValidationError("No gadget tree was configured")

    trees = [(context.config.gadget_dir, context.gadget_tree)]
    if context.config.image_dir is not None:
        trees += [(context.config.image_dir, context.image_tree)]

    for src, dst in trees:
        with complete_step(f"Copying {src} to {dst}…"):
            try:
                host.mkdir(dst, parents=True, exist_ok=True)
                host.copy_tree(src, dst)
            except (OSError, subprocess.CalledProcessError) as e:
                raise FileIOError(f"Error copying {src}: {e}") from e


def load_gadget_yaml(context: Context, host: Host) -> None:
    layout = parse_gadget_yaml(context.gadget_tree / "meta/gadget.yaml")

    for volume in layout.volumes.values():
        resolve_offsets(volume)
        logging.debug(f"Volume {volume.name} needs {format_bytes(calculate_image_size(layout, volume.name))}")

    context.layout = layout


def populate_rootfs_contents(context: Context, host: Host) -> None:
    if context.config.rootfs is not None:
        src = context.config.rootfs
    else:
        src = run_live_build(
            context.chroot,
            context.config.architecture,
            context.config.live_build_environment(),
            context.config.cross_build,
            host=host,
        )

    with complete_step(f"Copying root filesystem from {src}…"):
        try:
            host.copy_tree(src, context.rootfs)
        except (OSError, subprocess.CalledProcessError) as e:
            raise FileIOError(f"Error copying rootfs: {e}") from e


def run_post_populate_rootfs_hooks(context: Context, host: Host) -> None:
    run_hooks(
        "post-populate-rootfs",
        "BOOTIMG_HOOK_ROOTFS",
        context.rootfs,
        directories=context.config.hooks_directories,
        host=host,
    )


def calculate_rootfs_size(context: Context, host: Host) -> None:
    layout = require_layout(context)

    measured = measure_rootfs(context.rootfs)
    # Leave room for filesystem metadata and for whatever first boot adds.
    context.rootfs_size = round_up(measured * 3 // 2 + ROOTFS_EXTRA_SPACE, FS_BLOCK_SIZE)
    logging.debug(f"Root filesystem contents take {format_bytes(measured)}")

    for volume in layout.volumes.values():
        for i, structure in enumerate(volume.structures):
            if structure.is_rootfs():
                reconcile_rootfs_size(volume, i, context.rootfs_size)


def copy_gadget_content(context: Context, structure: Structure, target: Path, host: Host) -> None:
    for content in structure.content:
        if content.source is None:
            continue

        src = context.gadget_tree / content.source
        dst = target / (content.target or "/").lstrip("/")
        if (content.target or "/").endswith("/") and not content.source.endswith("/"):
            dst = dst / src.name

        try:
            host.mkdir(dst.parent, parents=True, exist_ok=True)
            if src.is_dir():
                host.copy_tree(src, dst)
            else:
                host.copy_special_file(src, dst)
        except (OSError, subprocess.CalledProcessError) as e:
            raise FileIOError(f"Error copying gadget content {content.source}: {e}") from e


def populate_bootfs_contents(context: Context, host: Host) -> None:
    layout = require_layout(context)

    for volume in layout.volumes.values():
        for i, structure in enumerate(volume.structures):
            if structure.filesystem is None or structure.is_rootfs():
                continue

            target = context.staging_dir(volume, i)

            try:
                host.mkdir(target, parents=True, exist_ok=True)
            except OSError as e:
                raise FileIOError(f"Error creating {target}: {e}") from e

            copy_gadget_content(context, structure, target, host)

            # Boot assets only exist when a prepared image tree was given.
            if structure.role in (Role.system_boot, Role.system_seed) and context.config.image_dir is not None:
                handle_bootloader(context, volume, target, host=host)


def partition_table_script(volume: Volume, sector_size: int) -> Optional[str]:
    partitions = [s for s in volume.structures if s.is_partition()]
    if not partitions:
        return None

    lines = [
        f"label: {'gpt' if volume.schema == Schema.gpt else 'dos'}",
        f"sector-size: {sector_size}",
        "",
    ]

    for structure in partitions:
        fields = [f"start={structure.start_offset // sector_size}", f"size={structure.size // sector_size}"]

        if volume.schema == Schema.gpt:
            fields += [f"type={structure.gpt_type() or LINUX_FILESYSTEM_GUID}", f'name="{structure.name}"']
        else:
            fields += [f"type={structure.mbr_type() or '83'}"]
            if structure.role == Role.system_boot:
                fields += ["bootable"]

        lines += [", ".join(fields)]

    return "\n".join(lines) + "\n"


def write_partition_table(volume: Volume, image: Path, sector_size: int, host: Host) -> None:
    if (script := partition_table_script(volume, sector_size)) is None:
        return

    try:
        host.run(["sfdisk", "--no-reread", "--no-tell-kernel", "--quiet", image], input=script)
    except (OSError, subprocess.CalledProcessError) as e:
        raise ExternalToolError(f"Error writing partition table to {image}: {e}") from e


def disk_image_size(context: Context, volume: Volume) -> int:
    size = calculate_image_size(context.layout, volume.name)
    if volume.schema == Schema.gpt:
        size += GPT_BACKUP_SECTORS * context.config.sector_size

    if (wanted := context.config.image_size) is not None:
        if wanted < size:
            logging.warning(
                f"Ignoring image size {format_bytes(wanted)} smaller than the minimum size "
                f"{format_bytes(size)} of volume {volume.name}"
            )
        else:
            size = wanted

    return size


def make_disk(context: Context, host: Host) -> None:
    layout = require_layout(context)

    for volume in layout.volumes.values():
        image = context.output_image(volume)
        size = disk_image_size(context, volume)

        with complete_step(f"Creating disk image {image} ({format_bytes(size)})…"):
            try:
                host.mkdir(image.parent, parents=True, exist_ok=True)
                host.allocate(image, size)
            except OSError as e:
                raise FileIOError(f"Error creating disk image {image}: {e}") from e

            write_partition_table(volume, image, context.config.sector_size, host)

            for i, structure in enumerate(volume.structures):
                content_root = context.rootfs if structure.is_rootfs() else context.staging_dir(volume, i)
                copy_structure_content(context, volume, structure, i, content_root, image, host=host)

            write_offset_values(host, volume, image, context.config.sector_size)

        context.image_sizes[volume.name] = size


def finish(context: Context, host: Host) -> None:
    layout = require_layout(context)

    for volume in layout.volumes.values():
        image = context.output_image(volume)
        log_notice(f"{image} size is {format_bytes(context.image_sizes.get(volume.name, 0))}")


STEPS = StepRegistry(
    [
        ("make_temporary_directories",     make_temporary_directories),
        ("prepare_gadget_tree",            prepare_gadget_tree),
        ("load_gadget_yaml",               load_gadget_yaml),
        ("populate_rootfs_contents",       populate_rootfs_contents),
        ("run_post_populate_rootfs_hooks", run_post_populate_rootfs_hooks),
        ("calculate_rootfs_size",          calculate_rootfs_size),
        ("populate_bootfs_contents",       populate_bootfs_contents),
        ("make_disk",                      make_disk),
        ("finish",                         finish),
    ]
)  # fmt: skip


def run_build(args: Args, config: Config, *, host: Optional[Host] = None) -> None:
    ARG_DEBUG.set(args.debug)

    pipeline = Pipeline(args, config, STEPS, host=host)
    if not pipeline.run():
        sys.exit(1)

    pipeline.teardown()
