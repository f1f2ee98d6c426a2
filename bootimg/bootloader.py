# SPDX-License-Identifier: LGPL-2.1-or-later

import logging
import subprocess
from pathlib import Path
from typing import Optional, Protocol

from bootimg.context import Context
from bootimg.errors import FileIOError
from bootimg.gadget import Bootloader, Volume
from bootimg.host import Host


class BootloaderHandler(Protocol):
    def __call__(self, context: Context, volume: Volume, target: Path, *, host: Host) -> None: ...


# Directory below image/boot/ holding the assets of each bootloader, and where they go in the boot partition.
SECURE_BOOT_DIRECTORIES = {
    Bootloader.grub:   ("grub", Path("EFI/ubuntu")),
    Bootloader.u_boot: ("uboot", Path(".")),
    Bootloader.piboot: ("piboot", Path(".")),
}  # fmt: skip


def boot_assets_dir(context: Context, name: str) -> Path:
    return context.image_tree / "boot" / name


def handle_secure_boot(context: Context, volume: Volume, target: Path, *, host: Host) -> None:
    assert volume.bootloader in SECURE_BOOT_DIRECTORIES
    name, subdir = SECURE_BOOT_DIRECTORIES[volume.bootloader]
    boot_dir = boot_assets_dir(context, name)
    ubuntu_dir = target / subdir

    try:
        host.mkdir(ubuntu_dir, parents=True, exist_ok=True)
    except OSError as e:
        raise FileIOError(f"Error creating ubuntu dir: {e}") from e

    try:
        entries = host.listdir(boot_dir)
    except OSError as e:
        raise FileIOError(f"Error reading boot dir: {e}") from e

    for entry in entries:
        try:
            host.rename(entry, ubuntu_dir / entry.name)
        except OSError as e:
            raise FileIOError(f"Error copying boot dir: {e}") from e

    logging.debug(f"Moved {len(entries)} {volume.bootloader} boot assets to {ubuntu_dir}")


def handle_lk_bootloader(context: Context, volume: Volume, target: Path, *, host: Host) -> None:
    # lk reads its boot images from raw structures, so the assets go to the gadget tree where the
    # structure content is looked up instead of to the boot partition.
    gadget_dir = context.gadget_tree

    try:
        host.mkdir(gadget_dir, exist_ok=True)
    except OSError as e:
        raise FileIOError(f"Failed to create gadget dir: {e}") from e

    try:
        entries = host.listdir(boot_assets_dir(context, "lk"))
    except OSError as e:
        raise FileIOError(f"Error reading lk bootloader dir: {e}") from e

    for entry in entries:
        try:
            host.copy_special_file(entry, gadget_dir)
        except (OSError, subprocess.CalledProcessError) as e:
            raise FileIOError(f"Error copying lk bootloader dir: {e}") from e


BOOTLOADER_HANDLERS: dict[Bootloader, BootloaderHandler] = {
    Bootloader.grub:   handle_secure_boot,
    Bootloader.u_boot: handle_secure_boot,
    Bootloader.piboot: handle_secure_boot,
    Bootloader.lk:     handle_lk_bootloader,
}  # fmt: skip


def find_bootloader_handler(bootloader: Optional[Bootloader]) -> Optional[BootloaderHandler]:
    return BOOTLOADER_HANDLERS.get(bootloader) if bootloader is not None else None


def handle_bootloader(context: Context, volume: Volume, target: Path, *, host: Host) -> None:
    if (handler := find_bootloader_handler(volume.bootloader)) is None:
        return

    handler(context, volume, target, host=host)
