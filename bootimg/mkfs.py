# SPDX-License-Identifier: LGPL-2.1-or-later

from pathlib import Path
from typing import Optional

from bootimg.gadget import Filesystem
from bootimg.run import run
from bootimg.util import PathString


def mkfs_ext4_cmd(image: Path, label: Optional[str], root: Path) -> list[PathString]:
    return [
        "mkfs.ext4",
        "-F",
        "-q",
        *(["-L", label] if label else []),
        "-d", root,
        image,
    ]  # fmt: skip


def mkfs_vfat_cmd(image: Path, label: Optional[str], sector_size: int) -> list[PathString]:
    return [
        "mkfs.vfat",
        "-S", str(sector_size),
        "-s", "1",
        *(["-n", label.upper()[:11]] if label else []),
        image,
    ]  # fmt: skip


def make_filesystem(
    fs: Filesystem,
    image: Path,
    *,
    label: Optional[str],
    root: Path,
    sector_size: int = 512,
) -> None:
    """Create a filesystem of the given kind in image and populate it from root in one pass.

    The image has to exist already and be sized to the size of the filesystem.
    """
    if fs == Filesystem.ext4:
        run(mkfs_ext4_cmd(image, label, root))
    elif fs == Filesystem.vfat:
        run(mkfs_vfat_cmd(image, label, sector_size))

        # vfat has no way to be populated at creation time, so copy the tree with mtools afterwards.
        if root.exists() and (entries := sorted(root.iterdir())):
            run(["mcopy", "-s", "-p", "-Q", "-m", "-i", image, *entries, "::"])
    else:
        raise ValueError(f"Unsupported filesystem {fs}")
