# SPDX-License-Identifier: LGPL-2.1-or-later

import os
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Optional

from bootimg.gadget import Filesystem
from bootimg.mkfs import make_filesystem
from bootimg.run import CompletedProcess, find_binary, run
from bootimg.util import _FILE, PathString

ZERO_CHUNK = 1024**2


class Host:
    """
    The filesystem, process and block copy primitives the build steps are written against.

    Every step receives the host explicitly instead of calling into os, shutil or subprocess
    directly, so that tests can substitute individual operations by subclassing.
    """

    def __init__(self, *, block_size: int = 4 * 1024**2) -> None:
        self.block_size = block_size

    def mkdir(self, path: Path, *, parents: bool = False, exist_ok: bool = False) -> None:
        path.mkdir(mode=0o755, parents=parents, exist_ok=exist_ok)

    def listdir(self, path: Path) -> list[Path]:
        return sorted(path.iterdir())

    def rename(self, src: Path, dst: Path) -> None:
        src.rename(dst)

    def copy_tree(self, src: Path, dst: Path) -> None:
        """Merge the directory src into dst, preserving symlinks and special files."""
        self.run(
            [
                "cp",
                "--recursive",
                "--no-dereference",
                "--preserve=mode,links,timestamps",
                "--no-target-directory",
                src,
                dst,
            ]
        )

    def copy_special_file(self, src: Path, dst: Path) -> None:
        self.run(["cp", "--archive", src, dst])

    def rmtree(self, path: Path) -> None:
        self.run(["rm", "-rf", "--", path])

    def run(
        self,
        cmdline: Sequence[PathString],
        *,
        env: Mapping[str, str] = {},
        cwd: Optional[Path] = None,
        stdout: _FILE = None,
        input: Optional[str] = None,
    ) -> CompletedProcess:
        return run(cmdline, env=env, cwd=cwd, stdout=stdout, input=input)

    def which(self, name: str) -> Optional[Path]:
        return find_binary(name)

    def file_size(self, path: Path) -> int:
        return path.stat().st_size

    def allocate(self, path: Path, size: int) -> None:
        # Truncating to zero first drops any stale blocks, the extension reads back as zeroes.
        with path.open("wb") as f:
            f.truncate(size)

    def zero_range(self, path: Path, offset: int, size: int) -> None:
        with path.open("r+b") as f:
            length = os.fstat(f.fileno()).st_size
            if offset + size > length:
                raise ValueError(f"Range {offset}+{size} lies beyond the end of {path} ({length} bytes)")

            f.seek(offset)
            while size > 0:
                n = min(size, ZERO_CHUNK)
                f.write(bytes(n))
                size -= n

    def copy_blob(self, src: Path, dst: Path, *, seek: int) -> int:
        """Copy all of src into dst starting at byte seek, without truncating dst."""
        if self.block_size <= 0:
            raise ValueError(f"Invalid block size {self.block_size}")

        copied = 0
        with src.open("rb") as i, dst.open("r+b") as o:
            o.seek(seek)
            while buf := i.read(self.block_size):
                o.write(buf)
                copied += len(buf)

        return copied

    def write_at(self, path: Path, offset: int, data: bytes) -> None:
        with path.open("r+b") as f:
            f.seek(offset)
            f.write(data)

    def make_filesystem(
        self,
        fs: Filesystem,
        image: Path,
        *,
        label: Optional[str],
        root: Path,
        sector_size: int = 512,
    ) -> None:
        make_filesystem(fs, image, label=label, root=root, sector_size=sector_size)
