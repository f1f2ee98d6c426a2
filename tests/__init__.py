# SPDX-License-Identifier: LGPL-2.1-or-later

import os
import shutil
import subprocess
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Optional

from bootimg.gadget import Filesystem
from bootimg.host import Host
from bootimg.run import CompletedProcess
from bootimg.util import _FILE, PathString


class FakeHost(Host):
    """A host that records external commands instead of running them.

    Files are still copied for real, so the steps can be checked against the resulting trees.
    Commands whose binary is listed in fail fail with exit status 1, outputs maps a binary to
    the stdout it should produce.
    """

    def __init__(
        self,
        *,
        block_size: int = 4 * 1024**2,
        fail: Sequence[str] = (),
        outputs: Mapping[str, str] = {},
        binaries: Mapping[str, Path] = {},
    ) -> None:
        super().__init__(block_size=block_size)
        self.fail = set(fail)
        self.outputs = dict(outputs)
        self.binaries = dict(binaries)
        self.commands: list[list[str]] = []
        self.inputs: list[Optional[str]] = []
        self.filesystems: list[tuple[Filesystem, Path, Optional[str], Path]] = []

    def run(
        self,
        cmdline: Sequence[PathString],
        *,
        env: Mapping[str, str] = {},
        cwd: Optional[Path] = None,
        stdout: _FILE = None,
        input: Optional[str] = None,
    ) -> CompletedProcess:
        cmd = [os.fspath(c) for c in cmdline]
        self.commands.append(cmd)
        self.inputs.append(input)

        if cmd[0] in self.fail:
            raise subprocess.CalledProcessError(1, cmd)

        return CompletedProcess(cmd, 0, self.outputs.get(cmd[0], ""), None)

    def which(self, name: str) -> Optional[Path]:
        return self.binaries.get(name)

    def copy_tree(self, src: Path, dst: Path) -> None:
        shutil.copytree(src, dst, symlinks=True, dirs_exist_ok=True)

    def copy_special_file(self, src: Path, dst: Path) -> None:
        if dst.is_dir():
            dst = dst / src.name

        if src.is_dir():
            shutil.copytree(src, dst, symlinks=True)
        else:
            shutil.copy2(src, dst, follow_symlinks=False)

    def rmtree(self, path: Path) -> None:
        shutil.rmtree(path)

    def make_filesystem(
        self,
        fs: Filesystem,
        image: Path,
        *,
        label: Optional[str],
        root: Path,
        sector_size: int = 512,
    ) -> None:
        self.filesystems.append((fs, image, label, root))

        with image.open("r+b") as f:
            f.write(f"{fs}:{label}".encode())
