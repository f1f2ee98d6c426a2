# SPDX-License-Identifier: LGPL-2.1-or-later

import dataclasses
import os
import shlex
import subprocess
from collections.abc import Mapping
from pathlib import Path

from bootimg.architecture import Architecture
from bootimg.errors import ExternalToolError, FileIOError
from bootimg.host import Host
from bootimg.log import complete_step
from bootimg.util import PathString


@dataclasses.dataclass(frozen=True)
class BuildCommand:
    cmdline: list[PathString]
    cwd: Path
    env: dict[str, str] = dataclasses.field(default_factory=dict)

    def __str__(self) -> str:
        return shlex.join(os.fspath(x) for x in self.cmdline)

    def run(self, host: Host) -> None:
        try:
            host.run(self.cmdline, env=self.env, cwd=self.cwd)
        except subprocess.CalledProcessError as e:
            raise ExternalToolError(f"Error running {self}: {e}") from e


def livecd_rootfs_auto_dir(host: Host) -> Path:
    if p := os.getenv("BOOTIMG_LIVECD_ROOTFS_AUTO_PATH"):
        return Path(p)

    try:
        files = host.run(["dpkg", "-L", "livecd-rootfs"], stdout=subprocess.PIPE).stdout
    except subprocess.CalledProcessError as e:
        raise ExternalToolError(f"Error locating livecd-rootfs: {e}") from e

    for line in (files or "").splitlines():
        if line.strip().endswith("/auto"):
            return Path(line.strip())

    raise ExternalToolError(
        "livecd-rootfs does not ship an auto directory. "
        "Use BOOTIMG_LIVECD_ROOTFS_AUTO_PATH to point to a custom one"
    )


def find_qemu_static(arch: str, host: Host) -> Path:
    if p := os.getenv("BOOTIMG_QEMU_USER_STATIC_PATH"):
        return Path(p)

    try:
        binary = Architecture(arch).qemu_static_binary()
    except ValueError:
        binary = f"qemu-{arch}-static"

    if (path := host.which(binary)) is None:
        raise ExternalToolError(
            f"{binary} not found. Use BOOTIMG_QEMU_USER_STATIC_PATH in case of non-standard archs or custom paths"
        )

    return path


def setup_live_build_commands(
    rootfs: Path,
    arch: str,
    env: Mapping[str, str],
    cross_build: bool,
    *,
    host: Host,
) -> tuple[BuildCommand, BuildCommand]:
    """Prepare rootfs for a live-build run and return the "lb config" and "lb build" commands."""
    lb_config: list[PathString] = ["lb", "config"]
    lb_build: list[PathString] = ["lb", "build"]

    auto = livecd_rootfs_auto_dir(host)
    try:
        host.copy_special_file(auto, rootfs / "auto")
    except (OSError, subprocess.CalledProcessError) as e:
        raise FileIOError(f"Error copying livecd-rootfs/auto: {e}") from e

    if cross_build and arch != str(Architecture.native()):
        # Foreign architectures are bootstrapped through qemu-user-static, which has to be available
        # inside the build root as well.
        qemu = find_qemu_static(arch, host)

        try:
            host.mkdir(rootfs / "usr/bin", parents=True, exist_ok=True)
            host.copy_special_file(qemu, rootfs / "usr/bin" / qemu.name)
        except (OSError, subprocess.CalledProcessError) as e:
            raise FileIOError(f"Error copying {qemu} into the build root: {e}") from e

        lb_config += [
            "--bootstrap-qemu-arch", arch,
            "--bootstrap-qemu-static", qemu,
            "--architectures", arch,
        ]  # fmt: skip

    return (
        BuildCommand(lb_config, cwd=rootfs, env=dict(env)),
        BuildCommand(lb_build, cwd=rootfs, env=dict(env)),
    )


def run_live_build(
    rootfs: Path,
    arch: str,
    env: Mapping[str, str],
    cross_build: bool,
    *,
    host: Host,
) -> Path:
    """Build a root filesystem with live-build in rootfs and return the populated chroot."""
    lb_config, lb_build = setup_live_build_commands(rootfs, arch, env, cross_build, host=host)

    with complete_step(f"Building {arch} root filesystem with live-build…"):
        lb_config.run(host)
        lb_build.run(host)

    return rootfs / "chroot"
