# SPDX-License-Identifier: LGPL-2.1-or-later

from collections.abc import Mapping
from pathlib import Path
from typing import Any, Optional

from bootimg.config import Args, Config
from bootimg.gadget import Layout, Volume


class Context:
    """State related properties."""

    def __init__(
        self,
        args: Args,
        config: Config,
        *,
        workdir: Path,
        layout: Optional[Layout] = None,
        rootfs_size: Optional[int] = None,
        image_sizes: Optional[dict[str, int]] = None,
    ) -> None:
        self.args = args
        self.config = config
        self.workdir = workdir
        self.layout = layout
        self.rootfs_size = rootfs_size
        self.image_sizes = image_sizes or {}

    @property
    def unpack(self) -> Path:
        return self.workdir / "unpack"

    @property
    def gadget_tree(self) -> Path:
        return self.unpack / "gadget"

    @property
    def image_tree(self) -> Path:
        return self.unpack / "image"

    @property
    def rootfs(self) -> Path:
        return self.workdir / "root"

    @property
    def chroot(self) -> Path:
        return self.workdir / "chroot"

    @property
    def volumes(self) -> Path:
        return self.workdir / "volumes"

    @property
    def scratch(self) -> Path:
        return self.workdir / "scratch"

    def temporary_directories(self) -> list[Path]:
        return [self.unpack, self.rootfs, self.chroot, self.volumes, self.scratch]

    def volume_dir(self, volume: Volume) -> Path:
        return self.volumes / volume.name

    def staging_dir(self, volume: Volume, index: int) -> Path:
        return self.volume_dir(volume) / f"part{index}"

    def staging_image(self, volume: Volume, index: int) -> Path:
        return self.volume_dir(volume) / f"part{index}.img"

    def output_image(self, volume: Volume) -> Path:
        return self.config.output_dir / f"{volume.name}.img"

    def to_dict(self) -> dict[str, Any]:
        return {
            "workdir": self.workdir,
            "config": self.config.to_dict(),
            "layout": self.layout.to_dict() if self.layout else None,
            "rootfs_size": self.rootfs_size,
            "image_sizes": self.image_sizes,
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any], args: Args) -> "Context":
        return cls(
            args,
            Config.from_dict(d["config"]),
            workdir=Path(d["workdir"]),
            layout=Layout.from_dict(d["layout"]) if d.get("layout") is not None else None,
            rootfs_size=d.get("rootfs_size"),
            image_sizes=dict(d.get("image_sizes") or {}),
        )
