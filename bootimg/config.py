# SPDX-License-Identifier: LGPL-2.1-or-later

import argparse
import dataclasses
import functools
import json
import os
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any, Optional

from bootimg.architecture import Architecture
from bootimg.log import die
from bootimg.util import StrEnum, parse_bytes

__version__ = "1"


@dataclasses.dataclass(frozen=True)
class Args:
    """Options controlling a single invocation of the pipeline.

    Unlike Config these are never stored in the checkpoint: a resumed run
    takes them from its own command line.
    """

    workdir: Optional[Path] = None
    until: Optional[str] = None
    thru: Optional[str] = None
    resume: bool = False
    debug: bool = False
    clean_workdir: bool = False


@dataclasses.dataclass(frozen=True)
class Config:
    """Type-hinted storage for the inputs of an image build.

    The config is persisted in the checkpoint, so that resuming a build
    uses exactly the inputs of the run that created the work directory.
    """

    gadget_dir: Optional[Path] = None
    rootfs: Optional[Path] = None
    image_dir: Optional[Path] = None
    hooks_directories: list[Path] = dataclasses.field(default_factory=list)
    architecture: str = dataclasses.field(default_factory=lambda: str(Architecture.native()))
    cross_build: bool = True
    live_build_env: list[str] = dataclasses.field(default_factory=list)
    output_dir: Path = Path(".")
    image_size: Optional[int] = None
    sector_size: int = 512

    @classmethod
    @functools.lru_cache(maxsize=1)
    def fields(cls) -> dict[str, dataclasses.Field[Any]]:
        return {f.name: f for f in dataclasses.fields(cls)}

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "Config":
        """Instantiate a Config object from a (partial) JSON dump."""
        for k in d:
            if k not in cls.fields():
                raise ValueError(f"Serialized JSON has unknown field {k}")

        def optional_path(key: str) -> Optional[Path]:
            return Path(d[key]) if d.get(key) is not None else None

        return cls(
            gadget_dir=optional_path("gadget_dir"),
            rootfs=optional_path("rootfs"),
            image_dir=optional_path("image_dir"),
            hooks_directories=[Path(p) for p in d.get("hooks_directories", [])],
            architecture=d.get("architecture", str(Architecture.native())),
            cross_build=bool(d.get("cross_build", True)),
            live_build_env=list(d.get("live_build_env", [])),
            output_dir=Path(d.get("output_dir", ".")),
            image_size=d.get("image_size"),
            sector_size=int(d.get("sector_size", 512)),
        )

    def live_build_environment(self) -> dict[str, str]:
        env = {}
        for entry in self.live_build_env:
            key, sep, value = entry.partition("=")
            if not sep:
                die(f"Invalid live-build environment entry {entry!r}", hint="Use KEY=VALUE")
            env[key] = value
        return env


class JsonEncoder(json.JSONEncoder):
    def default(self, o: Any) -> Any:
        if isinstance(o, StrEnum):
            return str(o)
        elif isinstance(o, os.PathLike):
            return os.fspath(o)
        elif isinstance(o, Config):
            return o.to_dict()
        elif dataclasses.is_dataclass(o) and not isinstance(o, type):
            return dataclasses.asdict(o)
        return super().default(o)


def dump_json(dict: dict[str, Any], indent: Optional[int] = 4) -> str:
    return json.dumps(dict, cls=JsonEncoder, indent=indent, sort_keys=True)


def parse_size_argument(value: str) -> int:
    try:
        return parse_bytes(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid size {value!r}")


def create_argument_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bootimg",
        description="Build bootable disk images from a gadget tree",
        allow_abbrev=False,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "gadget_dir",
        metavar="GADGET_DIR",
        nargs="?",
        type=Path,
        help="Gadget tree containing meta/gadget.yaml",
    )

    group = parser.add_argument_group("Build inputs")
    group.add_argument("--rootfs", type=Path, help="Populated root filesystem tree to install")
    group.add_argument("--image-dir", type=Path, help="Prepared image tree containing boot assets")
    group.add_argument(
        "--hooks-directory",
        dest="hooks_directories",
        action="append",
        type=Path,
        default=[],
        metavar="PATH",
        help="Directory to search for hook scripts, may be given multiple times",
    )
    group.add_argument("--arch", dest="architecture", help="Target architecture")
    group.add_argument(
        "--no-cross-build",
        dest="cross_build",
        action="store_false",
        help="Do not use qemu-user-static for foreign architectures",
    )
    group.add_argument(
        "--live-build-env",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Environment for the live-build invocation",
    )
    group.add_argument("-O", "--output-dir", type=Path, default=Path("."), help="Output directory")
    group.add_argument("--image-size", type=parse_size_argument, help="Minimum size of the disk images")
    group.add_argument("--sector-size", type=int, default=512, choices=(512, 4096))

    group = parser.add_argument_group("Run control")
    group.add_argument("-w", "--workdir", type=Path, help="Work directory, kept for resuming")
    group.add_argument("-u", "--until", metavar="STEP", help="Stop before STEP (name or number)")
    group.add_argument("-t", "--thru", metavar="STEP", help="Stop after STEP (name or number)")
    group.add_argument("-r", "--resume", action="store_true", help="Resume a previous run")
    group.add_argument("--clean-workdir", action="store_true", help="Remove the work directory on success")
    group.add_argument("-d", "--debug", action="store_true", help="Print the name of each step")

    return parser


def parse_config(argv: Sequence[str]) -> tuple[Args, Config]:
    ns = create_argument_parser().parse_args(argv)

    if ns.gadget_dir is None and not ns.resume:
        die("A gadget tree is required", hint="Pass GADGET_DIR or --resume an existing work directory")

    args = Args(
        workdir=ns.workdir,
        until=ns.until,
        thru=ns.thru,
        resume=ns.resume,
        debug=ns.debug,
        clean_workdir=ns.clean_workdir,
    )
    config = Config(
        gadget_dir=ns.gadget_dir.absolute() if ns.gadget_dir else None,
        rootfs=ns.rootfs.absolute() if ns.rootfs else None,
        image_dir=ns.image_dir.absolute() if ns.image_dir else None,
        hooks_directories=[p.absolute() for p in ns.hooks_directories],
        architecture=ns.architecture or str(Architecture.native()),
        cross_build=ns.cross_build,
        live_build_env=ns.live_build_env,
        output_dir=ns.output_dir.absolute(),
        image_size=ns.image_size,
        sector_size=ns.sector_size,
    )

    return args, config
