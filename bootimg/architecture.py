# SPDX-License-Identifier: LGPL-2.1-or-later

import enum
import platform

from bootimg.errors import ValidationError
from bootimg.util import StrEnum


class Architecture(StrEnum):
    # Debian architecture names, as understood by live-build.
    amd64   = enum.auto()
    arm64   = enum.auto()
    armhf   = enum.auto()
    i386    = enum.auto()
    ppc64el = enum.auto()
    riscv64 = enum.auto()
    s390x   = enum.auto()

    @staticmethod
    def from_uname(s: str) -> "Architecture":
        a = {
            "x86_64"  : Architecture.amd64,
            "amd64"   : Architecture.amd64,
            "aarch64" : Architecture.arm64,
            "arm64"   : Architecture.arm64,
            "armv8l"  : Architecture.armhf,
            "armv7l"  : Architecture.armhf,
            "armv7b"  : Architecture.armhf,
            "i686"    : Architecture.i386,
            "i586"    : Architecture.i386,
            "i486"    : Architecture.i386,
            "i386"    : Architecture.i386,
            "ppc64le" : Architecture.ppc64el,
            "riscv64" : Architecture.riscv64,
            "s390x"   : Architecture.s390x,
        }.get(s)

        if not a:
            raise ValidationError(f"Architecture {s} is not supported")

        return a

    def to_qemu(self) -> str:
        return {
            Architecture.amd64   : "x86_64",
            Architecture.arm64   : "aarch64",
            Architecture.armhf   : "arm",
            Architecture.i386    : "i386",
            Architecture.ppc64el : "ppc64le",
            Architecture.riscv64 : "riscv64",
            Architecture.s390x   : "s390x",
        }[self]

    def qemu_static_binary(self) -> str:
        return f"qemu-{self.to_qemu()}-static"

    @classmethod
    def native(cls) -> "Architecture":
        return cls.from_uname(platform.machine())
