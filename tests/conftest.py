# SPDX-License-Identifier: LGPL-2.1-or-later

from pathlib import Path

import pytest

GADGET_YAML = """\
volumes:
  pc:
    schema: gpt
    bootloader: grub
    structure:
      - name: mbr
        type: mbr
        size: 440
        content:
          - image: boot.img
      - name: BIOS Boot
        type: 21686148-6449-6E6F-744E-656564454649
        offset: 1M
        offset-write: mbr+92
        size: 1M
        content:
          - image: core.img
      - name: EFI System
        type: C12A7328-F81F-11D2-BA4B-00A0C93EC93B
        role: system-boot
        filesystem: vfat
        filesystem-label: system-boot
        size: 10M
        content:
          - source: grub.cfg
            target: EFI/ubuntu/
      - name: writable
        type: 0FC63DAF-8483-4772-8E47-3D2169A4B984
        role: system-data
        filesystem: ext4
        filesystem-label: writable
        size: 1M
"""


@pytest.fixture
def gadget_dir(tmp_path: Path) -> Path:
    gadget = tmp_path / "gadget"
    (gadget / "meta").mkdir(parents=True)
    (gadget / "meta/gadget.yaml").write_text(GADGET_YAML)
    (gadget / "boot.img").write_bytes(b"B" * 100)
    (gadget / "core.img").write_bytes(b"C" * 1000)
    (gadget / "grub.cfg").write_text("set timeout=3\n")
    return gadget


@pytest.fixture
def image_dir(tmp_path: Path) -> Path:
    image = tmp_path / "image"
    (image / "boot/grub").mkdir(parents=True)
    (image / "boot/grub/shimx64.efi").write_bytes(b"shim")
    (image / "boot/grub/grubx64.efi").write_bytes(b"grub")
    return image


@pytest.fixture
def rootfs(tmp_path: Path) -> Path:
    root = tmp_path / "rootfs"
    (root / "etc").mkdir(parents=True)
    (root / "etc/hostname").write_text("ubuntu\n")
    (root / "usr/bin").mkdir(parents=True)
    (root / "usr/bin/true").write_bytes(b"\x7fELF" + bytes(6000))
    return root
