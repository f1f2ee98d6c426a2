# SPDX-License-Identifier: LGPL-2.1-or-later

import subprocess
from pathlib import Path

import pytest

from bootimg.bootloader import (
    BOOTLOADER_HANDLERS,
    find_bootloader_handler,
    handle_bootloader,
    handle_lk_bootloader,
    handle_secure_boot,
)
from bootimg.config import Args, Config
from bootimg.context import Context
from bootimg.errors import FileIOError
from bootimg.gadget import Bootloader, Volume
from bootimg.host import Host

from . import FakeHost


@pytest.fixture
def context(tmp_path: Path) -> Context:
    context = Context(Args(), Config(), workdir=tmp_path / "work")
    context.unpack.mkdir(parents=True)
    return context


def boot_assets(context: Context, name: str) -> Path:
    boot = context.image_tree / "boot" / name
    boot.mkdir(parents=True)
    (boot / "first").write_text("first")
    (boot / "second").mkdir()
    (boot / "second/nested").write_text("nested")
    return boot


def test_find_bootloader_handler() -> None:
    assert find_bootloader_handler(None) is None
    assert find_bootloader_handler(Bootloader.grub) is handle_secure_boot
    assert find_bootloader_handler(Bootloader.u_boot) is handle_secure_boot
    assert find_bootloader_handler(Bootloader.piboot) is handle_secure_boot
    assert find_bootloader_handler(Bootloader.lk) is handle_lk_bootloader
    assert set(BOOTLOADER_HANDLERS) == set(Bootloader)


def test_no_bootloader(context: Context, tmp_path: Path) -> None:
    target = tmp_path / "target"
    handle_bootloader(context, Volume("pc"), target, host=FakeHost())
    assert not target.exists()


def test_grub(context: Context, tmp_path: Path) -> None:
    boot = boot_assets(context, "grub")
    target = tmp_path / "target"

    handle_bootloader(context, Volume("pc", bootloader=Bootloader.grub), target, host=Host())

    assert (target / "EFI/ubuntu/first").read_text() == "first"
    assert (target / "EFI/ubuntu/second/nested").read_text() == "nested"
    assert list(boot.iterdir()) == []


@pytest.mark.parametrize("bootloader,name", [(Bootloader.u_boot, "uboot"), (Bootloader.piboot, "piboot")])
def test_secure_boot_target_root(context: Context, tmp_path: Path, bootloader: Bootloader, name: str) -> None:
    boot_assets(context, name)
    target = tmp_path / "target"

    handle_bootloader(context, Volume("pi", bootloader=bootloader), target, host=Host())

    assert sorted(p.name for p in target.iterdir()) == ["first", "second"]


def test_secure_boot_mkdir_failure(context: Context, tmp_path: Path) -> None:
    class BrokenHost(Host):
        def mkdir(self, path: Path, *, parents: bool = False, exist_ok: bool = False) -> None:
            raise PermissionError(path)

    boot_assets(context, "grub")

    with pytest.raises(FileIOError, match="Error creating ubuntu dir"):
        handle_secure_boot(context, Volume("pc", bootloader=Bootloader.grub), tmp_path / "target", host=BrokenHost())


def test_secure_boot_missing_assets(context: Context, tmp_path: Path) -> None:
    with pytest.raises(FileIOError, match="Error reading boot dir"):
        handle_secure_boot(context, Volume("pc", bootloader=Bootloader.grub), tmp_path / "target", host=Host())


def test_secure_boot_move_failure(context: Context, tmp_path: Path) -> None:
    class BrokenHost(Host):
        def rename(self, src: Path, dst: Path) -> None:
            raise OSError(18, "Invalid cross-device link")

    boot_assets(context, "grub")

    with pytest.raises(FileIOError, match="Error copying boot dir"):
        handle_secure_boot(context, Volume("pc", bootloader=Bootloader.grub), tmp_path / "target", host=BrokenHost())


def test_lk(context: Context, tmp_path: Path) -> None:
    boot = boot_assets(context, "lk")

    handle_bootloader(context, Volume("lk", bootloader=Bootloader.lk), tmp_path / "target", host=FakeHost())

    assert (context.gadget_tree / "first").read_text() == "first"
    assert (context.gadget_tree / "second/nested").read_text() == "nested"
    assert (boot / "first").exists()
    assert not (tmp_path / "target").exists()


def test_lk_existing_gadget_tree(context: Context, tmp_path: Path) -> None:
    context.gadget_tree.mkdir()
    (context.gadget_tree / "gadget.yaml").touch()
    boot_assets(context, "lk")

    handle_lk_bootloader(context, Volume("lk", bootloader=Bootloader.lk), tmp_path, host=FakeHost())

    assert sorted(p.name for p in context.gadget_tree.iterdir()) == ["first", "gadget.yaml", "second"]


def test_lk_mkdir_failure(context: Context, tmp_path: Path) -> None:
    class BrokenHost(FakeHost):
        def mkdir(self, path: Path, *, parents: bool = False, exist_ok: bool = False) -> None:
            raise PermissionError(path)

    boot_assets(context, "lk")

    with pytest.raises(FileIOError, match="Failed to create gadget dir"):
        handle_lk_bootloader(context, Volume("lk", bootloader=Bootloader.lk), tmp_path, host=BrokenHost())


def test_lk_missing_assets(context: Context, tmp_path: Path) -> None:
    with pytest.raises(FileIOError, match="Error reading lk bootloader dir"):
        handle_lk_bootloader(context, Volume("lk", bootloader=Bootloader.lk), tmp_path, host=FakeHost())


def test_lk_copy_failure(context: Context, tmp_path: Path) -> None:
    class BrokenHost(FakeHost):
        def copy_special_file(self, src: Path, dst: Path) -> None:
            raise subprocess.CalledProcessError(1, ["cp", "--archive", src, dst])

    boot_assets(context, "lk")

    with pytest.raises(FileIOError, match="Error copying lk bootloader dir"):
        handle_lk_bootloader(context, Volume("lk", bootloader=Bootloader.lk), tmp_path, host=BrokenHost())
