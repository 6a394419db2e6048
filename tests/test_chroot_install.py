import os
import pytest
from pathlib import Path
from unittest.mock import MagicMock

from archstrap import chroot_install
from archstrap.disk.partitions import PartitionPaths, PartitionPlanner
from archstrap.config.models import Packages
from archstrap.install.context import InstallContext

# ======= Execute with: pytest tests/test_chroot_install.py ========


@pytest.fixture
def build_ctx(make_config, fake_executor, mock_rich_logger, tmp_path):
    def factory(efi=True, **config_kwargs):
        planner = MagicMock(spec=PartitionPlanner)
        planner.resolve.return_value = PartitionPaths(
            efi=Path("/dev/sda1"), boot=Path("/dev/sda2"), root=Path("/dev/sda3"))
        etc_dir = tmp_path / "etc"
        etc_dir.mkdir(exist_ok=True)
        return InstallContext(
            config=make_config(**config_kwargs),
            executor=fake_executor,
            logger=mock_rich_logger,
            config_path=Path("/root/installer/config.toml"),
            efi=efi,
            planner=planner,
            encryption=MagicMock(),
            etc_dir=etc_dir,
        )
    return factory


def commands(executor):
    return [c[0][1] for c in executor.run.call_args_list]


def test_install_locales(build_ctx, fake_executor):
    ctx = build_ctx()
    (ctx.etc_dir / "locale.gen").write_text("#en_US.UTF-8 UTF-8\n")

    chroot_install.install_locales(ctx)

    assert (ctx.etc_dir / "locale.gen").read_text() == "en_US.UTF-8 UTF-8\n"
    assert (ctx.etc_dir / "locale.conf").read_text() == "LANG=en_US.UTF-8\n"
    assert commands(fake_executor) == [["locale-gen"]]


def test_hostname_and_timezone(build_ctx, fake_executor):
    ctx = build_ctx()
    (ctx.etc_dir / "localtime").symlink_to("/usr/share/zoneinfo/UTC")

    chroot_install.set_hostname(ctx)
    chroot_install.set_timezone(ctx)

    assert (ctx.etc_dir / "hostname").read_text() == "archbox\n"
    assert os.readlink(ctx.etc_dir / "localtime") == "/usr/share/zoneinfo/Europe/Berlin"
    assert commands(fake_executor) == [["timedatectl", "set-ntp", "true"]]


def test_timezone_ntp_failure_is_only_a_warning(build_ctx, fake_executor, mock_rich_logger):
    ctx = build_ctx()
    fake_executor.run.return_value = (1, "", "System has not been booted with systemd")

    chroot_install.set_timezone(ctx)

    mock_rich_logger.warning.assert_called_once()


def test_install_grub_efi(build_ctx, fake_executor):
    ctx = build_ctx(efi=True, drive={"bootloader_id": "ARCH"})

    chroot_install.install_grub(ctx)

    assert commands(fake_executor) == [
        ["pacman", "-S", "--noconfirm", "--needed", "efibootmgr"],
        ["grub-install", "--bootloader-id=ARCH", "--target=x86_64-efi", "--efi-directory=/efi",
         "--boot-directory=/boot", "--recheck"],
    ]


def test_install_grub_legacy(build_ctx, fake_executor):
    ctx = build_ctx(efi=False)

    chroot_install.install_grub(ctx)

    assert commands(fake_executor) == [["grub-install", "--target=i386-pc", "/dev/sda"]]


def test_configure_grub_encrypted(build_ctx, fake_executor):
    ctx = build_ctx(drive={"encryption": True, "password": "x"})
    (ctx.etc_dir / "default").mkdir()
    grub = ctx.etc_dir / "default" / "grub"
    grub.write_text('GRUB_CMDLINE_LINUX_DEFAULT="loglevel=3 quiet"\n')
    fake_executor.output.side_effect = None
    fake_executor.output.return_value = "1234-abcd"

    chroot_install.configure_grub(ctx)

    fake_executor.output.assert_called_once_with("Reading UUID of /dev/sda3", ["lsblk", "-dno", "UUID", "/dev/sda3"])
    assert grub.read_text() == ('GRUB_CMDLINE_LINUX_DEFAULT="loglevel=3 quiet cryptdevice=UUID=1234-abcd:cryptroot '
                                'root=/dev/mapper/cryptroot"\n')
    assert commands(fake_executor) == [["grub-mkconfig", "-o", "/boot/grub/grub.cfg"]]


def test_mkinitcpio_hooks(build_ctx, fake_executor):
    ctx = build_ctx(drive={"encryption": True, "password": "x"})
    conf = ctx.etc_dir / "mkinitcpio.conf"
    conf.write_text("HOOKS=(base udev autodetect modconf block filesystems keyboard fsck)\n")

    chroot_install.set_mkinitcpio_hooks(ctx)

    assert conf.read_text() == "HOOKS=(base udev autodetect modconf block keyboard encrypt filesystems fsck)\n"
    assert commands(fake_executor) == [["mkinitcpio", "-p", "linux"]]


def test_add_user(build_ctx, fake_executor):
    ctx = build_ctx()
    sudoers = ctx.etc_dir / "sudoers"
    sudoers.write_text("root ALL=(ALL) ALL\n")

    chroot_install.add_user(ctx)

    assert commands(fake_executor) == [["useradd", "-m", "alice"], ["chpasswd"]]
    assert fake_executor.run.call_args_list[1][1]["input"] == "alice:hunter2\n"
    assert sudoers.read_text().endswith("\nalice ALL=(ALL) ALL\n")


def test_aur_helper_built_with_passwordless_sudo(build_ctx, fake_executor):
    ctx = build_ctx(system={"aur_helper": "yay"})
    sudoers = ctx.etc_dir / "sudoers"
    sudoers.write_text("root ALL=(ALL) ALL\nalice ALL=(ALL) ALL\n")
    seen = {}

    def run(desc, cmd, **kwargs):
        if "makepkg" in cmd[2]:
            seen["sudoers"] = sudoers.read_text()
            seen["cwd"] = kwargs.get("cwd")
        return 0, "", ""
    fake_executor.run.side_effect = run

    chroot_install.install_aur_helper(ctx)

    assert commands(fake_executor) == [
        ["pacman", "-S", "--noconfirm", "--needed", "base-devel"],
        ["su", "-c", "git clone https://aur.archlinux.org/yay.git /tmp/yay", "alice"],
        ["su", "-c", "makepkg -si --noconfirm", "alice"],
    ]
    assert "alice ALL=(ALL) NOPASSWD: ALL" in seen["sudoers"]
    assert seen["cwd"] == "/tmp/yay"
    assert "NOPASSWD" not in sudoers.read_text()


def test_aur_packages(build_ctx, fake_executor):
    ctx = build_ctx(system={"aur_helper": "paru"}, packages=Packages(aur=["visual-studio-code-bin"]))
    (ctx.etc_dir / "sudoers").write_text("alice ALL=(ALL) ALL\n")

    chroot_install.install_aur_packages(ctx)

    assert commands(fake_executor) == [["su", "-c", "paru -S --noconfirm visual-studio-code-bin", "alice"]]


def test_run_skips_empty_second_stage(build_ctx):
    ctx = build_ctx()
    calls = []
    stages = [
        chroot_install.ChrootStage("one", lambda c: calls.append("one")),
        *chroot_install.STAGE_TWO,
    ]

    done = chroot_install.run(ctx, stages)

    assert done == ["one"]
    assert calls == ["one"]


def test_stage_order():
    names = [s.name for s in chroot_install.STAGE_ONE + chroot_install.STAGE_TWO]
    assert names == [
        "Locales", "Hostname", "Timezone", "GRUB installation", "GRUB configuration",
        "Initramfs hooks", "User", "Packages", "AUR helper", "AUR packages",
    ]
