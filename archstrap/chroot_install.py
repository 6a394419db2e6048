# archstrap/chroot_install.py
"""
Configuration of the new system, run inside it through arch-chroot.

The first group of stages makes the system bootable and creates the user; the
second installs the remaining packages, including AUR ones built as that user.
"""
import shlex
from pathlib import Path
from typing import Callable, List, NamedTuple, Optional

from archstrap.install.context import InstallContext
from archstrap.utils import config_patch
from archstrap.utils.exceptions import PartitionPlanError

AUR_URL = "https://aur.archlinux.org/{}.git"
BUILD_DIR = Path("/tmp")


class ChrootStage(NamedTuple):
    name: str
    action: Callable[[InstallContext], None]
    enabled: Callable[[InstallContext], bool] = lambda ctx: True


#----------------------------------------------------------------------------------------------------------------------
# Helpers
#----------------------------------------------------------------------------------------------------------------------
def pacman_install(ctx: InstallContext, packages: List[str]) -> None:
    ctx.executor.run(
        f"Installing {' '.join(packages)}",
        ["pacman", "-S", "--noconfirm", "--needed"] + list(packages),
    )


def su_command(user: str, program: str, args: List[str]) -> List[str]:
    """Runs `program` as `user` through a login-less `su -c`."""
    return ["su", "-c", shlex.join([program] + list(args)), user]


def root_uuid(ctx: InstallContext) -> str:
    root = ctx.partitions().root
    if root is None:
        raise PartitionPlanError("No root partition found on the target drive")
    return ctx.executor.output(f"Reading UUID of {root}", ["lsblk", "-dno", "UUID", str(root)])


#----------------------------------------------------------------------------------------------------------------------
# Stage one: boot loader, initramfs, user
#----------------------------------------------------------------------------------------------------------------------
def install_locales(ctx: InstallContext) -> None:
    if not config_patch.enable_locale(ctx.etc_dir / "locale.gen"):
        ctx.logger.warning("en_US.UTF-8 is not listed as disabled in locale.gen, left unchanged.")
    ctx.executor.run("Generating locales", ["locale-gen"])
    (ctx.etc_dir / "locale.conf").write_text("LANG=en_US.UTF-8\n", encoding="utf-8")


def set_hostname(ctx: InstallContext) -> None:
    (ctx.etc_dir / "hostname").write_text(f"{ctx.config.system.hostname}\n", encoding="utf-8")


def set_timezone(ctx: InstallContext) -> None:
    localtime = ctx.etc_dir / "localtime"
    if localtime.is_symlink() or localtime.exists():
        localtime.unlink()
    localtime.symlink_to(ctx.config.system.timezone_path())

    # No time daemon to talk to inside a chroot on every live medium
    code, _, err = ctx.executor.run("Enabling network time", ["timedatectl", "set-ntp", "true"], check=False)
    if code != 0:
        ctx.logger.warning(f"Network time not enabled: {err.strip()}")


def install_grub(ctx: InstallContext) -> None:
    drive = ctx.config.drive
    if ctx.efi:
        pacman_install(ctx, ["efibootmgr"])
        command = [
            "grub-install",
            f"--bootloader-id={drive.bootloader_id}",
            "--target=x86_64-efi",
            "--efi-directory=/efi",
            "--boot-directory=/boot",
            "--recheck",
        ]
    else:
        command = ["grub-install", "--target=i386-pc", str(drive.device_path())]
    ctx.executor.run("Installing GRUB", command)


def configure_grub(ctx: InstallContext) -> None:
    drive = ctx.config.drive
    if drive.encryption:
        uuid = root_uuid(ctx)
        if not config_patch.set_grub_cmdline(uuid, drive.crypt_mapping, ctx.etc_dir / "default" / "grub"):
            ctx.logger.warning(f"\"{config_patch.GRUB_CMDLINE_MARKER}\" not found in the GRUB defaults, "
                               "kernel command line left unchanged.")
    ctx.executor.run("Generating GRUB configuration", ["grub-mkconfig", "-o", "/boot/grub/grub.cfg"])


def set_mkinitcpio_hooks(ctx: InstallContext) -> None:
    if not config_patch.set_mkinitcpio_hooks(ctx.config.drive.encryption, ctx.etc_dir / "mkinitcpio.conf"):
        ctx.logger.warning("Stock HOOKS line not found in mkinitcpio.conf, left unchanged.")
    ctx.executor.run("Building the initramfs", ["mkinitcpio", "-p", "linux"])


def add_user(ctx: InstallContext) -> None:
    system = ctx.config.system
    user = system.username
    ctx.executor.run(f"Creating user {user}", ["useradd", "-m", user])
    ctx.executor.run(
        f"Setting password of {user}",
        ["chpasswd"],
        input=f"{user}:{system.user_password.get_secret_value()}\n",
    )

    sudoers = ctx.etc_dir / "sudoers"
    if sudoers.exists():
        config_patch.grant_sudo(user, sudoers)
        ctx.logger.info(f"{user} added to sudoers.")
    else:
        ctx.logger.warning(f"{sudoers} not found, {user} gets no sudo rights.")


#----------------------------------------------------------------------------------------------------------------------
# Stage two: packages
#----------------------------------------------------------------------------------------------------------------------
def install_packages(ctx: InstallContext) -> None:
    pacman_install(ctx, ctx.config.packages.pacman)


def install_aur_helper(ctx: InstallContext) -> None:
    helper = ctx.config.system.aur_helper
    user = ctx.config.system.username
    working_dir = BUILD_DIR / helper

    pacman_install(ctx, ["base-devel"])
    ctx.executor.run(
        f"Cloning {helper}",
        su_command(user, "git", ["clone", AUR_URL.format(helper), str(working_dir)]),
    )
    with config_patch.passwordless_sudo(user, ctx.etc_dir / "sudoers"):
        ctx.executor.run(
            f"Building {helper}",
            su_command(user, "makepkg", ["-si", "--noconfirm"]),
            cwd=str(working_dir),
        )


def install_aur_packages(ctx: InstallContext) -> None:
    helper = ctx.config.system.aur_helper
    user = ctx.config.system.username
    with config_patch.passwordless_sudo(user, ctx.etc_dir / "sudoers"):
        for package in ctx.config.packages.aur:
            ctx.executor.run(f"Installing {package} from AUR", su_command(user, helper, ["-S", "--noconfirm", package]))


STAGE_ONE: List[ChrootStage] = [
    ChrootStage("Locales", install_locales),
    ChrootStage("Hostname", set_hostname),
    ChrootStage("Timezone", set_timezone),
    ChrootStage("GRUB installation", install_grub),
    ChrootStage("GRUB configuration", configure_grub),
    ChrootStage("Initramfs hooks", set_mkinitcpio_hooks),
    ChrootStage("User", add_user),
]

STAGE_TWO: List[ChrootStage] = [
    ChrootStage("Packages", install_packages, enabled=lambda ctx: bool(ctx.config.packages.pacman)),
    ChrootStage("AUR helper", install_aur_helper, enabled=lambda ctx: bool(ctx.config.system.aur_helper)),
    ChrootStage("AUR packages", install_aur_packages,
                enabled=lambda ctx: bool(ctx.config.system.aur_helper and ctx.config.packages.aur)),
]


def run(ctx: InstallContext, stages: Optional[List[ChrootStage]] = None) -> List[str]:
    """
    Runs the chroot stages in order and stops at the first failure.

    Returns:
        List[str]: names of the stages that ran.
    """
    stages = STAGE_ONE + STAGE_TWO if stages is None else stages
    done: List[str] = []
    for stage in stages:
        if not stage.enabled(ctx):
            ctx.logger.debug(f"{stage.name}: nothing to do, skipped.")
            continue
        ctx.logger.section(stage.name)
        stage.action(ctx)
        done.append(stage.name)
    return done
