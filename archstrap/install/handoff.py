# archstrap/install/handoff.py
"""
Continues the installation inside the new root.

The installer package and the configuration file are copied to
/root/installer in the new system. The copy is the only thing the second
process shares with this one; it reloads the configuration from there.
"""
import os
import shutil
from pathlib import Path, PurePosixPath
from typing import List, TYPE_CHECKING

from archstrap.utils.system import payload_dir

if TYPE_CHECKING:
    from archstrap.install.context import InstallContext

INSTALLER_DIR = PurePosixPath("/root/installer")
CONFIG_NAME = "config.toml"


def chroot_command() -> List[str]:
    """Command run through arch-chroot, with paths as seen from inside the new root."""
    return [
        "env", f"PYTHONPATH={INSTALLER_DIR}",
        "python3", "-m", "archstrap",
        "--config", str(INSTALLER_DIR / CONFIG_NAME),
        "chroot-install",
    ]


def stage_payload(mount_root: Path, config_path: Path) -> Path:
    """
    Copies the installer package and its configuration below `mount_root`.
    A copy left by an earlier run is replaced.

    Returns:
        Path: the installer directory on the host side.
    """
    target = Path(mount_root) / INSTALLER_DIR.relative_to("/")
    if target.exists():
        shutil.rmtree(target)
    target.mkdir(parents=True)

    source = payload_dir()
    shutil.copytree(source, target / source.name, ignore=shutil.ignore_patterns("__pycache__", "*.pyc"))

    config_copy = target / CONFIG_NAME
    shutil.copyfile(config_path, config_copy)
    # Holds the drive and user passwords
    os.chmod(config_copy, 0o600)
    return target


def run(ctx: "InstallContext") -> Path:
    """
    Stages the payload and runs the chroot installation. Success is the exit status
    of the process inside the new root.

    Raises:
        ShellCommandError: when the chroot installation fails.
    """
    target = stage_payload(ctx.mount_root, ctx.config_path)
    ctx.logger.info(f"Installer copied to {target}.")
    ctx.executor.run(
        "Running the installation inside the new system",
        chroot_command(),
        chroot=True,
        capture_output=False,
    )
    return target
