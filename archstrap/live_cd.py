# archstrap/live_cd.py
"""
Builds an Arch Linux live image that carries the installer in /root/installer.
"""
import os
import shutil
from pathlib import Path
from typing import List, Optional

from archstrap.config.models import InstallerConfig
from archstrap.utils.exceptions import InstallerError, InvalidUmaskError, UnknownArchISOProfileError
from archstrap.utils.executor import Executor
from archstrap.utils.logger import RichAppLogger
from archstrap.utils.system import check_sudo, payload_dir, sudo_user

PROFILES_DIR = Path("/usr/share/archiso/configs")
PROFILES = ("releng", "baseline")
REQUIRED_MODE = 0o40755


def profile_path(name: str, profiles_dir: Path = PROFILES_DIR) -> Path:
    """
    Raises:
        UnknownArchISOProfileError: for anything but "releng" or "baseline".
    """
    if name not in PROFILES:
        raise UnknownArchISOProfileError(name)
    return profiles_dir / name


def installer_source(location: str) -> Path:
    """Directory copied onto the image; "." stands for the directory holding the installer package."""
    if location in ("", "."):
        return payload_dir().parent
    return Path(location)


class LiveCreator:
    """Copies an archiso profile into a working directory, adds the installer and builds the image."""

    def __init__(self,
                 config: InstallerConfig,
                 working_dir: Path,
                 executor: Executor,
                 logger: RichAppLogger,
                 profiles_dir: Path = PROFILES_DIR):
        self.config = config
        self.executor = executor
        self.logger = logger
        self.profile = config.live_cd.profile
        self.profile_source = profile_path(self.profile, profiles_dir)
        self.working_dir = Path(working_dir)
        self.profile_root = self.working_dir / self.profile
        self.installer_target = self.profile_root / "airootfs" / "root" / "installer"
        self.iso_location: Optional[Path] = None

    def create_working_dir(self) -> "LiveCreator":
        self.working_dir.mkdir(parents=True, exist_ok=True)
        return self

    def check_umask(self) -> "LiveCreator":
        """
        archiso refuses to build from a directory with unexpected permissions.

        Raises:
            InvalidUmaskError: when the working directory mode is not 0o40755.
        """
        mode = os.stat(self.working_dir).st_mode
        if mode != REQUIRED_MODE:
            raise InvalidUmaskError(expected=REQUIRED_MODE, got=mode)
        return self

    def copy_archiso_files(self) -> "LiveCreator":
        self.executor.run(
            f"Copying the {self.profile} profile",
            ["cp", "-rv", str(self.profile_source), str(self.working_dir)],
        )
        return self

    def copy_installer(self, source: Path) -> "LiveCreator":
        self.executor.run(
            "Copying the installer into the image",
            ["cp", "-rv", str(source), str(self.installer_target)],
        )
        return self

    def add_packages(self, packages: List[str]) -> "LiveCreator":
        with open(self.profile_root / "packages.x86_64", "a", encoding="utf-8") as f:
            for package in packages:
                f.write(f"{package}\n")
        return self

    def build(self) -> "LiveCreator":
        self.executor.run(
            "Building the live image",
            ["mkarchiso", "-v",
             "-w", str(self.profile_root / "work"),
             "-o", str(self.profile_root / "out"),
             str(self.profile_root)],
            capture_output=False,
        )
        return self

    def copy_iso(self) -> "LiveCreator":
        images = sorted((self.profile_root / "out").glob("*.iso"))
        if not images:
            raise InstallerError(f"No image found in {self.profile_root / 'out'}")
        self.iso_location = self.working_dir / images[0].name
        shutil.copyfile(images[0], self.iso_location)
        return self

    def change_iso_owner(self) -> "LiveCreator":
        user = sudo_user()
        if user:
            self.executor.run(
                f"Handing {self.iso_location.name} to {user}",
                ["chown", f"{user}:{user}", str(self.iso_location)],
            )
        return self


def build_live_cd(config: InstallerConfig, working_dir: Path, executor: Executor, logger: RichAppLogger,
                  profiles_dir: Path = PROFILES_DIR) -> Path:
    """
    Runs the whole image build.

    Returns:
        Path: location of the copied image in the working directory.

    Raises:
        SudoRequiredError: when not run as root.
        UnknownArchISOProfileError: for an unsupported profile.
        InvalidUmaskError: when the working directory has the wrong mode.
    """
    check_sudo()
    creator = LiveCreator(config, working_dir, executor, logger, profiles_dir)
    (creator
        .create_working_dir()
        .check_umask()
        .copy_archiso_files()
        .copy_installer(installer_source(config.live_cd.installer_location))
        .add_packages(config.packages.archiso)
        .build()
        .copy_iso()
        .change_iso_owner())
    logger.info(f"Done! {creator.iso_location}")
    return creator.iso_location
