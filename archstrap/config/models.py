# archstrap/config/models.py

import tomlkit
import typer
from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError
from typing import List, Optional, Literal
from pathlib import Path

from archstrap.utils.exceptions import ConfigInvalidError, ConfigNotFoundError

ZONEINFO_DIR = Path("/usr/share/zoneinfo")
MAPPER_DIR = Path("/dev/mapper")


def dev_path(name: str) -> Path:
    """Absolute paths are kept, bare names are resolved under /dev."""
    if name.startswith("/"):
        return Path(name)
    return Path("/dev") / name


class _Section(BaseModel):
    """Config sections are read-only once loaded."""
    model_config = ConfigDict(frozen=True, extra="forbid")


# --- 1. Sub-Models ---

# Drive Configuration
class Drive(_Section):
    """Target block device and root volume settings."""
    device: str = Field("", description="Device name under /dev (e.g. 'sda') or absolute path.")
    encryption: bool = False
    password: SecretStr = SecretStr("")
    crypt_mapping: str = "cryptroot"
    fs: Literal["ext4", "btrfs", "xfs", "f2fs"] = "ext4"
    bootloader_id: str = "GRUB"

    def device_path(self) -> Path:
        return dev_path(self.device)

    def crypt_mapping_path(self) -> Path:
        return MAPPER_DIR / self.crypt_mapping


# Partition overrides
class Partitions(_Section):
    """Pre-created partitions, by device name. Empty means the planner creates it."""
    efi: str = ""
    boot: str = ""
    root: str = ""

    def efi_path(self) -> Optional[Path]:
        return dev_path(self.efi) if self.efi else None

    def boot_path(self) -> Optional[Path]:
        return dev_path(self.boot) if self.boot else None

    def root_path(self) -> Optional[Path]:
        return dev_path(self.root) if self.root else None


# System Configuration
class System(_Section):
    """Parameters applied inside the new root."""
    hostname: str = ""
    username: str = ""
    user_password: SecretStr = SecretStr("")
    aur_helper: str = ""
    mirror_protocol: Literal["https", "http", "ftp", "rsync"] = "https"
    multilib: bool = False
    timezone: str = ""

    def timezone_path(self) -> Path:
        return ZONEINFO_DIR / self.timezone


# Live image Configuration
class LiveCD(_Section):
    profile: str = "releng"
    installer_location: str = "."


# Package lists
class Packages(_Section):
    system: List[str] = Field(default_factory=lambda: ["base", "linux", "linux-firmware"])
    pacman: List[str] = Field(default_factory=list)
    aur: List[str] = Field(default_factory=list)
    archiso: List[str] = Field(default_factory=list)
    vscode: List[str] = Field(default_factory=list)


# --- 2. Top-Level Root Model ---

class InstallerConfig(_Section):
    """The top-level configuration model representing the entire config.toml file."""

    drive: Drive
    partitions: Partitions = Field(default_factory=Partitions)
    system: System
    live_cd: LiveCD = Field(default_factory=LiveCD)
    packages: Packages = Field(default_factory=Packages)

    @classmethod
    def load_config_from_file(cls, path: Path) -> 'InstallerConfig':
        """Loads a TOML file and validates its structure against the pydantic schema."""
        path = Path(path)
        try:
            content = path.read_text(encoding="utf-8")
        except OSError:
            raise ConfigNotFoundError(path)

        try:
            data = tomlkit.parse(content).unwrap()
        except Exception as e:
            raise ConfigInvalidError(f"invalid TOML format: {e}")

        try:
            return cls(**data)
        except ValidationError as e:
            first = e.errors()[0]
            location = ".".join(str(part) for part in first["loc"])
            raise ConfigInvalidError(f"{location}: {first['msg']}")

    def validate_settings(self) -> None:
        """
        Checks the values every install needs. Runs before any destructive action
        and stops at the first violation.

        Raises:
            ConfigInvalidError: with a distinct reason per missing value.
        """
        if not self.drive.device:
            raise ConfigInvalidError("drive device not set")
        if self.drive.encryption and not self.drive.password.get_secret_value():
            raise ConfigInvalidError("drive password not set")
        if not self.system.hostname:
            raise ConfigInvalidError("hostname not set")
        if not self.system.username:
            raise ConfigInvalidError("username not set")
        if not self.system.user_password.get_secret_value():
            raise ConfigInvalidError("user password not set")
        if not self.system.timezone:
            raise ConfigInvalidError("timezone not set")

    def root_volume(self, root_partition: Path) -> Path:
        """Device that carries the root filesystem: the LUKS mapping when encrypted."""
        if self.drive.encryption:
            return self.drive.crypt_mapping_path()
        return root_partition

    def display_summary(self) -> str:
        """Generates the summary shown before installation starts."""
        s = typer.style("\nGENERAL CONFIGURATION SUMMARY", fg=typer.colors.BLUE, bold=True) + "\n"
        s += "----------------------------------------\n"
        s += f"  Hostname:           {self.system.hostname}\n"
        s += f"  User:               {self.system.username}\n"
        s += f"  Timezone:           {self.system.timezone}\n"
        s += f"  Multilib:           {'yes' if self.system.multilib else 'no'}\n"
        s += f"  AUR helper:         {self.system.aur_helper or 'none'}\n"

        s += typer.style("\nDISK PLAN", fg=typer.colors.BLUE, bold=True) + "\n"
        s += "----------------------------------------\n"
        s += f"  Device:             {typer.style(str(self.drive.device_path()), fg=typer.colors.CYAN)}\n"
        s += f"  Filesystem:         {self.drive.fs}\n"
        if self.drive.encryption:
            s += f"  Encryption:         {typer.style('LUKS', fg=typer.colors.YELLOW)} -> {self.drive.crypt_mapping_path()}\n"
        for role in ("efi", "boot", "root"):
            override = getattr(self.partitions, role)
            s += f"  {role.upper():<5} partition:    {override or 'created by installer'}\n"

        s += f"  📦 {typer.style('Packages:', bold=True)} {len(self.packages.system)} system, "
        s += f"{len(self.packages.pacman)} pacman, {len(self.packages.aur)} AUR\n"
        return s
