# archstrap/install/context.py
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from archstrap.config.models import InstallerConfig
from archstrap.disk.encryption import EncryptionManager
from archstrap.disk.partitions import PartitionPaths, PartitionPlanner
from archstrap.utils.executor import Executor
from archstrap.utils.logger import RichAppLogger
from archstrap.utils.system import is_uefi

MOUNT_ROOT = Path("/mnt")


@dataclass
class InstallContext:
    """
    Everything a stage needs, passed explicitly to each stage action.

    Built once per process; device state is never cached here, stages look it up
    again every time they run.
    """
    config: InstallerConfig
    executor: Executor
    logger: RichAppLogger
    config_path: Path
    efi: bool = False
    mount_root: Path = MOUNT_ROOT
    planner: Optional[PartitionPlanner] = None
    encryption: Optional[EncryptionManager] = None
    etc_dir: Path = field(default=Path("/etc"))

    def __post_init__(self):
        if self.planner is None:
            self.planner = PartitionPlanner(self.executor, self.logger)
        if self.encryption is None:
            self.encryption = EncryptionManager(self.executor)

    @classmethod
    def build(cls, config: InstallerConfig, executor: Executor, logger: RichAppLogger,
              config_path: Path) -> "InstallContext":
        return cls(config=config, executor=executor, logger=logger,
                   config_path=Path(config_path), efi=is_uefi())

    @property
    def device(self) -> Path:
        return self.config.drive.device_path()

    def overrides(self) -> PartitionPaths:
        p = self.config.partitions
        return PartitionPaths(efi=p.efi_path(), boot=p.boot_path(), root=p.root_path())

    def partitions(self) -> PartitionPaths:
        """Current layout of the target drive, configured overrides first."""
        return self.planner.resolve(self.device, self.overrides())
