# archstrap/install/pipeline.py
"""
The installation pipeline run from the live environment.

Stages are plain functions taking the `InstallContext`; `STAGES` lists them in
execution order and `run_pipeline` is the only place that decides which of them
run. Every stage looks the partitions up again, so a run can start at any step
after a previous process stopped.
"""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from archstrap.disk.partitions import PartitionPaths
from archstrap.install import handoff
from archstrap.install.context import InstallContext
from archstrap.install.steps import FULL_RANGE, InstallStep, InstallStepRange
from archstrap.utils import config_patch
from archstrap.utils.exceptions import PartitionPlanError, SystemFileError, UserDeclinedError
from archstrap.utils.system import Mounted, ask_yes_no, check_network

MIRRORLIST = "pacman.d/mirrorlist"
MIRRORLIST_BACKUP = "pacman.d/mirrorlist.backup"


@dataclass(frozen=True)
class StageResult:
    step: InstallStep
    detail: str = ""


@dataclass(frozen=True)
class Stage:
    step: InstallStep
    name: str
    action: Callable[[InstallContext], StageResult]
    enabled: Callable[[InstallContext], bool] = lambda ctx: True


def _require(paths: PartitionPaths, role: str) -> Path:
    path = paths.get(role)
    if path is None:
        raise PartitionPlanError(f"No {role} partition found, run the partition step first")
    return path


#----------------------------------------------------------------------------------------------------------------------
# Stage actions
#----------------------------------------------------------------------------------------------------------------------
def partition(ctx: InstallContext) -> StageResult:
    planner = ctx.planner
    device = ctx.device

    if not planner.table_exists(device):
        planner.create_table(device)

    bios_boot = not ctx.efi and not planner.bios_boot_partition_exists(device)
    paths = planner.plan_and_write(device, want_efi=ctx.efi, bios_boot=bios_boot, present=ctx.overrides())
    layout = ", ".join(f"{role}={paths.get(role)}" for role in sorted(paths.roles()))
    return StageResult(InstallStep.PARTITION, layout)


def encrypt(ctx: InstallContext) -> StageResult:
    drive = ctx.config.drive
    root = _require(ctx.partitions(), "root")
    passphrase = drive.password.get_secret_value()

    if ctx.encryption.is_open(drive.crypt_mapping):
        if not ask_yes_no(f"Crypt mapper \"{drive.crypt_mapping}\" is in use, close?"):
            raise UserDeclinedError(f"Crypt mapper \"{drive.crypt_mapping}\" left open")
        ctx.encryption.close(drive.crypt_mapping)

    ctx.encryption.format(root, passphrase)
    mapped = ctx.encryption.open(root, passphrase, drive.crypt_mapping)
    return StageResult(InstallStep.ENCRYPT, f"{root} -> {mapped}")


def filesystem_type(ctx: InstallContext, device: Path) -> str:
    """Filesystem signature on `device`, empty when there is none."""
    _, out, _ = ctx.executor.run(
        f"Probing filesystem on {device}",
        ["blkid", "-o", "value", "-s", "TYPE", str(device)],
        check=False,
    )
    return out.strip()


def format_partitions(ctx: InstallContext) -> StageResult:
    paths = ctx.partitions()
    fs = ctx.config.drive.fs
    mkfs = f"mkfs.{fs}"
    boot = _require(paths, "boot")
    root_volume = ctx.config.root_volume(_require(paths, "root"))

    # The boot partition is reformatted on every run, even when it already holds a filesystem
    ctx.executor.run(f"Formatting {boot} as {fs}", [mkfs, str(boot)])
    ctx.executor.run(f"Formatting {root_volume} as {fs}", [mkfs, str(root_volume)])

    formatted = [str(boot), str(root_volume)]
    if ctx.efi:
        efi = _require(paths, "efi")
        if filesystem_type(ctx, efi) != "vfat":
            ctx.executor.run(f"Formatting {efi} as FAT32", ["mkfs.fat", "-F32", str(efi)])
            formatted.append(str(efi))
        else:
            ctx.logger.info(f"{efi} already holds a FAT filesystem, kept as is.")
    return StageResult(InstallStep.FORMAT, ", ".join(formatted))


def mount(ctx: InstallContext) -> StageResult:
    paths = ctx.partitions()
    root = ctx.mount_root
    root_volume = ctx.config.root_volume(_require(paths, "root"))

    if Mounted.read().find_by_mountpoint(str(root)):
        if not ask_yes_no(f"\"{root}\" is already mounted, unmount?"):
            raise UserDeclinedError(f"\"{root}\" left mounted")
        ctx.executor.run(f"Unmounting {root}", ["umount", "-Rv", str(root)])

    ctx.executor.run(f"Mounting {root_volume} on {root}", ["mount", str(root_volume), str(root)])

    boot_dir = root / "boot"
    boot_dir.mkdir(exist_ok=True)
    ctx.executor.run(f"Mounting boot partition on {boot_dir}", ["mount", str(_require(paths, "boot")), str(boot_dir)])

    if ctx.efi:
        efi_dir = root / "efi"
        efi_dir.mkdir(exist_ok=True)
        ctx.executor.run(f"Mounting EFI partition on {efi_dir}", ["mount", str(_require(paths, "efi")), str(efi_dir)])
    return StageResult(InstallStep.MOUNT, str(root))


def mirrors(ctx: InstallContext) -> StageResult:
    mirrorlist = ctx.etc_dir / MIRRORLIST
    backup = ctx.etc_dir / MIRRORLIST_BACKUP

    # Only the first run keeps the stock list
    if not backup.exists():
        try:
            os.rename(mirrorlist, backup)
        except OSError as e:
            raise SystemFileError(mirrorlist, e.strerror or str(e)) from e
        ctx.logger.info(f"Stock mirror list saved as {backup}.")

    protocol = ctx.config.system.mirror_protocol
    ctx.executor.run(
        "Ranking package mirrors",
        ["reflector", "--protocol", protocol, "--latest", "8", "--sort", "rate", "--save", str(mirrorlist)],
    )
    return StageResult(InstallStep.MIRRORS, protocol)


def multilib(ctx: InstallContext) -> StageResult:
    pacman_conf = ctx.etc_dir / "pacman.conf"
    if config_patch.enable_multilib(pacman_conf):
        return StageResult(InstallStep.MULTILIB, "enabled")
    ctx.logger.warning(f"No disabled [multilib] section found in {pacman_conf}, left unchanged.")
    return StageResult(InstallStep.MULTILIB, "unchanged")


def pacstrap(ctx: InstallContext) -> StageResult:
    packages = ctx.config.packages.system
    ctx.executor.run(
        f"Installing {len(packages)} base packages into {ctx.mount_root}",
        ["pacstrap", str(ctx.mount_root)] + list(packages),
    )
    return StageResult(InstallStep.PACSTRAP, " ".join(packages))


def fstab(ctx: InstallContext) -> StageResult:
    target = ctx.mount_root / "etc" / "fstab"
    with open(target, "a", encoding="utf-8") as f:
        ctx.executor.run("Generating fstab", ["genfstab", "-U", str(ctx.mount_root)], stdout=f)
    return StageResult(InstallStep.FSTAB, str(target))


def chroot(ctx: InstallContext) -> StageResult:
    installed = handoff.run(ctx)
    return StageResult(InstallStep.CHROOT, str(installed))


STAGES: List[Stage] = [
    Stage(InstallStep.PARTITION, "Partitioning the drive", partition),
    Stage(InstallStep.ENCRYPT, "Encrypting the root partition", encrypt,
          enabled=lambda ctx: ctx.config.drive.encryption),
    Stage(InstallStep.FORMAT, "Creating filesystems", format_partitions),
    Stage(InstallStep.MOUNT, "Mounting filesystems", mount),
    Stage(InstallStep.MIRRORS, "Configuring mirrors", mirrors),
    Stage(InstallStep.MULTILIB, "Enabling multilib", multilib,
          enabled=lambda ctx: ctx.config.system.multilib),
    Stage(InstallStep.PACSTRAP, "Installing the base system", pacstrap),
    Stage(InstallStep.FSTAB, "Generating fstab", fstab),
    Stage(InstallStep.CHROOT, "Continuing inside the new system", chroot),
]


#----------------------------------------------------------------------------------------------------------------------
# Driver
#----------------------------------------------------------------------------------------------------------------------
def preflight(ctx: InstallContext) -> None:
    """
    Raises:
        NetworkError: when archlinux.org cannot be reached.
        DeviceNotFoundError: when the configured drive does not exist.
    """
    check_network(ctx.executor)
    ctx.planner.check_device(ctx.device)


def run_pipeline(ctx: InstallContext,
                 steps: InstallStepRange = FULL_RANGE,
                 stages: Optional[List[Stage]] = None) -> List[StageResult]:
    """
    Runs the stages selected by `steps` in order. The first failing stage ends
    the run; its error propagates unchanged.

    Returns:
        List[StageResult]: one result per stage that ran.
    """
    stages = STAGES if stages is None else stages
    preflight(ctx)

    results: List[StageResult] = []
    for stage in stages:
        if not steps.contains(stage.step):
            ctx.logger.debug(f"Step {stage.step.label} outside {steps}, skipped.")
            continue
        if not stage.enabled(ctx):
            ctx.logger.info(f"Step {stage.step.label} not enabled in the configuration, skipped.")
            continue

        ctx.logger.section(f"[{stage.step.value}/{len(InstallStep)}] {stage.name}")
        result = stage.action(ctx)
        ctx.logger.info(f"Step {stage.step.label} done: {result.detail}")
        results.append(result)
    return results
