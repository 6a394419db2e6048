# archstrap/disk/partitions.py
import os
import re
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import BinaryIO, Callable, Dict, Iterator, List, Optional, Set, Union

from archstrap.disk.gpt import (
    BIOS_BOOT_GUID, EFI_SYSTEM_GUID, GPT, GPTError, GPTPartitionEntry, LINUX_FILESYSTEM_GUID,
    SECTOR_SIZES, device_size, write_protective_mbr,
)
from archstrap.utils.exceptions import DeviceAccessError, DeviceNotFoundError, PartitionPlanError
from archstrap.utils.executor import Executor
from archstrap.utils.logger import RichAppLogger
from archstrap.utils.system import confirm_destructive

PathLike = Union[str, Path]

# Partition labels identify the role of an entry in the table
EFI_LABEL = "EFI system partition"
BOOT_LABEL = "Arch Linux boot partition"
ROOT_LABEL = "Arch Linux root partition"
BIOS_BOOT_LABEL = "BIOS boot partition"

ROLE_LABELS: Dict[str, str] = {
    "efi": EFI_LABEL,
    "boot": BOOT_LABEL,
    "root": ROOT_LABEL,
}

EFI_SIZE_MIB = 64
BOOT_SIZE_MIB = 256
BIOS_BOOT_SIZE_MIB = 1

MIB = 1024 * 1024


@dataclass(frozen=True)
class PartitionPaths:
    """Device paths of the three partition roles; None when the role is not resolved."""
    efi: Optional[Path] = None
    boot: Optional[Path] = None
    root: Optional[Path] = None

    def get(self, role: str) -> Optional[Path]:
        return getattr(self, role)

    def roles(self) -> Set[str]:
        return {f.name for f in fields(self) if getattr(self, f.name) is not None}

    def merged(self, overrides: Optional["PartitionPaths"]) -> "PartitionPaths":
        """Roles set in `overrides` win over the ones found here."""
        if overrides is None:
            return self
        return replace(self, **{role: overrides.get(role) for role in overrides.roles()})


class PartitionPlanner:
    """
    Brings a block device to the EFI + boot + root layout by adding the partitions
    that are missing from its GPT. Existing entries are never moved or resized.
    """

    def __init__(self,
                 executor: Executor,
                 logger: RichAppLogger,
                 settle_timeout: float = 10.0,
                 settle_interval: float = 0.5,
                 confirm: Callable[[str], None] = confirm_destructive):
        """
        Args:
            executor (Executor): Runs lsblk and partprobe.
            logger (RichAppLogger): Operator-facing log.
            settle_timeout (float): Seconds to wait for the kernel to publish new partitions.
            settle_interval (float): Delay between two lookups while waiting.
            confirm (Callable): Asks the operator before the table is recreated; raises to decline.
        """
        self.executor = executor
        self.logger = logger
        self.settle_timeout = settle_timeout
        self.settle_interval = settle_interval
        self.confirm = confirm

    # --- DEVICE LEVEL OPERATIONS ---

    def check_device(self, device: PathLike) -> None:
        """
        Raises:
            DeviceNotFoundError: when `device` does not exist.
        """
        if not os.path.exists(device):
            raise DeviceNotFoundError(device)

    @contextmanager
    def _opened(self, device: PathLike, mode: str) -> Iterator[BinaryIO]:
        self.check_device(device)
        try:
            f = open(device, mode)
        except OSError as e:
            raise DeviceAccessError(device, e.strerror or str(e)) from e
        with f:
            yield f

    def _read_table(self, f: BinaryIO, device: PathLike) -> GPT:
        try:
            return GPT.find_from(f)
        except GPTError as e:
            raise PartitionPlanError(f"No valid GPT on {device}: {e}") from e

    def table_exists(self, device: PathLike) -> bool:
        """True when a valid GPT header is found on the device."""
        with self._opened(device, "rb") as f:
            try:
                GPT.find_from(f)
            except GPTError as e:
                self.logger.debug(f"No GPT on {device}: {e}")
                return False
        return True

    def sector_size(self, device: PathLike) -> int:
        """Logical sector size the kernel uses for `device`."""
        out = self.executor.output(f"Reading sector size of {device}", ["blockdev", "--getss", str(device)])
        try:
            size = int(out)
        except ValueError:
            raise PartitionPlanError(f"Unexpected sector size of {device}: {out!r}")
        if size not in SECTOR_SIZES:
            raise PartitionPlanError(f"Unsupported sector size of {device}: {size}")
        return size

    def create_table(self, device: PathLike) -> None:
        """
        Writes a fresh, empty GPT over whatever the device holds, after the operator
        has confirmed.

        Raises:
            UserDeclinedError: when the operator does not confirm.
        """
        self.check_device(device)
        self.logger.warning(f"No GPT partition table found on {device}.")
        self.confirm(f"A new partition table will be written to {device}. All data on it will be lost.")

        sector_size = self.sector_size(device)
        with self._opened(device, "r+b") as f:
            total_sectors = device_size(f) // sector_size
            try:
                gpt = GPT.create(total_sectors, sector_size=sector_size)
            except GPTError as e:
                raise PartitionPlanError(str(e)) from e
            write_protective_mbr(f, total_sectors, sector_size)
            gpt.write_into(f)
        self.logger.info(f"Created an empty GPT on {device} ({total_sectors} sectors of {sector_size} bytes).")
        self._reread(device)

    def bios_boot_partition_exists(self, device: PathLike) -> bool:
        with self._opened(device, "rb") as f:
            gpt = self._read_table(f, device)
        return any(e.partition_type_guid == BIOS_BOOT_GUID for _, e in gpt.used())

    # --- LOOKUP ---

    def locate(self, device: PathLike) -> PartitionPaths:
        """
        Maps the partition labels the kernel reports for `device` to their paths.
        Unrecognised labels are ignored.

        Returns:
            PartitionPaths: one path per role found.
        """
        out = self.executor.output(
            f"Looking up partitions on {device}",
            ["lsblk", "--output=PATH,PARTLABEL", "--noheadings", str(device)],
        )
        found: Dict[str, Path] = {}
        for line in out.splitlines():
            columns = line.strip().split(None, 1)
            if len(columns) != 2:
                continue
            path, label = columns[0], columns[1].strip()
            for role, role_label in ROLE_LABELS.items():
                if label == role_label:
                    found[role] = Path(path)
        return PartitionPaths(**found)

    def resolve(self, device: PathLike, present: Optional[PartitionPaths] = None) -> PartitionPaths:
        """Partitions on the device, with configured overrides taking precedence."""
        return self.locate(device).merged(present)

    # --- PLANNING ---

    def plan_and_write(self,
                       device: PathLike,
                       want_efi: bool,
                       bios_boot: bool = False,
                       present: Optional[PartitionPaths] = None) -> PartitionPaths:
        """
        Adds the missing role partitions to the GPT of `device` and waits until the
        kernel reports them.

        Args:
            device: Target block device holding a GPT.
            want_efi (bool): Whether an EFI system partition is part of the layout.
            bios_boot (bool): Also allocate a BIOS boot partition (legacy firmware).
            present (PartitionPaths): Roles provided by pre-created partitions.

        Returns:
            PartitionPaths: the resolved layout, overrides included.

        Raises:
            DeviceNotFoundError: when `device` does not exist.
            DeviceAccessError: when `device` cannot be opened.
            PartitionPlanError: when the device holds no valid GPT, the new ranges do not fit, no slot is free, or the
                kernel does not report the expected partitions in time.
        """
        present = present or PartitionPaths()

        with self._opened(device, "r+b") as f:
            gpt = self._read_table(f, device)
            created = self._allocate(gpt, device, want_efi, bios_boot, present)
            if not created:
                self.logger.info(f"All partitions already present on {device}, table left untouched.")
                return self.resolve(device, present)
            gpt.write_into(f)

        for index, entry in created:
            self.logger.info(f"Created partition {index} \"{entry.partition_name}\" "
                             f"(sectors {entry.starting_lba}-{entry.ending_lba}).")

        expected = {role for role, label in ROLE_LABELS.items() if gpt.find_by_name(label)}
        self._reread(device)
        return self._settle(device, expected).merged(present)

    def missing_roles(self, gpt: GPT, want_efi: bool, present: PartitionPaths) -> List[str]:
        wanted = ["efi", "boot", "root"] if want_efi else ["boot", "root"]
        return [
            role for role in wanted
            if present.get(role) is None and gpt.find_by_name(ROLE_LABELS[role]) is None
        ]

    @staticmethod
    def first_gap(gpt: GPT, sectors: int) -> Optional[int]:
        """Start of the lowest free range of at least `sectors`, or None."""
        start = gpt.header.first_usable_lba
        for _, entry in sorted(gpt.used(), key=lambda item: item[1].starting_lba):
            if entry.starting_lba - start >= sectors:
                return start
            start = max(start, entry.ending_lba + 1)
        if gpt.header.last_usable_lba - start + 1 >= sectors:
            return start
        return None

    @staticmethod
    def efi_entry(gpt: GPT, device: PathLike, efi: Optional[Path]) -> Optional[GPTPartitionEntry]:
        """
        Table entry of the EFI partition: the labelled one, else the one a configured
        path points at (by its partition number), else any EFI system entry.
        """
        found = gpt.find_by_name(EFI_LABEL)
        if found:
            return found[1]
        if efi is None:
            return None

        prefix, path = str(device), str(efi)
        match = re.fullmatch(r"p?(\d+)", path[len(prefix):]) if path.startswith(prefix) else None
        if match and 1 <= int(match.group(1)) <= len(gpt):
            entry = gpt[int(match.group(1))]
            if entry.is_used():
                return entry
        return next((e for _, e in gpt.used() if e.partition_type_guid == EFI_SYSTEM_GUID), None)

    def _allocate(self,
                  gpt: GPT,
                  device: PathLike,
                  want_efi: bool,
                  bios_boot: bool,
                  present: PartitionPaths) -> List:
        missing = self.missing_roles(gpt, want_efi, present)
        want_bios_boot = bios_boot and not any(
            e.partition_type_guid == BIOS_BOOT_GUID for _, e in gpt.used())
        if want_bios_boot and not missing:
            self.logger.warning(f"{device} has no {BIOS_BOOT_LABEL}, but every partition role is present; "
                                f"none is added.")
            want_bios_boot = False
        if not missing and not want_bios_boot:
            return []

        header = gpt.header
        sectors_per_mib = MIB // gpt.sector_size

        # Lowest free slots first, existing entries keep their numbers
        slots = gpt.unused_indexes()
        slots.reverse()
        created = []

        def add(label: str, type_guid: uuid.UUID, start: int, end: int) -> GPTPartitionEntry:
            if not slots:
                raise PartitionPlanError(f"No free partition slot left for \"{label}\"")
            if start < header.first_usable_lba or end > header.last_usable_lba or start > end:
                raise PartitionPlanError(
                    f"\"{label}\" range {start}-{end} is outside the usable sectors "
                    f"{header.first_usable_lba}-{header.last_usable_lba}")
            for index, existing in gpt.used():
                if existing.overlaps(start, end):
                    raise PartitionPlanError(
                        f"\"{label}\" range {start}-{end} overlaps partition {index} "
                        f"({existing.starting_lba}-{existing.ending_lba})")
            entry = GPTPartitionEntry(
                partition_type_guid=type_guid,
                unique_partition_guid=uuid.uuid4(),
                starting_lba=start,
                ending_lba=end,
                partition_name=label,
            )
            index = slots.pop()
            gpt[index] = entry
            created.append((index, entry))
            return entry

        first = header.first_usable_lba
        if want_bios_boot:
            size = BIOS_BOOT_SIZE_MIB * sectors_per_mib
            start = self.first_gap(gpt, size)
            if start is None:
                raise PartitionPlanError(f"No free space left for \"{BIOS_BOOT_LABEL}\" on {device}")
            add(BIOS_BOOT_LABEL, BIOS_BOOT_GUID, start, start + size - 1)
        if "efi" in missing:
            add(EFI_LABEL, EFI_SYSTEM_GUID, first, first + EFI_SIZE_MIB * sectors_per_mib - 1)

        if "boot" in missing:
            size = BOOT_SIZE_MIB * sectors_per_mib
            anchor = self.efi_entry(gpt, device, present.efi) or next(
                (e for _, e in gpt.used() if e.partition_type_guid == BIOS_BOOT_GUID), None)
            if anchor is not None:
                start = anchor.ending_lba + 1
            else:
                start = self.first_gap(gpt, size)
                start = first if start is None else start
            add(BOOT_LABEL, LINUX_FILESYSTEM_GUID, start, start + size - 1)

        if "root" in missing:
            used = gpt.used()
            start = max(e.ending_lba for _, e in used) + 1 if used else first
            add(ROOT_LABEL, LINUX_FILESYSTEM_GUID, start, header.last_usable_lba)

        return created

    # --- KERNEL SYNCHRONISATION ---

    def _reread(self, device: PathLike) -> None:
        self.executor.run(f"Re-reading partition table of {device}", ["partprobe", str(device)])

    def _settle(self, device: PathLike, expected: Set[str]) -> PartitionPaths:
        """Polls `locate` until exactly the `expected` roles are reported."""
        deadline = time.monotonic() + self.settle_timeout
        while True:
            located = self.locate(device)
            if located.roles() == expected:
                return located
            if time.monotonic() >= deadline:
                raise PartitionPlanError(
                    f"Partitions on {device} did not settle: expected {sorted(expected)}, "
                    f"kernel reports {sorted(located.roles())}")
            time.sleep(self.settle_interval)
