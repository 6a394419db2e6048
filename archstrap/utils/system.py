# archstrap/utils/system.py
import os
from pathlib import Path
from typing import List, NamedTuple, Optional

from rich.prompt import Prompt

from archstrap.utils.executor import Executor, ShellCommandError
from archstrap.utils.exceptions import NetworkError, SudoRequiredError, UserDeclinedError

EFI_FIRMWARE_DIR = "/sys/firmware/efi"
PROC_MOUNTS = "/proc/mounts"


#----------------------------------------------------------------------------------------------------------------------
# System checks
#----------------------------------------------------------------------------------------------------------------------
def check_sudo() -> None:
    """
    Check that the software is running with root privileges.

    Raises:
        SudoRequiredError: if the effective user is not root.
    """
    if os.geteuid() != 0:
        raise SudoRequiredError()


def is_uefi(firmware_dir: str = EFI_FIRMWARE_DIR) -> bool:
    """True when the running system was booted through UEFI firmware."""
    return os.path.exists(firmware_dir)


def check_network(executor: Executor, host: str = "archlinux.org") -> None:
    """
    Check that the package mirrors can be reached.

    Raises:
        NetworkError: when a single ping to `host` does not get an answer.
    """
    try:
        executor.run(f"Checking network access to {host}", ["ping", "-c", "1", host])
    except ShellCommandError as e:
        raise NetworkError() from e


def sudo_user() -> Optional[str]:
    """Name of the non-root user that invoked sudo, if any."""
    return os.environ.get("SUDO_USER") or None


def payload_dir() -> Path:
    """Directory holding the importable `archstrap` package (the installer payload)."""
    return Path(__file__).resolve().parent.parent


def default_config_path() -> Path:
    return payload_dir().parent / "config.toml"


#----------------------------------------------------------------------------------------------------------------------
# Operator interaction
#----------------------------------------------------------------------------------------------------------------------
def confirm_destructive(warning: str, phrase: str = "DO IT") -> None:
    """
    Blocks until the operator answers. Anything but the exact phrase aborts the run.

    Raises:
        UserDeclinedError: when the typed answer differs from `phrase`.
    """
    answer = Prompt.ask(f"[bold red]WARNING!!! {warning}[/] Type \"{phrase}\" to continue")
    if answer != phrase:
        raise UserDeclinedError(f"Confirmation \"{phrase}\" not given, nothing was changed")


def ask_yes_no(prompt_text: str) -> bool:
    """
    Asks the user a yes/no question and returns True for "y" and False for "n".
    """
    response = Prompt.ask("[yellow]" + prompt_text + "[/]", choices=["y", "n"])
    return response.lower() == "y"


#----------------------------------------------------------------------------------------------------------------------
# Mount table
#----------------------------------------------------------------------------------------------------------------------
class MountEntry(NamedTuple):
    spec: str
    mountpoint: str


class Mounted:
    """Snapshot of the kernel mount table."""

    def __init__(self, entries: List[MountEntry]):
        self.entries = entries

    @classmethod
    def read(cls, path: str = PROC_MOUNTS) -> "Mounted":
        entries: List[MountEntry] = []
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                columns = line.split()
                if len(columns) >= 2:
                    entries.append(MountEntry(columns[0], columns[1]))
        return cls(entries)

    def find_by_mountpoint(self, mountpoint: str) -> Optional[MountEntry]:
        target = os.path.normpath(mountpoint)
        for entry in self.entries:
            if os.path.normpath(entry.mountpoint) == target:
                return entry
        return None
