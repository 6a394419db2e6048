import pytest
from pathlib import Path
from unittest.mock import MagicMock

from archstrap.config.models import Drive, InstallerConfig, Packages, System
from archstrap.disk.gpt import GPT, GPTError
from archstrap.utils.executor import Executor
from archstrap.utils.logger import RichAppLogger

DISK_SIZE = 1024 * 1024 * 1024  # 1 GiB, sparse


def lsblk_listing(device: Path) -> str:
    """What `lsblk --output=PATH,PARTLABEL --noheadings` prints for a disk image."""
    lines = [f"{device} "]
    try:
        with open(device, "rb") as f:
            gpt = GPT.find_from(f)
    except (GPTError, OSError):
        return "\n".join(lines) + "\n"
    for index, entry in gpt.used():
        lines.append(f"{device}{index} {entry.partition_name}")
    return "\n".join(lines) + "\n"


@pytest.fixture
def mock_rich_logger():
    """Provides a fully-mocked RichAppLogger instance for dependency injection."""
    mock_logger = MagicMock(spec=RichAppLogger)

    mock_context_manager = MagicMock()
    mock_context_manager.__enter__.return_value = None
    mock_context_manager.__exit__.return_value = None
    mock_logger.execution_step.return_value = mock_context_manager

    return mock_logger


@pytest.fixture
def fake_executor(mock_rich_logger):
    """
    Executor double: every command succeeds with empty output, except lsblk
    partition listings which are read from the disk image, and a 512 byte
    sector size.
    """
    executor = MagicMock(spec=Executor)
    executor.logger = mock_rich_logger
    executor.run.return_value = (0, "", "")

    def output(description, command, **kwargs):
        if command[0] == "lsblk" and "--output=PATH,PARTLABEL" in command:
            return lsblk_listing(Path(command[-1])).strip()
        if command[:2] == ["blockdev", "--getss"]:
            return "512"
        return ""

    executor.output.side_effect = output
    return executor


@pytest.fixture
def disk_image(tmp_path):
    """A blank, sparse 1 GiB disk image."""
    path = tmp_path / "disk.img"
    with open(path, "wb") as f:
        f.truncate(DISK_SIZE)
    return path


@pytest.fixture
def make_config():
    """Builds a valid configuration; keyword arguments replace whole sections or drive/system fields."""
    def factory(drive=None, system=None, **sections):
        drive_fields = dict(device="/dev/sda", encryption=False, password="", fs="ext4")
        drive_fields.update(drive or {})
        system_fields = dict(hostname="archbox", username="alice", user_password="hunter2",
                             timezone="Europe/Berlin")
        system_fields.update(system or {})
        sections.setdefault("packages", Packages())
        return InstallerConfig(drive=Drive(**drive_fields), system=System(**system_fields), **sections)
    return factory
