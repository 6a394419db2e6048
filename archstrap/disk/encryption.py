# archstrap/disk/encryption.py
import os
from pathlib import Path
from typing import Union

from archstrap.config.models import MAPPER_DIR
from archstrap.utils.executor import Executor

PathLike = Union[str, Path]


class EncryptionManager:
    """
    LUKS operations on the root partition through cryptsetup.

    The passphrase is handed to cryptsetup on standard input only; it never becomes
    part of an argument vector, so it is never logged.
    """

    def __init__(self, executor: Executor, mapper_dir: PathLike = MAPPER_DIR):
        self.executor = executor
        self.mapper_dir = Path(mapper_dir)

    def format(self, device: PathLike, passphrase: str) -> None:
        """Initialises a LUKS header on `device`, destroying its contents."""
        self.executor.run(
            description=f"Encrypting {device} with LUKS",
            command=["cryptsetup", "-v", "--batch-mode", "luksFormat", str(device)],
            input=passphrase,
        )

    def open(self, device: PathLike, passphrase: str, mapping_name: str) -> Path:
        """
        Unlocks `device` as /dev/mapper/<mapping_name>.

        Returns:
            Path: the mapped device.
        """
        self.executor.run(
            description=f"Opening {device} as {mapping_name}",
            command=["cryptsetup", "open", str(device), mapping_name],
            input=passphrase,
        )
        return self.mapping_path(mapping_name)

    def mapping_path(self, mapping_name: str) -> Path:
        return self.mapper_dir / mapping_name

    def is_open(self, mapping_name: str) -> bool:
        return os.path.exists(self.mapping_path(mapping_name))

    def close(self, mapping_name: str) -> None:
        self.executor.run(
            description=f"Closing {mapping_name}",
            command=["cryptsetup", "close", mapping_name],
        )
