# archstrap/disk/__init__.py
from .encryption import EncryptionManager
from .gpt import GPT, GPTError, GPTHeader, GPTPartitionEntry
from .partitions import PartitionPaths, PartitionPlanner

__all__ = [
    "EncryptionManager", "GPT", "GPTError", "GPTHeader", "GPTPartitionEntry",
    "PartitionPaths", "PartitionPlanner",
]
