# archstrap/config/__init__.py
from importlib import resources

from .models import InstallerConfig, Drive, Partitions, System, LiveCD, Packages

__all__ = [
    "InstallerConfig", "Drive", "Partitions", "System", "LiveCD", "Packages",
    "template_text",
]


def template_text() -> str:
    """Contents of the config template emitted by `mkconfig`."""
    return resources.files(__package__).joinpath("template.toml").read_text(encoding="utf-8")
