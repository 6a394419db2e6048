# archstrap/install/__init__.py
from .steps import FULL_RANGE, InstallStep, InstallStepRange

__all__ = ["FULL_RANGE", "InstallStep", "InstallStepRange"]
