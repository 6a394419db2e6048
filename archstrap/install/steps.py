# archstrap/install/steps.py
from dataclasses import dataclass
from enum import IntEnum
from typing import Iterator, List

from archstrap.utils.exceptions import UnknownInstallStepError


class InstallStep(IntEnum):
    """Installation steps, in execution order."""
    PARTITION = 1
    ENCRYPT = 2
    FORMAT = 3
    MOUNT = 4
    MIRRORS = 5
    MULTILIB = 6
    PACSTRAP = 7
    FSTAB = 8
    CHROOT = 9

    @classmethod
    def from_str(cls, name: str) -> "InstallStep":
        """
        Case-insensitive lookup by step name.

        Raises:
            UnknownInstallStepError: when `name` is not a step.
        """
        try:
            return cls[name.strip().upper()]
        except KeyError:
            raise UnknownInstallStepError(name)

    @property
    def label(self) -> str:
        return self.name.lower()


@dataclass(frozen=True)
class InstallStepRange:
    """Inclusive range of steps, compared by rank."""
    start: InstallStep = InstallStep.PARTITION
    end: InstallStep = InstallStep.CHROOT

    @classmethod
    def parse(cls, text: str) -> "InstallStepRange":
        """
        Parses "[from]..[to]". A missing side defaults to the first or last step, and
        text without ".." selects a single step.

        Examples:
            ".."        -> partition..chroot
            "format.."  -> format..chroot
            "encrypt"   -> encrypt..encrypt
        """
        text = text.strip()
        if ".." not in text:
            step = InstallStep.from_str(text)
            return cls(step, step)

        low, high = text.split("..", 1)
        start = InstallStep.from_str(low) if low.strip() else InstallStep.PARTITION
        end = InstallStep.from_str(high) if high.strip() else InstallStep.CHROOT
        return cls(start, end)

    def contains(self, step: InstallStep) -> bool:
        return self.start <= step <= self.end

    def __contains__(self, step: InstallStep) -> bool:
        return self.contains(step)

    def steps(self) -> List[InstallStep]:
        return [step for step in InstallStep if self.contains(step)]

    def __iter__(self) -> Iterator[InstallStep]:
        return iter(self.steps())

    def __str__(self) -> str:
        return f"{self.start.label}..{self.end.label}"


FULL_RANGE = InstallStepRange()
