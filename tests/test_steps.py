import pytest

from archstrap.install.steps import FULL_RANGE, InstallStep, InstallStepRange
from archstrap.utils.exceptions import ConfigInvalidError, UnknownInstallStepError

# ======= Execute with: pytest tests/test_steps.py ========


def test_step_order():
    assert list(InstallStep) == sorted(InstallStep)
    assert InstallStep.PARTITION < InstallStep.ENCRYPT < InstallStep.FORMAT < InstallStep.MOUNT
    assert InstallStep.MIRRORS < InstallStep.MULTILIB < InstallStep.PACSTRAP < InstallStep.FSTAB < InstallStep.CHROOT


@pytest.mark.parametrize("name, step", [
    ("partition", InstallStep.PARTITION),
    ("Pacstrap", InstallStep.PACSTRAP),
    (" fstab ", InstallStep.FSTAB),
])
def test_from_str(name, step):
    assert InstallStep.from_str(name) == step


def test_from_str_unknown():
    with pytest.raises(UnknownInstallStepError) as excinfo:
        InstallStep.from_str("reboot")
    assert isinstance(excinfo.value, ConfigInvalidError)
    assert 'unknown installation step "reboot"' in str(excinfo.value)


def test_parse_full_range():
    steps = InstallStepRange.parse("..")
    assert steps == FULL_RANGE
    assert steps.steps() == list(InstallStep)


def test_parse_open_end():
    steps = InstallStepRange.parse("format..")
    assert (steps.start, steps.end) == (InstallStep.FORMAT, InstallStep.CHROOT)


def test_parse_open_start():
    steps = InstallStepRange.parse("..mount")
    assert (steps.start, steps.end) == (InstallStep.PARTITION, InstallStep.MOUNT)


def test_parse_single_step():
    steps = InstallStepRange.parse("encrypt")
    assert (steps.start, steps.end) == (InstallStep.ENCRYPT, InstallStep.ENCRYPT)
    assert list(steps) == [InstallStep.ENCRYPT]


def test_parse_unknown_bound():
    with pytest.raises(UnknownInstallStepError):
        InstallStepRange.parse("format..finish")


def test_contains_is_inclusive():
    steps = InstallStepRange(InstallStep.FORMAT, InstallStep.CHROOT)
    assert steps.contains(InstallStep.FORMAT)
    assert steps.contains(InstallStep.CHROOT)
    assert not steps.contains(InstallStep.ENCRYPT)
    assert InstallStep.MOUNT in steps


def test_inverted_range_is_empty():
    steps = InstallStepRange.parse("fstab..mount")
    assert steps.steps() == []


def test_str():
    assert str(InstallStepRange.parse("mirrors..")) == "mirrors..chroot"
