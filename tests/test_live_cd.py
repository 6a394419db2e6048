import os
import pytest
from pathlib import Path
from unittest.mock import patch

from archstrap import live_cd
from archstrap.config.models import LiveCD, Packages
from archstrap.utils.exceptions import InvalidUmaskError, SudoRequiredError, UnknownArchISOProfileError

# ======= Execute with: pytest tests/test_live_cd.py ========


@pytest.fixture
def workspace(tmp_path):
    """Working directory already holding what `cp -rv <profile>` and mkarchiso would leave."""
    working_dir = tmp_path / "build"
    profile_root = working_dir / "releng"
    (profile_root / "out").mkdir(parents=True)
    (profile_root / "packages.x86_64").write_text("base\n")
    (profile_root / "out" / "archlinux-2026.10.01-x86_64.iso").write_bytes(b"iso")
    os.chmod(working_dir, 0o755)
    return working_dir


def commands(executor):
    return [c[0][1] for c in executor.run.call_args_list]


def test_unknown_profile():
    with pytest.raises(UnknownArchISOProfileError, match="custom"):
        live_cd.profile_path("custom")


def test_known_profiles():
    assert live_cd.profile_path("baseline") == Path("/usr/share/archiso/configs/baseline")


@patch("archstrap.live_cd.check_sudo", side_effect=SudoRequiredError())
def test_requires_root(mock_sudo, make_config, fake_executor, mock_rich_logger, workspace):
    with pytest.raises(SudoRequiredError):
        live_cd.build_live_cd(make_config(), workspace, fake_executor, mock_rich_logger)
    fake_executor.run.assert_not_called()


@patch("archstrap.live_cd.check_sudo")
def test_wrong_mode(mock_sudo, make_config, fake_executor, mock_rich_logger, workspace):
    os.chmod(workspace, 0o700)

    with pytest.raises(InvalidUmaskError) as excinfo:
        live_cd.build_live_cd(make_config(), workspace, fake_executor, mock_rich_logger)

    assert excinfo.value.got == 0o40700
    fake_executor.run.assert_not_called()


@patch("archstrap.live_cd.check_sudo")
def test_build(mock_sudo, make_config, fake_executor, mock_rich_logger, workspace, tmp_path, monkeypatch):
    monkeypatch.setenv("SUDO_USER", "alice")
    installer = tmp_path / "installer"
    config = make_config(live_cd=LiveCD(profile="releng", installer_location=str(installer)),
                         packages=Packages(archiso=["python-rich", "python-typer"]))

    iso = live_cd.build_live_cd(config, workspace, fake_executor, mock_rich_logger, profiles_dir=Path("/profiles"))

    profile_root = workspace / "releng"
    assert commands(fake_executor) == [
        ["cp", "-rv", "/profiles/releng", str(workspace)],
        ["cp", "-rv", str(installer), str(profile_root / "airootfs" / "root" / "installer")],
        ["mkarchiso", "-v", "-w", str(profile_root / "work"), "-o", str(profile_root / "out"), str(profile_root)],
        ["chown", "alice:alice", str(workspace / "archlinux-2026.10.01-x86_64.iso")],
    ]
    assert (profile_root / "packages.x86_64").read_text() == "base\npython-rich\npython-typer\n"
    assert iso == workspace / "archlinux-2026.10.01-x86_64.iso"
    assert iso.read_bytes() == b"iso"


@patch("archstrap.live_cd.check_sudo")
def test_build_without_sudo_user(mock_sudo, make_config, fake_executor, mock_rich_logger, workspace, monkeypatch):
    monkeypatch.delenv("SUDO_USER", raising=False)

    live_cd.build_live_cd(make_config(), workspace, fake_executor, mock_rich_logger, profiles_dir=Path("/profiles"))

    assert "chown" not in [c[0] for c in commands(fake_executor)]


def test_default_installer_source():
    assert (live_cd.installer_source(".") / "archstrap" / "__init__.py").is_file()
