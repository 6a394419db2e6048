import pytest
from pathlib import Path
from unittest.mock import patch

from typer.testing import CliRunner

from archstrap.cli import app
from archstrap.install.steps import InstallStep, InstallStepRange
from archstrap.utils.exceptions import UserDeclinedError

# ======= Execute with: pytest tests/test_cli.py ========

runner = CliRunner()

CONFIG = """
[drive]
device = "sda"

[system]
hostname = "archbox"
username = "alice"
user_password = "hunter2"
timezone = "Europe/Berlin"
"""


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    path = tmp_path / "config.toml"
    path.write_text(CONFIG)
    return path


def test_mkconfig(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    result = runner.invoke(app, ["mkconfig"])

    assert result.exit_code == 0
    assert "[drive]" in (tmp_path / "config.toml").read_text()


def test_missing_config(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    result = runner.invoke(app, ["--config", str(tmp_path / "nope.toml"), "install"])

    assert result.exit_code == 1
    assert "not found" in result.output


def test_invalid_config(config_file):
    config_file.write_text(CONFIG.replace('hostname = "archbox"', 'hostname = ""'))

    result = runner.invoke(app, ["-c", str(config_file), "install"])

    assert result.exit_code == 1
    assert "hostname not set" in result.output


def test_unknown_step(config_file):
    result = runner.invoke(app, ["-c", str(config_file), "install", "--steps", "format..reboot"])

    assert result.exit_code == 1
    assert 'unknown installation step "reboot"' in result.output


@patch("archstrap.cli.run_pipeline")
@patch("archstrap.cli.InstallContext.build")
def test_install_runs_selected_steps(mock_build, mock_pipeline, config_file):
    result = runner.invoke(app, ["-c", str(config_file), "install", "--steps", "format.."])

    assert result.exit_code == 0, result.output
    config, executor, logger, config_path = mock_build.call_args[0]
    assert config.system.hostname == "archbox"
    assert config_path == config_file
    mock_pipeline.assert_called_once_with(mock_build.return_value,
                                          InstallStepRange(InstallStep.FORMAT, InstallStep.CHROOT))


@patch("archstrap.cli.run_pipeline", side_effect=UserDeclinedError())
@patch("archstrap.cli.InstallContext.build")
def test_declined_is_not_an_error(mock_build, mock_pipeline, config_file):
    result = runner.invoke(app, ["-c", str(config_file), "install"])

    assert result.exit_code == 0
    assert "declined" in result.output


@patch("archstrap.cli.chroot_install.run")
@patch("archstrap.cli.InstallContext.build")
def test_chroot_install(mock_build, mock_run, config_file):
    result = runner.invoke(app, ["-c", str(config_file), "chroot-install"])

    assert result.exit_code == 0, result.output
    mock_run.assert_called_once_with(mock_build.return_value)


@patch("archstrap.cli.build_live_cd")
def test_archiso(mock_build, config_file, tmp_path):
    result = runner.invoke(app, ["-c", str(config_file), "archiso", "--working-dir", str(tmp_path / "iso")])

    assert result.exit_code == 0, result.output
    assert mock_build.call_args[0][1] == tmp_path / "iso"
