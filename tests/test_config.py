import pytest
from pathlib import Path

from archstrap.config import InstallerConfig, template_text
from archstrap.utils.exceptions import ConfigInvalidError, ConfigNotFoundError

# ======= Execute with: pytest tests/test_config.py ========

VALID = """
[drive]
device = "sda"
encryption = true
password = "luks-secret"

[system]
hostname = "archbox"
username = "alice"
user_password = "hunter2"
timezone = "Europe/Berlin"
"""


def write(tmp_path, text):
    path = tmp_path / "config.toml"
    path.write_text(text, encoding="utf-8")
    return path


def test_load_valid_config(tmp_path):
    config = InstallerConfig.load_config_from_file(write(tmp_path, VALID))

    assert config.drive.device_path() == Path("/dev/sda")
    assert config.drive.password.get_secret_value() == "luks-secret"
    assert config.drive.crypt_mapping_path() == Path("/dev/mapper/cryptroot")
    assert config.system.timezone_path() == Path("/usr/share/zoneinfo/Europe/Berlin")
    assert config.packages.system == ["base", "linux", "linux-firmware"]
    assert config.partitions.root_path() is None
    config.validate_settings()


def test_password_hidden_in_repr(tmp_path):
    config = InstallerConfig.load_config_from_file(write(tmp_path, VALID))
    assert "luks-secret" not in repr(config)
    assert "hunter2" not in str(config)


def test_config_is_immutable(tmp_path):
    config = InstallerConfig.load_config_from_file(write(tmp_path, VALID))
    with pytest.raises(Exception):
        config.system.hostname = "other"


def test_missing_file(tmp_path):
    with pytest.raises(ConfigNotFoundError, match="not found"):
        InstallerConfig.load_config_from_file(tmp_path / "missing.toml")


def test_invalid_toml(tmp_path):
    with pytest.raises(ConfigInvalidError, match="invalid TOML"):
        InstallerConfig.load_config_from_file(write(tmp_path, "[drive\ndevice ="))


def test_unknown_field_reported_with_location(tmp_path):
    with pytest.raises(ConfigInvalidError, match="drive.colour"):
        InstallerConfig.load_config_from_file(write(tmp_path, VALID.replace('device = "sda"', 'device = "sda"\ncolour = 1')))


def test_unsupported_filesystem(tmp_path):
    with pytest.raises(ConfigInvalidError, match="drive.fs"):
        InstallerConfig.load_config_from_file(write(tmp_path, VALID.replace('device = "sda"', 'device = "sda"\nfs = "ntfs"')))


@pytest.mark.parametrize("drive, system, reason", [
    ({"device": ""}, {}, "drive device not set"),
    ({"encryption": True, "password": ""}, {}, "drive password not set"),
    ({}, {"hostname": ""}, "hostname not set"),
    ({}, {"username": ""}, "username not set"),
    ({}, {"user_password": ""}, "user password not set"),
    ({}, {"timezone": ""}, "timezone not set"),
])
def test_validation_reasons(make_config, drive, system, reason):
    config = make_config(drive=drive, system=system)
    with pytest.raises(ConfigInvalidError) as excinfo:
        config.validate_settings()
    assert excinfo.value.desc == reason


def test_empty_drive_password_allowed_without_encryption(make_config):
    make_config(drive={"encryption": False, "password": ""}).validate_settings()


def test_root_volume(make_config):
    plain = make_config()
    encrypted = make_config(drive={"encryption": True, "password": "x", "crypt_mapping": "vault"})

    assert plain.root_volume(Path("/dev/sda3")) == Path("/dev/sda3")
    assert encrypted.root_volume(Path("/dev/sda3")) == Path("/dev/mapper/vault")


def test_display_summary(make_config):
    summary = make_config(drive={"encryption": True, "password": "x"}).display_summary()
    assert "archbox" in summary
    assert "/dev/sda" in summary
    assert "LUKS" in summary
    assert "hunter2" not in summary


def test_template_is_loadable(tmp_path):
    config = InstallerConfig.load_config_from_file(write(tmp_path, template_text()))

    assert config.live_cd.profile == "releng"
    assert "python" in config.packages.system
    with pytest.raises(ConfigInvalidError, match="drive device not set"):
        config.validate_settings()
