import logging
from dataclasses import FrozenInstanceError
from pathlib import Path

import pytest

from upload_server.config import Settings, parse_max_file_size


def test_defaults_from_empty_environment():
    settings = Settings.from_env({})

    assert settings.host == "0.0.0.0"
    assert settings.port == 8080
    assert settings.max_file_size == 0
    assert settings.upload_dir == Path("./uploads")
    assert settings.temp_dir == Path("./temp")
    assert settings.templates_dir == Path("./templates")
    assert settings.index_template == Path("./templates/index.html")
    assert settings.describe_limit() == "unlimited"


def test_values_from_environment():
    settings = Settings.from_env({
        "PORT": "9090",
        "HOST": "127.0.0.1",
        "MAX_FILE_SIZE": "10485760",
        "UPLOAD_DIR": "/srv/files",
        "TEMP_DIR": "/srv/tmp",
        "TEMPLATES_DIR": "/srv/templates",
    })

    assert settings.port == 9090
    assert settings.host == "127.0.0.1"
    assert settings.max_file_size == 10485760
    assert settings.upload_dir == Path("/srv/files")
    assert settings.temp_dir == Path("/srv/tmp")
    assert settings.templates_dir == Path("/srv/templates")
    assert settings.describe_limit() == "10.0 MB"


@pytest.mark.parametrize("value", ["abc", "1.5", "10MB"])
def test_invalid_max_file_size_means_unlimited(value, caplog):
    with caplog.at_level(logging.WARNING, logger="upload_server"):
        assert parse_max_file_size(value) == 0
    assert "Invalid MAX_FILE_SIZE" in caplog.text


def test_negative_max_file_size_means_unlimited():
    assert parse_max_file_size("-5") == 0


def test_blank_max_file_size_means_unlimited():
    assert parse_max_file_size(None) == 0
    assert parse_max_file_size("") == 0


def test_invalid_port_rejected():
    with pytest.raises(ValueError, match="Invalid PORT"):
        Settings.from_env({"PORT": "http"})


def test_settings_are_immutable():
    settings = Settings()
    with pytest.raises(FrozenInstanceError):
        settings.max_file_size = 10
