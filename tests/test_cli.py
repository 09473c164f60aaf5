"""Tests for the songrelay command-line interface"""

import pytest
from typer.testing import CliRunner

from songrelay import __version__
from songrelay.cli.app import app
from songrelay.exceptions import ConfigurationError
from songrelay.storage.config_manager import ConfigManager

runner = CliRunner()


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.ini"
    ConfigManager(path).save_default_config(
        {
            "database": str(tmp_path / "songs.db"),
            "cache_dir": str(tmp_path / "staging"),
            "storage_mode": "hybrid",
        }
    )
    return path


def invoke(config_file, *args, **kwargs):
    return runner.invoke(app, ["--config", str(config_file), *args], **kwargs)


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_init_writes_config(tmp_path):
    path = tmp_path / "fresh" / "config.ini"
    result = invoke(path, "init")
    assert result.exit_code == 0
    assert path.is_file()
    assert "[download]" in path.read_text(encoding="utf-8")


def test_init_asks_before_overwriting(config_file):
    before = config_file.read_text(encoding="utf-8")
    result = invoke(config_file, "init", input="n\n")
    assert result.exit_code != 0
    assert config_file.read_text(encoding="utf-8") == before

    result = invoke(config_file, "init", "--force")
    assert result.exit_code == 0


def test_status(config_file):
    result = invoke(config_file, "status")
    assert result.exit_code == 0
    assert "hybrid" in result.output
    assert "missing" in result.output


def test_probe(config_file):
    result = invoke(config_file, "probe", "--size-mb", "500")
    assert result.exit_code == 0
    # 500 MB is above the default 100 MB hybrid threshold
    assert "disk" in result.output


def test_cache_commands(config_file):
    result = invoke(config_file, "rmcache", "1001")
    assert result.exit_code == 0
    assert "was not cached" in result.output

    result = invoke(config_file, "clearcache", "--yes")
    assert result.exit_code == 0
    assert "0 records removed" in result.output


def test_send_requires_bot_token(config_file):
    result = invoke(
        config_file,
        "send",
        "https://cdn.example.com/song.mp3",
        "--chat-id",
        "42",
        "--title",
        "Song",
        "--artist",
        "Band",
    )
    assert result.exit_code != 0
    assert isinstance(result.exception, ConfigurationError)
