"""Tests for runtime configuration and logging setup."""

import json
import logging
import sys
from pathlib import Path

import pytest

import config as config_module
from config import Config, default_storage_dir
from logging_config import StructuredFormatter, configure_logging


class TestConfig:
    def test_storage_dir_from_env(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
        monkeypatch.setenv("POSAGENT_DATA_DIR", str(tmp_path))
        cfg = Config()
        assert cfg.STORAGE_DIR == tmp_path
        assert cfg.config_path == tmp_path / "config.enc"
        assert cfg.server_key_path == tmp_path / "server.key"

    def test_logs_dir_is_created(self, tmp_path: Path) -> None:
        cfg = Config(STORAGE_DIR=tmp_path)
        assert cfg.logs_dir.is_dir()

    def test_default_storage_dir_windows(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(config_module.sys, "platform", "win32")
        monkeypatch.setenv("PROGRAMDATA", r"C:\ProgramData")
        assert default_storage_dir() == Path(r"C:\ProgramData") / "POSService"

    def test_default_storage_dir_posix(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(config_module.sys, "platform", "linux")
        assert default_storage_dir() == Path("/var/lib/posservice")


class TestServerKeyText:
    def test_env_wins_over_file(self, tmp_path: Path) -> None:
        (tmp_path / "server.key").write_text("from-file")
        cfg = Config(STORAGE_DIR=tmp_path, SERVER_KEY=" from-env \n")
        assert cfg.read_server_key_text() == "from-env"

    def test_file(self, tmp_path: Path) -> None:
        (tmp_path / "server.key").write_text("from-file\n")
        cfg = Config(STORAGE_DIR=tmp_path, SERVER_KEY=None)
        assert cfg.read_server_key_text() == "from-file"

    def test_nothing_provisioned(self, tmp_path: Path) -> None:
        assert Config(STORAGE_DIR=tmp_path, SERVER_KEY=None).read_server_key_text() is None

    def test_empty_file(self, tmp_path: Path) -> None:
        (tmp_path / "server.key").write_text("  \n")
        assert Config(STORAGE_DIR=tmp_path, SERVER_KEY=None).read_server_key_text() is None


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield root
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


class TestLogging:
    def test_file_output_is_json(self, restore_root_logger, tmp_path: Path) -> None:
        log_file = tmp_path / "agent.log"
        configure_logging("debug", log_file=log_file)

        logging.getLogger("posagent.test").info("Settings database ready")
        for handler in restore_root_logger.handlers:
            handler.flush()

        record = json.loads(log_file.read_text().splitlines()[-1])
        assert record["level"] == "INFO"
        assert record["logger"] == "posagent.test"
        assert record["message"] == "Settings database ready"

    @pytest.mark.parametrize(
        "level, expected",
        [("debug", logging.DEBUG), ("warn", logging.WARNING), ("ERROR", logging.ERROR), ("bogus", logging.INFO)],
    )
    def test_levels(self, restore_root_logger, level: str, expected: int) -> None:
        configure_logging(level)
        assert restore_root_logger.level == expected

    def test_exception_is_included(self) -> None:
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            record = logging.getLogger("x").makeRecord(
                "x", logging.ERROR, __file__, 1, "failed", None, sys.exc_info()
            )

        data = json.loads(StructuredFormatter().format(record))
        assert data["message"] == "failed"
        assert "RuntimeError: boom" in data["exception"]
