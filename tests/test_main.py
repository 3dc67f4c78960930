"""Tests for the command line entry point."""
import logging
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from refnotes import main as main_module
from refnotes.config import config


class TestArgs:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("REFNOTES_DATABASE_PATH", raising=False)
        monkeypatch.delenv("REFNOTES_LOG_LEVEL", raising=False)
        args = main_module.parse_args([])
        assert args.database_path is None
        assert args.in_memory is False
        assert args.log_level == "INFO"

    def test_update_config(self, test_config, tmp_path):
        args = main_module.parse_args(["--database-path", str(tmp_path / "x.db"), "--in-memory"])
        main_module.update_config(args)
        assert config.database_path == tmp_path / "x.db"
        assert config.in_memory_db is True

    def test_invalid_log_level(self):
        with pytest.raises(SystemExit):
            main_module.parse_args(["--log-level", "LOUD"])


class TestMain:
    @pytest.fixture(autouse=True)
    def _detach_handlers(self):
        logger = logging.getLogger("refnotes")
        before = list(logger.handlers)
        yield
        for handler in logger.handlers[:]:
            if handler not in before:
                logger.removeHandler(handler)
                handler.close()

    def test_main_starts_server(self, test_config):
        server = MagicMock()
        with patch.object(main_module, "RefNotesMcpServer", return_value=server) as cls:
            main_module.main(["--log-level", "DEBUG"])
        assert cls.call_args.kwargs["engine"] is not None
        server.run.assert_called_once()
        assert (Path(test_config.log_dir) / "refnotes.log").exists()

    def test_main_exits_when_database_fails(self, test_config):
        with patch.object(main_module, "init_db", side_effect=RuntimeError("locked")):
            with pytest.raises(SystemExit) as excinfo:
                main_module.main([])
        assert excinfo.value.code == 1
