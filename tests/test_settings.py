import logging
from pathlib import Path

from knitboard.app import build_arg_parser, settings_from_args
from knitboard.logging_conf import configure_logging
from knitboard.settings import Settings, default_db_path


def test_default_settings():
    settings = settings_from_args([])
    assert settings == Settings(db_path=default_db_path())
    assert settings.port == 8080
    assert settings.log_level == "INFO"
    assert default_db_path() == Path("db") / "knitboard.db"


def test_command_line_overrides(tmp_path):
    db_path = Path(tmp_path) / "x.db"
    settings = settings_from_args(["--host", "127.0.0.1", "--port", "9000", "--db", str(db_path), "--log-level", "debug"])
    assert settings.host == "127.0.0.1"
    assert settings.port == 9000
    assert settings.db_path == db_path
    assert settings.log_level == "debug"


def test_parser_describes_flags():
    help_text = build_arg_parser().format_help()
    for flag in ("--host", "--port", "--db", "--log-level", "--log-file"):
        assert flag in help_text


def test_configure_logging_sets_root_level(tmp_path):
    root = logging.getLogger()
    saved_level, saved_handlers = root.level, list(root.handlers)
    try:
        configure_logging("debug")
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1

        configure_logging("nonsense")
        assert root.level == logging.INFO
        assert logging.getLogger("uvicorn.access").level == logging.WARNING

        log_file = Path(tmp_path) / "logs" / "knitboard.log"
        configure_logging("info", log_file=log_file)
        assert len(root.handlers) == 2
        logging.getLogger("knitboard.test").info("hello")
        for handler in root.handlers:
            handler.flush()
        assert "[INFO] knitboard.test: hello" in log_file.read_text(encoding="utf-8")
    finally:
        for handler in root.handlers:
            if handler not in saved_handlers:
                handler.close()
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
