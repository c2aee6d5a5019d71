import logging

import pytest
from dotenv import dotenv_values

from cep_system import config
from cep_system.config import Settings, current_user_name, save_env_file
from cep_system.logging_config import setup_logging


def test_defaults_without_environment(tmp_path, monkeypatch):
    monkeypatch.setattr(config, "current_user_name", lambda: "jdoe")
    settings = Settings.from_env(tmp_path / "missing.env", environ={})
    assert settings.database_path == "cep.sqlite3"
    assert settings.language == "en"
    assert settings.log_level == "INFO"
    assert settings.user == "jdoe"
    assert settings.port == 8000
    assert settings.seed_demo_data is True


def test_env_file_is_overridden_by_environment(tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text(
        "CEP_DATABASE=/data/lines.sqlite3\nCEP_LANGUAGE=de\nCEP_PORT=9000\nCEP_USER=CORP\\alice\n",
        encoding="utf-8",
    )
    settings = Settings.from_env(
        env_file, environ={"CEP_PORT": "9100", "CEP_SEED_DEMO_DATA": "no"}
    )
    assert settings.database_path == "/data/lines.sqlite3"
    assert settings.language == "de"
    assert settings.port == 9100
    assert settings.user == "alice"
    assert settings.seed_demo_data is False


def test_invalid_port_is_rejected(tmp_path):
    with pytest.raises(ValueError, match="CEP_PORT"):
        Settings.from_env(tmp_path / "missing.env", environ={"CEP_PORT": "eighty"})


def test_logging_level_property():
    assert Settings(log_level="DEBUG").logging_level == logging.DEBUG
    assert Settings(log_level="verbose").logging_level == logging.INFO


def test_current_user_name_strips_domain(monkeypatch):
    monkeypatch.setattr(config.getpass, "getuser", lambda: "PLANT\\jdoe")
    assert current_user_name() == "jdoe"


def test_save_env_file_round_trip(tmp_path):
    path = save_env_file(
        tmp_path / ".env", database_path="/srv/cep.sqlite3", language="de", seed_demo_data=False
    )
    assert dotenv_values(path) == {
        "CEP_DATABASE": "/srv/cep.sqlite3",
        "CEP_LANGUAGE": "de",
        "CEP_SEED_DEMO_DATA": "false",
    }
    settings = Settings.from_env(path, environ={})
    assert settings.database_path == "/srv/cep.sqlite3"
    assert settings.seed_demo_data is False


def test_save_env_file_rejects_unknown_settings(tmp_path):
    with pytest.raises(ValueError):
        save_env_file(tmp_path / ".env", password="secret")


def test_setup_logging_does_not_duplicate_handlers(tmp_path):
    log_file = tmp_path / "cep.log"
    setup_logging(logging.DEBUG)
    logger = setup_logging(logging.INFO, str(log_file))
    try:
        assert logger.name == "cep_system"
        assert len(logger.handlers) == 2
        logging.getLogger("cep_system.services").info("hello")
        for handler in logger.handlers:
            handler.flush()
        assert "hello" in log_file.read_text(encoding="utf-8")
    finally:
        for handler in list(logger.handlers):
            handler.close()
            logger.removeHandler(handler)


@pytest.mark.parametrize(
    "raw, expected, server",
    [("warn", "WARNING", "warning"), ("Debug", "DEBUG", "debug"), ("loud", "INFO", "info")],
)
def test_log_level_is_normalised_for_the_server(tmp_path, raw, expected, server):
    settings = Settings.from_env(tmp_path / "missing.env", environ={"CEP_LOG_LEVEL": raw})
    assert settings.log_level == expected
    assert settings.server_log_level == server
    assert Settings(log_level="FATAL").server_log_level == "critical"


def test_log_file_lines_name_level_and_module(tmp_path):
    log_file = tmp_path / "cep.log"
    logger = setup_logging(logging.INFO, str(log_file))
    try:
        logging.getLogger("cep_system.storage").warning("disk nearly full")
        for handler in logger.handlers:
            handler.flush()
        line = log_file.read_text(encoding="utf-8").strip().splitlines()[-1]
        assert "WARNING" in line
        assert line.endswith("cep_system.storage: disk nearly full")
    finally:
        for handler in list(logger.handlers):
            handler.close()
            logger.removeHandler(handler)
