"""Tests for configuration loading."""

from zoneinfo import ZoneInfo

import pytest

from wa_archiver.config import AppConfig, load_config, resolve_timezone, validate_config

CONFIG_YAML = """
data_dir: ${DATA_ROOT}
timezone: ${TZ_NAME}
whatsapp:
  session_path: ${data_dir}/wa_session
storage:
  db_path: ${data_dir}/messages.db
email:
  provider: mailersend
  mailersend_api_key: ${MAILERSEND_API_KEY}
  report_to: ${EMAIL_REPORT_TO}
daily_report:
  enabled: true
  filter_numbers: ${FILTER_NUMBERS}
commands:
  allowed_numbers: ${COMMAND_NUMBERS}
api:
  port: ${PORT}
"""


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    # load_dotenv writes to os.environ; setenv first so teardown restores it.
    for name in (
        "DATA_ROOT",
        "TZ_NAME",
        "MAILERSEND_API_KEY",
        "EMAIL_REPORT_TO",
        "FILTER_NUMBERS",
        "COMMAND_NUMBERS",
        "PORT",
    ):
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    path = tmp_path / "config.yaml"
    path.write_text(CONFIG_YAML)
    return path


def test_env_interpolation_and_number_lists(config_file, tmp_path):
    env = tmp_path / ".env"
    env.write_text(
        "DATA_ROOT=/srv/archive\n"
        "TZ_NAME=America/Bogota\n"
        "FILTER_NUMBERS=573001, 573002\n"
        "COMMAND_NUMBERS=573009\n"
        "EMAIL_REPORT_TO=\n"
    )

    config = load_config(config_file, env)

    assert config.data_dir == "/srv/archive"
    assert config.whatsapp.session_path == "/srv/archive/wa_session"
    assert config.storage.db_path == "/srv/archive/messages.db"
    assert config.timezone == "America/Bogota"
    assert config.daily_report.filter_numbers == ["573001", "573002"]
    assert config.commands.allowed_numbers == ["573009"]
    assert config.email.report_to == ""
    assert config.api.port == 3000


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "nope.yaml", tmp_path / ".env")


def test_validate_config_warnings():
    config = AppConfig(daily_report={"enabled": True}, email={"provider": "mailersend"})
    warnings = validate_config(config)
    assert any("mailersend_api_key" in w for w in warnings)
    assert any("report_to" in w for w in warnings)

    assert validate_config(AppConfig(email={"provider": "none"})) == []


def test_resolve_timezone_falls_back_to_utc():
    assert resolve_timezone("America/Bogota") == ZoneInfo("America/Bogota")
    assert resolve_timezone("Mars/Olympus") == ZoneInfo("UTC")
    assert resolve_timezone(None) == ZoneInfo("UTC")
