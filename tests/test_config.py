from __future__ import annotations

from pathlib import Path

import pytest

from userservice.config import Settings, load_settings


def test_defaults() -> None:
    settings = Settings()

    assert settings.database_url is None
    assert settings.database_path.name == "userservice.sqlite3"
    assert settings.lock_timeout == 5.0
    assert settings.audit is True
    assert settings.request_timeout == 30.0
    assert settings.log_level == "INFO"
    assert settings.log_format == "text"
    assert settings.cors_origins == ("http://localhost:3000",)


def test_load_settings_from_yaml(tmp_path: Path) -> None:
    config = tmp_path / "userservice.yaml"
    config.write_text(
        """
database:
  path: data/users.sqlite3
  lock_timeout: 2.5
audit: false
request_timeout: 10
logging:
  level: debug
  format: JSON
cors_origins:
  - https://app.example.com
  - https://admin.example.com
""",
        encoding="utf-8",
    )

    settings = load_settings(config, environ={})

    assert settings.database_path == (tmp_path / "data" / "users.sqlite3").resolve()
    assert settings.lock_timeout == 2.5
    assert settings.audit is False
    assert settings.request_timeout == 10.0
    assert settings.log_level == "DEBUG"
    assert settings.log_format == "json"
    assert settings.cors_origins == ("https://app.example.com", "https://admin.example.com")


def test_environment_overrides_file(tmp_path: Path) -> None:
    config = tmp_path / "userservice.yaml"
    config.write_text("audit: true\nlogging:\n  level: INFO\n", encoding="utf-8")

    settings = load_settings(
        config,
        environ={
            "USERSERVICE_DB_PATH": str(tmp_path / "env.sqlite3"),
            "USERSERVICE_DATABASE_URL": "postgresql://localhost/users",
            "USERSERVICE_AUDIT": "off",
            "USERSERVICE_LOCK_TIMEOUT": "1",
            "USERSERVICE_LOG_LEVEL": "warning",
            "USERSERVICE_CORS_ORIGINS": "https://a.example.com, https://b.example.com",
        },
    )

    assert settings.database_path == (tmp_path / "env.sqlite3").resolve()
    assert settings.database_url == "postgresql://localhost/users"
    assert settings.audit is False
    assert settings.lock_timeout == 1.0
    assert settings.log_level == "WARNING"
    assert settings.cors_origins == ("https://a.example.com", "https://b.example.com")


def test_config_path_from_environment(tmp_path: Path) -> None:
    config = tmp_path / "custom.yaml"
    config.write_text("request_timeout: 3\n", encoding="utf-8")

    settings = load_settings(environ={"USERSERVICE_CONFIG": str(config)})

    assert settings.request_timeout == 3.0


@pytest.mark.parametrize(
    ("content", "key"),
    [
        ("request_timeout: 0\n", "request_timeout"),
        ("audit: maybe\n", "audit"),
        ("logging:\n  level: LOUD\n", "logging.level"),
        ("logging:\n  format: xml\n", "logging.format"),
        ("database: [1, 2]\n", "database"),
    ],
)
def test_invalid_values_name_the_key(tmp_path: Path, content: str, key: str) -> None:
    config = tmp_path / "userservice.yaml"
    config.write_text(content, encoding="utf-8")

    with pytest.raises(ValueError) as excinfo:
        load_settings(config, environ={})
    assert key in str(excinfo.value)


def test_top_level_must_be_a_mapping(tmp_path: Path) -> None:
    config = tmp_path / "userservice.yaml"
    config.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_settings(config, environ={})
