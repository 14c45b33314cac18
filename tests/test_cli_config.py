from __future__ import annotations

import pytest

from fumo_sdk.cli.config import ConfigError, load_cli_config


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch) -> None:
    for name in ("FUMO_BASE_URL", "FUMO_PROFILE", "FUMO_STORE_DIR", "FUMO_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)


def test_defaults_when_config_missing(tmp_path) -> None:
    config = load_cli_config(tmp_path / "missing.toml")
    assert config.base_url == "https://fumosclubv1.vercel.app"
    assert config.profile == "default"
    assert config.auth_scheme == "bearer"
    assert config.retries == 3
    assert config.log_level == "warning"


def test_env_base_url_overrides_config_file(tmp_path, monkeypatch) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text('base_url = "http://localhost:8080"\n', encoding="utf-8")
    monkeypatch.setenv("FUMO_BASE_URL", "https://env.example")
    config = load_cli_config(config_path)
    assert config.base_url == "https://env.example"


def test_cli_table_is_read(tmp_path) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text(
        "\n".join(
            [
                "[cli]",
                'base_url = "http://localhost:8080"',
                'profile = "work"',
                'auth_scheme = "Cookie"',
                "retries = 5",
                "connect_timeout = 2.5",
                "beta_mode = false",
                "",
            ]
        ),
        encoding="utf-8",
    )
    config = load_cli_config(config_path)
    assert config.base_url == "http://localhost:8080"
    assert config.profile == "work"
    assert config.auth_scheme == "cookie"
    assert config.retries == 5
    assert config.connect_timeout == 2.5
    assert config.beta_mode is False


def test_env_profile_and_store_dir_override(tmp_path, monkeypatch) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text('profile = "work"\n', encoding="utf-8")
    monkeypatch.setenv("FUMO_PROFILE", "personal")
    monkeypatch.setenv("FUMO_STORE_DIR", str(tmp_path / "state"))
    config = load_cli_config(config_path)
    assert config.profile == "personal"
    assert config.store_dir == str(tmp_path / "state")


@pytest.mark.parametrize(
    "line",
    [
        'auth_scheme = "signed"',
        "retries = -1",
        'retries = "3"',
        "read_timeout = 0",
        'base_url = "ftp://example"',
        'log_level = "loud"',
        'cli = "not a table"',
    ],
)
def test_invalid_values_are_rejected(tmp_path, line: str) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text(line + "\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_cli_config(config_path)


def test_invalid_toml_is_config_error(tmp_path) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text("base_url = \n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_cli_config(config_path)
