from pathlib import Path

import pytest
from pydantic import ValidationError

from parley.config import ConfigError
from parley.settings import (
    DispatcherSettings,
    PromptSettings,
    load_settings,
    load_settings_if_exists,
    validate_settings_data,
)


def test_defaults() -> None:
    settings = DispatcherSettings()

    assert settings.prefix == "!"
    assert settings.allow_mention
    assert settings.block_bots
    assert not settings.handle_edits
    assert settings.default_split == "plain"
    assert settings.prompt.retries == 1
    assert settings.prompt.cancel_word == "cancel"
    assert settings.alias_pattern() is None


def test_prefix_list_must_not_be_empty() -> None:
    assert DispatcherSettings(prefix=["!", "?"]).prefix == ["!", "?"]

    with pytest.raises(ValidationError, match="must not be empty"):
        DispatcherSettings(prefix=[])


def test_prompt_settings_validation() -> None:
    with pytest.raises(ValidationError, match="retries"):
        PromptSettings(retries=-1)
    with pytest.raises(ValidationError, match="time_s"):
        PromptSettings(time_s=0)
    assert PromptSettings(stop_word="  done ").stop_word == "done"


def test_alias_replacement_must_compile() -> None:
    with pytest.raises(ValidationError, match="not a valid regex"):
        DispatcherSettings(alias_replacement="(")

    pattern = DispatcherSettings(alias_replacement="[-_]").alias_pattern()
    assert pattern is not None
    assert pattern.sub("", "set-prefix_now") == "setprefixnow"


def test_load_settings_reads_toml(tmp_path: Path) -> None:
    config_path = tmp_path / "parley.toml"
    config_path.write_text(
        'prefix = ["?", "!"]\n'
        "handle_edits = true\n"
        "\n"
        "[prompt]\n"
        "retries = 3\n"
        'cancel_word = "abort"\n',
        encoding="utf-8",
    )

    settings, path = load_settings(config_path)

    assert path == config_path
    assert settings.prefix == ["?", "!"]
    assert settings.handle_edits
    assert settings.prompt.retries == 3
    assert settings.prompt.cancel_word == "abort"


def test_missing_config(tmp_path: Path) -> None:
    config_path = tmp_path / "missing.toml"

    with pytest.raises(ConfigError, match="Missing config file"):
        load_settings(config_path)
    assert load_settings_if_exists(config_path) is None


def test_malformed_and_invalid_config(tmp_path: Path) -> None:
    broken = tmp_path / "broken.toml"
    broken.write_text("prefix = [\n", encoding="utf-8")
    invalid = tmp_path / "invalid.toml"
    invalid.write_text("[prompt]\nretries = -2\n", encoding="utf-8")

    with pytest.raises(ConfigError, match="Malformed TOML"):
        load_settings(broken)
    with pytest.raises(ConfigError, match="Invalid config"):
        load_settings(invalid)


def test_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PARLEY__PREFIX", '["?", "."]')
    monkeypatch.setenv("PARLEY__PROMPT__RETRIES", "4")

    settings = DispatcherSettings()

    assert settings.prefix == ["?", "."]
    assert settings.prompt.retries == 4


def test_validate_settings_data(tmp_path: Path) -> None:
    settings = validate_settings_data(
        {"default_cooldown_s": 2.5}, config_path=tmp_path / "parley.toml"
    )
    assert settings.default_cooldown_s == 2.5

    with pytest.raises(ConfigError, match="default_cooldown_s"):
        validate_settings_data(
            {"default_cooldown_s": -1}, config_path=tmp_path / "parley.toml"
        )
    with pytest.raises(ConfigError, match="prompt"):
        validate_settings_data(
            {"prompt": {"unknown": 1}}, config_path=tmp_path / "parley.toml"
        )
