from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic_settings.sources import TomlConfigSettingsSource

from .config import ConfigError, read_config, resolve_config_path

type SplitMode = Literal["plain", "quoted", "sticky", "none"]
type ActorId = int | str


class PromptSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    retries: int = 1
    time_s: float = 30.0
    cancel_word: str = "cancel"
    stop_word: str = "stop"
    optional: bool = False
    infinite: bool = False
    limit: int | None = None
    breakout: bool = True
    start: str | None = None
    retry: str | None = None
    timeout: str | None = None
    ended: str | None = None
    cancel: str | None = None

    @field_validator("retries")
    @classmethod
    def _validate_retries(cls, value: int) -> int:
        if value < 0:
            raise ValueError("retries must be >= 0")
        return value

    @field_validator("time_s")
    @classmethod
    def _validate_time(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("time_s must be positive")
        return value

    @field_validator("limit")
    @classmethod
    def _validate_limit(cls, value: int | None) -> int | None:
        if value is not None and value < 1:
            raise ValueError("limit must be >= 1")
        return value

    @field_validator("cancel_word", "stop_word", mode="before")
    @classmethod
    def _validate_words(cls, value: Any, info) -> Any:
        if not isinstance(value, str):
            raise ValueError(f"{info.field_name} must be a string")
        cleaned = value.strip()
        if not cleaned:
            raise ValueError(f"{info.field_name} must be a non-empty string")
        return cleaned


class LoggingSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    level: Literal["debug", "info", "warning", "error"] = "info"
    format: Literal["console", "json"] = "console"


class DispatcherSettings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="ignore",
        env_prefix="PARLEY__",
        env_nested_delimiter="__",
    )

    prefix: str | list[str] = "!"
    allow_mention: bool = True
    block_self: bool = True
    block_bots: bool = True
    handle_edits: bool = False
    default_cooldown_s: float = 0.0
    alias_replacement: str | None = None
    owner_ids: list[ActorId] = Field(default_factory=list)
    ignore_permissions: list[ActorId] = Field(default_factory=list)
    default_split: SplitMode = "plain"
    prompt: PromptSettings = Field(default_factory=PromptSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    @field_validator("prefix", mode="before")
    @classmethod
    def _validate_prefix(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value
        if isinstance(value, (list, tuple)):
            if not value:
                raise ValueError("prefix list must not be empty")
            if not all(isinstance(item, str) for item in value):
                raise ValueError("prefix entries must be strings")
            return list(value)
        raise ValueError("prefix must be a string or a list of strings")

    @field_validator("default_cooldown_s")
    @classmethod
    def _validate_cooldown(cls, value: float) -> float:
        if value < 0:
            raise ValueError("default_cooldown_s must be >= 0")
        return value

    @field_validator("alias_replacement")
    @classmethod
    def _validate_alias_replacement(cls, value: str | None) -> str | None:
        if value is None:
            return None
        try:
            re.compile(value)
        except re.error as exc:
            raise ValueError(f"alias_replacement is not a valid regex: {exc}") from exc
        return value

    def alias_pattern(self) -> re.Pattern[str] | None:
        if self.alias_replacement is None:
            return None
        return re.compile(self.alias_replacement)


def _load_settings_from_path(cfg_path: Path) -> DispatcherSettings:
    cfg = dict(DispatcherSettings.model_config)
    cfg["toml_file"] = cfg_path
    Bound = type(
        "DispatcherSettingsBound",
        (DispatcherSettings,),
        {"model_config": SettingsConfigDict(**cfg)},
    )
    try:
        return Bound()
    except ValidationError as exc:
        raise ConfigError(f"Invalid config in {cfg_path}: {exc}") from exc


def load_settings(path: str | Path | None = None) -> tuple[DispatcherSettings, Path]:
    cfg_path = resolve_config_path(path)
    # raises ConfigError when the file is missing or not valid TOML
    read_config(cfg_path)
    return _load_settings_from_path(cfg_path), cfg_path


def load_settings_if_exists(
    path: str | Path | None = None,
) -> tuple[DispatcherSettings, Path] | None:
    cfg_path = resolve_config_path(path)
    if not cfg_path.exists():
        return None
    return load_settings(cfg_path)


def validate_settings_data(
    data: dict[str, Any], *, config_path: Path
) -> DispatcherSettings:
    try:
        return DispatcherSettings.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid config in {config_path}: {exc}") from exc
