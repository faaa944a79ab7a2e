"""Centralized configuration. Pydantic BaseSettings with TOML + dotenv sources.

Non-secret settings live in config.toml. Secrets (API keys, tokens) live in
.env. Environment variables override both using ``__`` as the nested
delimiter (e.g. ``SECRETS__ANTHROPIC_API_KEY``). Secrets use SecretStr for
masking in logs.

Priority (highest wins): init args > env vars > .env > config.toml

Settings are read once, at the CLI entry point, and condensed into the frozen
:class:`SessionConfig` and :class:`ExecConfig` values that the session
manager and executor receive. Core modules never call :func:`get_settings`.

Usage::

    from agentpod.config import get_settings

    s = get_settings()
    session_cfg = s.session_config()
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, SecretStr, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

# ---------------------------------------------------------------------------
# Sub-models (each maps to a [section] in config.toml)
# ---------------------------------------------------------------------------

_IMAGE_RE = re.compile(r"^[^\s]+$")


class _StrictModel(BaseModel):
    """Base for all config sub-models. Reject unknown keys so typos fail loudly."""

    model_config = {"extra": "forbid"}


class ContainerConfig(_StrictModel):
    engine: str | None = None  # "docker" | "podman" | plugin engine name | None = auto
    image: str = "agentpod-agent:latest"
    source_dir: str = "/workspace/src"  # where the caller's mount path appears
    readiness_timeout: float = 30.0  # seconds
    readiness_poll_interval: float = 0.5  # seconds
    stop_timeout: int = 10  # seconds of grace before SIGKILL on unforced stop
    command: list[str] = ["python", "-m", "agentpod.watchdog"]
    init: bool = True  # run an init process so the watchdog's exit ends the session

    @field_validator("image")
    @classmethod
    def validate_image(cls, v: str) -> str:
        if not _IMAGE_RE.match(v):
            raise ValueError(f"Invalid image reference: {v!r}")
        return v

    @field_validator("readiness_timeout", "readiness_poll_interval")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be positive")
        return v


class ExecSettings(_StrictModel):
    default_timeout: float = 600.0  # seconds
    shell: str = "bash"

    @field_validator("default_timeout")
    @classmethod
    def validate_timeout(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("default_timeout must be positive")
        return v


class WatchdogDefaults(_StrictModel):
    idle_timeout: int = 300  # seconds
    strict_mode: bool = True


class BedrockConfig(_StrictModel):
    aws_region: str | None = None
    aws_profile: str | None = None
    aws_config_dir: str = "~/.aws"


# NOTE: only variable names are ever logged; values go straight to the engine client env
class SecretsConfig(_StrictModel):
    claude_code_oauth_token: SecretStr | None = None
    anthropic_api_key: SecretStr | None = None


class LoggingConfig(_StrictModel):
    level: str = "INFO"

    @field_validator("level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        return v.upper()


class PluginConfig(_StrictModel):
    enabled: bool = True


# ---------------------------------------------------------------------------
# Immutable per-run values handed to the core
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SessionConfig:
    image: str
    source_dir: str
    readiness_timeout: float
    readiness_poll_interval: float
    stop_timeout: int
    command: tuple[str, ...]
    init: bool
    strict_mode: bool
    aws_config_dir: Path


@dataclass(frozen=True)
class ExecConfig:
    default_timeout: float
    shell: str
    workdir: str


# ---------------------------------------------------------------------------
# Root Settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        toml_file="config.toml",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    container: ContainerConfig = ContainerConfig()
    exec: ExecSettings = ExecSettings()
    watchdog: WatchdogDefaults = WatchdogDefaults()
    bedrock: BedrockConfig = BedrockConfig()
    secrets: SecretsConfig = SecretsConfig()
    logging: LoggingConfig = LoggingConfig()
    plugins: dict[str, PluginConfig] = {}

    @model_validator(mode="after")
    def _check_poll_within_readiness(self) -> Settings:
        if self.container.readiness_poll_interval > self.container.readiness_timeout:
            raise ValueError("container.readiness_poll_interval exceeds readiness_timeout")
        return self

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Priority: init > env vars > .env > config.toml > file secrets."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    def session_config(
        self, *, image: str | None = None, strict_mode: bool | None = None
    ) -> SessionConfig:
        """Freeze the settings the lifecycle manager needs."""
        c = self.container
        return SessionConfig(
            image=image or c.image,
            source_dir=c.source_dir,
            readiness_timeout=c.readiness_timeout,
            readiness_poll_interval=c.readiness_poll_interval,
            stop_timeout=c.stop_timeout,
            command=tuple(c.command),
            init=c.init,
            strict_mode=self.watchdog.strict_mode if strict_mode is None else strict_mode,
            aws_config_dir=Path(self.bedrock.aws_config_dir).expanduser(),
        )

    def exec_config(self) -> ExecConfig:
        return ExecConfig(
            default_timeout=self.exec.default_timeout,
            shell=self.exec.shell,
            workdir=self.container.source_dir,
        )


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_settings: Settings | None = None


def get_settings() -> Settings:
    """Lazy cached singleton."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Clear the cached singleton (for tests)."""
    global _settings
    _settings = None
