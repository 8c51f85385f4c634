"""Configuration management for opsdeck.

Loads settings from a YAML configuration file with environment variable
overrides. Supports .env files.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/opsdeck.yaml")


class ServerConfig(BaseModel):
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=3100, ge=1, le=65535)


class RuntimeConfig(BaseModel):
    bin: str | None = Field(default=None, description="Runtime CLI path (None = search PATH)")
    bin_name: str = Field(default="openclaw")
    home: str = Field(default="~/.openclaw", description="Runtime home, cwd for terminals")

    def home_path(self) -> Path:
        return Path(self.home).expanduser()


class TerminalConfig(BaseModel):
    shell: str | None = Field(default=None, description="Login shell (None = $SHELL)")
    shell_candidates: list[str] = Field(
        default_factory=lambda: ["/bin/zsh", "/bin/bash", "/bin/sh"]
    )
    default_cols: int = Field(default=80, ge=2, le=500)
    default_rows: int = Field(default=24, ge=2, le=200)
    env: dict[str, str] = Field(
        default_factory=lambda: {
            "TERM": "xterm-256color",
            "COLORTERM": "truecolor",
            "FORCE_COLOR": "3",
            "CLICOLOR": "1",
            "CLICOLOR_FORCE": "1",
        }
    )


class SessionsConfig(BaseModel):
    buffer_frames: int = Field(default=5000, gt=0)
    max_age: float = Field(default=30 * 60, gt=0, description="Seconds")
    idle_timeout: float | None = Field(default=None, gt=0, description="Seconds")
    reap_interval: float = Field(default=5 * 60, gt=0, description="Seconds")
    kill_grace: float = Field(default=2.0, ge=0, description="SIGTERM -> SIGKILL delay")


class StreamConfig(BaseModel):
    keepalive_interval: float = Field(default=15.0, gt=0)
    queue_size: int = Field(default=1000, gt=0)


class PairingConfig(BaseModel):
    allowed_channels: list[str] = Field(default_factory=lambda: ["whatsapp", "signal"])
    timeout: float = Field(default=120.0, gt=0)
    qr_debounce: float = Field(default=0.15, ge=0)


class DoctorMode(BaseModel):
    args: list[str]
    timeout: float = Field(gt=0)


def _default_doctor_modes() -> dict[str, DoctorMode]:
    return {
        "scan": DoctorMode(args=["doctor", "--non-interactive"], timeout=45),
        "repair": DoctorMode(args=["doctor", "--repair"], timeout=60),
        "repair-force": DoctorMode(args=["doctor", "--repair", "--force"], timeout=120),
        "deep": DoctorMode(args=["doctor", "--deep", "--non-interactive"], timeout=60),
        "generate-token": DoctorMode(
            args=["doctor", "--generate-gateway-token", "--non-interactive"], timeout=30
        ),
    }


class DoctorConfig(BaseModel):
    modes: dict[str, DoctorMode] = Field(default_factory=_default_doctor_modes)


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO")
    format: str = Field(
        default="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    file: str | None = Field(default=None)


class Settings(BaseSettings):
    """Root configuration for opsdeck.

    Loads from YAML file and supports environment variable overrides.
    Reads .env files automatically.
    """

    model_config = {
        "env_prefix": "OPSDECK_",
        "env_nested_delimiter": "__",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    server: ServerConfig = Field(default_factory=ServerConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
    terminal: TerminalConfig = Field(default_factory=TerminalConfig)
    sessions: SessionsConfig = Field(default_factory=SessionsConfig)
    stream: StreamConfig = Field(default_factory=StreamConfig)
    pairing: PairingConfig = Field(default_factory=PairingConfig)
    doctor: DoctorConfig = Field(default_factory=DoctorConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # load_settings passes the YAML file as init kwargs; OPSDECK_*
        # variables must still win over it.
        return env_settings, dotenv_settings, init_settings, file_secret_settings


def load_settings(config_path: Path | str | None = None) -> Settings:
    """Load settings from YAML + .env + environment variables.

    Priority: OPSDECK_* env vars > .env file > YAML file > defaults.
    OPENCLAW_BIN / OPENCLAW_HOME only fill runtime keys the YAML file
    leaves unset.
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    # Load .env file manually for non-prefixed vars
    _load_dotenv()

    yaml_data = {}
    if path.exists():
        with open(path) as f:
            yaml_data = yaml.safe_load(f) or {}
        logger.info("Loaded configuration from %s", path)
    else:
        logger.warning("Config file %s not found, using defaults + env vars", path)

    _apply_env_overrides(yaml_data)

    return Settings(**yaml_data)


def _load_dotenv() -> None:
    """Load .env file into os.environ if it exists."""
    env_path = Path(".env")
    if not env_path.exists():
        return
    with open(env_path) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" in line:
                key, _, value = line.partition("=")
                key = key.strip()
                value = value.strip()
                if not os.environ.get(key):
                    os.environ[key] = value


def _apply_env_overrides(yaml_data: dict) -> None:
    """Map the runtime's own environment variables onto the runtime section."""
    bin_path = os.environ.get("OPENCLAW_BIN", "")
    home = os.environ.get("OPENCLAW_HOME", "")

    if "runtime" not in yaml_data:
        yaml_data["runtime"] = {}

    if bin_path and not yaml_data["runtime"].get("bin"):
        yaml_data["runtime"]["bin"] = bin_path

    if home and not yaml_data["runtime"].get("home"):
        yaml_data["runtime"]["home"] = home
