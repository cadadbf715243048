"""Configuration management for deployctl using Pydantic."""

import os
import re
import tempfile
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from deployctl.core.exceptions import ConfigError
from deployctl.core.output import OutputFormat
from deployctl.core.logging import LogLevel


class GlobalConfig(BaseModel):
    """Global settings."""

    output_format: OutputFormat = OutputFormat.TABLE
    color: str = "auto"  # auto, always, never
    verbosity: LogLevel = LogLevel.WARNING

    @field_validator("color")
    @classmethod
    def validate_color(cls, v: str) -> str:
        if v not in ("auto", "always", "never"):
            raise ValueError("color must be 'auto', 'always', or 'never'")
        return v


class PathsConfig(BaseModel):
    """Filesystem locations on the deployment host."""

    deploy_path: str = "/opt/letzgo"
    env_file: str | None = None  # defaults to <deploy_path>/.env
    state_dir: str | None = None  # defaults to <tmp>/deployctl

    def get_deploy_path(self) -> Path:
        """Get deploy path from config or environment."""
        return Path(os.environ.get("DEPLOYCTL_DEPLOY_PATH") or self.deploy_path)

    def get_env_file(self) -> Path:
        """Get the shared environment file path."""
        value = os.environ.get("DEPLOYCTL_ENV_FILE") or self.env_file
        if value:
            return Path(value)
        return self.get_deploy_path() / ".env"

    def get_state_dir(self) -> Path:
        """Get the Status Store directory."""
        value = os.environ.get("DEPLOYCTL_STATE_DIR") or self.state_dir
        if value:
            return Path(value)
        return Path(tempfile.gettempdir()) / "deployctl"

    def get_services_dir(self) -> Path:
        """Directory holding one source checkout per service."""
        return self.get_deploy_path() / "services"


class DockerConfig(BaseModel):
    """Container runtime settings."""

    network: str = "letzgo-network"
    container_prefix: str = "letzgo"
    required_containers: list[str] = Field(
        default_factory=lambda: ["letzgo-postgres", "letzgo-mongodb", "letzgo-redis"]
    )
    restart_policy: str = "unless-stopped"
    stop_timeout: int = 10
    mount_volumes: bool = True
    timeout: int = 600  # docker API timeout, bounds build/run calls


class HealthConfig(BaseModel):
    """Health check settings."""

    timeout: float = Field(default=100.0, gt=0)
    interval: float = Field(default=5.0, gt=0)
    probe_timeout: float = Field(default=3.0, gt=0)
    host: str = "localhost"
    probe: Literal["http", "exec"] = "http"
    log_lines: int = Field(default=10, ge=0)


class OrchestratorConfig(BaseModel):
    """Fan-out/join settings."""

    max_parallel: int = Field(default=6, ge=1)
    poll_interval: float = Field(default=2.0, gt=0)
    strict: bool = False  # treat main-branch fallback and stub sources as failures
    log_tail_lines: int = Field(default=200, ge=1)
    excerpt_lines: int = Field(default=20, ge=1)
    clone_timeout: int = Field(default=300, ge=1)


class ServiceEntryConfig(BaseModel):
    """One service in the registry section."""

    name: str
    port: int = Field(ge=1, le=65535)
    repo: str | None = None
    default_branch: str | None = None
    health_path: str = "/health"

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not re.fullmatch(r"[a-z][a-z0-9\-]{0,62}", v):
            raise ValueError("service names are lowercase letters, digits and '-'")
        return v


class RegistryConfig(BaseModel):
    """Service Registry overrides."""

    owner: str = "rhushirajpatil"
    host: str = "github.com"
    default_branch: str = "main"
    services: list[ServiceEntryConfig] | None = None  # None keeps the built-in table


class DeployCtlConfig(BaseModel):
    """Main configuration model."""

    model_config = {"populate_by_name": True}

    version: str = "1"
    global_settings: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    paths: PathsConfig = Field(default_factory=PathsConfig)
    docker: DockerConfig = Field(default_factory=DockerConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    registry: RegistryConfig = Field(default_factory=RegistryConfig)


class ConfigLoader:
    """Loads and merges configuration from multiple sources."""

    CONFIG_FILENAMES = ["deployctl.yaml", "deployctl.yml", ".deployctl.yaml", ".deployctl.yml"]

    def __init__(self):
        self._config: DeployCtlConfig | None = None

    def load(self, config_file: str | Path | None = None) -> DeployCtlConfig:
        """Load configuration from files.

        Priority (highest to lowest):
        1. Explicitly specified config file
        2. Project config (./deployctl.yaml)
        3. User config (~/.deployctl/config.yaml)

        Args:
            config_file: Optional explicit config file path

        Returns:
            Merged configuration
        """
        configs: list[dict[str, Any]] = []

        user_config_path = Path.home() / ".deployctl" / "config.yaml"
        if user_config_path.exists():
            configs.append(self._load_yaml_file(user_config_path))

        project_config = self._find_project_config()
        if project_config:
            configs.append(self._load_yaml_file(project_config))

        if config_file:
            config_path = Path(config_file)
            if not config_path.exists():
                raise ConfigError(f"Config file not found: {config_file}")
            configs.append(self._load_yaml_file(config_path))

        merged = self._merge_configs(configs)

        try:
            self._config = DeployCtlConfig(**merged)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration: {e}")
        return self._config

    def _find_project_config(self) -> Path | None:
        """Find project config file in current or parent directories."""
        current = Path.cwd()

        while current != current.parent:
            for filename in self.CONFIG_FILENAMES:
                config_path = current / filename
                if config_path.exists():
                    return config_path
            current = current.parent

        return None

    def _load_yaml_file(self, path: Path) -> dict[str, Any]:
        """Load a YAML config file."""
        try:
            with open(path) as f:
                content = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}")
        except OSError as e:
            raise ConfigError(f"Cannot read {path}: {e}")
        if not isinstance(content, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        return content

    def _merge_configs(self, configs: list[dict[str, Any]]) -> dict[str, Any]:
        """Deep merge multiple configuration dictionaries."""
        result: dict[str, Any] = {}
        for config in configs:
            result = self._deep_merge(result, config)
        return result

    def _deep_merge(
        self,
        base: dict[str, Any],
        override: dict[str, Any],
    ) -> dict[str, Any]:
        """Deep merge two dictionaries."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value
        return result


# Global config loader instance
_config_loader = ConfigLoader()


def load_config(config_file: str | Path | None = None) -> DeployCtlConfig:
    """Load deployctl configuration.

    Args:
        config_file: Optional explicit config file path

    Returns:
        Loaded configuration
    """
    return _config_loader.load(config_file)


def get_default_config() -> DeployCtlConfig:
    """Get default configuration without loading from files."""
    return DeployCtlConfig()


# --- Shared service environment (.env) ---


class Configuration(BaseSettings):
    """Shared credentials and connection strings injected into every container.

    Read once at startup from the ``.env`` file and passed explicitly to the
    deployer. Only constructor values and the file are consulted; the
    operator's shell environment never leaks into the containers.
    """

    model_config = SettingsConfigDict(
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return init_settings, dotenv_settings

    node_env: str = Field(default="staging", alias="NODE_ENV")

    postgres_host: str = Field(default="letzgo-postgres", alias="POSTGRES_HOST")
    postgres_port: int = Field(default=5432, alias="POSTGRES_PORT")
    postgres_username: str = Field(default="postgres", alias="POSTGRES_USERNAME")
    postgres_database: str = Field(default="letzgo", alias="POSTGRES_DATABASE")
    postgres_password: str = Field(alias="POSTGRES_PASSWORD", min_length=1)
    postgres_url: str = Field(alias="POSTGRES_URL", min_length=1)

    mongodb_host: str = Field(default="letzgo-mongodb", alias="MONGODB_HOST")
    mongodb_port: int = Field(default=27017, alias="MONGODB_PORT")
    mongodb_username: str = Field(default="admin", alias="MONGODB_USERNAME")
    mongodb_database: str = Field(default="letzgo", alias="MONGODB_DATABASE")
    mongodb_password: str = Field(alias="MONGODB_PASSWORD", min_length=1)
    mongodb_url: str = Field(alias="MONGODB_URL", min_length=1)
    mongodb_uri: str | None = Field(default=None, alias="MONGODB_URI")

    redis_host: str = Field(default="letzgo-redis", alias="REDIS_HOST")
    redis_port: int = Field(default=6379, alias="REDIS_PORT")
    redis_password: str = Field(alias="REDIS_PASSWORD", min_length=1)
    redis_url: str = Field(alias="REDIS_URL", min_length=1)

    rabbitmq_host: str = Field(default="letzgo-rabbitmq", alias="RABBITMQ_HOST")
    rabbitmq_port: int = Field(default=5672, alias="RABBITMQ_PORT")
    rabbitmq_username: str = Field(default="admin", alias="RABBITMQ_USERNAME")
    rabbitmq_password: str = Field(alias="RABBITMQ_PASSWORD", min_length=1)
    rabbitmq_url: str = Field(alias="RABBITMQ_URL", min_length=1)

    jwt_secret: str = Field(alias="JWT_SECRET", min_length=1)
    service_api_key: str = Field(alias="SERVICE_API_KEY", min_length=1)
    domain_name: str = Field(default="", alias="DOMAIN_NAME")
    api_domain: str = Field(default="", alias="API_DOMAIN")

    @property
    def resolved_mongodb_uri(self) -> str:
        return self.mongodb_uri or self.mongodb_url


REQUIRED_ENV_KEYS = tuple(
    field.alias
    for field in Configuration.model_fields.values()
    if field.is_required() and field.alias
)


def load_environment(path: Path) -> Configuration:
    """Load and validate the shared environment file.

    Raises:
        ConfigError: if the file is absent or a required key is missing/empty
    """
    if not path.is_file():
        raise ConfigError(
            f"Environment file not found: {path}",
            {"required_keys": ", ".join(REQUIRED_ENV_KEYS)},
        )
    try:
        return Configuration(_env_file=path)
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigError(f"Cannot read environment file {path}: {e}")
    except ValidationError as e:
        missing = _missing_keys(e)
        if missing:
            raise ConfigError(
                f"Environment file {path} is missing required keys: {', '.join(missing)}"
            )
        raise ConfigError(f"Invalid value in environment file {path}: {e}")


def _missing_keys(error: ValidationError) -> list[str]:
    """Required keys that were absent or blank."""
    aliases = {name: field.alias for name, field in Configuration.model_fields.items()}
    missing: list[str] = []
    for item in error.errors():
        if item["type"] not in ("missing", "string_too_short") or not item["loc"]:
            continue
        key = str(item["loc"][0])
        key = aliases.get(key, key).upper()
        if key in REQUIRED_ENV_KEYS and key not in missing:
            missing.append(key)
    return missing
