"""Configuration management for shipctl using Pydantic."""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

from shipctl.core.exceptions import ConfigError
from shipctl.core.output import OutputFormat
from shipctl.core.logging import LogLevel
from shipctl.deploy.models import DeploymentTarget, DeployPolicy, RuntimeOptions, SSHAuth


class TargetConfig(BaseModel):
    """Remote host and layout of the deployment target."""

    host: str | None = None
    port: int = 22
    user: str | None = None
    key_file: str | None = None
    password: str | None = None
    passphrase: str | None = None
    deploy_dir: str | None = None
    backup_dir: str | None = None
    log_file: str | None = None
    listen_port: int = 8080
    strict_host_key_checking: bool = True
    connect_timeout: int = 10

    @field_validator("listen_port", "port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        if not 0 < v < 65536:
            raise ValueError("port must be between 1 and 65535")
        return v

    def get_host(self) -> str | None:
        """Get target host from config or environment."""
        return os.environ.get("SHIPCTL_TARGET_HOST") or self.host

    def get_port(self) -> int:
        """Get SSH port from config or environment."""
        return int(os.environ.get("SHIPCTL_TARGET_PORT") or self.port)

    def get_user(self) -> str | None:
        """Get SSH user from config or environment."""
        return os.environ.get("SHIPCTL_TARGET_USER") or self.user

    def get_key_file(self) -> str | None:
        """Get private key path from config or environment."""
        key_file = os.environ.get("SHIPCTL_SSH_KEY_FILE") or self.key_file
        return str(Path(key_file).expanduser()) if key_file else None

    def get_password(self) -> str | None:
        """Get SSH password from config or environment."""
        password = self.password
        if password == "from_env" or password is None:
            password = os.environ.get("SHIPCTL_SSH_PASSWORD")
        return password

    def get_passphrase(self) -> str | None:
        """Get private key passphrase from config or environment."""
        passphrase = self.passphrase
        if passphrase == "from_env" or passphrase is None:
            passphrase = os.environ.get("SHIPCTL_SSH_PASSPHRASE")
        return passphrase

    def get_listen_port(self) -> int:
        """Get the application port from config or environment."""
        return int(os.environ.get("SHIPCTL_LISTEN_PORT") or self.listen_port)

    def get_deploy_dir(self) -> str | None:
        """Get the remote deploy directory from config or environment."""
        return os.environ.get("SHIPCTL_DEPLOY_DIR") or self.deploy_dir


class RuntimeConfig(BaseModel):
    """JVM launch settings for the deployed artifact."""

    java_bin: str = "java"
    min_heap: str = "512m"
    max_heap: str = "1024m"
    gc: str = "G1GC"
    active_profile: str | None = "prod"
    jvm_options: list[str] = Field(default_factory=list)
    app_args: list[str] = Field(default_factory=list)

    def to_options(self) -> RuntimeOptions:
        return RuntimeOptions(
            java_bin=self.java_bin,
            min_heap=self.min_heap,
            max_heap=self.max_heap,
            gc=self.gc,
            active_profile=self.active_profile,
            jvm_options=tuple(self.jvm_options),
            app_args=tuple(self.app_args),
        )


class StopConfig(BaseModel):
    """How the previous instance is stopped."""

    grace_period: int = 10  # seconds between SIGTERM and SIGKILL
    match_process_name: bool = False


class VerifyConfig(BaseModel):
    """Listening-port verification settings."""

    max_attempts: int = 30
    interval: float = 1.0  # seconds
    log_tail_lines: int = 20

    @field_validator("max_attempts")
    @classmethod
    def validate_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_attempts must be at least 1")
        return v


class BackupConfig(BaseModel):
    """Backup retention settings."""

    keep: int = 0  # 0 keeps every backup


class ProfileConfig(BaseModel):
    """Profile configuration grouping all settings for one environment."""

    target: TargetConfig = Field(default_factory=TargetConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
    stop: StopConfig = Field(default_factory=StopConfig)
    verify: VerifyConfig = Field(default_factory=VerifyConfig)
    backup: BackupConfig = Field(default_factory=BackupConfig)
    command_timeout: int = 60

    def build_policy(self) -> DeployPolicy:
        """Collect timeouts, retry budgets and runtime options for the orchestrator."""
        return DeployPolicy(
            runtime=self.runtime.to_options(),
            grace_period=self.stop.grace_period,
            match_process_name=self.stop.match_process_name,
            verify_attempts=self.verify.max_attempts,
            verify_interval=self.verify.interval,
            log_tail_lines=self.verify.log_tail_lines,
            keep_backups=self.backup.keep,
            command_timeout=self.command_timeout,
        )

    def build_target(
        self,
        artifact_name: str,
        host: str | None = None,
        listen_port: int | None = None,
    ) -> DeploymentTarget:
        """Resolve secrets and defaults into an immutable DeploymentTarget.

        Args:
            artifact_name: Remote file name of the artifact, used for default paths
            host: Optional host override
            listen_port: Optional listen port override

        Returns:
            DeploymentTarget ready to hand to the orchestrator

        Raises:
            ConfigError: If host, user or deploy_dir is missing
        """
        target = self.target
        resolved_host = host or target.get_host()
        user = target.get_user()
        deploy_dir = target.get_deploy_dir()

        missing = [
            name
            for name, value in (("host", resolved_host), ("user", user), ("deploy_dir", deploy_dir))
            if not value
        ]
        if missing:
            raise ConfigError(f"Target is missing required settings: {', '.join(missing)}")

        deploy_dir = deploy_dir.rstrip("/") or "/"
        return DeploymentTarget(
            host=resolved_host,
            port=target.get_port(),
            user=user,
            auth=SSHAuth(
                key_file=target.get_key_file(),
                password=target.get_password(),
                passphrase=target.get_passphrase(),
            ),
            deploy_dir=deploy_dir,
            backup_dir=target.backup_dir or f"{deploy_dir}/backup",
            log_file=target.log_file or f"{deploy_dir}/{artifact_name}.log",
            pid_file=f"{deploy_dir}/{artifact_name}.pid",
            listen_port=listen_port or target.get_listen_port(),
            strict_host_key_checking=target.strict_host_key_checking,
            connect_timeout=target.connect_timeout,
        )


class GlobalConfig(BaseModel):
    """Global settings."""

    output_format: OutputFormat = OutputFormat.TABLE
    color: str = "auto"  # auto, always, never
    verbosity: LogLevel = LogLevel.INFO
    dry_run: bool = False
    confirm_destructive: bool = True

    @field_validator("color")
    @classmethod
    def validate_color(cls, v: str) -> str:
        if v not in ("auto", "always", "never"):
            raise ValueError("color must be 'auto', 'always', or 'never'")
        return v


class ShipCtlConfig(BaseModel):
    """Main configuration model."""

    model_config = {"populate_by_name": True}

    version: str = "1"
    global_settings: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    profiles: dict[str, ProfileConfig] = Field(default_factory=lambda: {"default": ProfileConfig()})

    def get_profile(self, name: str | None = None) -> ProfileConfig:
        """Get a profile by name, defaulting to 'default'."""
        profile_name = name or "default"
        if profile_name not in self.profiles:
            raise ConfigError(f"Profile '{profile_name}' not found")
        return self.profiles[profile_name]


class ConfigLoader:
    """Loads and merges configuration from multiple sources."""

    CONFIG_FILENAMES = ["shipctl.yaml", "shipctl.yml", ".shipctl.yaml", ".shipctl.yml"]

    def __init__(self):
        self._config: ShipCtlConfig | None = None

    def load(
        self,
        config_file: str | Path | None = None,
        profile: str | None = None,
    ) -> ShipCtlConfig:
        """Load configuration from files and environment.

        Priority (highest to lowest):
        1. Explicitly specified config file
        2. Project config (./shipctl.yaml)
        3. User config (~/.shipctl/config.yaml)

        Args:
            config_file: Optional explicit config file path
            profile: Profile name to use

        Returns:
            Merged configuration
        """
        configs: list[dict[str, Any]] = []

        user_config_path = Path.home() / ".shipctl" / "config.yaml"
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
            self._config = ShipCtlConfig(**merged)
        except ValueError as e:
            raise ConfigError(f"Invalid configuration: {e}")

        if profile:
            self._config.get_profile(profile)
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


_config_loader = ConfigLoader()


def load_config(
    config_file: str | Path | None = None,
    profile: str | None = None,
) -> ShipCtlConfig:
    """Load shipctl configuration.

    Args:
        config_file: Optional explicit config file path
        profile: Profile name to use

    Returns:
        Loaded configuration
    """
    return _config_loader.load(config_file, profile)


def get_default_config() -> ShipCtlConfig:
    """Get default configuration without loading from files."""
    return ShipCtlConfig()
