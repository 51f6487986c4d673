"""Configuration management for hostdeck.

Hosts, live-state and terminal settings live in one YAML file under the XDG
config directory (``$XDG_CONFIG_HOME/hostdeck/config.yaml``).
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import ValidationError

from .errors import ConfigError
from .models import AppConfig, HostConfig

logger = structlog.get_logger(__name__)

APP_DIR_NAME = "hostdeck"


def get_config_dir() -> Path:
    """Get the configuration directory following the XDG Base Directory layout.

    Returns:
        Path to the configuration directory.
    """
    xdg_config_home = os.environ.get("XDG_CONFIG_HOME")
    base = Path(xdg_config_home) if xdg_config_home else Path.home() / ".config"
    return base / APP_DIR_NAME


def get_default_config_path() -> Path:
    return get_config_dir() / "config.yaml"


class YamlConfigLoader:
    """Reads and writes plain dictionaries as YAML."""

    def load(self, path: Path) -> dict[str, Any]:
        """Load a YAML mapping.

        Raises:
            FileNotFoundError: If the file doesn't exist.
            ConfigError: If the file is not a YAML mapping.
        """
        if not path.exists():
            logger.debug("config_file_not_found", path=str(path))
            raise FileNotFoundError(f"Configuration file not found: {path}")

        try:
            data = yaml.safe_load(path.read_text())
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"Expected a mapping at the top of {path}")
        return data

    def save(self, data: dict[str, Any], path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(yaml.safe_dump(data, default_flow_style=False, sort_keys=False))
        logger.info("config_saved", path=str(path))


class ConfigManager:
    """Loads, edits and saves the hostdeck configuration.

    Example:
        manager = ConfigManager()
        config = manager.load()
        manager.add_host(HostConfig(id="lab", base_url="http://10.0.0.5:4020"))
    """

    def __init__(self, config_path: Path | None = None) -> None:
        """Initialize the configuration manager.

        Args:
            config_path: Optional path to the configuration file.
                Uses the XDG default if not provided.
        """
        self.config_path = config_path or get_default_config_path()
        self._loader = YamlConfigLoader()
        self._config: AppConfig | None = None

    def load(self) -> AppConfig:
        """Load configuration from file.

        Returns:
            The parsed configuration, or defaults if the file doesn't exist.

        Raises:
            ConfigError: If the file exists but is invalid.
        """
        try:
            data = self._loader.load(self.config_path)
        except FileNotFoundError:
            logger.info("using_default_config")
            self._config = AppConfig()
            return self._config

        try:
            self._config = AppConfig.model_validate(data)
        except ValidationError as e:
            raise ConfigError(f"Invalid configuration in {self.config_path}: {e}") from e

        ids = [host.id for host in self._config.hosts]
        if len(ids) != len(set(ids)):
            raise ConfigError(f"Duplicate host ids in {self.config_path}")
        return self._config

    def save(self, config: AppConfig | None = None) -> None:
        if config is not None:
            self._config = config
        if self._config is None:
            self._config = AppConfig()
        data = self._config.model_dump(mode="json", exclude_defaults=True)
        # Hosts are always written, even when empty
        data["hosts"] = [
            host.model_dump(mode="json", exclude_defaults=True) for host in self._config.hosts
        ]
        self._loader.save(data, self.config_path)

    def get_config(self) -> AppConfig:
        if self._config is None:
            self.load()
        return self._config or AppConfig()

    def get_host(self, host_id: str) -> HostConfig:
        """Find a configured host by id or name.

        Raises:
            ConfigError: If no such host is configured.
        """
        host = self.get_config().get_host(host_id)
        if host is None:
            raise ConfigError(f"Unknown host: {host_id}")
        return host

    def add_host(self, host: HostConfig, replace: bool = False) -> None:
        """Add a host and save.

        Args:
            host: The host to add.
            replace: Overwrite an existing host with the same id.

        Raises:
            ConfigError: If the id is taken and ``replace`` is False.
        """
        config = self.get_config()
        hosts = [existing for existing in config.hosts if existing.id != host.id]
        if len(hosts) != len(config.hosts) and not replace:
            raise ConfigError(f"Host already exists: {host.id}")
        hosts.append(host)
        self.save(config.model_copy(update={"hosts": hosts}))
        logger.info("host_added", host=host.id, base_url=host.base_url)

    def remove_host(self, host_id: str) -> bool:
        """Remove a host by id and save.

        Returns:
            True if the host was removed, False if it wasn't configured.
        """
        config = self.get_config()
        hosts = [host for host in config.hosts if host.id != host_id]
        if len(hosts) == len(config.hosts):
            return False
        self.save(config.model_copy(update={"hosts": hosts}))
        logger.info("host_removed", host=host_id)
        return True

    def init_config(self, force: bool = False) -> bool:
        """Write a default configuration file.

        Args:
            force: If True, overwrite an existing file.

        Returns:
            True if the file was created, False if it already exists.
        """
        if self.config_path.exists() and not force:
            logger.info("config_exists", path=str(self.config_path))
            return False
        self.save(AppConfig())
        logger.info("config_initialized", path=str(self.config_path))
        return True
