"""
Configuration loader for the HTTP/2 conformance harness
"""

import yaml
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .errors import ConfigError

DEFAULT_TIMEOUT = 2.0


@dataclass(frozen=True)
class RunConfig:
    """Resolved settings for one run; fixed for the run's duration"""
    host: str
    port: int
    secure: bool = False
    timeout: float = DEFAULT_TIMEOUT
    filters: Tuple[str, ...] = ()

    def __post_init__(self):
        if not self.host:
            raise ConfigError("target host is empty")
        if not isinstance(self.port, int) or not 0 < self.port < 65536:
            raise ConfigError(f"invalid target port: {self.port!r}")
        if not isinstance(self.timeout, (int, float)) or self.timeout <= 0:
            raise ConfigError(f"timeout must be a positive number of seconds, got {self.timeout!r}")

    @property
    def address(self) -> Tuple[str, int]:
        return (self.host, self.port)

    @property
    def authority(self) -> str:
        return f"{self.host}:{self.port}"


class TestConfig:
    """Load and manage harness configuration from a YAML file"""

    def __init__(self, config_path: str = 'config.yaml'):
        """
        Initialize configuration loader

        Args:
            config_path: Path to YAML configuration file

        Raises:
            ConfigError: If the file is missing or not a YAML mapping
        """
        self.config_path = Path(config_path)
        if not self.config_path.exists():
            raise ConfigError(f"Configuration file not found: {config_path}")

        try:
            with open(self.config_path) as f:
                self.config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

        if not isinstance(self.config, dict):
            raise ConfigError(f"Configuration root must be a mapping: {config_path}")

        self._merge_targets()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TestConfig':
        """Build a configuration from an in-memory mapping (no file)"""
        self = cls.__new__(cls)
        self.config_path = None
        self.config = data
        self._merge_targets()
        return self

    def _merge_targets(self):
        """
        Merge remote and local targets into a unified dictionary

        Local targets are SUTs started from a script for the duration of the
        run; remote targets are already listening.
        """
        self.all_targets = {}

        for section, target_type in (('targets', 'remote'), ('local_targets', 'local')):
            for name, cfg in (self.config.get(section) or {}).items():
                self.add_target(name, cfg, target_type)

    def add_target(self, name: str, cfg: Dict[str, Any], target_type: str = 'remote') -> Dict[str, Any]:
        """
        Register a target, filling in defaults

        Args:
            name: Target name
            cfg: Target settings (host, port, tls, ...)
            target_type: 'remote' or 'local'

        Returns:
            The normalized target configuration
        """
        if not isinstance(cfg, dict):
            raise ConfigError(f"Target '{name}' must be a mapping")
        cfg = dict(cfg)
        cfg.setdefault('target_type', target_type)
        cfg.setdefault('name', name)
        cfg.setdefault('version', '')
        cfg.setdefault('host', '127.0.0.1')
        if 'port' not in cfg:
            raise ConfigError(f"Target '{name}' has no port")
        if cfg['target_type'] == 'local' and 'script_path' not in cfg:
            raise ConfigError(f"Local target '{name}' has no script_path")
        self.all_targets[name] = cfg
        return cfg

    def get_target(self, name: str) -> Dict[str, Any]:
        """
        Get configuration for a specific target (remote or local)

        Args:
            name: Target name as it appears in the YAML file

        Returns:
            Dictionary with target configuration

        Raises:
            ConfigError: If target not found or disabled
        """
        target = self.all_targets.get(name)
        if not target:
            raise ConfigError(f"Target '{name}' not found in configuration")
        if not target.get('enabled', True):
            raise ConfigError(f"Target '{name}' is disabled")
        return target

    def list_targets(self, enabled_only: bool = True, target_type: str = None) -> List[str]:
        """
        List all available targets

        Args:
            enabled_only: If True, only return enabled targets
            target_type: Filter by type ('remote', 'local', or None for all)

        Returns:
            List of target names
        """
        targets = []
        for name, cfg in self.all_targets.items():
            if enabled_only and not cfg.get('enabled', True):
                continue
            if target_type and cfg.get('target_type') != target_type:
                continue
            targets.append(name)

        return targets

    def is_local_target(self, name: str) -> bool:
        return self.get_target(name).get('target_type') == 'local'

    def get_test_execution_settings(self) -> Dict[str, Any]:
        """Get test execution settings"""
        return self.config.get('test_execution') or {}

    def get_reporting_settings(self) -> Dict[str, Any]:
        """Get reporting settings"""
        return self.config.get('reporting') or {}

    def resolve_run_config(self, target: str, timeout: Optional[float] = None,
                           secure: Optional[bool] = None,
                           filters: Iterable[str] = ()) -> RunConfig:
        """
        Build the immutable run configuration for a target

        Args:
            target: Target name
            timeout: Per-case timeout override in seconds
            secure: TLS override; None keeps the target's 'tls' setting
            filters: Section/case id prefixes to run

        Returns:
            RunConfig
        """
        cfg = self.get_target(target)
        if timeout is None:
            timeout = self.get_test_execution_settings().get('default_timeout', DEFAULT_TIMEOUT)
        if secure is None:
            secure = bool(cfg.get('tls', False))

        return RunConfig(
            host=str(cfg['host']),
            port=cfg['port'],
            secure=secure,
            timeout=timeout,
            filters=tuple(filters)
        )
