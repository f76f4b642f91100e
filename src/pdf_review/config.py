"""
Configuration management for PDF Review.

Handles loading and managing configuration from files, environment variables,
and command-line options.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)


@dataclass
class DiffConfig:
    """Settings for the diff engine."""

    diff_timeout: float = 1.0  # Seconds diff-match-patch may spend per page (0 = unlimited)
    edit_cost: int = 4
    compute_timeout: Optional[float] = 30.0  # Bound on a full diff; None disables it


@dataclass
class RendererConfig:
    """Settings for calls into the document renderer."""

    call_timeout: Optional[float] = 30.0


@dataclass
class StorageConfig:
    """Settings for the version workspace."""

    workspace_dir: Path = field(default_factory=lambda: Path(".pdf_review"))
    max_upload_mb: int = 50

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024


@dataclass
class PDFReviewConfig:
    """Main configuration for PDF Review."""

    diff: DiffConfig = field(default_factory=DiffConfig)
    renderer: RendererConfig = field(default_factory=RendererConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)

    log_level: str = "WARNING"

    # Feature flags
    features: Dict[str, bool] = field(default_factory=lambda: {
        'semantic_cleanup': True,
        'event_queue': True,
    })


def _parse_optional_float(value: Any) -> Optional[float]:
    if value is None or str(value).lower() in ('', 'none', 'null', 'off'):
        return None
    return float(value)


class ConfigManager:
    """Manages PDF Review configuration from multiple sources."""

    def __init__(self, config_file: Optional[Path] = None):
        self.config_dir = Path.home() / '.pdf-review'
        self.config_file = config_file or self.config_dir / 'config.yaml'
        self._config: Optional[PDFReviewConfig] = None

    def load_config(self) -> PDFReviewConfig:
        """Load configuration from all sources."""
        if self._config:
            return self._config

        # Start with defaults
        config = PDFReviewConfig()

        # Load from file if it exists
        if self.config_file.exists():
            file_config = self._load_from_file()
            config = self._merge_configs(config, file_config)

        # Override with environment variables
        env_config = self._load_from_env()
        config = self._merge_configs(config, env_config)

        self._config = config
        return config

    def _load_from_file(self) -> Dict[str, Any]:
        """Load configuration from YAML file."""
        try:
            with open(self.config_file, 'r') as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            logger.warning(f"Could not load config file {self.config_file}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring config file {self.config_file}: top level is not a mapping")
            return {}
        return data

    def _load_from_env(self) -> Dict[str, Any]:
        """Load configuration from environment variables."""
        env_config: Dict[str, Any] = {}

        numeric_settings = [
            ('PDF_REVIEW_DIFF_TIMEOUT', 'diff', 'diff_timeout', float),
            ('PDF_REVIEW_DIFF_EDIT_COST', 'diff', 'edit_cost', int),
            ('PDF_REVIEW_COMPUTE_TIMEOUT', 'diff', 'compute_timeout', _parse_optional_float),
            ('PDF_REVIEW_RENDERER_TIMEOUT', 'renderer', 'call_timeout', _parse_optional_float),
            ('PDF_REVIEW_MAX_UPLOAD_MB', 'storage', 'max_upload_mb', int),
        ]
        for env_var, section, key, convert in numeric_settings:
            value = os.getenv(env_var)
            if value:
                try:
                    env_config.setdefault(section, {})[key] = convert(value)
                except ValueError:
                    logger.warning(f"Ignoring invalid value for {env_var}: {value!r}")

        workspace = os.getenv('PDF_REVIEW_WORKSPACE')
        if workspace:
            env_config.setdefault('storage', {})['workspace_dir'] = workspace

        log_level = os.getenv('PDF_REVIEW_LOG_LEVEL')
        if log_level:
            env_config['log_level'] = log_level

        # Feature flags
        for feature in PDFReviewConfig().features:
            value = os.getenv(f'PDF_REVIEW_{feature.upper()}')
            if value:
                env_config.setdefault('features', {})[feature] = value.lower() in ('true', '1', 'yes', 'on')

        return env_config

    def _merge_configs(self, base: PDFReviewConfig, override: Dict[str, Any]) -> PDFReviewConfig:
        """Merge configuration dictionaries."""
        if 'diff' in override:
            diff_overrides = override['diff'] or {}
            if 'diff_timeout' in diff_overrides:
                base.diff.diff_timeout = float(diff_overrides['diff_timeout'])
            if 'edit_cost' in diff_overrides:
                base.diff.edit_cost = int(diff_overrides['edit_cost'])
            if 'compute_timeout' in diff_overrides:
                base.diff.compute_timeout = _parse_optional_float(diff_overrides['compute_timeout'])

        if 'renderer' in override:
            renderer_overrides = override['renderer'] or {}
            if 'call_timeout' in renderer_overrides:
                base.renderer.call_timeout = _parse_optional_float(renderer_overrides['call_timeout'])

        if 'storage' in override:
            storage_overrides = override['storage'] or {}
            if 'workspace_dir' in storage_overrides:
                base.storage.workspace_dir = Path(storage_overrides['workspace_dir'])
            if 'max_upload_mb' in storage_overrides:
                base.storage.max_upload_mb = int(storage_overrides['max_upload_mb'])

        if 'log_level' in override:
            base.log_level = str(override['log_level']).upper()

        if 'features' in override:
            base.features.update(override['features'] or {})

        return base

    def save_config(self, config: PDFReviewConfig) -> None:
        """Save configuration to file."""
        self.config_file.parent.mkdir(parents=True, exist_ok=True)

        config_dict = {
            'diff': {
                'diff_timeout': config.diff.diff_timeout,
                'edit_cost': config.diff.edit_cost,
                'compute_timeout': config.diff.compute_timeout,
            },
            'renderer': {
                'call_timeout': config.renderer.call_timeout,
            },
            'storage': {
                'workspace_dir': str(config.storage.workspace_dir),
                'max_upload_mb': config.storage.max_upload_mb,
            },
            'log_level': config.log_level,
            'features': config.features,
        }

        with open(self.config_file, 'w') as f:
            yaml.safe_dump(config_dict, f, default_flow_style=False, indent=2)

    def create_default_config(self) -> Path:
        """Create a default configuration file."""
        self.save_config(PDFReviewConfig())
        logger.info(f"Created default configuration at {self.config_file}")
        return self.config_file

    def get_config_info(self) -> Dict[str, Any]:
        """Get information about current configuration."""
        config = self.load_config()

        return {
            'config_file': str(self.config_file),
            'config_exists': self.config_file.exists(),
            'workspace_dir': str(config.storage.workspace_dir),
            'log_level': config.log_level,
            'features_enabled': [k for k, v in config.features.items() if v],
        }


# Global config manager instance
_config_manager: Optional[ConfigManager] = None

def get_config_manager() -> ConfigManager:
    """Get the global config manager instance."""
    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager

def load_config() -> PDFReviewConfig:
    """Load the current configuration."""
    return get_config_manager().load_config()
