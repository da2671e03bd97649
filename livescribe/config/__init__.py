"""Simple YAML configuration loader for livescribe."""

import copy
import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
import logging

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


DEFAULT_CONFIG: Dict[str, Any] = {
    "audio": {
        "sample_rate": 48000,
        "frames_per_buffer": 1024,
        "chunk_seconds": 2.0,
        "container": "FLAC",
        "system_audio_device": None,
    },
    "transcription": {
        "backend": "openai",
        "sample_rate": 16000,
        "language": "pt",
        "connect_timeout": 10.0,
        "setup_timeout": 10.0,
        "openai": {
            "model": "gpt-4o-realtime-preview-2024-10-01",
            "transcription_model": "whisper-1",
            "vad_threshold": 0.3,
            "prefix_padding_ms": 100,
            "silence_duration_ms": 400,
        },
        "gemini": {
            "model": "models/gemini-2.0-flash-exp",
        },
    },
    "storage": {
        "data_directory": "data",
    },
    "logging": {
        "level": "INFO",
        "file_path": "data/logs/livescribe.log",
        "console_output": True,
        "max_bytes": 5 * 1024 * 1024,
        "backup_count": 3,
    },
}

# Lookup order for vendor API keys, first match wins.
API_KEY_ENV_VARS = {
    "openai": ("VITE_OPENAI_API_KEY", "OPENAI_API_KEY", "VITE_AZURE_OPENAI_API_KEY"),
    "gemini": ("VITE_GEMINI_API_KEY", "GEMINI_API_KEY", "GOOGLE_API_KEY"),
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


class LiveScribeConfig:
    """livescribe configuration loader."""

    def __init__(self, config_path: Optional[str] = None, env_file: Optional[str] = None):
        """Initialize configuration loader.

        Args:
            config_path: Path to YAML config file. If None, built-in defaults
                        are used with paths relative to the working directory.
            env_file: Optional .env file with API keys. If None, python-dotenv
                     searches the usual locations.
        """
        load_dotenv(env_file)

        self.config_file = Path(config_path) if config_path else None

        if self.config_file is not None and not self.config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {self.config_file}")

        if self.config_file is not None:
            logger.info(f"Loading configuration from: {self.config_file}")
        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load the YAML file and merge it over the defaults."""
        config = copy.deepcopy(DEFAULT_CONFIG)
        if self.config_file is None:
            return config

        try:
            with open(self.config_file, 'r', encoding='utf-8') as f:
                loaded = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file: {e}")

        if loaded is None:
            logger.warning(f"Configuration file is empty, using defaults: {self.config_file}")
            return config
        if not isinstance(loaded, dict):
            raise ValueError("Configuration file must contain a mapping at the top level")

        _merge(config, loaded)
        self._resolve_paths(config)

        logger.info("Configuration loaded successfully")
        return config

    def _resolve_paths(self, config: Dict[str, Any]) -> None:
        """Resolve relative paths in configuration relative to config file location."""
        config_dir = self.config_file.parent

        data_dir = config['storage'].get('data_directory')
        if data_dir and not os.path.isabs(data_dir):
            config['storage']['data_directory'] = str(config_dir / data_dir)

        log_path = config['logging'].get('file_path')
        if log_path and not os.path.isabs(log_path):
            config['logging']['file_path'] = str(config_dir / log_path)

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get configuration value using dot notation (e.g., 'audio.chunk_seconds').

        Args:
            key_path: Dot-separated key path
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        keys = key_path.split('.')
        value = self.config

        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        return value

    def set(self, key_path: str, value: Any) -> None:
        """Set configuration value using dot notation."""
        keys = key_path.split('.')
        config_dict = self.config

        for key in keys[:-1]:
            if key not in config_dict:
                config_dict[key] = {}
            config_dict = config_dict[key]

        config_dict[keys[-1]] = value
        logger.debug(f"Configuration key '{key_path}' set to: {value}")

    def get_api_key(self, backend: str) -> str:
        """Get the API key for a backend from config or environment - raises if missing."""
        configured = self.get(f'transcription.{backend}.api_key')
        if configured:
            return configured

        env_vars = API_KEY_ENV_VARS.get(backend)
        if env_vars is None:
            raise ValueError(f"Unknown transcription backend: {backend}")

        for name in env_vars:
            key = os.environ.get(name, "").strip()
            if key:
                logger.debug(f"Using {backend} API key from ${name}")
                return key

        raise ValueError(
            f"No {backend} API key found. Expected one of: {', '.join(env_vars)}"
        )

    def get_data_directory(self) -> str:
        """Get data directory path."""
        data_dir = self.get('storage.data_directory', 'data')
        return str(Path(data_dir).absolute())
