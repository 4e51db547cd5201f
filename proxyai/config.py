# proxyai/config.py
"""
Configuration management for proxyai.

This module handles global configuration for the client: gateway endpoints,
the partial key, organization, attestation bypass, timeouts and logging.
Configuration can be set through code, environment variables, or YAML files.
"""

import os
import yaml
import logging
from pathlib import Path
from typing import Optional, Union
from dataclasses import dataclass

from .constants import (
    ASSISTANTS_BETA, DEFAULT_API_ENDPOINT, DEFAULT_CONFIG_DIR,
    DEFAULT_REFRESH_MARGIN, ENV_VARS
)
from .exceptions import ConfigurationError
from .utils.logging import configure_logging

logger = logging.getLogger(__name__)

# Never written to disk by save_config
_SECRET_FIELDS = {"partial_key", "device_check_bypass"}


@dataclass
class ProxyAIConfig:
    """
    Global configuration for proxyai.

    Attributes:
        partial_key: Partial key issued by the gateway dashboard
        organization_id: Optional organization sent with every request
        api_endpoint: Gateway base URL including the API version
        exchange_endpoint: Credential exchange URL (None = derived from api_endpoint)
        device_check_bypass: Value sent instead of a device attestation when the
            platform cannot attest (development and CI only)
        assistants_beta: Value of the beta header for the assistants subsystem
        api_timeout: Request timeout in seconds (None = no timeout)
        exchange_timeout: Credential exchange timeout in seconds
        reuse_authorization: Keep a resolved authorization until it nears expiry
            instead of resolving one per request
        refresh_margin: Seconds before expiry at which a reused authorization is refreshed
        stream_chunk_size: Read size for streamed bodies (None = as data arrives)
        log_level: Logging level ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
        log_format: Log formatter ("context", "json", "simple")
        log_to_file: Enable logging to file
        log_file: Log file path (None = ~/.proxyai/logs/proxyai.log)
    """

    # Credentials
    partial_key: Optional[str] = None
    organization_id: Optional[str] = None
    device_check_bypass: Optional[str] = None

    # Gateway
    api_endpoint: str = DEFAULT_API_ENDPOINT
    exchange_endpoint: Optional[str] = None
    assistants_beta: str = ASSISTANTS_BETA

    # Transport
    api_timeout: Optional[float] = 60.0
    exchange_timeout: float = 30.0
    stream_chunk_size: Optional[int] = None

    # Authorization lifecycle
    reuse_authorization: bool = False
    refresh_margin: float = DEFAULT_REFRESH_MARGIN

    # Logging
    log_level: str = "WARNING"
    log_format: str = "context"
    log_to_file: bool = False
    log_file: Optional[str] = None


# Global configuration instance
_config: Optional[ProxyAIConfig] = None


def configure(**kwargs) -> ProxyAIConfig:
    """
    Configure proxyai with custom settings.

    Settings are loaded from (in order of precedence):
    1. Keyword arguments passed to this function
    2. Environment variables
    3. Configuration files
    4. Default values

    Args:
        **kwargs: Configuration options to set. Can be any attribute of ProxyAIConfig.

    Returns:
        ProxyAIConfig: The updated configuration object

    Raises:
        ConfigurationError: If invalid configuration values are provided

    Example:
        >>> import proxyai
        >>> config = proxyai.configure(partial_key="v2|abc|123", api_timeout=30)
        >>> print(config.api_timeout)
        30
    """
    global _config

    if _config is None:
        _config = ProxyAIConfig()
        _update_from_config_file(_config)
        _update_from_env(_config)

    for key, value in kwargs.items():
        if hasattr(_config, key):
            setattr(_config, key, value)
        else:
            raise ConfigurationError(
                f"Unknown configuration option: {key}",
                config_key=key,
                invalid_value=str(value)
            )

    _validate_config(_config)
    _setup_logging(_config)

    return _config


def get_config() -> ProxyAIConfig:
    """
    Get the current global configuration.

    If no configuration has been set, this will initialize it from files,
    environment and defaults.
    """
    if _config is None:
        return configure()
    return _config


def reset_config():
    """Reset configuration to default values."""
    global _config
    _config = None
    configure()


def save_config(path: Optional[Union[str, Path]] = None):
    """
    Save current configuration to a YAML file.

    Secrets (the partial key and the attestation bypass) are never written.

    Args:
        path: Destination file. Defaults to ~/.proxyai/config.yaml

    Raises:
        ConfigurationError: If the configuration cannot be saved
    """
    config = get_config()
    path = Path(path) if path is not None else DEFAULT_CONFIG_DIR / "config.yaml"
    path.parent.mkdir(parents=True, exist_ok=True)

    config_dict = {}
    for field_name in config.__dataclass_fields__:
        value = getattr(config, field_name)
        if value is not None and field_name not in _SECRET_FIELDS:
            config_dict[field_name] = value

    try:
        with open(path, 'w') as f:
            yaml.safe_dump(config_dict, f, default_flow_style=False, sort_keys=True)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to save configuration: {e}") from e


def load_config(path: Union[str, Path]) -> ProxyAIConfig:
    """
    Load configuration from a YAML file.

    Raises:
        ConfigurationError: If the file cannot be loaded or contains invalid values
    """
    path = Path(path)

    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {path}")

    try:
        with open(path, 'r') as f:
            config_data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Failed to load configuration from {path}: {e}") from e

    if config_data and not isinstance(config_data, dict):
        raise ConfigurationError(f"Configuration file {path} must contain a mapping")

    return configure(**(config_data or {}))


def _update_from_env(config: ProxyAIConfig):
    """Update configuration from environment variables."""
    env_mapping = {
        ENV_VARS["PARTIAL_KEY"]: ("partial_key", str),
        ENV_VARS["ORGANIZATION_ID"]: ("organization_id", str),
        ENV_VARS["API_ENDPOINT"]: ("api_endpoint", str),
        ENV_VARS["EXCHANGE_ENDPOINT"]: ("exchange_endpoint", str),
        ENV_VARS["DEVICE_CHECK_BYPASS"]: ("device_check_bypass", str),
        ENV_VARS["LOG_LEVEL"]: ("log_level", str),
        "PROXYAI_ASSISTANTS_BETA": ("assistants_beta", str),
        "PROXYAI_API_TIMEOUT": ("api_timeout", float),
        "PROXYAI_EXCHANGE_TIMEOUT": ("exchange_timeout", float),
        "PROXYAI_REUSE_AUTHORIZATION": ("reuse_authorization", bool),
        "PROXYAI_LOG_FORMAT": ("log_format", str),
        "PROXYAI_LOG_TO_FILE": ("log_to_file", bool),
    }

    for env_var, (config_attr, value_type) in env_mapping.items():
        value = os.getenv(env_var)
        if value is not None:
            try:
                if value_type == bool:
                    value = value.lower() in ("true", "1", "yes", "on")
                elif value_type == float:
                    value = float(value)

                setattr(config, config_attr, value)
            except ValueError:
                logger.warning(f"Invalid value for {env_var}: {value}")


def _update_from_config_file(config: ProxyAIConfig):
    """Update configuration from the first YAML config file found."""
    config_paths = [
        Path.cwd() / "proxyai.yaml",
        DEFAULT_CONFIG_DIR / "config.yaml",
    ]

    for config_path in config_paths:
        if config_path.exists():
            try:
                with open(config_path, 'r') as f:
                    file_config = yaml.safe_load(f)
            except (OSError, yaml.YAMLError) as e:
                logger.warning(f"Failed to load config from {config_path}: {e}")
                continue

            if isinstance(file_config, dict):
                for key, value in file_config.items():
                    if hasattr(config, key):
                        setattr(config, key, value)
            break


def _validate_config(config: ProxyAIConfig):
    """Validate configuration values."""
    if not config.api_endpoint or not config.api_endpoint.startswith(("http://", "https://")):
        raise ConfigurationError(
            f"Invalid api_endpoint: {config.api_endpoint}",
            config_key="api_endpoint",
            invalid_value=config.api_endpoint
        )

    if config.exchange_endpoint and not config.exchange_endpoint.startswith(("http://", "https://")):
        raise ConfigurationError(
            f"Invalid exchange_endpoint: {config.exchange_endpoint}",
            config_key="exchange_endpoint",
            invalid_value=config.exchange_endpoint
        )

    valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if str(config.log_level).upper() not in valid_log_levels:
        raise ConfigurationError(
            f"Invalid log_level: {config.log_level}",
            config_key="log_level",
            invalid_value=config.log_level,
            valid_values=valid_log_levels
        )

    valid_formats = ["context", "json", "simple"]
    if config.log_format not in valid_formats:
        raise ConfigurationError(
            f"Invalid log_format: {config.log_format}",
            config_key="log_format",
            invalid_value=config.log_format,
            valid_values=valid_formats
        )

    if config.api_timeout is not None and config.api_timeout <= 0:
        raise ConfigurationError("api_timeout must be positive", config_key="api_timeout")

    if config.exchange_timeout <= 0:
        raise ConfigurationError("exchange_timeout must be positive", config_key="exchange_timeout")

    if config.refresh_margin < 0:
        raise ConfigurationError("refresh_margin must be non-negative", config_key="refresh_margin")

    if config.stream_chunk_size is not None and config.stream_chunk_size <= 0:
        raise ConfigurationError("stream_chunk_size must be positive", config_key="stream_chunk_size")


def _setup_logging(config: ProxyAIConfig):
    """Setup package logging based on configuration."""
    configure_logging(
        level=str(config.log_level).upper(),
        format_type=config.log_format,
        log_to_file=config.log_to_file,
        log_file=config.log_file,
    )


class configure_session:
    """
    Context manager for temporary configuration changes.

    Example:
        >>> import proxyai
        >>> with proxyai.configure_session(api_timeout=5):
        ...     client = proxyai.APIClient(partial_key="v2|abc|123")
        >>> # Configuration automatically restored here
    """

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.original_values = {}

    def __enter__(self) -> ProxyAIConfig:
        """Enter the context and apply temporary configuration."""
        config = get_config()

        for key in self.kwargs:
            if not hasattr(config, key):
                raise ConfigurationError(f"Unknown configuration option: {key}", config_key=key)
            self.original_values[key] = getattr(config, key)

        for key, value in self.kwargs.items():
            setattr(config, key, value)

        try:
            _validate_config(config)
        except ConfigurationError:
            self._restore(config)
            raise

        return config

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Exit the context and restore original configuration."""
        self._restore(get_config())

    def _restore(self, config: ProxyAIConfig):
        for key, value in self.original_values.items():
            setattr(config, key, value)
        self.original_values = {}
