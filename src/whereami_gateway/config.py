"""
Configuration for the whereami gateway client.

Hierarchical loading, lowest to highest priority:
1. ``GatewayConfig.DEFAULTS``
2. JSON config file (keys starting with ``_`` are treated as comments)
3. Environment variables ``WHEREAMI_<KEY>``
4. Keyword overrides passed to the constructor

Usage:
    from whereami_gateway.config import GatewayConfig

    config = GatewayConfig(api_port=43098)
    offline = GatewayConfig.offline_config()
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)

ENV_PREFIX = "WHEREAMI_"
ENV_CONFIG_FILE = "WHEREAMI_CONFIG"


class GatewayConfig:
    """Client configuration: backend port, timeouts and a few client knobs.

    A negative ``api_port`` puts the client in offline mode: every operation
    short-circuits into a synthesized success and no network I/O happens.
    """

    DEFAULTS: Dict[str, Any] = {
        'api_port': 43098,
        'host': '127.0.0.1',
        'request_timeout_ms': 8000,
        'import_timeout_ms': 60000,
        'recent_limit': 10,
        'debug_mode': False,
    }

    def __init__(self, config_file: Optional[Union[str, Path]] = None, **overrides: Any):
        self._config: Dict[str, Any] = {}
        self._config_file = config_file or os.getenv(ENV_CONFIG_FILE)
        self._overrides = overrides
        self._load_configuration()

    @classmethod
    def offline_config(cls, **overrides: Any) -> "GatewayConfig":
        overrides['api_port'] = -1
        return cls(**overrides)

    def _load_configuration(self) -> None:
        self._config = dict(self.DEFAULTS)
        self._load_from_json_config()
        self._load_from_environment()
        self._apply_overrides()
        self._validate_config()
        if self.debug_mode:
            logger.info("gateway configuration loaded: %s", self._config)

    def _load_from_json_config(self) -> None:
        if not self._config_file:
            return
        config_path = Path(self._config_file)
        if not config_path.exists():
            logger.debug("No config file at %s", config_path)
            return
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                json_config = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Failed to load JSON config from %s: %s", config_path, e)
            return
        if not isinstance(json_config, dict):
            logger.warning("Ignoring JSON config %s: top level is not an object", config_path)
            return
        self._config.update({k: v for k, v in json_config.items() if not k.startswith('_')})
        logger.debug("Loaded JSON config from %s", config_path)

    def _load_from_environment(self) -> None:
        for key in list(self._config.keys()):
            env_key = f"{ENV_PREFIX}{key.upper()}"
            env_value = os.getenv(env_key)
            if env_value is not None:
                self._config[key] = self._convert_env_value(env_value, self.DEFAULTS.get(key))
                logger.debug("Loaded environment variable: %s = %s", env_key, self._config[key])

    def _apply_overrides(self) -> None:
        for key, value in self._overrides.items():
            if key not in self.DEFAULTS:
                raise TypeError(f"Unknown configuration key: {key}")
            self._config[key] = value

    def _convert_env_value(self, env_value: str, default_value: Any) -> Any:
        if isinstance(default_value, bool):
            return env_value.lower() in ('true', '1', 'yes', 'on')
        if isinstance(default_value, int):
            try:
                return int(env_value)
            except ValueError:
                logger.warning("Invalid integer value in environment: %s", env_value)
                return default_value
        return env_value

    def _validate_config(self) -> None:
        port = self._config.get('api_port')
        if isinstance(port, bool) or not isinstance(port, int) or port > 65535:
            logger.warning("Invalid api_port %r, using %s", port, self.DEFAULTS['api_port'])
            self._config['api_port'] = self.DEFAULTS['api_port']

        for key in ('request_timeout_ms', 'import_timeout_ms', 'recent_limit'):
            value = self._config.get(key)
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                logger.warning("Invalid %s %r, using %s", key, value, self.DEFAULTS[key])
                self._config[key] = self.DEFAULTS[key]

    def get(self, key: str, default: Any = None) -> Any:
        return self._config.get(key, default)

    def reload(self) -> None:
        self._load_configuration()

    @property
    def port(self) -> int:
        return self._config['api_port']

    @property
    def host(self) -> str:
        return self._config.get('host', '127.0.0.1')

    @property
    def request_timeout_ms(self) -> int:
        return self._config['request_timeout_ms']

    @property
    def import_timeout_ms(self) -> int:
        return self._config['import_timeout_ms']

    @property
    def recent_limit(self) -> int:
        return self._config['recent_limit']

    @property
    def debug_mode(self) -> bool:
        return bool(self._config.get('debug_mode', False))

    @property
    def offline(self) -> bool:
        return self.port < 0

    @property
    def base_url(self) -> Optional[str]:
        if self.offline:
            return None
        return f"http://{self.host}:{self.port}"

    def __repr__(self) -> str:
        mode = "offline" if self.offline else self.base_url
        return f"<{self.__class__.__name__}({mode}): timeout={self.request_timeout_ms}ms>"


__all__ = ["GatewayConfig", "ENV_PREFIX", "ENV_CONFIG_FILE"]
