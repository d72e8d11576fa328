"""
Settings loading.

Settings come from a YAML file merged over built-in defaults, then from the
environment (a .env file is honoured through python-dotenv).
"""

import copy
import logging
import os
from typing import Any, Dict, Mapping, Optional

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS: Dict[str, Any] = {
    'app': {'name': 'pvemon', 'debug': False},
    'storage': {
        'data_dir': 'data',
        'retention_days': 7,
        'alert_history_limit': 1000,
    },
    'collection': {
        'check_interval': '*/5 * * * *',
        'initial_delay_seconds': 5,
        'initial_timeout_seconds': 30,
        'request_timeout_seconds': 15,
    },
    'alerts': {
        'cooldown_minutes': 15,
        'discord_webhook_url': '',
    },
    'web': {'host': '0.0.0.0', 'port': 5000},
    'nodes': [],
}


def _merge(defaults: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(defaults)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def apply_env_overrides(settings: Dict[str, Any],
                        environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Environment variables win over the settings file."""
    env = os.environ if environ is None else environ

    if env.get('ALERT_CHECK_INTERVAL'):
        settings['collection']['check_interval'] = env['ALERT_CHECK_INTERVAL']
    if env.get('DISCORD_WEBHOOK_URL'):
        settings['alerts']['discord_webhook_url'] = env['DISCORD_WEBHOOK_URL']
    if env.get('DATA_DIR'):
        settings['storage']['data_dir'] = env['DATA_DIR']

    return settings


def load_settings(config_path: str = 'config/settings.yaml',
                  environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Load application settings from YAML file and the environment."""
    if environ is None:
        load_dotenv()

    settings = copy.deepcopy(DEFAULT_SETTINGS)

    if not os.path.exists(config_path):
        logger.warning(f"Settings file not found: {config_path}, using defaults")
    else:
        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
            if isinstance(data, dict):
                settings = _merge(DEFAULT_SETTINGS, data)
        except (IOError, yaml.YAMLError) as e:
            logger.error(f"Failed to load settings: {e}")

    return apply_env_overrides(settings, environ)
