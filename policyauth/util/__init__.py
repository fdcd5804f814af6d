"""
Utility package providing configuration helpers for policyauth.
"""

from .config import (
    ENV_PREFIX, env_bool, env_int, env_name, load_config_file,
    normalize_key, validate_config
)

__all__ = [
    'ENV_PREFIX', 'env_bool', 'env_int', 'env_name', 'load_config_file',
    'normalize_key', 'validate_config'
]
