"""
Configuration helpers behind EngineConfig: typed POLICYAUTH_* environment
lookups, JSON/YAML file loading and schema checks.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List

import yaml


logger = logging.getLogger(__name__)

ENV_PREFIX = "POLICYAUTH_"

_TRUE_STRINGS = ('true', '1', 'yes', 'on')


def env_name(key: str) -> str:
    """Environment variable holding an engine setting, e.g. POLICYAUTH_CACHE_SIZE."""
    return f"{ENV_PREFIX}{normalize_key(key).upper()}"


def env_bool(key: str, default: bool) -> bool:
    """Read a flag; unset means ``default``."""
    value = os.environ.get(env_name(key))
    if value is None:
        return default
    return value.strip().lower() in _TRUE_STRINGS


def env_int(key: str, default: int) -> int:
    """Read an integer; unset or malformed means ``default``."""
    value = os.environ.get(env_name(key))
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Ignoring {env_name(key)}={value!r}: not an integer")
        return default


def normalize_key(key: str) -> str:
    """``cache-size`` and ``CACHE_SIZE`` both name the ``cache_size`` setting."""
    return key.strip().lower().replace('-', '_')


def load_config_file(file_path: str) -> Dict[str, Any]:
    """
    Load engine settings from a JSON or YAML file.

    Keys are normalized; an empty file yields no settings.

    Raises:
        FileNotFoundError: if the file does not exist
        ValueError: on an unknown extension or a document that is not a mapping
    """
    if not os.path.exists(file_path):
        raise FileNotFoundError(f"Configuration file not found: {file_path}")

    file_ext = Path(file_path).suffix.lower()

    with open(file_path, 'r', encoding='utf-8') as f:
        if file_ext == '.json':
            data = json.load(f)
        elif file_ext in ['.yaml', '.yml']:
            data = yaml.safe_load(f)
        else:
            raise ValueError(f"Unsupported configuration file format: {file_ext}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file {file_path} must contain a mapping")
    return {normalize_key(k): v for k, v in data.items()}


def validate_config(config: Dict[str, Any],
                    schema: Dict[str, Dict[str, Any]]) -> List[str]:
    """
    Check settings against a schema of ``{'type': ..., 'min': ..., 'max': ...,
    'required': ...}`` rules and return every violation.
    """
    errors = []

    for name, rules in schema.items():
        if name not in config:
            if rules.get('required', False):
                errors.append(f"Missing required field: {name}")
            continue

        value = config[name]
        expected_type = rules.get('type')
        if expected_type and not isinstance(value, expected_type):
            errors.append(f"Field {name} must be of type {expected_type.__name__}")
            continue

        # bool is an int subclass; flags have no range
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            continue
        if rules.get('min') is not None and value < rules['min']:
            errors.append(f"Field {name} must be >= {rules['min']}")
        if rules.get('max') is not None and value > rules['max']:
            errors.append(f"Field {name} must be <= {rules['max']}")

    return errors
