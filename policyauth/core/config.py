"""
Configuration module for the policyauth engine.
"""

from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Optional

from ..util.config import env_bool, env_int, load_config_file, validate_config


_SCHEMA: Dict[str, Dict[str, Any]] = {
    'cache_enabled': {'type': bool},
    'cache_size': {'type': int, 'min': 1},
    'strict_analysis': {'type': bool},
    'audit_enabled': {'type': bool},
    'metrics_enabled': {'type': bool},
    'log_decisions': {'type': bool},
    'audit_max_entries': {'type': int, 'min': 1},
}


@dataclass
class EngineConfig:
    """Configuration for the authorization engine"""
    cache_enabled: bool = False
    cache_size: int = 1024
    # Escalate always-denying and unreachable policies to InvalidConfigurationError
    strict_analysis: bool = False
    audit_enabled: bool = False
    audit_max_entries: int = 1000
    metrics_enabled: bool = False
    log_decisions: bool = False

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Create configuration from POLICYAUTH_* environment variables"""
        defaults = cls()
        values = {}
        for f in fields(cls):
            default = getattr(defaults, f.name)
            read = env_bool if isinstance(default, bool) else env_int
            values[f.name] = read(f.name, default)
        return cls(**values)

    @classmethod
    def from_file(cls, file_path: str, overrides: Optional[Dict[str, Any]] = None) -> "EngineConfig":
        """Create configuration from a JSON or YAML file"""
        data = load_config_file(file_path)
        data.update(overrides or {})
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown configuration keys: {', '.join(unknown)}")
        config = cls(**data)
        config.validate()
        return config

    def validate(self) -> bool:
        """Validate the configuration"""
        errors = validate_config(self.to_dict(), _SCHEMA)
        if errors:
            raise ValueError("; ".join(errors))
        return True

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return asdict(self)
