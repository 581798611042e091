"""Configuration management for the voting engine."""

from .config import (SigningConfig, SystemConfig, ZKConfig, apply_env_overrides,
                     load_config, save_config)

__all__ = ['SystemConfig', 'ZKConfig', 'SigningConfig', 'apply_env_overrides',
           'load_config', 'save_config']
