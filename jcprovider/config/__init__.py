"""Configuration module for the JumpCloud provider."""
from .settings import ProviderConfig, load_settings

__all__ = ["ProviderConfig", "load_settings"]
