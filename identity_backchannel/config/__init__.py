"""Configuration module for the backchannel client."""
from .settings import BackchannelConfig, load_settings

__all__ = ["BackchannelConfig", "load_settings"]
