"""Configuration and logging setup."""

from .logging import configure_from_settings, configure_logging, log_error
from .settings import EngineSettings, StoreBackend, get_settings

__all__ = [
    'configure_from_settings',
    'configure_logging',
    'log_error',
    'EngineSettings',
    'StoreBackend',
    'get_settings',
]
