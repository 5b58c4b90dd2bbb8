# Configuration
from .settings import Config, TestConfig, get_config

__all__ = [
    "Config",
    "TestConfig",
    "get_config",
]
