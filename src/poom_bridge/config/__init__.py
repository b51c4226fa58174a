"""Runtime configuration models and loaders."""

from poom_bridge.config.loader import YamlConfigLoader
from poom_bridge.config.models import AppConfig, ConfigLoadRequest

__all__ = ["AppConfig", "ConfigLoadRequest", "YamlConfigLoader"]
