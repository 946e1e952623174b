"""
Build settings and their optional YAML overrides.
"""

from .settings import BuildSettings, load_settings, CONFIG_FILENAME

__all__ = ["BuildSettings", "load_settings", "CONFIG_FILENAME"]
