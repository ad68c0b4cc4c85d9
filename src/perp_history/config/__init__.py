"""Configuration models and loader."""

from .settings import BackfillSettings, load_config

__all__ = ["BackfillSettings", "load_config"]
