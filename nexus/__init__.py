"""Top-level package for nexus."""

from . import backup, config, models, persistence, storage, stores

__all__ = ["backup", "config", "models", "persistence", "storage", "stores"]
