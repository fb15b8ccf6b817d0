"""sitesync - rebuild and publish a static site when its default branch changes."""

__version__ = "0.1.0"

from sitesync.core.config import Settings, load_settings

__all__ = ["Settings", "load_settings", "__version__"]
