from .config import Settings, get_settings
from .docker import ComposeClient, Pipes, sanitize_name

__all__ = ["Settings", "get_settings", "ComposeClient", "Pipes", "sanitize_name"]
