from fleetmod.core.config.manager import ConfigManager

__all__ = ["ConfigManager"]
