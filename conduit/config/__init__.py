from conduit.config.settings import ConduitSettings, settings

__all__ = ["ConduitSettings", "settings"]
