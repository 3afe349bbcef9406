"""Configuration: TOML profiles and logging setup."""

from snarkels.config.settings import Settings, configure_logging, get_settings

__all__ = ["Settings", "configure_logging", "get_settings"]
