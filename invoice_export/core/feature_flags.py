"""Feature flags system."""

import os

from pydantic import BaseModel


class FeatureFlags(BaseModel):
    """Feature flags configuration."""
    
    # Export surface
    enable_exports: bool = True
    
    # Artifact features
    enable_charts: bool = True
    enable_compression: bool = True
    
    @classmethod
    def from_env(cls) -> "FeatureFlags":
        """Create feature flags from environment variables."""
        return cls(
            enable_exports=_get_bool_env("ENABLE_EXPORTS", True),
            enable_charts=_get_bool_env("ENABLE_CHARTS", True),
            enable_compression=_get_bool_env("ENABLE_COMPRESSION", True),
        )


def _get_bool_env(key: str, default: bool) -> bool:
    """Get boolean environment variable."""
    value = os.getenv(key, str(default)).lower()
    return value in ("true", "1", "yes", "on")


# Global feature flags instance
feature_flags = FeatureFlags.from_env()


def is_enabled(flag_name: str) -> bool:
    """Check if a feature flag is enabled."""
    return getattr(feature_flags, flag_name, False)
