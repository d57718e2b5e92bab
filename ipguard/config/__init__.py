from .core import (
    DatabaseSettings,
    GuardSettings,
    NotificationSettings,
    ServerSettings,
    Settings,
    TierSettings,
    last_yaml_path,
    load_settings,
    sanitize_dict,
)

__all__ = [
    "DatabaseSettings",
    "GuardSettings",
    "NotificationSettings",
    "ServerSettings",
    "Settings",
    "TierSettings",
    "last_yaml_path",
    "load_settings",
    "sanitize_dict",
]
