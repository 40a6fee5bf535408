"""
Error kinds raised while loading, projecting and serving the auth portal config
"""


class ConfigError(Exception):
    """Base class for every configuration bridge error."""


class ConfigAbsent(ConfigError):
    """No source path was supplied, the file is missing at startup, or nothing was loaded yet."""


class ConfigUnreadable(ConfigError):
    """The source file could not be read."""


class ConfigMalformed(ConfigError):
    """The source file is not valid JSON or does not match the document schema."""


class UnsupportedCredential(ConfigError):
    """A user's password entry cannot be served (wrong algorithm or empty hash)."""


class ListenerMisconfigured(ConfigError):
    """Neither the LDAP nor the LDAPS listener is enabled."""


class WatchLost(ConfigError):
    """The filesystem watch on the source file could not be (re-)established."""
