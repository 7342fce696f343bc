"""Custom exceptions for configuration management."""


class ConfigError(Exception):
    """Raised when OpenInPlace configuration cannot be read, merged, or validated."""
