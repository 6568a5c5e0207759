"""Configuration exceptions."""

class ConfigLoadError(Exception):
    """Raised when a configuration file cannot be read or parsed."""
    pass

class ConfigValidationError(Exception):
    """Raised when a configuration value violates its constraints."""
    pass
