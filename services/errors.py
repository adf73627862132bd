# services/errors.py
# Custom lightweight errors for the routes


class BadRequest(Exception): ...
class NotFound(Exception): ...
class Conflict(Exception): ...


class ConfigurationError(RuntimeError):
    """Missing credentials or template mappings; raised at construction time."""


class InvalidImageType(ValueError):
    """An image type that is unknown, or not allowed for the requested operation."""
