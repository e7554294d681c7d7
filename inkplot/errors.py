"""Exception types raised by inkplot."""

from __future__ import annotations


class InkplotError(Exception):
    """Base class for inkplot errors."""


class ConfigError(InkplotError, ValueError):
    """Raised when a settings dictionary cannot be applied."""


class LinkError(InkplotError):
    """Raised by a transport when the controller cannot be reached or written to."""


class StateError(InkplotError):
    """An operation that does not fit the current connection or job state."""


__all__ = ["InkplotError", "ConfigError", "LinkError", "StateError"]
