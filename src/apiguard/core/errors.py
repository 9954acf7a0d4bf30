from __future__ import annotations


class ApiGuardError(Exception):
    """Base class for all apiguard errors."""


class ConfigurationError(ApiGuardError):
    """Invalid or incomplete configuration, raised at construction time."""


class BackendError(ApiGuardError):
    """The shared store could not be reached or answered with an error."""


class NotBlockedError(ApiGuardError):
    def __init__(self, identity: str) -> None:
        super().__init__(f"{identity} is not blocked")
        self.identity = identity
