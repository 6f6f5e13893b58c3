from __future__ import annotations


class TagboxError(Exception):
    pass


class TagboxConfigurationError(TagboxError):
    """A declared tagbox cannot be used: failed construction or missing override."""

    def __init__(self, name: str, message: str):
        super().__init__(f"{name}: {message}")
        self.name = name


class TagboxNotInstalledError(TagboxConfigurationError):
    pass


class RunNotImplementedError(TagboxConfigurationError):
    pass
