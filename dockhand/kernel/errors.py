"""
Failure taxonomy surfaced at the registry boundary.

Lower layers raise the most specific kind they can; the registries let these
through unchanged and wrap anything else in CreationFailed.
"""
from typing import Optional


class DockhandError(Exception):
    """Base class for every resolution failure."""

    def __init__(self, identifier: str, reason: str = ""):
        self.identifier = identifier
        self.reason = reason
        super().__init__(self._format())

    def _format(self) -> str:
        return f"{self.identifier}: {self.reason}" if self.reason else self.identifier


class UnrecognizedIdentifier(DockhandError):
    def _format(self) -> str:
        return f"Unrecognized identifier '{self.identifier}'" + (f": {self.reason}" if self.reason else "")


class FetchFailed(DockhandError):
    def _format(self) -> str:
        return f"Failed to fetch '{self.identifier}': {self.reason}"


class InvalidManifest(DockhandError):
    def __init__(self, identifier: str, reason: str = "", manifest_path: Optional[str] = None):
        self.manifest_path = manifest_path
        super().__init__(identifier, reason)

    def _format(self) -> str:
        return f"Invalid manifest for '{self.identifier}': {self.reason}"


class CreationFailed(DockhandError):
    def _format(self) -> str:
        return f"Failed to create '{self.identifier}': {self.reason}"


class NotFound(DockhandError):
    def _format(self) -> str:
        return f"'{self.identifier}' not found in registry"
