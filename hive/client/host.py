"""
Host-application collaborator.

The poll client drives the host through this interface and never
renders anything itself. Implementations must make every method
idempotent: delivery is at-least-once, so the same call can arrive
more than once.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional


class HostAdapter(ABC):

    @abstractmethod
    def get_local_selection(self) -> Optional[dict]:
        """Current selection as a JSON-serializable dict with a ``ref`` key, or None."""

    @abstractmethod
    def apply_remote_value(self, ref: str, value: Any) -> None:
        """Set the object at ``ref`` to ``value``."""

    @abstractmethod
    def highlight_remote(self, ref: str) -> None:
        """Visually mark the object the other application selected."""

    @abstractmethod
    def protect_local_ref(self, ref: str) -> None:
        """Mark ``ref`` as paired so local edits do not silently diverge."""

    def notify_error(self, message: str) -> None:
        """Surface a terminal error to the operator. Default: no UI."""
