"""
Per-instance client state.

Every poll client owns exactly one ClientContext; nothing is shared
between instances through module globals.
"""

import enum
from collections import deque
from dataclasses import dataclass, field
from typing import Optional


class ClientState(str, enum.Enum):
    """Lifecycle of a poll client."""
    DISCONNECTED = "disconnected"
    REGISTERING = "registering"
    POLLING = "polling"
    BACKOFF = "backoff"
    ERROR = "error"  # terminal


@dataclass
class ClientContext:
    audience: str
    app_id: Optional[str] = None
    state: ClientState = ClientState.DISCONNECTED
    poll_interval: float = 1.0
    last_update_timestamp: int = 0  # epoch ms of the newest update applied
    consecutive_failures: int = 0
    last_error: Optional[str] = None
    auto_update: bool = True

    # connection id -> connection dict, as last reported by the relay
    connections: dict = field(default_factory=dict)

    # Ids applied recently; redelivered updates are skipped
    applied_ids: deque = field(default_factory=lambda: deque(maxlen=1000))

    def has_applied(self, update_id: str) -> bool:
        return update_id in self.applied_ids

    def remember(self, update_id: Optional[str]) -> None:
        if update_id and update_id not in self.applied_ids:
            self.applied_ids.append(update_id)
