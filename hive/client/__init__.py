"""
Poll client for applications participating in the relay.

This package contains:
- RelayClient: requests-based transport for the relay HTTP surface
- HostAdapter: the interface a host application implements
- ClientContext / ClientState: explicit per-instance state
- PollClient: the adaptive polling loop
"""

from hive.client.context import ClientContext, ClientState
from hive.client.host import HostAdapter
from hive.client.poll_client import PollClient
from hive.client.transport import RelayClient

__all__ = ["ClientContext", "ClientState", "HostAdapter", "PollClient", "RelayClient"]
