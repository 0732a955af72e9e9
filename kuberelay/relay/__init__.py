"""Relay queue decoupling informer callbacks from event processing."""

from kuberelay.relay.queue import ChangeHandler, CompositeHandler, RelayQueue

__all__ = ["ChangeHandler", "CompositeHandler", "RelayQueue"]
