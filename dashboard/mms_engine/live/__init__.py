"""
Live queries and activity gating.

This module provides:
- CollectionSubscription: cached collection with push/pull refresh
- SubscriptionManager: members and events subscriptions together
- ActivityMonitor: observer registry emitting DISCONNECT/RECONNECT after
  prolonged inactivity

Invariants:
    - One push subscription per collection at most
    - Subscription failures are reported through `error`, not raised
"""

from .activity import (
    ActivityMonitor,
    ActivityObserver,
    ActivitySignal,
    ObserverHandle,
)
from .subscriptions import (
    CollectionSubscription,
    SubscriptionManager,
    SubscriptionState,
)

__all__ = [
    "ActivityMonitor",
    "ActivityObserver",
    "ActivitySignal",
    "ObserverHandle",
    "CollectionSubscription",
    "SubscriptionManager",
    "SubscriptionState",
]
