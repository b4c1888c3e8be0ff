"""In-process broadcast bus between producers and consumers."""

from __future__ import annotations

from .channel import DEFAULT_CAPACITY, EventBus, Subscription
from .errors import (
    BusClosedError,
    BusError,
    EmptyError,
    LaggedError,
    NoSubscribersError,
)

__all__ = [
    "DEFAULT_CAPACITY",
    "BusClosedError",
    "BusError",
    "EmptyError",
    "EventBus",
    "LaggedError",
    "NoSubscribersError",
    "Subscription",
]
