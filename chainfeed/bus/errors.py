"""Delivery outcomes signalled by the event bus."""

from __future__ import annotations


class BusError(Exception):
    """Base class for event bus signals."""


class NoSubscribersError(BusError):
    """Raised by ``send`` when no subscription could receive the message.

    The message is discarded; it is not retained for later subscribers.
    """

    def __init__(self) -> None:
        """Attach a fixed message."""
        super().__init__("no active subscribers")


class LaggedError(BusError):
    """Raised by ``recv`` when a subscription fell behind the retained window.

    Attributes
    ----------
    skipped
        Number of messages the subscription will never see.

    """

    def __init__(self, skipped: int) -> None:
        """Record how many messages were overwritten before being read."""
        self.skipped = skipped
        super().__init__(f"subscription lagged by {skipped} messages")


class BusClosedError(BusError):
    """Raised when the bus is closed and no retained message remains."""

    def __init__(self) -> None:
        """Attach a fixed message."""
        super().__init__("event bus is closed")


class EmptyError(BusError):
    """Raised by ``try_recv`` when no message is waiting."""

    def __init__(self) -> None:
        """Attach a fixed message."""
        super().__init__("no message available")
