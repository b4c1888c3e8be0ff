"""Result summaries returned by producers when their upstream feed ends."""

from __future__ import annotations

import dataclasses


@dataclasses.dataclass(slots=True)
class ProducerResult:
    """Counters describing one producer run.

    Attributes
    ----------
    producer
        Name of the producer, matching its supervised task name.
    published
        Events delivered to at least one subscription.
    undelivered
        Events discarded because the bus had no subscribers.
    dropped
        Upstream items that never became events (headers without a number,
        transactions that failed to resolve).

    """

    producer: str
    published: int = 0
    undelivered: int = 0
    dropped: int = 0
