"""In-process domain events published by the ledgers."""
import logging
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from typing import Awaitable, Callable, Dict, List, Type

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubscriptionActivated:
    """A subscription moved from pending to active. Published exactly once per reference."""
    subscription_id: str
    owner_id: str
    amount: Decimal
    reference: str


Handler = Callable[[object], Awaitable[None]]


class EventBus:
    """Dispatches events to async handlers, in subscription order.

    Handlers run inline in the publisher's unit of work, so anything they write
    commits or rolls back together with the change that produced the event.
    A failing handler propagates to the publisher.
    """

    def __init__(self):
        self._handlers: Dict[Type, List[Handler]] = defaultdict(list)
        self.published: List[object] = []

    def subscribe(self, event_type: Type, handler: Handler) -> None:
        self._handlers[event_type].append(handler)

    async def publish(self, event: object) -> None:
        self.published.append(event)
        handlers = self._handlers.get(type(event), [])
        logger.info(f"Publishing {type(event).__name__} to {len(handlers)} handler(s)")
        for handler in handlers:
            await handler(event)
