"""Bounded, cancellable payment status polling.

Polling is a convenience for the subscriber; the gateway callback stays the
source of truth. A poller stops on success, on a terminal failure, when its
time budget runs out, or when cancelled. Every attempt is read-only at the
gateway, so cancelling at any point has no side effects.
"""
import asyncio
import logging
from enum import Enum
from typing import Callable, Dict, Optional

from patronly.config import settings
from patronly.database import AsyncSessionLocal
from patronly.errors import GatewayRejected, GatewayUnavailable
from patronly.services.gateways import get_gateway
from patronly.services.orchestrator import (
    ReconcileOutcome, ReconciliationOrchestrator, TERMINAL_OUTCOMES,
)

logger = logging.getLogger(__name__)


class StopReason(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


_SUCCESS_OUTCOMES = {ReconcileOutcome.ACTIVATED, ReconcileOutcome.ALREADY_ACTIVE}


class PaymentPoller:
    """Polls one payment reference every ``interval`` seconds for at most ``timeout`` seconds."""

    def __init__(
        self,
        reference: str,
        session_factory: Callable = AsyncSessionLocal,
        gateway_factory: Callable = get_gateway,
        interval: float | None = None,
        timeout: float | None = None,
    ):
        self.reference = reference
        self.session_factory = session_factory
        self.gateway_factory = gateway_factory
        self.interval = settings.POLL_INTERVAL_SECONDS if interval is None else interval
        self.timeout = settings.POLL_TIMEOUT_SECONDS if timeout is None else timeout
        self.attempts = 0
        self.stop_reason: Optional[StopReason] = None
        self.task: Optional[asyncio.Task] = None

    def start(self) -> asyncio.Task:
        self.task = asyncio.create_task(self.run(), name=f"poll:{self.reference}")
        return self.task

    def cancel(self) -> bool:
        if self.task is None or self.task.done():
            return False
        return self.task.cancel()

    async def wait(self) -> Optional[StopReason]:
        """Wait for the polling task to finish and return why it stopped."""
        if self.task is not None:
            try:
                await self.task
            except asyncio.CancelledError:
                self.stop_reason = StopReason.CANCELLED
        return self.stop_reason

    async def _attempt(self) -> ReconcileOutcome:
        self.attempts += 1
        async with self.session_factory() as db:
            orchestrator = ReconciliationOrchestrator(db, self.gateway_factory())
            result = await orchestrator.poll_once(self.reference)
        return result.outcome

    async def run(self) -> StopReason:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        logger.info(f"Polling {self.reference} every {self.interval}s for up to {self.timeout}s")

        try:
            while True:
                try:
                    outcome = await self._attempt()
                except GatewayUnavailable:
                    logger.warning(f"Gateway unavailable while polling {self.reference}, will retry")
                    outcome = ReconcileOutcome.PENDING
                except GatewayRejected as e:
                    logger.error(f"Gateway rejected verification of {self.reference}: {e.detail}")
                    outcome = ReconcileOutcome.FAILED

                if outcome in TERMINAL_OUTCOMES:
                    self.stop_reason = StopReason.SUCCEEDED if outcome in _SUCCESS_OUTCOMES else StopReason.FAILED
                    break

                if loop.time() + self.interval > deadline:
                    self.stop_reason = StopReason.TIMED_OUT
                    break

                await asyncio.sleep(self.interval)
        except asyncio.CancelledError:
            self.stop_reason = StopReason.CANCELLED
            logger.info(f"Polling {self.reference} cancelled after {self.attempts} attempt(s)")
            raise

        logger.info(f"Polling {self.reference} stopped: {self.stop_reason.value} after {self.attempts} attempt(s)")
        return self.stop_reason


class PollerRegistry:
    """Tracks running pollers by reference so they can be cancelled or drained."""

    def __init__(self):
        self._pollers: Dict[str, PaymentPoller] = {}

    def __contains__(self, reference: str) -> bool:
        return reference in self._pollers

    def __len__(self) -> int:
        return len(self._pollers)

    def start(self, reference: str, **kwargs) -> PaymentPoller:
        """Start polling ``reference`` unless a poller for it is already running."""
        existing = self._pollers.get(reference)
        if existing is not None and existing.task is not None and not existing.task.done():
            return existing

        poller = PaymentPoller(reference, **kwargs)
        task = poller.start()
        self._pollers[reference] = poller
        task.add_done_callback(lambda _t, ref=reference, p=poller: self._finished(ref, p))
        return poller

    def _finished(self, reference: str, poller: PaymentPoller) -> None:
        if self._pollers.get(reference) is poller:
            del self._pollers[reference]
        task = poller.task
        if task is not None and not task.cancelled() and task.exception() is not None:
            logger.error(f"Polling {reference} crashed: {task.exception()!r}")

    def cancel(self, reference: str) -> bool:
        poller = self._pollers.get(reference)
        if poller is None:
            return False
        return poller.cancel()

    async def shutdown(self) -> None:
        pollers = list(self._pollers.values())
        for poller in pollers:
            poller.cancel()
        for poller in pollers:
            try:
                await poller.wait()
            except Exception as e:
                logger.error(f"Polling {poller.reference} crashed before shutdown: {e!r}")
        self._pollers.clear()
