"""Scheduler service for subscription housekeeping jobs using APScheduler."""
import logging
import multiprocessing
import os
from datetime import datetime, timedelta
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
import redis.asyncio as redis

from patronly.config import settings
from patronly.database import AsyncSessionLocal
from patronly.errors import GatewayError
from patronly.services.earnings_ledger import build_event_bus
from patronly.services.gateways import get_gateway
from patronly.services.orchestrator import ReconcileOutcome, ReconciliationOrchestrator
from patronly.services.subscription_ledger import SubscriptionLedger

logger = logging.getLogger(__name__)

# Initialize scheduler
scheduler = AsyncIOScheduler()

# Redis client for distributed locking
redis_client = None


async def get_redis_client():
    """Get or create Redis client."""
    global redis_client
    if redis_client is None:
        redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return redis_client


async def acquire_lock(lock_name: str, timeout: int = 300) -> bool:
    """
    Acquire a distributed lock using Redis.

    Args:
        lock_name: Name of the lock
        timeout: Lock timeout in seconds

    Returns:
        True if lock acquired, False otherwise
    """
    try:
        client = await get_redis_client()
        # Use SET with NX (only set if not exists) and EX (expiry)
        result = await client.set(f"patronly:lock:{lock_name}", "1", nx=True, ex=timeout)
        return result is not None
    except Exception as e:
        logger.error(f"Failed to acquire lock {lock_name}: {e}")
        return False


async def release_lock(lock_name: str):
    """Release a distributed lock."""
    try:
        client = await get_redis_client()
        await client.delete(f"patronly:lock:{lock_name}")
    except Exception as e:
        logger.error(f"Failed to release lock {lock_name}: {e}")


async def sweep_expired_subscriptions(session_factory=AsyncSessionLocal, now: datetime | None = None) -> int:
    """Flip active subscriptions past their expiry to expired. Returns rows updated."""
    async with session_factory() as session:
        ledger = SubscriptionLedger(session, build_event_bus(session))
        expired = await ledger.expire_lapsed(now)
        await session.commit()
    logger.info(f"Expired {expired} lapsed subscription(s)")
    return expired


async def recover_pending(
    session_factory=AsyncSessionLocal,
    gateway_factory=get_gateway,
    now: datetime | None = None,
) -> dict:
    """Re-verify pending subscriptions whose callback never arrived.

    Only subscriptions older than PENDING_RECOVERY_MINUTES and younger than
    PENDING_RECOVERY_MAX_AGE_HOURS are checked. Pending rows are never deleted.
    """
    now = now or datetime.utcnow()
    older_than = now - timedelta(minutes=settings.PENDING_RECOVERY_MINUTES)
    newer_than = now - timedelta(hours=settings.PENDING_RECOVERY_MAX_AGE_HOURS)

    async with session_factory() as session:
        ledger = SubscriptionLedger(session, build_event_bus(session))
        references = await ledger.stale_pending(older_than, newer_than)

    counts = {outcome.value: 0 for outcome in ReconcileOutcome}
    counts["errors"] = 0
    for reference in references:
        async with session_factory() as session:
            orchestrator = ReconciliationOrchestrator(session, gateway_factory())
            try:
                result = await orchestrator.poll_once(reference)
            except GatewayError as e:
                logger.warning(f"Recovery check for {reference} failed: {type(e).__name__}")
                counts["errors"] += 1
                continue
        counts[result.outcome.value] += 1

    logger.info(f"Recovery checked {len(references)} pending subscription(s): {counts}")
    return counts


async def expire_lapsed_subscriptions():
    """Scheduled job wrapper for the expiry sweep."""
    lock_name = "expire_lapsed_subscriptions"

    if not await acquire_lock(lock_name):
        logger.info(f"Skipping {lock_name} - another instance is running")
        return

    try:
        logger.info("Running expire_lapsed_subscriptions job")
        await sweep_expired_subscriptions()
    except Exception as e:
        logger.error(f"Error in expire_lapsed_subscriptions: {e}")
    finally:
        await release_lock(lock_name)


async def recover_pending_subscriptions():
    """Scheduled job wrapper for pending subscription recovery."""
    lock_name = "recover_pending_subscriptions"

    if not await acquire_lock(lock_name):
        logger.info(f"Skipping {lock_name} - another instance is running")
        return

    try:
        logger.info("Running recover_pending_subscriptions job")
        await recover_pending()
    except Exception as e:
        logger.error(f"Error in recover_pending_subscriptions: {e}")
    finally:
        await release_lock(lock_name)


def start_scheduler():
    """Start the APScheduler with all housekeeping jobs."""
    # Only run jobs on the first uvicorn worker process
    current_pid = os.getpid()
    current_process_name = multiprocessing.current_process().name
    if current_process_name not in ("MainProcess", "SpawnProcess-1"):
        logger.info(f"Skipping scheduler on {current_process_name} (PID: {current_pid})")
        return

    if not settings.EXPIRY_SWEEP_ENABLED:
        logger.info("Expiry sweep disabled; only pending recovery will be scheduled")
    else:
        scheduler.add_job(
            expire_lapsed_subscriptions,
            trigger=IntervalTrigger(minutes=settings.EXPIRY_SWEEP_INTERVAL_MINUTES),
            id="expire_lapsed_subscriptions",
            name="Expire lapsed subscriptions",
            replace_existing=True
        )

    scheduler.add_job(
        recover_pending_subscriptions,
        trigger=IntervalTrigger(minutes=max(1, settings.PENDING_RECOVERY_MINUTES)),
        id="recover_pending_subscriptions",
        name="Recover pending subscriptions",
        replace_existing=True
    )

    scheduler.start()
    logger.info(f"Scheduler started on {current_process_name} (PID: {current_pid})")


def stop_scheduler():
    """Stop the scheduler if it is running."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
