"""Tests for the withdrawal workflow."""
import asyncio
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from patronly.errors import AlreadyDecided, InsufficientBalance, WithdrawalConflict, WithdrawalNotFound
from patronly.models.earning import Earning
from patronly.models.subscription import Subscription
from patronly.models.withdrawal import Withdrawal
from patronly.services import withdrawals as withdrawals_module
from patronly.services.earnings_ledger import EarningsLedger
from patronly.services.withdrawals import WithdrawalService


async def seed_earning(db, owner_id, amount, status="pending"):
    """Insert an earning (and the subscription it came from) directly."""
    subscription = Subscription(
        subscriber_id=f"fan-{uuid4().hex[:8]}",
        owner_id=owner_id,
        amount_paid=Decimal(amount),
        payment_reference=f"ref-{uuid4().hex}",
        status="active",
    )
    db.add(subscription)
    await db.flush()
    earning = Earning(
        owner_id=owner_id,
        subscription_id=subscription.uuid,
        amount=Decimal(amount),
        gross_amount=Decimal(amount),
        percentage_rate=Decimal("1"),
        status=status,
    )
    db.add(earning)
    await db.commit()
    return earning


@pytest.mark.asyncio
async def test_withdrawal_claims_entire_pending_balance(test_db):
    await seed_earning(test_db, "owner-1", "3000")
    await seed_earning(test_db, "owner-1", "2500")
    await seed_earning(test_db, "owner-2", "9000")
    service = WithdrawalService(test_db)

    withdrawal = await service.request_withdrawal("owner-1")

    assert withdrawal.amount == Decimal("5500")
    assert withdrawal.status == "pending"
    assert withdrawal.owner_id == "owner-1"

    result = await test_db.execute(select(Earning).where(Earning.owner_id == "owner-1"))
    earnings = result.scalars().all()
    assert {e.status for e in earnings} == {"paid"}
    assert {e.withdrawal_id for e in earnings} == {withdrawal.uuid}
    assert all(e.paid_at is not None for e in earnings)

    # Other owners are untouched
    assert await EarningsLedger(test_db).pending_balance("owner-2") == Decimal("9000")


@pytest.mark.asyncio
async def test_second_withdrawal_has_nothing_to_claim(test_db):
    await seed_earning(test_db, "owner-1", "3000")
    await seed_earning(test_db, "owner-1", "2500")
    service = WithdrawalService(test_db)
    await service.request_withdrawal("owner-1")

    with pytest.raises(InsufficientBalance):
        await service.request_withdrawal("owner-1")

    result = await test_db.execute(select(Withdrawal))
    assert len(result.scalars().all()) == 1


@pytest.mark.asyncio
async def test_withdrawal_below_minimum_changes_nothing(test_db):
    await seed_earning(test_db, "owner-1", "4999.99")
    service = WithdrawalService(test_db)

    with pytest.raises(InsufficientBalance):
        await service.request_withdrawal("owner-1")

    assert await EarningsLedger(test_db).pending_balance("owner-1") == Decimal("4999.99")
    result = await test_db.execute(select(Withdrawal))
    assert result.scalars().all() == []


@pytest.mark.asyncio
async def test_withdrawal_sum_matches_linked_earnings(test_db):
    for amount in ("1200.50", "3000", "999.50", "800"):
        await seed_earning(test_db, "owner-1", amount)
    await seed_earning(test_db, "owner-1", "7000", status="paid")

    withdrawal = await WithdrawalService(test_db).request_withdrawal("owner-1")

    result = await test_db.execute(select(Earning.amount).where(Earning.withdrawal_id == withdrawal.uuid))
    linked = result.scalars().all()
    assert len(linked) == 4
    assert sum(linked, Decimal("0")) == withdrawal.amount == Decimal("6000")


class ClaimStealingLedger(EarningsLedger):
    """Simulates another process paying out one of the locked earnings first."""

    async def mark_paid(self, owner_id, earning_ids, withdrawal_id, now=None):
        flipped = await super().mark_paid(owner_id, earning_ids, withdrawal_id, now)
        return flipped - 1


@pytest.mark.asyncio
async def test_conflicting_claim_rolls_back(test_db):
    await seed_earning(test_db, "owner-1", "3000")
    await seed_earning(test_db, "owner-1", "2500")
    service = WithdrawalService(test_db, earnings=ClaimStealingLedger(test_db))

    with pytest.raises(WithdrawalConflict):
        await service.request_withdrawal("owner-1")

    result = await test_db.execute(select(Withdrawal))
    assert result.scalars().all() == []
    result = await test_db.execute(select(Earning.status, Earning.withdrawal_id))
    assert set(result.all()) == {("pending", None)}


@pytest.mark.asyncio
async def test_concurrent_requests_claim_earnings_once(session_factory):
    """Two overlapping requests from one owner: one withdrawal, the other finds nothing left."""
    async with session_factory() as db:
        await seed_earning(db, "owner-1", "3000")
        await seed_earning(db, "owner-1", "2500")

    async def withdraw():
        async with session_factory() as db:
            return await WithdrawalService(db).request_withdrawal("owner-1")

    results = await asyncio.gather(withdraw(), withdraw(), return_exceptions=True)

    withdrawals = [r for r in results if isinstance(r, Withdrawal)]
    refusals = [r for r in results if isinstance(r, InsufficientBalance)]
    assert len(withdrawals) == 1
    assert len(refusals) == 1
    assert withdrawals[0].amount == Decimal("5500")

    async with session_factory() as db:
        stored = (await db.execute(select(Withdrawal))).scalars().all()
        assert len(stored) == 1
        assert sum(w.amount for w in stored) == Decimal("5500")
        result = await db.execute(select(Earning.status, Earning.withdrawal_id))
        assert set(result.all()) == {("paid", withdrawals[0].uuid)}


@pytest.mark.asyncio
async def test_owner_lock_released_after_request(test_db):
    await seed_earning(test_db, "owner-1", "6000")
    service = WithdrawalService(test_db)

    await service.request_withdrawal("owner-1")
    with pytest.raises(InsufficientBalance):
        await service.request_withdrawal("owner-1")

    assert "owner-1" not in withdrawals_module._owner_locks


@pytest.mark.asyncio
async def test_owner_lock_kept_while_requests_wait():
    order = []
    holding = asyncio.Event()

    async def first():
        async with withdrawals_module.owner_lock("owner-1"):
            holding.set()
            await asyncio.sleep(0.01)
            order.append("first")

    async def second():
        await holding.wait()
        async with withdrawals_module.owner_lock("owner-1"):
            order.append("second")

    task = asyncio.ensure_future(second())
    await first()
    assert "owner-1" in withdrawals_module._owner_locks
    await task

    assert order == ["first", "second"]
    assert "owner-1" not in withdrawals_module._owner_locks


@pytest.mark.asyncio
async def test_decide_approve_then_reject_is_refused(test_db):
    await seed_earning(test_db, "owner-1", "6000")
    service = WithdrawalService(test_db)
    withdrawal = await service.request_withdrawal("owner-1")

    approved = await service.decide(withdrawal.uuid, "approved", "admin-1", note="sent")

    assert approved.status == "approved"
    assert approved.decided_by == "admin-1"
    assert approved.note == "sent"

    with pytest.raises(AlreadyDecided):
        await service.decide(withdrawal.uuid, "rejected", "admin-2")

    stored = await service.get(withdrawal.uuid)
    await test_db.refresh(stored)
    assert stored.status == "approved"
    assert stored.decided_by == "admin-1"


@pytest.mark.asyncio
async def test_rejected_withdrawal_keeps_earnings_paid(test_db):
    """Rejection is recorded only; claimed earnings are not returned to pending."""
    await seed_earning(test_db, "owner-1", "6000")
    service = WithdrawalService(test_db)
    withdrawal = await service.request_withdrawal("owner-1")

    rejected = await service.decide(withdrawal.uuid, "rejected", "admin-1", note="bank details invalid")

    assert rejected.status == "rejected"
    assert await EarningsLedger(test_db).pending_balance("owner-1") == Decimal("0")


@pytest.mark.asyncio
async def test_decide_unknown_withdrawal(test_db):
    with pytest.raises(WithdrawalNotFound):
        await WithdrawalService(test_db).decide("missing", "approved", "admin-1")


@pytest.mark.asyncio
async def test_decide_invalid_outcome(test_db):
    with pytest.raises(ValueError):
        await WithdrawalService(test_db).decide("anything", "pending", "admin-1")


@pytest.mark.asyncio
async def test_history_and_admin_listing(test_db):
    await seed_earning(test_db, "owner-1", "6000")
    await seed_earning(test_db, "owner-2", "7000")
    service = WithdrawalService(test_db)
    first = await service.request_withdrawal("owner-1")
    await service.request_withdrawal("owner-2")
    await service.decide(first.uuid, "approved", "admin-1")

    assert [w.uuid for w in await service.history("owner-1")] == [first.uuid]
    assert len(await service.list_all()) == 2
    pending = await service.list_all(status="pending")
    assert [w.owner_id for w in pending] == ["owner-2"]
