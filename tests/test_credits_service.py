"""Unit tests for the credit ledger (in-memory MongoDB)."""

import asyncio

import pytest
from pymongo.errors import DuplicateKeyError

from remixhub.core.exceptions import BadRequestError, InsufficientCreditsError
from remixhub.models.credit_ledger import CreditLedgerEntry
from remixhub.services import credits as credits_service


async def test_get_balance_empty(user):
    assert await credits_service.get_balance(user.id) == 0


async def test_credit_creates_balance_and_ledger_entry(user):
    entry, balance_after = await credits_service.credit(
        user.id, 10, reason="purchase", reference_type="payment", reference_id="p1"
    )
    assert entry.amount == 10
    assert entry.balance_after == 10
    assert balance_after == 10
    assert await credits_service.get_balance(user.id) == 10


async def test_credit_is_idempotent(user):
    entry, balance = await credits_service.credit(user.id, 10, idempotency_key="payment:abc")
    entry2, balance2 = await credits_service.credit(user.id, 10, idempotency_key="payment:abc")
    assert balance == balance2 == 10
    assert entry.id == entry2.id
    assert await CreditLedgerEntry.find(CreditLedgerEntry.user_id == user.id).count() == 1


async def test_debit_takes_credits(user):
    await credits_service.credit(user.id, 3)
    entry, balance = await credits_service.debit(user.id, 1, reason="remix", reference_id="r1")
    assert entry.amount == -1
    assert balance == 2


async def test_debit_refuses_to_go_negative(user):
    await credits_service.credit(user.id, 1)
    await credits_service.debit(user.id, 1)
    with pytest.raises(InsufficientCreditsError) as exc:
        await credits_service.debit(user.id, 1)
    assert exc.value.status_code == 402
    assert await credits_service.get_balance(user.id) == 0


async def test_debit_without_balance_row(user):
    with pytest.raises(InsufficientCreditsError):
        await credits_service.debit(user.id, 1)


async def test_concurrent_debits_never_overdraw(user):
    await credits_service.credit(user.id, 3)
    results = await asyncio.gather(
        *(credits_service.debit(user.id, 1) for _ in range(5)),
        return_exceptions=True,
    )
    failures = [r for r in results if isinstance(r, InsufficientCreditsError)]
    assert len(failures) == 2
    assert await credits_service.get_balance(user.id) == 0


async def test_rejects_unknown_reason_and_non_positive_amounts(user):
    with pytest.raises(BadRequestError):
        await credits_service.credit(user.id, 5, reason="bonus")
    with pytest.raises(BadRequestError):
        await credits_service.debit(user.id, 0)


async def test_list_entries_newest_first(user):
    await credits_service.credit(user.id, 5, reference_id="first")
    await asyncio.sleep(0.01)
    await credits_service.debit(user.id, 1, reference_id="second")
    entries = await credits_service.list_entries(user.id)
    assert [e.reference_id for e in entries] == ["second", "first"]


async def test_concurrent_credits_with_same_key_apply_once(user, monkeypatch):
    lookup = credits_service._existing_entry

    async def slow_lookup(user_id, idempotency_key):
        found = await lookup(user_id, idempotency_key)
        await asyncio.sleep(0)
        return found

    monkeypatch.setattr(credits_service, "_existing_entry", slow_lookup)
    results = await asyncio.gather(
        *(credits_service.credit(user.id, 10, idempotency_key="payment:abc") for _ in range(3))
    )

    assert len({entry.id for entry, _ in results}) == 1
    assert await credits_service.get_balance(user.id) == 10
    assert await CreditLedgerEntry.find(CreditLedgerEntry.user_id == user.id).count() == 1


async def test_credit_once_reports_used_key(user):
    assert await credits_service.credit_once(user.id, 5, idempotency_key="payment:x") is not None
    assert await credits_service.credit_once(user.id, 5, idempotency_key="payment:x") is None
    assert await credits_service.get_balance(user.id) == 5


async def test_key_cannot_be_reused_by_another_account(user):
    from remixhub.models.user import User

    other = User(email="bob@example.com", name="Bob")
    await other.insert()
    await credits_service.credit(user.id, 2, idempotency_key="adjust:1", reason="adjustment")
    with pytest.raises(BadRequestError):
        await credits_service.credit(other.id, 3, idempotency_key="adjust:1", reason="adjustment")
    assert await credits_service.get_balance(other.id) == 0


async def test_ledger_rejects_duplicate_keys_but_not_missing_ones(user):
    def entry(key=None):
        return CreditLedgerEntry(user_id=user.id, amount=1, balance_after=1, reason="adjustment", idempotency_key=key)

    await entry("payment:dup").insert()
    with pytest.raises(DuplicateKeyError):
        await entry("payment:dup").insert()
    await entry().insert()
    await entry().insert()
    assert await CreditLedgerEntry.find(CreditLedgerEntry.user_id == user.id).count() == 3


async def test_failed_debit_releases_its_key(user):
    with pytest.raises(InsufficientCreditsError):
        await credits_service.debit(user.id, 1, idempotency_key="remix:r1")
    assert await CreditLedgerEntry.find(CreditLedgerEntry.user_id == user.id).count() == 0

    await credits_service.credit(user.id, 1)
    entry, balance = await credits_service.debit(user.id, 1, idempotency_key="remix:r1")
    assert entry.amount == -1
    assert entry.balance_after == balance == 0
