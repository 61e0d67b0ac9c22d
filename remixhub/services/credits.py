"""Credit ledger: atomic balance updates plus an append-only history."""

from datetime import datetime

from beanie import PydanticObjectId
from beanie.odm.queries.update import UpdateResponse
from pymongo.errors import DuplicateKeyError

from remixhub.core.exceptions import BadRequestError, InsufficientCreditsError
from remixhub.core.logging import get_logger
from remixhub.models.credit_balance import CreditBalance
from remixhub.models.credit_ledger import CreditLedgerEntry

log = get_logger(__name__)

REASONS = ("purchase", "remix", "refund", "adjustment")


async def get_balance(user_id: PydanticObjectId) -> int:
    """Return current balance for user (0 if no record)."""
    bal = await CreditBalance.find_one(CreditBalance.user_id == user_id)
    return bal.balance if bal else 0


async def _existing_entry(user_id: PydanticObjectId, idempotency_key: str | None) -> CreditLedgerEntry | None:
    if not idempotency_key:
        return None
    entry = await CreditLedgerEntry.find_one(CreditLedgerEntry.idempotency_key == idempotency_key)
    if entry and entry.user_id != user_id:
        raise BadRequestError("Idempotency key already used by another account")
    return entry


async def _claim(
    user_id: PydanticObjectId,
    amount: int,
    reason: str,
    reference_type: str | None,
    reference_id: str | None,
    idempotency_key: str | None,
) -> CreditLedgerEntry | None:
    """
    Insert the ledger entry before touching the balance. The unique index on
    idempotency_key admits one entry per key, so of two concurrent callers
    only one gets an entry back and the other gets None.
    """
    entry = CreditLedgerEntry(
        user_id=user_id,
        amount=amount,
        balance_after=0,
        reason=reason,
        reference_type=reference_type,
        reference_id=reference_id,
        idempotency_key=idempotency_key,
    )
    try:
        await entry.insert()
    except DuplicateKeyError:
        return None
    return entry


async def _replay(user_id: PydanticObjectId, idempotency_key: str | None) -> tuple[CreditLedgerEntry, int]:
    entry = await _existing_entry(user_id, idempotency_key)
    log.info("ledger_replay", user_id=str(user_id), idempotency_key=idempotency_key)
    return entry, await get_balance(user_id)


def _validate(amount: int, reason: str, verb: str) -> None:
    if amount <= 0:
        raise BadRequestError(f"{verb} amount must be positive")
    if reason not in REASONS:
        raise BadRequestError(f"Invalid reason: {reason}")


async def debit(
    user_id: PydanticObjectId,
    amount: int = 1,
    reason: str = "remix",
    reference_type: str | None = None,
    reference_id: str | None = None,
    idempotency_key: str | None = None,
) -> tuple[CreditLedgerEntry, int]:
    """
    Atomically take ``amount`` credits. The balance check and the decrement are one
    conditional update, so concurrent debits can never push the balance below zero.
    Returns (ledger_entry, balance_after).
    """
    _validate(amount, reason, "Debit")
    if await _existing_entry(user_id, idempotency_key):
        return await _replay(user_id, idempotency_key)
    entry = await _claim(user_id, -amount, reason, reference_type, reference_id, idempotency_key)
    if entry is None:
        return await _replay(user_id, idempotency_key)

    try:
        updated = await CreditBalance.find_one(
            CreditBalance.user_id == user_id,
            CreditBalance.balance >= amount,
        ).update(
            {"$inc": {"balance": -amount}, "$set": {"updated_at": datetime.utcnow()}},
            response_type=UpdateResponse.NEW_DOCUMENT,
        )
    except Exception:
        await entry.delete()
        raise
    if updated is None:
        await entry.delete()
        raise InsufficientCreditsError(details={"required": amount, "balance": await get_balance(user_id)})

    await entry.set({CreditLedgerEntry.balance_after: updated.balance})
    log.info("credits_debited", user_id=str(user_id), amount=amount, balance_after=updated.balance, reason=reason)
    return entry, updated.balance


async def credit_once(
    user_id: PydanticObjectId,
    amount: int,
    reason: str = "purchase",
    reference_type: str | None = None,
    reference_id: str | None = None,
    idempotency_key: str | None = None,
) -> tuple[CreditLedgerEntry, int] | None:
    """Add ``amount`` credits unless ``idempotency_key`` was already used; None in that case."""
    _validate(amount, reason, "Credit")
    if await _existing_entry(user_id, idempotency_key):
        return None
    entry = await _claim(user_id, amount, reason, reference_type, reference_id, idempotency_key)
    if entry is None:
        return None

    try:
        updated = await CreditBalance.find_one(CreditBalance.user_id == user_id).update(
            {"$inc": {"balance": amount}, "$set": {"updated_at": datetime.utcnow()}},
            upsert=True,
            response_type=UpdateResponse.NEW_DOCUMENT,
        )
    except Exception:
        await entry.delete()
        raise

    await entry.set({CreditLedgerEntry.balance_after: updated.balance})
    log.info("credits_added", user_id=str(user_id), amount=amount, balance_after=updated.balance, reason=reason)
    return entry, updated.balance


async def credit(
    user_id: PydanticObjectId,
    amount: int,
    reason: str = "purchase",
    reference_type: str | None = None,
    reference_id: str | None = None,
    idempotency_key: str | None = None,
) -> tuple[CreditLedgerEntry, int]:
    """Atomically add ``amount`` credits, creating the balance row on first use."""
    applied = await credit_once(user_id, amount, reason, reference_type, reference_id, idempotency_key)
    if applied is None:
        return await _replay(user_id, idempotency_key)
    return applied


async def list_entries(user_id: PydanticObjectId, limit: int = 50, offset: int = 0) -> list[CreditLedgerEntry]:
    """Ledger entries for user, newest first."""
    return (
        await CreditLedgerEntry.find(CreditLedgerEntry.user_id == user_id)
        .sort(-CreditLedgerEntry.created_at)
        .skip(offset)
        .limit(limit)
        .to_list()
    )
