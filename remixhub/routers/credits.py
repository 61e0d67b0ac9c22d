from fastapi import APIRouter, Depends, Query

from remixhub.deps import get_current_user
from remixhub.models.credit_ledger import CreditLedgerEntry
from remixhub.models.user import User
from remixhub.services import credits as credits_service

router = APIRouter()


def ledger_entry_out(e: CreditLedgerEntry) -> dict:
    return {
        "id": str(e.id),
        "amount": e.amount,
        "balance_after": e.balance_after,
        "reason": e.reason,
        "reference_type": e.reference_type,
        "reference_id": e.reference_id,
        "created_at": e.created_at.isoformat(),
    }


@router.get("/balance")
async def credits_balance(user: User = Depends(get_current_user)):
    return {"balance": await credits_service.get_balance(user.id)}


@router.get("/ledger")
async def credits_ledger(
    user: User = Depends(get_current_user),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    """Purchases (+) and remix charges (-), newest first."""
    entries = await credits_service.list_entries(user.id, limit=limit, offset=offset)
    return {
        "entries": [ledger_entry_out(e) for e in entries],
        "balance": await credits_service.get_balance(user.id),
        "limit": limit,
        "offset": offset,
    }
