from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from remixhub.deps import get_current_user
from remixhub.models.payment_order import PaymentOrder
from remixhub.models.user import User
from remixhub.services import payments as payments_service

router = APIRouter()


class PixPaymentCreate(BaseModel):
    quantity: int = Field(..., ge=1)
    cpf: str | None = None


def payment_out(p: PaymentOrder) -> dict:
    return {
        "id": str(p.id),
        "status": p.status.value,
        "amount": str(p.amount),
        "credits_purchased": p.credits_purchased,
        "provider_payment_id": p.provider_payment_id,
        "provider_status": p.provider_status,
        "qr_code": p.qr_code,
        "qr_code_base64": p.qr_code_base64,
        "ticket_url": p.ticket_url,
        "cancel_reason": p.cancel_reason,
        "created_at": p.created_at.isoformat(),
        "expires_at": p.expires_at.isoformat(),
        "resolved_at": p.resolved_at.isoformat() if p.resolved_at else None,
    }


@router.post("/pix")
async def pix_payment_create(body: PixPaymentCreate, user: User = Depends(get_current_user)):
    """Create a PIX charge; the client polls /{id}/check until it leaves pending."""
    order = await payments_service.create_payment(user, body.quantity, cpf=body.cpf)
    return payment_out(order)


@router.get("")
async def payments_list(
    user: User = Depends(get_current_user),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    items = await payments_service.list_payments(user.id, limit=limit, offset=offset)
    return {"payments": [payment_out(p) for p in items], "limit": limit, "offset": offset}


@router.post("/{order_id}/check")
async def payment_check(order_id: str, user: User = Depends(get_current_user)):
    order = await payments_service.check_payment(user.id, order_id)
    return payment_out(order)


@router.post("/{order_id}/cancel")
async def payment_cancel(order_id: str, user: User = Depends(get_current_user)):
    order = await payments_service.cancel_payment(user.id, order_id)
    return payment_out(order)


@router.api_route("/webhook", methods=["GET", "POST"])
async def mercadopago_webhook(request: Request):
    """Mercado Pago notification: always acknowledged with 200."""
    params = request.query_params
    topic = params.get("type") or params.get("topic")
    payment_id = params.get("data.id") or params.get("id")
    if request.method == "POST" and not (topic and payment_id):
        try:
            body = await request.json()
        except ValueError:
            body = {}
        if isinstance(body, dict):
            topic = topic or body.get("type") or body.get("topic")
            payment_id = payment_id or str((body.get("data") or {}).get("id") or "") or None
    await payments_service.handle_webhook(
        topic,
        payment_id,
        signature=request.headers.get("x-signature"),
        request_id=request.headers.get("x-request-id"),
    )
    return {"success": True}
