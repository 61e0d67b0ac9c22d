"""PIX payment orders: creation, reconciliation via polling and webhook, expiry.

Every state change of a PaymentOrder is a conditional update that only matches
while the order is still ``pending``. Credits are granted solely by the caller
that wins the ``pending -> approved`` update, so duplicate approvals from the
poll and webhook channels are no-ops. The grant itself is keyed by
``payment:{order_id}`` in the ledger, so the repair sweep and a late approver
cannot both add the same order's credits.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable

from beanie import PydanticObjectId
from beanie.odm.queries.update import UpdateResponse
from bson.errors import InvalidId

from remixhub.core.audit import log_event
from remixhub.core.config import get_settings
from remixhub.core.exceptions import (
    NotFoundError,
    PaymentsNotConfiguredError,
    ReconciliationConflictError,
    UpstreamAPIError,
    ValidationError,
)
from remixhub.core.logging import get_logger
from remixhub.core.security import verify_mercadopago_webhook
from remixhub.models.payment_order import PaymentOrder, PaymentStatus
from remixhub.models.user import User
from remixhub.services import credits as credits_service
from remixhub.services.mercadopago import (
    TERMINAL_FAILURE_STATUSES,
    GatewayPayment,
    MercadoPagoClient,
    Payer,
)

log = get_logger(__name__)

GatewayFactory = Callable[[], MercadoPagoClient]


def _idempotency_key(order: PaymentOrder) -> str:
    return f"payment:{order.id}"


def price_for(credits: int) -> int:
    """Order total in centavos."""
    return credits * get_settings().price_per_credit_cents


async def _transition(order: PaymentOrder, status: PaymentStatus, **fields) -> PaymentOrder:
    """pending -> ``status`` as one atomic conditional update."""
    updated = await PaymentOrder.find_one(
        PaymentOrder.id == order.id,
        PaymentOrder.status == PaymentStatus.PENDING.value,
    ).update(
        {"$set": {"status": status.value, "resolved_at": datetime.utcnow(), **fields}},
        response_type=UpdateResponse.NEW_DOCUMENT,
    )
    if updated is None:
        current = await PaymentOrder.get(order.id)
        raise ReconciliationConflictError(str(order.id), current.status.value if current else None)
    return updated


async def approve(order: PaymentOrder) -> PaymentOrder:
    """Approve a pending order and grant its credits. Raises ReconciliationConflictError otherwise."""
    try:
        updated = await _transition(order, PaymentStatus.APPROVED, provider_status="approved")
    except ReconciliationConflictError as e:
        if e.current_status == PaymentStatus.CANCELLED.value:
            # Paid after the order was closed; needs a manual refund.
            log.error("approval_after_cancel", order_id=str(order.id), provider_payment_id=order.provider_payment_id)
        raise
    await credits_service.credit(
        updated.user_id,
        updated.credits_purchased,
        reason="purchase",
        reference_type="payment",
        reference_id=str(updated.id),
        idempotency_key=_idempotency_key(updated),
    )
    log.info("payment_approved", order_id=str(updated.id), credits=updated.credits_purchased)
    await log_event(
        str(updated.user_id),
        "payment_approved",
        "payment",
        str(updated.id),
        {"credits": updated.credits_purchased, "amount_cents": updated.amount_cents},
    )
    return updated


async def cancel(order: PaymentOrder, reason: str, provider_status: str | None = None) -> PaymentOrder:
    fields: dict = {"cancel_reason": reason}
    if provider_status:
        fields["provider_status"] = provider_status
    updated = await _transition(order, PaymentStatus.CANCELLED, **fields)
    log.info("payment_cancelled", order_id=str(updated.id), reason=reason)
    await log_event(str(updated.user_id), "payment_cancelled", "payment", str(updated.id), {"reason": reason})
    return updated


async def _settle(order: PaymentOrder, payment: GatewayPayment, now: datetime) -> PaymentOrder:
    """Apply what the provider reports; losing a race just returns the stored order."""
    try:
        if payment.approved:
            return await approve(order)
        if payment.status in TERMINAL_FAILURE_STATUSES:
            return await cancel(order, "provider", provider_status=payment.status)
        if now >= order.expires_at:
            return await cancel(order, "expired", provider_status=payment.status)
    except ReconciliationConflictError as e:
        log.info("reconciliation_conflict", order_id=e.order_id, status=e.current_status)
        return await PaymentOrder.get(order.id)
    if payment.status != order.provider_status:
        await PaymentOrder.find_one(
            PaymentOrder.id == order.id,
            PaymentOrder.status == PaymentStatus.PENDING.value,
        ).update({"$set": {"provider_status": payment.status}})
    return await PaymentOrder.get(order.id)


async def create_payment(
    user: User,
    credits: int,
    cpf: str | None = None,
    gateway_factory: GatewayFactory | None = None,
) -> PaymentOrder:
    """
    Create a PIX charge for ``credits`` and store the pending order. The order is
    inserted only after the provider confirms the charge.
    """
    settings = get_settings()
    if credits < 1 or credits > settings.max_credits_per_order:
        raise ValidationError(
            f"Quantity must be between 1 and {settings.max_credits_per_order}",
            details={"quantity": credits},
        )
    payer = Payer(email=user.email, name=user.name, cpf=cpf or user.cpf or "")
    if len(payer.cpf_digits) != 11:
        raise ValidationError("A valid CPF is required for PIX payments")
    amount_cents = price_for(credits)

    async with (gateway_factory or MercadoPagoClient)() as gateway:
        payment = await gateway.create_payment(
            Decimal(amount_cents) / 100,
            credits,
            payer,
            external_reference=str(user.id),
        )

    now = datetime.utcnow()
    order = PaymentOrder(
        user_id=user.id,
        amount_cents=amount_cents,
        credits_purchased=credits,
        provider_payment_id=payment.provider_payment_id,
        provider_status=payment.status,
        qr_code=payment.qr_code,
        qr_code_base64=payment.qr_code_base64,
        ticket_url=payment.ticket_url,
        created_at=now,
        expires_at=now + timedelta(minutes=settings.payment_expiry_minutes),
    )
    await order.insert()
    log.info("payment_order_created", order_id=str(order.id), credits=credits, amount_cents=amount_cents)
    if payment.approved or payment.status in TERMINAL_FAILURE_STATUSES:
        return await _settle(order, payment, now)
    return order


async def get_order_for_user(user_id: PydanticObjectId, order_id: str) -> PaymentOrder:
    try:
        oid = PydanticObjectId(order_id)
    except (InvalidId, TypeError):
        raise NotFoundError("Payment not found")
    order = await PaymentOrder.find_one(PaymentOrder.id == oid, PaymentOrder.user_id == user_id)
    if not order:
        raise NotFoundError("Payment not found")
    return order


async def check_payment(
    user_id: PydanticObjectId,
    order_id: str,
    gateway_factory: GatewayFactory | None = None,
    now: datetime | None = None,
) -> PaymentOrder:
    """Polling channel: ask the provider and reconcile a pending order."""
    order = await get_order_for_user(user_id, order_id)
    if order.status != PaymentStatus.PENDING:
        return order
    now = now or datetime.utcnow()
    try:
        async with (gateway_factory or MercadoPagoClient)() as gateway:
            payment = await gateway.get_payment(order.provider_payment_id)
    except UpstreamAPIError:
        if now >= order.expires_at:
            return await _expire(order)
        raise
    return await _settle(order, payment, now)


async def cancel_payment(user_id: PydanticObjectId, order_id: str) -> PaymentOrder:
    """User-initiated cancel. An order that already left ``pending`` is returned unchanged."""
    order = await get_order_for_user(user_id, order_id)
    try:
        return await cancel(order, "user")
    except ReconciliationConflictError as e:
        log.info("reconciliation_conflict", order_id=e.order_id, status=e.current_status)
        return await PaymentOrder.get(order.id)


async def _expire(order: PaymentOrder) -> PaymentOrder:
    try:
        return await cancel(order, "expired")
    except ReconciliationConflictError:
        return await PaymentOrder.get(order.id)


async def _order_for_notification(payment: GatewayPayment) -> PaymentOrder | None:
    """
    Match on the provider payment id only. Every order stores the id of its own
    charge, so any other order of the same payer belongs to a different charge.
    A notification that outruns the order insert is settled later by the poll
    or the expiry sweep.
    """
    return await PaymentOrder.find_one(PaymentOrder.provider_payment_id == payment.provider_payment_id)


async def handle_webhook(
    topic: str | None,
    payment_id: str | None,
    signature: str | None = None,
    request_id: str | None = None,
    gateway_factory: GatewayFactory | None = None,
) -> None:
    """
    Webhook channel. Never raises: the provider retries on any non-2xx, and
    nothing here gets better by being retried.
    """
    wlog = get_logger(__name__, topic=topic, payment_id=payment_id)
    if topic != "payment" or not payment_id:
        wlog.info("webhook_ignored")
        return
    secret = get_settings().mercadopago_webhook_secret
    if secret and not verify_mercadopago_webhook(signature, request_id, payment_id, secret):
        wlog.warning("webhook_invalid_signature")
        return
    try:
        async with (gateway_factory or MercadoPagoClient)() as gateway:
            payment = await gateway.get_payment(payment_id)
        if not payment.approved and payment.status not in TERMINAL_FAILURE_STATUSES:
            wlog.info("webhook_payment_not_final", status=payment.status)
            return
        order = await _order_for_notification(payment)
        if order is None:
            wlog.warning("webhook_order_not_found", external_reference=payment.external_reference)
            return
        if payment.approved:
            await approve(order)
        else:
            await cancel(order, "provider", provider_status=payment.status)
    except ReconciliationConflictError as e:
        wlog.info("webhook_duplicate", order_id=e.order_id, status=e.current_status)
    except Exception:
        wlog.exception("webhook_processing_failed")


async def expire_stale_payments(
    now: datetime | None = None,
    gateway_factory: GatewayFactory | None = None,
) -> int:
    """Close pending orders past their deadline, approving any the provider reports paid."""
    now = now or datetime.utcnow()
    stale = await PaymentOrder.find(
        PaymentOrder.status == PaymentStatus.PENDING.value,
        PaymentOrder.expires_at <= now,
    ).to_list()
    if not stale:
        return 0
    try:
        gateway = (gateway_factory or MercadoPagoClient)()
    except PaymentsNotConfiguredError:
        gateway = None
    closed = 0
    try:
        for order in stale:
            if gateway is not None:
                try:
                    payment = await gateway.get_payment(order.provider_payment_id)
                except UpstreamAPIError as e:
                    log.warning("expire_check_failed", order_id=str(order.id), error=e.message)
                    continue
                settled = await _settle(order, payment, now)
            else:
                settled = await _expire(order)
            if settled and settled.status != PaymentStatus.PENDING:
                closed += 1
    finally:
        if gateway is not None:
            await gateway.aclose()
    log.info("stale_payments_closed", count=closed)
    return closed


async def repair_unsettled_approvals(
    since: timedelta = timedelta(days=1),
    grace: timedelta = timedelta(minutes=5),
    now: datetime | None = None,
) -> int:
    """
    Grant credits for approved orders whose credit step never completed. Orders
    approved less than ``grace`` ago are left alone: their approver may still be
    writing the ledger entry.
    """
    now = now or datetime.utcnow()
    approved = await PaymentOrder.find(
        PaymentOrder.status == PaymentStatus.APPROVED.value,
        PaymentOrder.resolved_at >= now - since,
        PaymentOrder.resolved_at <= now - grace,
    ).to_list()
    repaired = 0
    for order in approved:
        granted = await credits_service.credit_once(
            order.user_id,
            order.credits_purchased,
            reason="purchase",
            reference_type="payment",
            reference_id=str(order.id),
            idempotency_key=_idempotency_key(order),
        )
        if granted is None:
            continue
        log.warning("approval_credit_repaired", order_id=str(order.id))
        repaired += 1
    return repaired


async def list_payments(user_id: PydanticObjectId, limit: int = 50, offset: int = 0) -> list[PaymentOrder]:
    return (
        await PaymentOrder.find(PaymentOrder.user_id == user_id)
        .sort(-PaymentOrder.created_at)
        .skip(offset)
        .limit(limit)
        .to_list()
    )
