"""Mercado Pago PIX client: create a charge and read its status."""

import re
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

import httpx

from remixhub.core.config import get_settings
from remixhub.core.exceptions import PaymentsNotConfiguredError, UpstreamAPIError
from remixhub.core.logging import get_logger

log = get_logger(__name__)


@dataclass
class Payer:
    email: str
    name: str
    cpf: str

    @property
    def cpf_digits(self) -> str:
        return re.sub(r"\D", "", self.cpf or "")


@dataclass
class GatewayPayment:
    provider_payment_id: str
    status: str
    qr_code: str = ""
    qr_code_base64: str = ""
    ticket_url: str = ""
    payer_email: str | None = None
    external_reference: str | None = None

    @property
    def approved(self) -> bool:
        return self.status == "approved"

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "GatewayPayment":
        pix = (data.get("point_of_interaction") or {}).get("transaction_data") or {}
        return cls(
            provider_payment_id=str(data["id"]),
            status=data.get("status") or "unknown",
            qr_code=pix.get("qr_code") or "",
            qr_code_base64=pix.get("qr_code_base64") or "",
            ticket_url=pix.get("ticket_url") or "",
            payer_email=(data.get("payer") or {}).get("email"),
            external_reference=data.get("external_reference"),
        )


# Provider statuses that can never turn into "approved".
TERMINAL_FAILURE_STATUSES = frozenset({"cancelled", "rejected", "refunded", "charged_back"})


class MercadoPagoClient:
    def __init__(
        self,
        access_token: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        token = access_token if access_token is not None else settings.mercadopago_access_token
        if not token:
            raise PaymentsNotConfiguredError()
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.mercadopago_api_url,
            timeout=timeout or settings.http_timeout_seconds,
            transport=transport,
            headers={"Authorization": f"Bearer {token}"},
        )

    async def __aenter__(self) -> "MercadoPagoClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> dict[str, Any]:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TransportError as e:
            raise UpstreamAPIError(0, f"network error: {e}", service="Mercado Pago") from e
        if not response.is_success:
            raise UpstreamAPIError(response.status_code, response.text, service="Mercado Pago")
        return response.json()

    async def create_payment(
        self,
        amount: Decimal,
        credits: int,
        payer: Payer,
        external_reference: str | None = None,
    ) -> GatewayPayment:
        body: dict[str, Any] = {
            "transaction_amount": float(amount),
            "description": f"{credits} crédito{'s' if credits > 1 else ''} - RemixHub",
            "payment_method_id": "pix",
            "payer": {
                "email": payer.email,
                "first_name": payer.name or "Usuário",
                "identification": {"type": "CPF", "number": payer.cpf_digits},
            },
        }
        if external_reference:
            body["external_reference"] = external_reference
        data = await self._request(
            "POST",
            "/v1/payments",
            json=body,
            headers={"X-Idempotency-Key": str(uuid.uuid4())},
        )
        payment = GatewayPayment.from_api(data)
        log.info("pix_payment_created", provider_payment_id=payment.provider_payment_id, status=payment.status)
        return payment

    async def get_payment(self, provider_payment_id: str) -> GatewayPayment:
        data = await self._request("GET", f"/v1/payments/{provider_payment_id}")
        return GatewayPayment.from_api(data)
