import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from remixhub.core.config import get_settings
from remixhub.models.audit_log import AuditLog
from remixhub.models.credit_balance import CreditBalance
from remixhub.models.credit_ledger import CreditLedgerEntry
from remixhub.models.failed_job import FailedJob
from remixhub.models.payment_order import PaymentOrder
from remixhub.models.remix_request import RemixRequest
from remixhub.models.user import User

DOCUMENT_MODELS = [
    User,
    CreditBalance,
    CreditLedgerEntry,
    RemixRequest,
    PaymentOrder,
    AuditLog,
    FailedJob,
]


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


async def init_db(client=None) -> None:
    """Register document models; pass ``client`` to bind to an existing (or in-memory) Motor client."""
    settings = get_settings()
    if client is None:
        kwargs = {}
        if _use_tls(settings.mongodb_uri):
            kwargs["tlsCAFile"] = certifi.where()
            kwargs["tlsDisableOCSPEndpointCheck"] = True
        client = AsyncIOMotorClient(settings.mongodb_uri, **kwargs)
    database = client[settings.mongodb_db_name]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
