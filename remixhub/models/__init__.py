from remixhub.models.user import User
from remixhub.models.credit_balance import CreditBalance
from remixhub.models.credit_ledger import CreditLedgerEntry
from remixhub.models.remix_request import RemixRequest, RemixStatus
from remixhub.models.payment_order import PaymentOrder, PaymentStatus
from remixhub.models.audit_log import AuditLog
from remixhub.models.failed_job import FailedJob

__all__ = [
    "User",
    "CreditBalance",
    "CreditLedgerEntry",
    "RemixRequest",
    "RemixStatus",
    "PaymentOrder",
    "PaymentStatus",
    "AuditLog",
    "FailedJob",
]
