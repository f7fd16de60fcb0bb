# Card Auto-Claim Module
# Claims linked ledger cards on a schedule and forwards the configured tax

from card_claims.config import ClaimConfig
from card_claims.models import Card, ClaimResult, PayResult, ErrorKind, PassStats, WorkerStatus
from card_claims.registry import CardRegistry
from card_claims.client import LedgerClient
from card_claims.worker import ClaimWorker

__all__ = [
    "ClaimConfig",
    "Card",
    "ClaimResult",
    "PayResult",
    "ErrorKind",
    "PassStats",
    "WorkerStatus",
    "CardRegistry",
    "LedgerClient",
    "ClaimWorker",
]
