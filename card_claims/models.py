"""
Data structures for the card claim worker.
"""
from __future__ import annotations

from dataclasses import dataclass, field, asdict
from decimal import Decimal
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    """Why a remote ledger call did not succeed."""
    TRANSIENT = "TRANSIENT"              # network error, timeout, 5xx
    COOLDOWN_ACTIVE = "COOLDOWN_ACTIVE"  # card not yet eligible to claim again
    NOT_FOUND = "NOT_FOUND"              # card no longer exists on the ledger
    UNKNOWN = "UNKNOWN"                  # unrecognized application error


class UpsertOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"


class RemoveOutcome(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    NOT_OWNER = "not_owner"


@dataclass
class Card:
    """A ledger card linked to a local owner."""
    card_code: str
    owner_id: str
    last_claim_ts: int = 0     # unix seconds, 0 = never claimed
    claim_retry: int = 0       # consecutive failures since last success

    @classmethod
    def from_row(cls, row) -> "Card":
        return cls(
            card_code=row["card_code"],
            owner_id=row["owner_id"],
            last_claim_ts=int(row["last_claim_ts"] or 0),
            claim_retry=int(row["claim_retry"] or 0),
        )


@dataclass
class ClaimResult:
    """Outcome of a claim call; amount is None when the ledger sent nothing usable."""
    success: bool
    amount: Optional[Decimal] = None
    error_kind: Optional[ErrorKind] = None
    detail: str = ""
    status_code: Optional[int] = None

    @classmethod
    def ok(cls, amount: Optional[Decimal]) -> "ClaimResult":
        return cls(success=True, amount=amount)

    @classmethod
    def fail(cls, kind: ErrorKind, detail: str = "", status_code: Optional[int] = None) -> "ClaimResult":
        return cls(success=False, error_kind=kind, detail=detail, status_code=status_code)


@dataclass
class PayResult:
    """Outcome of a card-to-card transfer."""
    success: bool
    amount: Optional[Decimal] = None   # amount actually transmitted
    error_kind: Optional[ErrorKind] = None
    detail: str = ""
    status_code: Optional[int] = None

    @classmethod
    def ok(cls, amount: Decimal) -> "PayResult":
        return cls(success=True, amount=amount)

    @classmethod
    def fail(cls, kind: ErrorKind, detail: str = "", status_code: Optional[int] = None,
             amount: Optional[Decimal] = None) -> "PayResult":
        return cls(success=False, amount=amount, error_kind=kind, detail=detail, status_code=status_code)


@dataclass
class PassStats:
    """Counters for one pass over the registry."""
    started_at: float = 0.0
    finished_at: float = 0.0
    total: int = 0
    claimed: int = 0
    zero: int = 0
    cooldown: int = 0
    removed: int = 0
    failed: int = 0
    tax_paid: int = 0
    tax_failed: int = 0
    tax_skipped: int = 0
    total_claimed: Decimal = field(default_factory=Decimal)
    total_tax: Decimal = field(default_factory=Decimal)
    fatal_error: str = ""

    @property
    def duration_s(self) -> float:
        return max(0.0, self.finished_at - self.started_at)

    def summary(self) -> str:
        return (
            f"{self.total} cards: {self.claimed} claimed, {self.zero} zero, "
            f"{self.cooldown} cooldown, {self.removed} removed, {self.failed} failed | "
            f"claimed {self.total_claimed} (tax sent {self.total_tax}, "
            f"{self.tax_failed} transfers failed)"
        )


@dataclass
class WorkerStatus:
    """Snapshot of the worker for status reporting."""
    running: bool
    next_run_at: float
    last_pass: Optional[PassStats] = None

    def seconds_until_next_run(self, now: float) -> float:
        return max(0.0, self.next_run_at - now)


@dataclass
class ClaimEvent:
    """One line of the JSONL pass journal."""
    ts: int
    event: str
    card_code: Optional[str] = None
    owner_id: Optional[str] = None
    amount: Optional[str] = None
    tax: Optional[str] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None
    stats: Optional[dict] = None

    def to_dict(self) -> dict:
        return {k: v for k, v in asdict(self).items() if v is not None}
