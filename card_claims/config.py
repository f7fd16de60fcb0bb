"""
Configuration for the card auto-claim worker.
"""
import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from dotenv import load_dotenv

load_dotenv()


def normalize_api_base(raw: str) -> str:
    """Strip trailing slashes and make sure the base ends with /api."""
    base = (raw or "").strip().rstrip("/")
    if not base:
        return ""
    if not base.lower().endswith("/api"):
        base += "/api"
    return base


def _ms_env(name: str, default: str) -> float:
    return int(os.getenv(name, default)) / 1000.0


def _decimal_env(name: str, default: str) -> Decimal:
    try:
        return Decimal(os.getenv(name, default))
    except InvalidOperation:
        raise ValueError(f"{name} is not a number: {os.getenv(name)!r}")


@dataclass
class ClaimConfig:
    """Configuration for the claim worker."""

    # === LEDGER API ===
    api_base: str = os.getenv("API_BASE", "https://bank.foxsrv.net/")
    request_timeout_s: float = _ms_env("API_TIMEOUT_MS", "30000")

    # === TIMING ===
    interval_s: float = _ms_env("CLAIM_INTERVAL_MS", "600000")  # 10 minutes
    queue_delay_s: float = _ms_env("CLAIM_QUEUE_DELAY_MS", "200")  # between cards
    run_on_start: bool = os.getenv("CLAIM_RUN_ON_START", "true").lower() == "true"

    # === TAX ===
    # Fraction of each claim forwarded to receiver_card (0.10 = 10%)
    tax_percent: Decimal = _decimal_env("TAX_PERCENT", "0.10")
    receiver_card: str = os.getenv("RECEIVER_CARD", "")

    # === PATHS ===
    db_path: str = os.getenv("DB_PATH", "./cards.db")
    log_dir: str = os.getenv("CLAIM_LOG_DIR", "logs/claims")

    def __post_init__(self):
        self.api_base = normalize_api_base(self.api_base)
        if not isinstance(self.tax_percent, Decimal):
            self.tax_percent = Decimal(str(self.tax_percent))
        self.receiver_card = (self.receiver_card or "").strip()

    @property
    def tax_enabled(self) -> bool:
        """Tax transfer happens only with a receiver and a positive rate."""
        return bool(self.receiver_card) and self.tax_percent > 0

    def validate(self) -> list[str]:
        """Validate configuration, return list of errors."""
        errors = []

        if not self.api_base:
            errors.append("API_BASE not set")
        if self.interval_s <= 0:
            errors.append(f"claim interval {self.interval_s}s must be positive")
        if self.queue_delay_s < 0:
            errors.append(f"queue delay {self.queue_delay_s}s is negative")
        if self.request_timeout_s <= 0:
            errors.append(f"request timeout {self.request_timeout_s}s must be positive")
        if not (Decimal(0) <= self.tax_percent <= Decimal(1)):
            errors.append(f"TAX_PERCENT {self.tax_percent} outside [0, 1]")
        if not self.db_path:
            errors.append("DB_PATH not set")

        return errors

    def warnings(self) -> list[str]:
        """Non-fatal configuration issues."""
        warnings = []
        if not self.receiver_card and self.tax_percent > 0:
            warnings.append("RECEIVER_CARD not set; tax will not be sent until configured")
        return warnings
