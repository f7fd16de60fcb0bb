"""
Tests for ClaimConfig and API base normalization.
"""

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from decimal import Decimal

from card_claims.config import ClaimConfig, normalize_api_base


def test_normalize_api_base():
    assert normalize_api_base("https://bank.foxsrv.net/") == "https://bank.foxsrv.net/api"
    assert normalize_api_base("https://bank.foxsrv.net///") == "https://bank.foxsrv.net/api"
    assert normalize_api_base("https://bank.foxsrv.net/api") == "https://bank.foxsrv.net/api"
    assert normalize_api_base("https://bank.foxsrv.net/API/") == "https://bank.foxsrv.net/API"
    assert normalize_api_base("  ") == ""


def test_config_normalizes_fields():
    config = ClaimConfig(api_base="http://ledger.test/", tax_percent=0.25, receiver_card="  R1 ")
    assert config.api_base == "http://ledger.test/api"
    assert config.tax_percent == Decimal("0.25")
    assert config.receiver_card == "R1"


def test_valid_config_has_no_errors():
    config = ClaimConfig(api_base="http://ledger.test", interval_s=600, queue_delay_s=0.2,
                         request_timeout_s=30, tax_percent=Decimal("0.1"), db_path="cards.db")
    assert config.validate() == []


def test_validate_reports_bad_values():
    config = ClaimConfig(api_base="", interval_s=0, queue_delay_s=-1,
                         request_timeout_s=0, tax_percent=Decimal("1.5"), db_path="")
    errors = config.validate()
    assert len(errors) == 6
    assert any("TAX_PERCENT" in e for e in errors)
    assert any("API_BASE" in e for e in errors)


def test_tax_enabled_requires_receiver_and_rate():
    assert ClaimConfig(tax_percent=Decimal("0.1"), receiver_card="R").tax_enabled
    assert not ClaimConfig(tax_percent=Decimal("0.1"), receiver_card="").tax_enabled
    assert not ClaimConfig(tax_percent=Decimal("0"), receiver_card="R").tax_enabled


def test_missing_receiver_is_a_warning_not_an_error():
    config = ClaimConfig(api_base="http://ledger.test", tax_percent=Decimal("0.1"), receiver_card="")
    assert config.validate() == []
    assert any("RECEIVER_CARD" in w for w in config.warnings())
    assert ClaimConfig(tax_percent=Decimal("0"), receiver_card="").warnings() == []
