"""
Tests for ledger configuration loading.

Validates:
- The packaged defaults parse into a frozen LedgerConfig
- Gateway account and display-name lookups with their fallbacks
- Exchange-rate lookup and Decimal parsing of YAML floats
- Schema violations raise instead of defaulting
- get_active_config() emits a config trace with the checksum
"""

from dataclasses import FrozenInstanceError
from decimal import Decimal
from pathlib import Path

import pytest
import yaml

from ledger_config import get_active_config
from ledger_config.loader import compute_checksum, load_yaml_file, parse_config
from ledger_kernel.exceptions import ExchangeRateNotFoundError

DEFAULTS = Path(__file__).resolve().parents[2] / "ledger_config" / "defaults.yaml"


@pytest.fixture
def raw_defaults() -> dict:
    return load_yaml_file(DEFAULTS)


def _write(tmp_path: Path, data: dict) -> Path:
    path = tmp_path / "ledger.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


class TestDefaults:

    def test_defaults_parse(self, config):
        assert config.base_currency == "USD"
        assert config.posting_accounts.customer_deposits == "2110"
        assert config.payments.idempotency_window_seconds == 10
        assert config.refunds.eligibility_window_days == 180
        assert config.credit_notes.number_prefix == "CN"
        assert config.reconciliation.closing_tolerance == Decimal("0.01")
        assert len(config.checksum) == 64

    def test_config_is_frozen(self, config):
        with pytest.raises(FrozenInstanceError):
            config.base_currency = "EUR"

    def test_every_gateway_account_is_seeded(self, config):
        codes = {a.code for a in config.accounts}
        for _, account in config.gateways.accounts:
            assert account in codes


class TestLookups:

    @pytest.mark.parametrize("gateway, account", [
        ("stripe", "1112"),
        ("PayU", "1111"),
        ("esewa", "1114"),
        ("unknown_gateway", "1113"),
        (None, "1113"),
    ])
    def test_gateway_account(self, config, gateway, account):
        assert config.gateways.account_for(gateway) == account

    @pytest.mark.parametrize("gateway, name", [
        ("esewa", "eSewa"),
        ("bank_transfer", "Bank Transfer"),
        ("khalti", "KHALTI"),
        (None, "Manual"),
    ])
    def test_display_name(self, config, gateway, name):
        assert config.gateways.display_name(gateway) == name

    def test_rates(self, config):
        assert config.rate_for("usd") == Decimal("1")
        assert config.rate_for("INR") == Decimal("83.00")

    def test_unknown_currency(self, config):
        with pytest.raises(ExchangeRateNotFoundError):
            config.rate_for("XYZ")

    def test_capabilities_union_of_roles(self, config):
        caps = config.rbac.capabilities_for(("finance", "customer"))
        assert caps == frozenset({"refund.process", "reconciliation.manage"})
        assert config.rbac.capabilities_for(("nobody",)) == frozenset()


class TestParsing:

    def test_yaml_float_rate_parsed_exactly(self, raw_defaults):
        raw_defaults["exchange_rates"]["EUR"] = 0.1
        config = parse_config(raw_defaults)
        assert config.rate_for("EUR") == Decimal("0.1")

    def test_optional_sections_default(self, raw_defaults):
        for key in ("payments", "refunds", "credit_notes", "reconciliation", "tax_method", "rbac"):
            raw_defaults.pop(key)

        config = parse_config(raw_defaults)

        assert config.credit_notes.default_valid_days == 365
        assert "hsn_only" in config.tax_method.valid_calculation_methods
        assert config.rbac.capabilities_for(("admin",)) == frozenset()

    def test_missing_required_key(self, raw_defaults):
        del raw_defaults["posting_accounts"]
        with pytest.raises(KeyError):
            parse_config(raw_defaults)

    def test_invalid_account_type(self, raw_defaults):
        raw_defaults["accounts"].append({"code": "9000", "name": "Odd", "type": "mystery"})
        with pytest.raises(ValueError, match="invalid type"):
            parse_config(raw_defaults)

    def test_non_positive_rate(self, raw_defaults):
        raw_defaults["exchange_rates"]["JPY"] = "0"
        with pytest.raises(ValueError, match="must be positive"):
            parse_config(raw_defaults)

    def test_unparseable_decimal(self, raw_defaults):
        raw_defaults["reconciliation"]["closing_tolerance"] = "a cent"
        with pytest.raises(ValueError, match="closing_tolerance"):
            parse_config(raw_defaults)

    def test_checksum_tracks_content(self, raw_defaults):
        before = compute_checksum(raw_defaults)
        assert compute_checksum(dict(reversed(list(raw_defaults.items())))) == before

        raw_defaults["payments"]["idempotency_window_seconds"] = 30
        assert compute_checksum(raw_defaults) != before


class TestActiveConfig:

    def test_override_path(self, tmp_path, raw_defaults):
        raw_defaults["credit_notes"]["number_prefix"] = "SC"
        config = get_active_config(_write(tmp_path, raw_defaults))
        assert config.credit_notes.number_prefix == "SC"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "absent.yaml")

    def test_trace_logged(self, tmp_path, raw_defaults, captured_logs):
        path = _write(tmp_path, raw_defaults)

        config = get_active_config(path)

        (trace,) = [r for r in captured_logs() if r["message"] == "LEDGER_CONFIG_TRACE"]
        assert trace["config_path"] == str(path)
        assert trace["checksum"] == config.checksum
        assert trace["account_count"] == len(config.accounts)
