"""
Configuration Loader (``ledger_config.loader``).

Responsibility
--------------
Loads the YAML configuration file and parses it into the typed
``ledger_config.schema`` dataclasses.  Runtime code does not call this
directly; the single public entry point is
``ledger_config.get_active_config()``.

Invariants enforced
-------------------
* Required keys raise ``KeyError``; invalid values raise ``ValueError``.
  No silent defaults for required fields.
* Every parsed object is a frozen dataclass from ``schema.py``.
* Monetary values (rates, tolerances) are parsed through ``str`` into
  ``Decimal`` so YAML floats never leak binary rounding into the ledger.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from ledger_config.schema import (
    AccountDef,
    CreditNoteSettings,
    GatewaySettings,
    LedgerConfig,
    PaymentSettings,
    PostingAccounts,
    RbacConfig,
    ReconciliationSettings,
    RefundSettings,
    TaxMethodSettings,
)

VALID_ACCOUNT_TYPES = {"asset", "liability", "equity", "revenue", "expense"}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any, field_name: str) -> Decimal:
    """Parse a YAML scalar into Decimal via its string form."""
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"{field_name}: cannot parse decimal from {value!r}") from exc


def parse_account(data: dict[str, Any]) -> AccountDef:
    """Parse one chart-of-accounts entry."""
    account_type = data["type"]
    if account_type not in VALID_ACCOUNT_TYPES:
        raise ValueError(
            f"Account {data.get('code')!r}: invalid type {account_type!r}"
        )
    parent = data.get("parent")
    return AccountDef(
        code=str(data["code"]),
        name=data["name"],
        account_type=account_type,
        parent_code=str(parent) if parent is not None else None,
        description=data.get("description"),
        is_active=data.get("active", True),
    )


def parse_gateways(data: dict[str, Any]) -> GatewaySettings:
    """Parse the gateway -> account mapping and display names."""
    accounts = tuple(
        sorted((code.lower(), str(account)) for code, account in data["accounts"].items())
    )
    names = tuple(
        sorted((code.lower(), name) for code, name in (data.get("display_names") or {}).items())
    )
    return GatewaySettings(
        accounts=accounts,
        default_account=str(data["default_account"]),
        display_names=names,
    )


def parse_posting_accounts(data: dict[str, Any]) -> PostingAccounts:
    return PostingAccounts(
        accounts_receivable=str(data["accounts_receivable"]),
        customer_deposits=str(data["customer_deposits"]),
        sales_revenue=str(data["sales_revenue"]),
        refunds_and_returns=str(data["refunds_and_returns"]),
    )


def parse_rbac(data: dict[str, Any]) -> RbacConfig:
    roles = data.get("role_capabilities") or {}
    return RbacConfig(
        role_capabilities=tuple(
            sorted((role, frozenset(caps or ())) for role, caps in roles.items())
        ),
    )


def parse_tax_method(data: dict[str, Any]) -> TaxMethodSettings:
    defaults = TaxMethodSettings()
    calc = data.get("valid_calculation_methods")
    valuation = data.get("valid_valuation_methods")
    return TaxMethodSettings(
        valid_calculation_methods=frozenset(calc) if calc else defaults.valid_calculation_methods,
        valid_valuation_methods=frozenset(valuation) if valuation else defaults.valid_valuation_methods,
    )


def parse_config(data: dict[str, Any]) -> LedgerConfig:
    """
    Parse a complete ``LedgerConfig`` from a dict.

    Preconditions:
        - ``data`` contains ``base_currency``, ``exchange_rates``,
          ``accounts``, ``posting_accounts`` and ``gateways``.
    Postconditions:
        - Returns a frozen ``LedgerConfig`` whose ``checksum`` identifies
          the source data.
    Raises:
        KeyError: if required keys are missing.
        ValueError: if values cannot be parsed.
    """
    base_currency = data["base_currency"].upper()
    rates = tuple(
        sorted(
            (code.upper(), parse_decimal(rate, f"exchange_rates.{code}"))
            for code, rate in data["exchange_rates"].items()
        )
    )
    for code, rate in rates:
        if rate <= 0:
            raise ValueError(f"exchange_rates.{code}: rate must be positive")

    payments = data.get("payments") or {}
    refunds = data.get("refunds") or {}
    credit_notes = data.get("credit_notes") or {}
    reconciliation = data.get("reconciliation") or {}

    return LedgerConfig(
        base_currency=base_currency,
        exchange_rates=rates,
        accounts=tuple(parse_account(a) for a in data["accounts"]),
        posting_accounts=parse_posting_accounts(data["posting_accounts"]),
        gateways=parse_gateways(data["gateways"]),
        payments=PaymentSettings(
            idempotency_window_seconds=int(
                payments.get("idempotency_window_seconds", 10)
            ),
        ),
        refunds=RefundSettings(
            eligibility_window_days=int(refunds.get("eligibility_window_days", 180)),
        ),
        credit_notes=CreditNoteSettings(
            default_valid_days=int(credit_notes.get("default_valid_days", 365)),
            number_prefix=credit_notes.get("number_prefix", "CN"),
        ),
        reconciliation=ReconciliationSettings(
            closing_tolerance=parse_decimal(
                reconciliation.get("closing_tolerance", "0.01"),
                "reconciliation.closing_tolerance",
            ),
        ),
        tax_method=parse_tax_method(data.get("tax_method") or {}),
        rbac=parse_rbac(data.get("rbac") or {}),
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
