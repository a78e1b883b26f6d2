"""
LedgerConfig schema.

Defines the runtime configuration artifact for the ledger: the seeded chart
of accounts, gateway -> account mappings, exchange rates, business windows
and role capabilities.  YAML is parsed into these types by the loader and
handed out by ``ledger_config.get_active_config()``.

All types are frozen dataclasses; mappings are stored as tuples of pairs
so a loaded configuration can be hashed and compared.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from ledger_kernel.exceptions import ExchangeRateNotFoundError

# ---------------------------------------------------------------------------
# Chart of accounts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccountDef:
    """One chart-of-accounts node to seed."""

    code: str
    name: str
    account_type: str  # asset, liability, equity, revenue, expense
    parent_code: str | None = None
    description: str | None = None
    is_active: bool = True


@dataclass(frozen=True)
class PostingAccounts:
    """Well-known account codes used by the ledger posting paths."""

    accounts_receivable: str
    customer_deposits: str
    sales_revenue: str
    refunds_and_returns: str


@dataclass(frozen=True)
class GatewaySettings:
    """Gateway code -> asset account and display-name lookups."""

    accounts: tuple[tuple[str, str], ...]
    default_account: str
    display_names: tuple[tuple[str, str], ...] = ()

    def account_for(self, gateway_code: str | None) -> str:
        mapping = dict(self.accounts)
        if gateway_code is None:
            return self.default_account
        return mapping.get(gateway_code.lower(), self.default_account)

    def display_name(self, gateway_code: str | None) -> str:
        if not gateway_code:
            return "Manual"
        return dict(self.display_names).get(gateway_code.lower(), gateway_code.upper())


# ---------------------------------------------------------------------------
# Business windows
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PaymentSettings:
    idempotency_window_seconds: int = 10


@dataclass(frozen=True)
class RefundSettings:
    eligibility_window_days: int = 180


@dataclass(frozen=True)
class CreditNoteSettings:
    default_valid_days: int = 365
    number_prefix: str = "CN"


@dataclass(frozen=True)
class ReconciliationSettings:
    closing_tolerance: Decimal = Decimal("0.01")


@dataclass(frozen=True)
class TaxMethodSettings:
    valid_calculation_methods: frozenset[str] = frozenset(
        {"auto", "hsn_only", "legacy_fallback", "admin_choice"}
    )
    valid_valuation_methods: frozenset[str] = frozenset(
        {"auto", "product_value", "minimum_valuation", "higher_of_both"}
    )


# ---------------------------------------------------------------------------
# RBAC
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RbacConfig:
    """Role -> capability grants for privileged ledger operations."""

    role_capabilities: tuple[tuple[str, frozenset[str]], ...] = ()

    def capabilities_for(self, roles: tuple[str, ...]) -> frozenset[str]:
        grants = dict(self.role_capabilities)
        caps: set[str] = set()
        for role in roles:
            caps |= grants.get(role, frozenset())
        return frozenset(caps)


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LedgerConfig:
    """The complete runtime configuration."""

    base_currency: str
    exchange_rates: tuple[tuple[str, Decimal], ...]
    accounts: tuple[AccountDef, ...]
    posting_accounts: PostingAccounts
    gateways: GatewaySettings
    payments: PaymentSettings = field(default_factory=PaymentSettings)
    refunds: RefundSettings = field(default_factory=RefundSettings)
    credit_notes: CreditNoteSettings = field(default_factory=CreditNoteSettings)
    reconciliation: ReconciliationSettings = field(default_factory=ReconciliationSettings)
    tax_method: TaxMethodSettings = field(default_factory=TaxMethodSettings)
    rbac: RbacConfig = field(default_factory=RbacConfig)
    checksum: str = ""

    def rate_for(self, currency: str) -> Decimal:
        """Units of ``currency`` per one unit of base currency.

        Raises:
            ExchangeRateNotFoundError: currency has no configured rate.
        """
        code = currency.upper()
        if code == self.base_currency:
            return Decimal("1")
        rates = dict(self.exchange_rates)
        if code not in rates:
            raise ExchangeRateNotFoundError(code, self.base_currency)
        return rates[code]
