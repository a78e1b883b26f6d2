"""
Tax Method ORM Models (``ledger_modules.tax_method.orm``).

Responsibility
--------------
SQLAlchemy persistence for tax-method preferences, the method-change audit
log, and the route/country tax data the recommender reads.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``ledger_kernel.db.base``
and ``ledger_kernel.models.quote``.

Audit capture
-------------
A session-level ``before_flush`` listener writes an ``automatic_update``
audit row for every change to an order's calculation or valuation method,
whatever code path made it.  Services that write their own, more specific
audit row mark the order with ``mark_audited`` so the listener skips it.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, ForeignKey, Index, String, event, inspect
from sqlalchemy.orm import Mapped, Session, mapped_column

from ledger_kernel.db.base import TrackedBase, UUIDString
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.quote import Quote
from ledger_modules.tax_method.models import ChangeType

logger = get_logger("modules.tax_method.orm")

_AUDITED_KEY = "tax_method_audited_quotes"


# ---------------------------------------------------------------------------
# TaxMethodPreferenceModel
# ---------------------------------------------------------------------------

class TaxMethodPreferenceModel(TrackedBase):
    """
    ORM model for a scoped calculation/valuation method preference.

    Table: ``tax_method_preferences``

    At most one active row per (scope, country_code) is maintained by
    ``TaxMethodService``.
    """

    __tablename__ = "tax_method_preferences"

    scope: Mapped[str] = mapped_column(String(30))
    country_code: Mapped[str | None] = mapped_column(String(2), nullable=True)
    calculation_method: Mapped[str] = mapped_column(String(30))
    valuation_method: Mapped[str] = mapped_column(String(30), default="auto")
    is_active: Mapped[bool] = mapped_column(default=True)

    __table_args__ = (
        Index("idx_tax_method_preferences_scope", "scope", "country_code", "is_active"),
    )

    def __repr__(self) -> str:
        return (
            f"<TaxMethodPreferenceModel({self.scope!r}, country={self.country_code!r}, "
            f"calc={self.calculation_method!r}, active={self.is_active})>"
        )


# ---------------------------------------------------------------------------
# TaxMethodAuditLogModel
# ---------------------------------------------------------------------------

class TaxMethodAuditLogModel(TrackedBase):
    """
    ORM model for one method change (or failed change) on an order.

    Table: ``tax_method_audit_log``

    ``quote_id`` carries no foreign key: a failed bulk update may name an
    order that does not exist.
    """

    __tablename__ = "tax_method_audit_log"

    quote_id: Mapped[UUID] = mapped_column(UUIDString())
    admin_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    previous_calculation_method: Mapped[str | None] = mapped_column(String(30), nullable=True)
    new_calculation_method: Mapped[str | None] = mapped_column(String(30), nullable=True)
    previous_valuation_method: Mapped[str | None] = mapped_column(String(30), nullable=True)
    new_valuation_method: Mapped[str | None] = mapped_column(String(30), nullable=True)
    change_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    change_type: Mapped[str] = mapped_column(String(30))
    metadata_: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)

    __table_args__ = (
        Index("idx_tax_method_audit_quote", "quote_id"),
        Index("idx_tax_method_audit_type", "change_type"),
    )

    def __repr__(self) -> str:
        return (
            f"<TaxMethodAuditLogModel(quote={self.quote_id!r}, type={self.change_type!r}, "
            f"{self.previous_calculation_method!r}->{self.new_calculation_method!r})>"
        )


# ---------------------------------------------------------------------------
# Route and country tax data (read by the recommender)
# ---------------------------------------------------------------------------

class RouteTaxHintModel(TrackedBase):
    """
    ORM model for the tax rates known for one shipping route.

    Table: ``route_tax_hints``
    """

    __tablename__ = "route_tax_hints"

    origin_country: Mapped[str] = mapped_column(String(2))
    destination_country: Mapped[str] = mapped_column(String(2))
    customs_percentage: Mapped[Decimal | None]
    vat_percentage: Mapped[Decimal | None]
    is_active: Mapped[bool] = mapped_column(default=True)

    __table_args__ = (
        Index("idx_route_tax_hints_route", "origin_country", "destination_country"),
    )


class CountryTaxSettingsModel(TrackedBase):
    """
    ORM model for a destination country's default tax rates.

    Table: ``country_tax_settings``
    """

    __tablename__ = "country_tax_settings"

    country_code: Mapped[str] = mapped_column(String(2), unique=True)
    customs_rate: Mapped[Decimal | None]
    vat_rate: Mapped[Decimal | None]


# ---------------------------------------------------------------------------
# Automatic audit capture
# ---------------------------------------------------------------------------

def mark_audited(session: Session, quote_id: UUID) -> None:
    """Tell the flush listener that ``quote_id``'s change is already audited."""
    session.info.setdefault(_AUDITED_KEY, set()).add(quote_id)


def _change(state, attribute: str) -> tuple[Any, Any] | None:
    history = state.attrs[attribute].history
    if not history.has_changes():
        return None
    previous = history.deleted[0] if history.deleted else None
    new = history.added[0] if history.added else None
    if previous == new:
        return None
    return previous, new


@event.listens_for(Session, "before_flush")
def _capture_method_changes(session, flush_context, instances):
    audited = session.info.pop(_AUDITED_KEY, set())
    for obj in list(session.dirty):
        if not isinstance(obj, Quote) or obj.id in audited:
            continue
        state = inspect(obj)
        calc = _change(state, "calculation_method_preference")
        valuation = _change(state, "valuation_method_preference")
        if calc is None and valuation is None:
            continue

        actor = obj.updated_by_id or obj.created_by_id
        session.add(TaxMethodAuditLogModel(
            quote_id=obj.id,
            admin_id=obj.updated_by_id,
            previous_calculation_method=calc[0] if calc else obj.calculation_method_preference,
            new_calculation_method=calc[1] if calc else obj.calculation_method_preference,
            previous_valuation_method=valuation[0] if valuation else obj.valuation_method_preference,
            new_valuation_method=valuation[1] if valuation else obj.valuation_method_preference,
            change_reason="Automatic audit log",
            change_type=ChangeType.AUTOMATIC_UPDATE.value,
            metadata_={"trigger": "before_flush"},
            created_by_id=actor,
        ))
        logger.debug("tax_method_change_captured", extra={"quote_id": str(obj.id)})
