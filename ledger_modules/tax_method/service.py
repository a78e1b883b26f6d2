"""
ledger_modules.tax_method.service
=================================

Responsibility:
    Resolves which customs-tax calculation and valuation method applies to
    an order, changes it (one order or in bulk), manages country-level and
    system-wide preferences, recommends a method for a shipping route, and
    reports how each method has performed.

Architecture:
    Module layer.  Loads preferences and route data and hands plain values
    to ``ledger_engines.tax_method``.  Owns the transaction boundary.

Invariants enforced:
    - Only configured calculation/valuation methods are stored.
    - Every method change on an order is audited: explicitly (manual,
      bulk_update, bulk_update_failed) by this service, and as
      ``automatic_update`` by the flush listener for any other path.
    - Bulk updates isolate each order in a savepoint; one failure never
      undoes the others.
    - At most one active preference per country, and one system default.

Failure modes:
    - InvalidTaxMethodError, QuoteNotFoundError -> DECLINED result.
    - Capability denial -> DECLINED result (bulk: success False, nothing
      updated, every id counted as failed).
    - Other unexpected exceptions -> rollback and re-raise.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ledger_config.schema import LedgerConfig
from ledger_engines.tax_method import (
    MethodPerformance,
    MethodPreference,
    QuoteOutcome,
    RateCoverage,
    TaxMethodContext,
    TaxMethodRecommendation,
    TaxMethodResolution,
    analyze_performance,
    recommend_tax_method,
    resolve_tax_method,
    route_data_quality,
)
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.exceptions import (
    CapabilityDeniedError,
    InvalidTaxMethodError,
    LedgerError,
    QuoteNotFoundError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.quote import Quote
from ledger_modules.tax_method.models import (
    BulkUpdateResult,
    ChangeType,
    PreferenceResult,
    PreferenceScope,
    TaxMethodChangeResult,
    TaxMethodOutcome,
)
from ledger_modules.tax_method.orm import (
    CountryTaxSettingsModel,
    RouteTaxHintModel,
    TaxMethodAuditLogModel,
    TaxMethodPreferenceModel,
    mark_audited,
)
from ledger_services.rbac_authority import ActorContext, requires_capability

logger = get_logger("modules.tax_method.service")

DEFAULT_BULK_REASON = "Bulk update via admin panel"


def _bulk_denied(reason: str, *args: Any, **kwargs: Any) -> BulkUpdateResult:
    order_ids = kwargs.get("order_ids", args[0] if args else ())
    calc_method = kwargs.get("calc_method", args[1] if len(args) > 1 else "")
    return BulkUpdateResult(
        success=False,
        updated=0,
        failed=len(order_ids),
        total_processed=len(order_ids),
        method_applied=calc_method,
        message=reason,
    )


def _preference_denied(reason: str, *args: Any, **kwargs: Any) -> PreferenceResult:
    return PreferenceResult(
        status=TaxMethodOutcome.DECLINED,
        message=reason,
        error_code=CapabilityDeniedError.code,
    )


class TaxMethodService:
    """
    Tax-method resolution and administration.

    Contract:
        Read operations never write.  Mutating operations either commit
        and return a result or roll back and return a declined result.

    Non-goals:
        - Does NOT compute customs duty; it only decides the method.
        - Does NOT curate HSN or route data; it reads what is there.
    """

    def __init__(
        self,
        session: Session,
        config: LedgerConfig,
        clock: Clock | None = None,
    ):
        self._session = session
        self._config = config
        self._clock = clock or SystemClock()

    # =========================================================================
    # Resolution
    # =========================================================================

    def get_effective_method(self, quote_id: UUID) -> TaxMethodResolution:
        """Method for an order: order > destination country > system
        default > auto/auto fallback."""
        quote = self._session.get(Quote, quote_id)
        if quote is None:
            return resolve_tax_method(context=TaxMethodContext(quote_found=False))

        context = TaxMethodContext(
            quote_found=True,
            quote_preference=MethodPreference(
                quote.calculation_method_preference or "auto",
                quote.valuation_method_preference or "auto",
            ),
            country_preference=self._active_preference(
                PreferenceScope.COUNTRY_SPECIFIC, quote.destination_country,
            ) if quote.destination_country else None,
            system_default=self._active_preference(PreferenceScope.SYSTEM_DEFAULT, None),
        )
        resolution = resolve_tax_method(context=context)
        logger.debug("tax_method_resolved", extra={
            "quote_id": str(quote_id),
            "calculation_method": resolution.calculation_method,
            "source": resolution.source.value,
        })
        return resolution

    def _active_preference(
        self,
        scope: PreferenceScope,
        country_code: str | None,
    ) -> MethodPreference | None:
        row = self._active_preference_row(scope, country_code)
        if row is None:
            return None
        return MethodPreference(row.calculation_method, row.valuation_method)

    def _active_preference_row(
        self,
        scope: PreferenceScope,
        country_code: str | None,
    ) -> TaxMethodPreferenceModel | None:
        query = select(TaxMethodPreferenceModel).where(
            TaxMethodPreferenceModel.scope == scope.value,
            TaxMethodPreferenceModel.is_active.is_(True),
        )
        if country_code is not None:
            query = query.where(TaxMethodPreferenceModel.country_code == country_code.upper())
        return self._session.scalars(
            query.order_by(TaxMethodPreferenceModel.created_at.desc())
        ).first()

    # =========================================================================
    # Per-order changes
    # =========================================================================

    def set_quote_method(
        self,
        quote_id: UUID,
        calculation_method: str,
        actor_id: UUID,
        valuation_method: str | None = None,
        reason: str | None = None,
    ) -> TaxMethodChangeResult:
        """Set an order's explicit method preference (audited as manual)."""
        try:
            with LogContext.bind(quote_id=str(quote_id), actor_id=str(actor_id)):
                try:
                    self._validate(calculation_method, valuation_method)
                    quote = self._session.get(Quote, quote_id)
                    if quote is None:
                        raise QuoteNotFoundError(str(quote_id))
                except LedgerError as exc:
                    self._session.rollback()
                    logger.warning("tax_method_change_declined", extra={
                        "error_code": exc.code,
                        "reason": str(exc),
                    })
                    return TaxMethodChangeResult(
                        status=TaxMethodOutcome.DECLINED,
                        message=str(exc),
                        quote_id=quote_id,
                        error_code=exc.code,
                    )

                changed = self._apply_method(
                    quote,
                    calculation_method,
                    valuation_method,
                    actor_id,
                    ChangeType.MANUAL,
                    reason or "Manual method change",
                )
                self._session.commit()

                logger.info("tax_method_changed", extra={
                    "calculation_method": quote.calculation_method_preference,
                    "valuation_method": quote.valuation_method_preference,
                    "changed": changed,
                })
                return TaxMethodChangeResult(
                    status=TaxMethodOutcome.UPDATED if changed else TaxMethodOutcome.UNCHANGED,
                    message="Tax method updated" if changed else "Tax method unchanged",
                    quote_id=quote.id,
                    calculation_method=quote.calculation_method_preference,
                    valuation_method=quote.valuation_method_preference,
                )
        except Exception:
            self._session.rollback()
            raise

    @requires_capability("tax_method.bulk_update", denied=_bulk_denied)
    def bulk_update_method(
        self,
        order_ids: list[UUID],
        calc_method: str,
        actor: ActorContext,
        reason: str = DEFAULT_BULK_REASON,
    ) -> BulkUpdateResult:
        """
        Apply one calculation method to many orders.

        Each order is updated inside its own savepoint.  Successes are
        audited as ``bulk_update``; failures are rolled back individually,
        audited as ``bulk_update_failed`` and counted.

        Postconditions:
            - updated + failed == len(order_ids); success iff failed == 0.
        """
        try:
            self._validate(calc_method, None)
        except InvalidTaxMethodError as exc:
            logger.warning("tax_method_bulk_update_declined", extra={
                "error_code": exc.code,
                "reason": str(exc),
            })
            return BulkUpdateResult(
                success=False,
                updated=0,
                failed=len(order_ids),
                total_processed=len(order_ids),
                method_applied=calc_method,
                message=str(exc),
            )

        updated = 0
        errors: list[tuple[str, str]] = []
        try:
            for order_id in order_ids:
                savepoint = self._session.begin_nested()
                try:
                    quote = self._session.get(Quote, order_id)
                    if quote is None:
                        raise QuoteNotFoundError(str(order_id))
                    self._apply_method(
                        quote, calc_method, None, actor.actor_id, ChangeType.BULK_UPDATE, reason,
                    )
                    self._session.flush()
                    savepoint.commit()
                    updated += 1
                except Exception as exc:
                    savepoint.rollback()
                    errors.append((str(order_id), str(exc)))
                    self._session.add(TaxMethodAuditLogModel(
                        quote_id=order_id,
                        admin_id=actor.actor_id,
                        new_calculation_method=calc_method,
                        change_reason=reason,
                        change_type=ChangeType.BULK_UPDATE_FAILED.value,
                        metadata_={"error": str(exc)},
                        created_by_id=actor.actor_id,
                    ))
                    logger.warning("tax_method_bulk_item_failed", extra={
                        "quote_id": str(order_id),
                        "error_msg": str(exc),
                    })
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        failed = len(errors)
        logger.info("tax_method_bulk_update_completed", extra={
            "method_applied": calc_method,
            "updated": updated,
            "failed": failed,
            "actor_id": str(actor.actor_id),
        })
        return BulkUpdateResult(
            success=failed == 0,
            updated=updated,
            failed=failed,
            total_processed=len(order_ids),
            method_applied=calc_method,
            message=f"Updated {updated} of {len(order_ids)} orders",
            errors=tuple(errors),
        )

    def _apply_method(
        self,
        quote: Quote,
        calculation_method: str,
        valuation_method: str | None,
        actor_id: UUID,
        change_type: ChangeType,
        reason: str,
    ) -> bool:
        """Change the order's preference and write the explicit audit row.

        Returns False when nothing changed (no audit row is written).
        """
        previous_calc = quote.calculation_method_preference
        previous_valuation = quote.valuation_method_preference
        new_valuation = valuation_method or previous_valuation
        if previous_calc == calculation_method and previous_valuation == new_valuation:
            return False

        quote.calculation_method_preference = calculation_method
        quote.valuation_method_preference = new_valuation
        quote.updated_by_id = actor_id
        self._session.add(TaxMethodAuditLogModel(
            quote_id=quote.id,
            admin_id=actor_id,
            previous_calculation_method=previous_calc,
            new_calculation_method=calculation_method,
            previous_valuation_method=previous_valuation,
            new_valuation_method=new_valuation,
            change_reason=reason,
            change_type=change_type.value,
            created_by_id=actor_id,
        ))
        mark_audited(self._session, quote.id)
        return True

    # =========================================================================
    # Scoped preferences
    # =========================================================================

    @requires_capability("tax_method.configure", denied=_preference_denied)
    def set_country_preference(
        self,
        country_code: str,
        calculation_method: str,
        actor: ActorContext,
        valuation_method: str = "auto",
    ) -> PreferenceResult:
        return self._replace_preference(
            PreferenceScope.COUNTRY_SPECIFIC,
            country_code.upper(),
            calculation_method,
            valuation_method,
            actor.actor_id,
        )

    @requires_capability("tax_method.configure", denied=_preference_denied)
    def set_system_default(
        self,
        calculation_method: str,
        actor: ActorContext,
        valuation_method: str = "auto",
    ) -> PreferenceResult:
        return self._replace_preference(
            PreferenceScope.SYSTEM_DEFAULT,
            None,
            calculation_method,
            valuation_method,
            actor.actor_id,
        )

    def _replace_preference(
        self,
        scope: PreferenceScope,
        country_code: str | None,
        calculation_method: str,
        valuation_method: str,
        actor_id: UUID,
    ) -> PreferenceResult:
        try:
            try:
                self._validate(calculation_method, valuation_method)
            except LedgerError as exc:
                self._session.rollback()
                logger.warning("tax_method_preference_declined", extra={
                    "scope": scope.value,
                    "error_code": exc.code,
                    "reason": str(exc),
                })
                return PreferenceResult(
                    status=TaxMethodOutcome.DECLINED,
                    message=str(exc),
                    scope=scope,
                    error_code=exc.code,
                )

            deactivate = update(TaxMethodPreferenceModel).where(
                TaxMethodPreferenceModel.scope == scope.value,
                TaxMethodPreferenceModel.is_active.is_(True),
            )
            if country_code is not None:
                deactivate = deactivate.where(TaxMethodPreferenceModel.country_code == country_code)
            self._session.execute(
                deactivate.values(is_active=False, updated_by_id=actor_id),
                execution_options={"synchronize_session": "fetch"},
            )

            preference = TaxMethodPreferenceModel(
                scope=scope.value,
                country_code=country_code,
                calculation_method=calculation_method,
                valuation_method=valuation_method,
                is_active=True,
                created_by_id=actor_id,
            )
            self._session.add(preference)
            self._session.commit()

            logger.info("tax_method_preference_set", extra={
                "scope": scope.value,
                "country_code": country_code,
                "calculation_method": calculation_method,
                "valuation_method": valuation_method,
            })
            return PreferenceResult(
                status=TaxMethodOutcome.UPDATED,
                message=f"{scope.value} preference set to {calculation_method}",
                preference_id=preference.id,
                scope=scope,
            )
        except Exception:
            self._session.rollback()
            raise

    # =========================================================================
    # Recommendations and analytics
    # =========================================================================

    def get_recommendations(
        self,
        origin_country: str,
        destination_country: str,
        hsn_available: bool,
    ) -> TaxMethodRecommendation:
        route = self._session.scalars(
            select(RouteTaxHintModel).where(
                RouteTaxHintModel.origin_country == origin_country.upper(),
                RouteTaxHintModel.destination_country == destination_country.upper(),
                RouteTaxHintModel.is_active.is_(True),
            )
        ).first()
        country = None
        if route is None:
            country = self._session.scalars(
                select(CountryTaxSettingsModel).where(
                    CountryTaxSettingsModel.country_code == destination_country.upper(),
                )
            ).first()

        quality = route_data_quality(
            RateCoverage(route.customs_percentage is not None, route.vat_percentage is not None)
            if route is not None else None,
            RateCoverage(country.customs_rate is not None, country.vat_rate is not None)
            if country is not None else None,
        )
        return recommend_tax_method(hsn_available=hsn_available, quality=quality)

    def analyze_method_performance(
        self,
        origin_country: str | None = None,
        destination_country: str | None = None,
        days: int = 30,
    ) -> MethodPerformance:
        """Per-method usage and success over orders created in the last
        ``days`` days, optionally restricted to one route."""
        since = self._clock.now() - timedelta(days=days)
        query = select(Quote.calculation_method_preference, Quote.status).where(
            Quote.created_at >= since,
        )
        if origin_country:
            query = query.where(Quote.origin_country == origin_country.upper())
        if destination_country:
            query = query.where(Quote.destination_country == destination_country.upper())

        outcomes = [
            QuoteOutcome(calculation_method=method, status=status)
            for method, status in self._session.execute(query).all()
        ]
        return analyze_performance(outcomes)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _validate(self, calculation_method: str, valuation_method: str | None) -> None:
        settings = self._config.tax_method
        if calculation_method not in settings.valid_calculation_methods:
            raise InvalidTaxMethodError(calculation_method, "calculation")
        if valuation_method is not None and valuation_method not in settings.valid_valuation_methods:
            raise InvalidTaxMethodError(valuation_method, "valuation")
