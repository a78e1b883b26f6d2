"""
Tests for TaxMethodService.

Validates:
- Effective method precedence: order > country > system default > fallback
- Per-order changes and their audit rows (explicit and automatic)
- Bulk updates isolate failures per order
- Scoped preference replacement
- Recommendations from route/country data and historical performance
"""

from __future__ import annotations

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from ledger_engines.tax_method import ResolutionSource
from ledger_kernel.exceptions import (
    CapabilityDeniedError,
    InvalidTaxMethodError,
    QuoteNotFoundError,
)
from ledger_modules.tax_method.models import ChangeType, PreferenceScope, TaxMethodOutcome
from ledger_modules.tax_method.orm import (
    CountryTaxSettingsModel,
    RouteTaxHintModel,
    TaxMethodAuditLogModel,
    TaxMethodPreferenceModel,
)
from ledger_modules.tax_method.service import TaxMethodService


@pytest.fixture
def tax_methods(session, config, deterministic_clock):
    return TaxMethodService(session, config, deterministic_clock)


def _audit_rows(session, quote_id) -> list[TaxMethodAuditLogModel]:
    return list(session.scalars(
        select(TaxMethodAuditLogModel).where(TaxMethodAuditLogModel.quote_id == quote_id)
    ).all())


# =============================================================================
# Resolution
# =============================================================================


class TestEffectiveMethod:

    def test_fallback_without_preferences(self, tax_methods, make_quote):
        resolution = tax_methods.get_effective_method(make_quote().id)

        assert resolution.calculation_method == "auto"
        assert resolution.source == ResolutionSource.FALLBACK

    def test_unknown_order(self, tax_methods, chart):
        resolution = tax_methods.get_effective_method(uuid4())

        assert resolution.calculation_method == "legacy_fallback"
        assert resolution.source == ResolutionSource.NOT_FOUND

    def test_order_preference_beats_country(self, tax_methods, make_quote, admin_actor):
        quote = make_quote(destination_country="IN")
        tax_methods.set_country_preference("in", "legacy_fallback", admin_actor)

        before = tax_methods.get_effective_method(quote.id)
        assert (before.calculation_method, before.source) == (
            "legacy_fallback", ResolutionSource.COUNTRY_SPECIFIC,
        )

        tax_methods.set_quote_method(quote.id, "hsn_only", admin_actor.actor_id)
        after = tax_methods.get_effective_method(quote.id)

        assert (after.calculation_method, after.source) == ("hsn_only", ResolutionSource.QUOTE_SPECIFIC)
        assert after.confidence == Decimal("1.0")

    def test_system_default_when_country_has_none(self, tax_methods, make_quote, admin_actor):
        quote = make_quote(destination_country="NP")
        tax_methods.set_country_preference("IN", "legacy_fallback", admin_actor)
        tax_methods.set_system_default("admin_choice", admin_actor, valuation_method="higher_of_both")

        resolution = tax_methods.get_effective_method(quote.id)

        assert resolution.calculation_method == "admin_choice"
        assert resolution.valuation_method == "higher_of_both"
        assert resolution.source == ResolutionSource.SYSTEM_DEFAULT


# =============================================================================
# Per-order changes and audit
# =============================================================================


class TestQuoteMethod:

    def test_change_writes_one_manual_audit_row(self, tax_methods, make_quote, session, test_actor_id):
        quote = make_quote()

        result = tax_methods.set_quote_method(
            quote.id, "hsn_only", test_actor_id, valuation_method="product_value", reason="HSN verified",
        )

        assert result.status == TaxMethodOutcome.UPDATED
        (row,) = _audit_rows(session, quote.id)
        assert row.change_type == ChangeType.MANUAL.value
        assert (row.previous_calculation_method, row.new_calculation_method) == ("auto", "hsn_only")
        assert (row.previous_valuation_method, row.new_valuation_method) == ("auto", "product_value")
        assert row.change_reason == "HSN verified"

    def test_same_method_is_unchanged(self, tax_methods, make_quote, session, test_actor_id):
        quote = make_quote()

        result = tax_methods.set_quote_method(quote.id, "auto", test_actor_id)

        assert result.status == TaxMethodOutcome.UNCHANGED
        assert _audit_rows(session, quote.id) == []

    def test_invalid_method_declined(self, tax_methods, make_quote, test_actor_id):
        result = tax_methods.set_quote_method(make_quote().id, "guesswork", test_actor_id)

        assert result.status == TaxMethodOutcome.DECLINED
        assert result.error_code == InvalidTaxMethodError.code

    def test_unknown_order_declined(self, tax_methods, chart, test_actor_id):
        result = tax_methods.set_quote_method(uuid4(), "hsn_only", test_actor_id)
        assert result.error_code == QuoteNotFoundError.code

    def test_direct_attribute_change_is_audited(self, make_quote, session, test_actor_id):
        quote = make_quote()

        quote.valuation_method_preference = "minimum_valuation"
        quote.updated_by_id = test_actor_id
        session.flush()

        (row,) = _audit_rows(session, quote.id)
        assert row.change_type == ChangeType.AUTOMATIC_UPDATE.value
        assert (row.previous_valuation_method, row.new_valuation_method) == ("auto", "minimum_valuation")
        assert row.previous_calculation_method == row.new_calculation_method == "auto"
        assert row.admin_id == test_actor_id

    def test_change_after_expiry_keeps_previous_value(self, make_quote, session, test_actor_id):
        quote = make_quote(calculation_method_preference="hsn_only")
        session.expire(quote)

        quote.calculation_method_preference = "legacy_fallback"
        quote.updated_by_id = test_actor_id
        session.commit()

        (row,) = _audit_rows(session, quote.id)
        assert row.change_type == ChangeType.AUTOMATIC_UPDATE.value
        assert (row.previous_calculation_method, row.new_calculation_method) == (
            "hsn_only", "legacy_fallback",
        )
        assert row.previous_valuation_method == row.new_valuation_method == "auto"


# =============================================================================
# Bulk updates
# =============================================================================


class TestBulkUpdate:

    def test_missing_order_fails_alone(self, tax_methods, make_quote, session, admin_actor):
        first, second = make_quote(), make_quote()
        missing = uuid4()

        result = tax_methods.bulk_update_method(
            [first.id, missing, second.id], "legacy_fallback", admin_actor,
        )

        assert not result.success
        assert (result.updated, result.failed, result.total_processed) == (2, 1, 3)
        assert result.errors[0][0] == str(missing)
        assert first.calculation_method_preference == "legacy_fallback"
        assert second.calculation_method_preference == "legacy_fallback"

        assert [r.change_type for r in _audit_rows(session, first.id)] == [ChangeType.BULK_UPDATE.value]
        (failed,) = _audit_rows(session, missing)
        assert failed.change_type == ChangeType.BULK_UPDATE_FAILED.value
        assert failed.new_calculation_method == "legacy_fallback"

    def test_invalid_method_fails_everything(self, tax_methods, make_quote, session, admin_actor):
        quote = make_quote()

        result = tax_methods.bulk_update_method([quote.id, uuid4()], "bogus", admin_actor)

        assert not result.success
        assert (result.updated, result.failed) == (0, 2)
        assert _audit_rows(session, quote.id) == []

    def test_customer_denied(self, tax_methods, make_quote, customer_actor):
        quote = make_quote()

        result = tax_methods.bulk_update_method([quote.id], "hsn_only", customer_actor)

        assert not result.success
        assert result.failed == 1
        assert quote.calculation_method_preference == "auto"


# =============================================================================
# Preferences
# =============================================================================


class TestPreferences:

    def test_country_preference_replaced(self, tax_methods, chart, session, admin_actor):
        tax_methods.set_country_preference("IN", "legacy_fallback", admin_actor)
        result = tax_methods.set_country_preference("IN", "hsn_only", admin_actor)

        assert result.status == TaxMethodOutcome.UPDATED
        assert result.scope == PreferenceScope.COUNTRY_SPECIFIC
        active = session.scalars(
            select(TaxMethodPreferenceModel).where(
                TaxMethodPreferenceModel.country_code == "IN",
                TaxMethodPreferenceModel.is_active.is_(True),
            )
        ).all()
        assert [p.calculation_method for p in active] == ["hsn_only"]

    def test_invalid_valuation_declined(self, tax_methods, chart, admin_actor):
        result = tax_methods.set_system_default("auto", admin_actor, valuation_method="whatever")
        assert result.error_code == InvalidTaxMethodError.code

    def test_finance_cannot_configure(self, tax_methods, chart, finance_actor):
        result = tax_methods.set_country_preference("IN", "hsn_only", finance_actor)

        assert result.status == TaxMethodOutcome.DECLINED
        assert result.error_code == CapabilityDeniedError.code


# =============================================================================
# Recommendations and performance
# =============================================================================


class TestRecommendations:

    def test_complete_route_data(self, tax_methods, chart, session, test_actor_id):
        session.add(RouteTaxHintModel(
            origin_country="US",
            destination_country="IN",
            customs_percentage=Decimal("10"),
            vat_percentage=Decimal("18"),
            created_by_id=test_actor_id,
        ))
        session.flush()

        with_hsn = tax_methods.get_recommendations("us", "in", hsn_available=True)
        without_hsn = tax_methods.get_recommendations("US", "IN", hsn_available=False)

        assert with_hsn.recommended_method == "auto"
        assert with_hsn.route_data_quality == Decimal("1.0")
        assert without_hsn.recommended_method == "legacy_fallback"

    def test_country_settings_fallback(self, tax_methods, chart, session, test_actor_id):
        session.add(CountryTaxSettingsModel(
            country_code="NP", customs_rate=Decimal("15"), vat_rate=None, created_by_id=test_actor_id,
        ))
        session.flush()

        recommendation = tax_methods.get_recommendations("US", "NP", hsn_available=False)

        assert recommendation.route_data_quality == Decimal("0.5")
        assert recommendation.recommended_method == "admin_choice"

    def test_no_data(self, tax_methods, chart):
        recommendation = tax_methods.get_recommendations("US", "BT", hsn_available=True)

        assert recommendation.route_data_quality == Decimal("0.2")
        assert recommendation.recommended_method == "hsn_only"

    def test_method_performance_for_route(self, tax_methods, make_quote):
        make_quote(origin_country="CN", calculation_method_preference="hsn_only", status="paid")
        make_quote(origin_country="CN", calculation_method_preference="hsn_only", status="rejected")
        make_quote(origin_country="CN", status="approved")
        make_quote(origin_country="US", status="paid")

        performance = tax_methods.analyze_method_performance(origin_country="CN", days=3650)

        assert performance.total_quotes == 3
        assert performance.method_distribution == {"auto": 1, "hsn_only": 2}
        assert performance.methods["hsn_only"].success_rate == Decimal("0.500")
        assert performance.methods["auto"].approval_rate == Decimal("1.000")
        assert performance.average_success_rate == Decimal("0.667")
