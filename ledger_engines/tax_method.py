"""
Module: ledger_engines.tax_method
Responsibility:
    Decide which customs-tax calculation and valuation method applies to an
    order, recommend a method for a shipping route, and summarise how the
    methods performed historically.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The tax-method module
    loads preferences and route data and passes plain values in.

Invariants enforced:
    - Resolution is an ordered chain of resolvers.  The first one that
      answers wins; the chain always terminates in the auto/auto fallback.
    - Precedence: order-level explicit preference (1.0), destination
      country preference (0.8), system default (0.6), fallback (0.4).
    - A missing order resolves to legacy_fallback/auto with source
      ``not_found`` and confidence 0.0.

Failure modes:
    (none) -- every input combination produces a resolution.

Audit relevance:
    ``source`` and ``confidence`` on each resolution say why a method was
    chosen, which is what an admin needs when a customs charge is disputed.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from ledger_engines.tracer import traced_engine

AUTO = "auto"


class ResolutionSource(str, Enum):
    QUOTE_SPECIFIC = "quote_specific"
    COUNTRY_SPECIFIC = "country_specific"
    SYSTEM_DEFAULT = "system_default"
    FALLBACK = "fallback"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class MethodPreference:
    calculation_method: str
    valuation_method: str = AUTO


@dataclass(frozen=True)
class TaxMethodContext:
    """Everything the resolvers look at for one order."""

    quote_found: bool
    quote_preference: MethodPreference | None = None
    country_preference: MethodPreference | None = None
    system_default: MethodPreference | None = None


@dataclass(frozen=True)
class TaxMethodResolution:
    calculation_method: str
    valuation_method: str
    source: ResolutionSource
    confidence: Decimal


Resolver = Callable[[TaxMethodContext], "TaxMethodResolution | None"]


def _from_quote(ctx: TaxMethodContext) -> TaxMethodResolution | None:
    pref = ctx.quote_preference
    if pref is None or pref.calculation_method == AUTO:
        return None
    return TaxMethodResolution(
        pref.calculation_method,
        pref.valuation_method,
        ResolutionSource.QUOTE_SPECIFIC,
        Decimal("1.0"),
    )


def _from_country(ctx: TaxMethodContext) -> TaxMethodResolution | None:
    pref = ctx.country_preference
    if pref is None:
        return None
    return TaxMethodResolution(
        pref.calculation_method,
        pref.valuation_method,
        ResolutionSource.COUNTRY_SPECIFIC,
        Decimal("0.8"),
    )


def _from_system_default(ctx: TaxMethodContext) -> TaxMethodResolution | None:
    pref = ctx.system_default
    if pref is None:
        return None
    return TaxMethodResolution(
        pref.calculation_method,
        pref.valuation_method,
        ResolutionSource.SYSTEM_DEFAULT,
        Decimal("0.6"),
    )


DEFAULT_RESOLVERS: tuple[Resolver, ...] = (
    _from_quote,
    _from_country,
    _from_system_default,
)

FALLBACK_RESOLUTION = TaxMethodResolution(AUTO, AUTO, ResolutionSource.FALLBACK, Decimal("0.4"))
NOT_FOUND_RESOLUTION = TaxMethodResolution(
    "legacy_fallback", AUTO, ResolutionSource.NOT_FOUND, Decimal("0.0")
)


@traced_engine(
    "tax_method_resolution",
    "1.0",
    fingerprint_fields=("context",),
)
def resolve_tax_method(
    *,
    context: TaxMethodContext,
    resolvers: Sequence[Resolver] = DEFAULT_RESOLVERS,
) -> TaxMethodResolution:
    """Run the resolver chain for one order."""
    if not context.quote_found:
        return NOT_FOUND_RESOLUTION
    for resolver in resolvers:
        resolution = resolver(context)
        if resolution is not None:
            return resolution
    return FALLBACK_RESOLUTION


# =============================================================================
# Route recommendations
# =============================================================================


@dataclass(frozen=True)
class RateCoverage:
    """Which tax rates a route hint or country record actually carries."""

    has_customs_rate: bool
    has_vat_rate: bool


@dataclass(frozen=True)
class TaxMethodRecommendation:
    recommended_method: str
    confidence_score: Decimal
    hsn_availability: bool
    route_data_quality: Decimal
    recommendations: tuple[str, str]


def route_data_quality(
    route: RateCoverage | None,
    country: RateCoverage | None,
) -> Decimal:
    """1.0 / 0.7 / 0.4 from a route hint, else 0.8 / 0.5 / 0.3 from country
    settings, else 0.2."""
    if route is not None:
        return _coverage_score(route, (Decimal("1.0"), Decimal("0.7"), Decimal("0.4")))
    if country is not None:
        return _coverage_score(country, (Decimal("0.8"), Decimal("0.5"), Decimal("0.3")))
    return Decimal("0.2")


def _coverage_score(coverage: RateCoverage, scores: tuple[Decimal, Decimal, Decimal]) -> Decimal:
    both, one, none = scores
    if coverage.has_customs_rate and coverage.has_vat_rate:
        return both
    if coverage.has_customs_rate or coverage.has_vat_rate:
        return one
    return none


_PRIMARY_ADVICE = {
    "auto": "Use Auto method for best balance of accuracy and reliability",
    "hsn_only": "HSN per-item calculation available - use for maximum accuracy",
    "legacy_fallback": "Route data available - legacy calculation recommended",
    "admin_choice": "Limited data available - manual admin selection required",
}


@traced_engine(
    "tax_method_recommendation",
    "1.0",
    fingerprint_fields=("hsn_available", "quality"),
)
def recommend_tax_method(*, hsn_available: bool, quality: Decimal) -> TaxMethodRecommendation:
    if hsn_available and quality > Decimal("0.8"):
        method, confidence = "auto", Decimal("0.95")
    elif hsn_available:
        method, confidence = "hsn_only", Decimal("0.85")
    elif quality > Decimal("0.6"):
        method, confidence = "legacy_fallback", quality
    else:
        method, confidence = "admin_choice", Decimal("0.7")

    if hsn_available and quality < Decimal("0.6"):
        secondary = "Consider configuring shipping routes for better fallback options"
    elif not hsn_available:
        secondary = "Consider adding HSN codes to items for per-item accuracy"
    else:
        secondary = "Data configuration looks good for this route"

    return TaxMethodRecommendation(
        recommended_method=method,
        confidence_score=confidence,
        hsn_availability=hsn_available,
        route_data_quality=quality,
        recommendations=(_PRIMARY_ADVICE[method], secondary),
    )


# =============================================================================
# Historical performance
# =============================================================================

SUCCESS_STATUSES = frozenset({"approved", "paid", "ordered", "shipped", "completed"})

_RATE_PLACES = Decimal("0.001")


@dataclass(frozen=True)
class QuoteOutcome:
    calculation_method: str | None
    status: str


@dataclass(frozen=True)
class MethodStats:
    usage_count: int
    success_rate: Decimal
    approval_rate: Decimal


@dataclass(frozen=True)
class MethodPerformance:
    total_quotes: int
    methods: dict[str, MethodStats] = field(default_factory=dict)
    average_success_rate: Decimal = Decimal("0")

    @property
    def method_distribution(self) -> dict[str, int]:
        return {name: stats.usage_count for name, stats in self.methods.items()}


def _rate(hits: int, total: int) -> Decimal:
    if total == 0:
        return Decimal("0")
    return (Decimal(hits) / Decimal(total)).quantize(_RATE_PLACES, rounding=ROUND_HALF_UP)


def analyze_performance(outcomes: Sequence[QuoteOutcome]) -> MethodPerformance:
    """Per-method usage, success rate and approval rate."""
    grouped: dict[str, list[QuoteOutcome]] = {}
    for outcome in outcomes:
        grouped.setdefault(outcome.calculation_method or AUTO, []).append(outcome)

    methods = {
        name: MethodStats(
            usage_count=len(rows),
            success_rate=_rate(sum(1 for r in rows if r.status in SUCCESS_STATUSES), len(rows)),
            approval_rate=_rate(sum(1 for r in rows if r.status == "approved"), len(rows)),
        )
        for name, rows in sorted(grouped.items())
    }
    successes = sum(1 for o in outcomes if o.status in SUCCESS_STATUSES)
    return MethodPerformance(
        total_quotes=len(outcomes),
        methods=methods,
        average_success_rate=_rate(successes, len(outcomes)),
    )
