"""
Tests for the Comp Engine

Verifies:
- Recency and similarity filtering, with the similarity fallback
- Additive quality scoring and stable ordering
- Tiered comps ARV (remodeled / mixed / unremodeled-only / fallback)
- Renovation premium cap
- Weighted multi-source blending and CV-based confidence
- Deterministic results for same input
"""

import pytest
from datetime import date, timedelta
from pathlib import Path
import sys

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from utils.config import ValuationConfig
from valuation.models import ErrorKind, PropertyDescriptor, is_error
from valuation.comp_engine import (
    ComparableSale,
    Condition,
    Confidence,
    PointEstimate,
    QualityLabel,
    ValuationTier,
    CompFilter,
    CompQualityScorer,
    CompValuationEngine,
    comps_statistics,
    confidence_from_cv,
    filter_by_quality,
    source_tier_points,
)


# =============================================================================
# Test Fixtures
# =============================================================================

@pytest.fixture
def reference_date():
    """Fixed reference date for deterministic tests."""
    return date(2024, 6, 1)


@pytest.fixture
def subject_property():
    """Standard subject property for testing."""
    return PropertyDescriptor(
        address="123 Main St",
        city="Austin",
        state="TX",
        zip_code="78701",
        sqft=1500,
        beds=3,
        baths=2,
        purchase_price=250000,
    )


@pytest.fixture
def create_comp(reference_date):
    """Factory fixture for creating comparable sales."""
    def _create(
        price=300000,
        days_ago: int = 60,
        condition: Condition = Condition.UNKNOWN,
        sqft=1500,
        beds=3,
        baths=2,
        distance=0.4,
        data_source: str = "us_real_estate_similar_homes",
        address: str = None,
        zip_code: str = "78701",
    ) -> ComparableSale:
        return ComparableSale(
            address=address or f"{price} Comp Ave",
            price=price,
            sale_date=reference_date - timedelta(days=days_ago) if days_ago is not None else None,
            sqft=sqft,
            beds=beds,
            baths=baths,
            distance=distance,
            condition=condition,
            data_source=data_source,
            zip_code=zip_code,
        )
    return _create


@pytest.fixture
def engine():
    return CompValuationEngine()


# =============================================================================
# Model Tests
# =============================================================================

class TestComparableSaleModel:
    """Tests for ComparableSale parsing and derived values."""

    def test_from_dict_accepts_provider_keys(self):
        """camelCase provider keys are understood."""
        comp = ComparableSale.from_dict({
            "address": " 1 Oak St ",
            "price": "350000",
            "saleDate": "2024-03-15",
            "sqft": 1400,
            "condition": "Remodeled",
            "dataSource": "redfin_comps",
            "zip": "78701",
        })

        assert comp.address == "1 Oak St"
        assert comp.price == 350000
        assert comp.sale_date == date(2024, 3, 15)
        assert comp.condition == Condition.REMODELED
        assert comp.data_source == "redfin_comps"
        assert comp.zip_code == "78701"

    def test_zero_numerics_are_absent(self):
        """Zero price and sqft mean unknown, not free."""
        comp = ComparableSale.from_dict({
            "address": "1 Oak St",
            "price": 0,
            "sqft": 0,
            "sale_date": "2024-03-15",
            "distance": 0,
        })

        assert comp.price is None
        assert comp.sqft is None
        assert comp.distance == 0
        assert not comp.has_price

    def test_condition_tags(self):
        """Condition tags are normalised; unknown tags map to UNKNOWN."""
        assert Condition.from_string("un-remodeled") == Condition.UNREMODELED
        assert Condition.from_string("UNREMODELED") == Condition.UNREMODELED
        assert Condition.from_string("renovated") == Condition.UNKNOWN
        assert Condition.from_string(None) == Condition.UNKNOWN

    def test_point_estimate_rejects_bad_values(self):
        """Non-positive values and out-of-range weights are rejected."""
        with pytest.raises(ValueError):
            PointEstimate(source="zestimate", value=0, weight=0.5)
        with pytest.raises(ValueError):
            PointEstimate(source="zestimate", value=100000, weight=0)
        with pytest.raises(ValueError):
            PointEstimate(source="zestimate", value=100000, weight=1.5)


# =============================================================================
# Filter Tests
# =============================================================================

class TestRecencyFilter:
    """Tests for the lookback window."""

    def test_drops_old_and_undated_comps(self, reference_date, create_comp):
        """Comps older than two years or without a date are dropped."""
        recent = create_comp(price=300000, days_ago=100)
        old = create_comp(price=310000, days_ago=800)
        undated = create_comp(price=320000, days_ago=None)

        result = CompFilter(reference_date=reference_date).filter_by_recency([recent, old, undated])

        assert result == [recent]

    def test_cutoff_is_inclusive(self, reference_date, create_comp):
        """A sale exactly on the cutoff date is kept."""
        comp_filter = CompFilter(reference_date=reference_date)
        on_cutoff = create_comp(days_ago=(reference_date - comp_filter.cutoff_date).days)

        assert comp_filter.filter_by_recency([on_cutoff]) == [on_cutoff]

    def test_leap_day_reference(self):
        """A 29 February reference date does not crash the cutoff."""
        comp_filter = CompFilter(reference_date=date(2024, 2, 29))
        assert comp_filter.cutoff_date == date(2022, 2, 28)


class TestSimilarityFilter:
    """Tests for sqft / beds / baths tolerances and fallback."""

    def test_tolerances(self, reference_date, subject_property, create_comp):
        """Comps outside +/-20% sqft or +/-1 bed/bath are removed."""
        comp_filter = CompFilter(reference_date=reference_date)
        ok = create_comp(price=300000, sqft=1700, beds=4, baths=1)
        too_big = create_comp(price=301000, sqft=1900)
        too_many_beds = create_comp(price=302000, beds=5)
        too_many_baths = create_comp(price=303000, baths=3.5)

        result = comp_filter.filter_by_similarity(
            [ok, too_big, too_many_beds, too_many_baths], subject_property
        )

        assert result == [ok]

    def test_missing_dimensions_are_not_compared(self, reference_date, subject_property, create_comp):
        """A comp without sqft or beds is only judged on what it has."""
        comp_filter = CompFilter(reference_date=reference_date)
        sparse = create_comp(sqft=None, beds=None, baths=None)

        assert comp_filter.filter_by_similarity([sparse], subject_property) == [sparse]

    def test_fallback_to_recent_when_too_few_similar(self, reference_date, subject_property, create_comp):
        """Fewer than 3 similar comps falls back to all recent comps."""
        comps = [
            create_comp(price=300000),
            create_comp(price=310000),
            create_comp(price=500000, sqft=4000),
        ]

        result = CompFilter(reference_date=reference_date).select(comps, subject_property)

        assert result == comps

    def test_uses_similar_when_enough(self, reference_date, subject_property, create_comp):
        """Three or more similar comps replace the recent set."""
        similar = [create_comp(price=p) for p in (300000, 310000, 320000)]
        outlier = create_comp(price=500000, sqft=4000)

        result = CompFilter(reference_date=reference_date).select(similar + [outlier], subject_property)

        assert result == similar

    def test_select_is_idempotent(self, reference_date, subject_property, create_comp):
        """Filtering an already-filtered set changes nothing."""
        comp_filter = CompFilter(reference_date=reference_date)
        comps = [
            create_comp(price=300000),
            create_comp(price=310000, days_ago=900),
            create_comp(price=320000, sqft=3000),
            create_comp(price=330000),
            create_comp(price=340000, beds=2),
        ]

        once = comp_filter.select(comps, subject_property)
        twice = comp_filter.select(once, subject_property)

        assert once == twice


# =============================================================================
# Scoring Tests
# =============================================================================

class TestQualityScoring:
    """Tests for the additive 0-100 quality score."""

    def test_complete_recent_close_comp_scores_100(self, reference_date, create_comp):
        """All completeness points plus top recency, distance and tier."""
        scorer = CompQualityScorer(reference_date=reference_date)
        comp = create_comp(days_ago=31, distance=0.3, data_source="us_real_estate_similar_homes")

        assert scorer.score_comp(comp) == 100

    def test_sparse_distant_ai_comp(self, reference_date, create_comp):
        """Missing sqft, 17 months old, 3 miles, AI-generated."""
        scorer = CompQualityScorer(reference_date=reference_date)
        comp = create_comp(sqft=None, days_ago=517, distance=3.0, data_source="gemini_ai")

        # 30 completeness + 5 recency + 5 distance + 5 tier
        assert scorer.score_comp(comp) == 45

    def test_source_tiers(self):
        """Source tags map to tier points."""
        assert source_tier_points("zillow_property_comps") == 20
        assert source_tier_points("us_real_estate_similar_homes") == 20
        assert source_tier_points("zillow_sold_homes") == 15
        assert source_tier_points("generic_search") == 10
        assert source_tier_points("gemini_ai") == 5
        assert source_tier_points("") == 0

    def test_plain_comp_feeds_are_not_matched_tier(self):
        """Raw comp feeds without similarity matching earn no tier points."""
        assert source_tier_points("redfin_comps") == 0
        assert source_tier_points("private_zillow_comps") == 0

    def test_scores_sorted_descending_and_stable(self, reference_date, create_comp):
        """Higher scores first; equal scores keep input order."""
        scorer = CompQualityScorer(reference_date=reference_date)
        low = create_comp(price=300000, distance=4.0, address="low")
        first_tie = create_comp(price=310000, address="first")
        second_tie = create_comp(price=320000, address="second")

        scored = scorer.score([low, first_tie, second_tie])

        assert [c.address for c in scored] == ["first", "second", "low"]
        assert scored[0].quality_score >= scored[-1].quality_score

    def test_scoring_does_not_mutate_input(self, reference_date, create_comp):
        """Input comps keep quality_score None."""
        comp = create_comp()
        scored = CompQualityScorer(reference_date=reference_date).score([comp])

        assert comp.quality_score is None
        assert scored[0].quality_score is not None

    def test_empty_input(self, reference_date):
        """No comps in, no comps out."""
        assert CompQualityScorer(reference_date=reference_date).score([]) == []

    def test_quality_labels_and_threshold(self, reference_date, create_comp):
        """Labels follow the 80/60 bands; filter_by_quality keeps >= 60."""
        scorer = CompQualityScorer(reference_date=reference_date)
        good = create_comp(price=300000, distance=0.3)
        poor = create_comp(price=310000, sqft=None, days_ago=517, distance=3.0, data_source="gemini_ai")

        scored = scorer.score([good, poor])

        assert scored[0].quality_label == QualityLabel.HIGH
        assert scored[1].quality_label == QualityLabel.LOW
        assert filter_by_quality(scored) == [scored[0]]


# =============================================================================
# Comps Tier Tests
# =============================================================================

class TestCompsTiers:
    """Tests for the tiered comps ARV."""

    def test_three_remodeled_uses_remodeled_average(self, engine, create_comp):
        """Three remodeled comps average to the ARV with 0% premium."""
        comps = [
            create_comp(price=p, condition=Condition.REMODELED) for p in (300000, 310000, 320000)
        ] + [
            create_comp(price=p, condition=Condition.UNREMODELED) for p in (200000, 210000)
        ]

        result = engine.derive_from_comps(comps)

        assert result.arv == pytest.approx(310000)
        assert "remodeled comps" in result.method
        assert result.premium == 0.0
        assert result.tier == ValuationTier.REMODELED
        assert result.confidence == Confidence.HIGH

    def test_mixed_applies_measured_premium(self, engine, create_comp):
        """One remodeled at 400k and one unremodeled at 320k gives 25%."""
        comps = [
            create_comp(price=400000, condition=Condition.REMODELED),
            create_comp(price=320000, condition=Condition.UNREMODELED),
        ]

        result = engine.derive_from_comps(comps)

        assert result.tier == ValuationTier.MIXED
        assert result.premium == pytest.approx(0.25)
        assert result.arv == pytest.approx(400000)
        assert "capped at 25%" in result.method

    def test_premium_is_capped(self, engine, create_comp):
        """A 50% measured premium is capped at 25%."""
        comps = [
            create_comp(price=450000, condition=Condition.REMODELED),
            create_comp(price=300000, condition=Condition.UNREMODELED),
        ]

        premium = engine.calculate_renovation_premium(comps)
        result = engine.derive_from_comps(comps)

        assert premium.premium == pytest.approx(0.25)
        assert result.arv == pytest.approx(375000)

    @pytest.mark.parametrize("remodeled,unremodeled", [
        ((1000000,), (100000,)),
        ((500000, 520000), (300000, 310000)),
        ((310000,), (300000, 305000, 302000)),
    ])
    def test_premium_never_exceeds_cap(self, engine, create_comp, remodeled, unremodeled):
        """The renovation premium never exceeds 25%."""
        comps = [create_comp(price=p, condition=Condition.REMODELED) for p in remodeled]
        comps += [create_comp(price=p, condition=Condition.UNREMODELED) for p in unremodeled]

        assert engine.calculate_renovation_premium(comps).premium <= 0.25

    def test_premium_confidence_by_counts(self, engine, create_comp):
        """Three of each is High, two of each Medium, fewer Low."""
        def comps(n_remodeled, n_unremodeled):
            return (
                [create_comp(price=400000, condition=Condition.REMODELED)] * n_remodeled
                + [create_comp(price=350000, condition=Condition.UNREMODELED)] * n_unremodeled
            )

        assert engine.calculate_renovation_premium(comps(3, 3)).confidence == Confidence.HIGH
        assert engine.calculate_renovation_premium(comps(2, 2)).confidence == Confidence.MEDIUM
        assert engine.calculate_renovation_premium(comps(1, 2)).confidence == Confidence.LOW

    def test_premium_defaults_without_both_sides(self, engine, create_comp):
        """Missing one side falls back to the 25% default at Low confidence."""
        comps = [create_comp(price=300000, condition=Condition.UNREMODELED)]

        premium = engine.calculate_renovation_premium(comps)

        assert premium.premium == pytest.approx(0.25)
        assert premium.confidence == Confidence.LOW
        assert premium.source == "default"

    def test_unremodeled_only(self, engine, create_comp):
        """Three unremodeled comps get a flat 25% premium at Medium."""
        comps = [
            create_comp(price=p, condition=Condition.UNREMODELED) for p in (200000, 200000, 200000)
        ]

        result = engine.derive_from_comps(comps)

        assert result.tier == ValuationTier.UNREMODELED_ONLY
        assert result.arv == pytest.approx(250000)
        assert result.confidence == Confidence.MEDIUM

    def test_fallback_for_untagged_comps(self, engine, create_comp):
        """Untagged comps average plus a flat 20% at Low confidence."""
        comps = [create_comp(price=p) for p in (200000, 300000)]

        result = engine.derive_from_comps(comps)

        assert result.tier == ValuationTier.FALLBACK
        assert result.arv == pytest.approx(300000)
        assert result.confidence == Confidence.LOW
        assert result.method == "Average of 2 mixed comps + 20% premium"

    def test_unpriced_comps_are_ignored(self, engine, create_comp):
        """Comps without a price never drag the average down."""
        comps = [create_comp(price=p, condition=Condition.REMODELED) for p in (300000, 310000, 320000)]
        comps.append(create_comp(price=None, condition=Condition.REMODELED))

        result = engine.derive_from_comps(comps)

        assert result.arv == pytest.approx(310000)
        assert result.comps_used == 3

    def test_no_priced_comps_is_insufficient_data(self, engine, create_comp):
        """Only unpriced comps is an INSUFFICIENT_DATA error."""
        result = engine.derive_from_comps([create_comp(price=None)])

        assert is_error(result)
        assert result.kind == ErrorKind.INSUFFICIENT_DATA


# =============================================================================
# Blending Tests
# =============================================================================

class TestBlending:
    """Tests for multi-source weighted blending."""

    def test_two_close_estimates(self, engine):
        """800k and 820k at equal weight blend to 810k at full confidence."""
        result = engine.blend([
            PointEstimate(source="zestimate", value=800000, weight=0.5),
            PointEstimate(source="us_real_estate_estimate", value=820000, weight=0.5),
        ])

        assert result.arv == pytest.approx(810000)
        assert result.confidence_score == 100
        assert result.confidence == Confidence.HIGH
        assert result.method.startswith("Multi-source weighted average")

    def test_weights_are_normalised(self, engine):
        """Weights summing to less than 1.0 are scaled up."""
        result = engine.blend([
            PointEstimate(source="a", value=300000, weight=0.25),
            PointEstimate(source="b", value=400000, weight=0.25),
        ])

        assert sum(s.weight for s in result.sources) == pytest.approx(1.0)
        assert result.arv == pytest.approx(350000)

    def test_scaling_weights_does_not_change_arv(self, engine):
        """ARV depends on relative weights only."""
        small = engine.blend([
            PointEstimate(source="a", value=300000, weight=0.1),
            PointEstimate(source="b", value=360000, weight=0.2),
        ])
        large = engine.blend([
            PointEstimate(source="a", value=300000, weight=0.5),
            PointEstimate(source="b", value=360000, weight=1.0),
        ])

        assert small.arv == pytest.approx(large.arv)

    def test_single_estimate_is_low_confidence(self, engine):
        """One source carries full weight at Low confidence."""
        result = engine.blend([PointEstimate(source="zestimate", value=500000, weight=0.25)])

        assert result.arv == 500000
        assert result.method == "Single source: zestimate"
        assert result.confidence == Confidence.LOW
        assert result.sources[0].weight == 1.0

    def test_empty_is_insufficient_data(self, engine):
        """No estimates is an error, not a zero ARV."""
        result = engine.blend([])

        assert is_error(result)
        assert result.kind == ErrorKind.INSUFFICIENT_DATA

    def test_confidence_falls_as_dispersion_grows(self):
        """Confidence is non-increasing in CV and clamped to [50, 100]."""
        scores = [confidence_from_cv(cv / 100) for cv in range(0, 40)]

        assert scores == sorted(scores, reverse=True)
        assert scores[0] == 100
        assert scores[-1] == 50
        assert confidence_from_cv(0.125) == 75


# =============================================================================
# Full Valuation Tests
# =============================================================================

class TestValuate:
    """Tests for valuate(), which joins comps and estimates."""

    def test_comps_only_is_single_source(self, engine, subject_property, create_comp):
        """Comps alone keep the comps method and confidence."""
        comps = [create_comp(price=p, condition=Condition.REMODELED) for p in (300000, 310000, 320000)]

        result = engine.valuate(comps, target=subject_property)

        assert result.arv == pytest.approx(310000)
        assert result.method == "Single source: Average of 3 remodeled comps (0% premium)"
        assert result.confidence == Confidence.HIGH
        assert result.arv_per_sqft == pytest.approx(206.67)

    def test_comps_joined_with_estimate(self, engine, create_comp):
        """Comps weigh 0.50 against an external estimate at 0.25."""
        comps = [create_comp(price=p, condition=Condition.REMODELED) for p in (300000, 300000, 300000)]
        estimate = PointEstimate(source="zestimate", value=330000, weight=0.25)

        result = engine.valuate(comps, [estimate])

        assert [s.source for s in result.sources] == ["comps", "zestimate"]
        assert result.arv == pytest.approx(310000)
        assert result.comps_used == 3

    def test_nothing_to_value_from(self, engine):
        """No comps and no estimates is INSUFFICIENT_DATA."""
        result = engine.valuate([])

        assert is_error(result)
        assert result.kind == ErrorKind.INSUFFICIENT_DATA

    def test_deterministic(self, engine, create_comp):
        """Same input, same output."""
        comps = [
            create_comp(price=400000, condition=Condition.REMODELED),
            create_comp(price=320000, condition=Condition.UNREMODELED),
        ]
        estimates = [PointEstimate(source="zestimate", value=390000, weight=0.25)]

        assert engine.valuate(comps, estimates).to_dict() == engine.valuate(comps, estimates).to_dict()

    def test_custom_config(self, create_comp):
        """Tier premiums come from the injected config."""
        engine = CompValuationEngine(config=ValuationConfig(fallback_premium=0.10))

        result = engine.derive_from_comps([create_comp(price=200000)])

        assert result.arv == pytest.approx(220000)


class TestStatistics:
    """Tests for comps summary statistics and the confidence interval."""

    def test_statistics(self, create_comp):
        comps = [create_comp(price=300000, sqft=1500), create_comp(price=330000, sqft=1500)]

        stats = comps_statistics(comps)

        assert stats.count == 2
        assert stats.avg_price == 315000
        assert stats.price_range == 30000
        assert stats.avg_price_per_sqft == 210

    def test_empty_statistics(self):
        stats = comps_statistics([])
        assert stats.count == 0
        assert stats.avg_price == 0.0

    def test_confidence_interval(self, engine):
        """Mean +/- one population standard deviation."""
        interval = engine.confidence_interval([800000, 820000])

        assert interval.moderate == pytest.approx(810000)
        assert interval.std_dev == pytest.approx(10000)
        assert interval.conservative == pytest.approx(800000)
        assert interval.aggressive == pytest.approx(820000)
