"""
Tests for the five-factor compatibility engine.
"""

from datetime import date
from decimal import Decimal

import pytest

from app.features.swaps.domain import BookingDescriptor, CompatibilityWeights
from app.features.swaps.services import CompatibilityEngine, analyze_compatibility

engine = CompatibilityEngine()


def _booking(**overrides) -> BookingDescriptor:
    fields = {
        "location": "Paris, France",
        "check_in": date(2026, 7, 1),
        "check_out": date(2026, 7, 8),
        "total_price": Decimal("1400"),
        "accommodation_type": "apartment",
        "guests": 4,
    }
    fields.update(overrides)
    return BookingDescriptor(**fields)


def test_identical_bookings_score_perfectly():
    analysis = analyze_compatibility(_booking(), _booking())

    assert analysis.overall_score == 100
    assert all(factor.score == 100 for factor in analysis.factors.values())
    assert all(factor.status == "excellent" for factor in analysis.factors.values())
    assert analysis.recommendations[0] == "Excellent swap match - highly recommended"
    assert analysis.potential_issues == []


def test_factor_weights_are_reported():
    analysis = engine.analyze(_booking(), _booking())

    assert {name: f.weight for name, f in analysis.factors.items()} == {
        "location": 0.25,
        "date": 0.20,
        "value": 0.30,
        "accommodation": 0.15,
        "guests": 0.10,
    }


def test_missing_fields_score_neutral():
    analysis = engine.analyze(BookingDescriptor(), BookingDescriptor())

    assert all(factor.score == 50 for factor in analysis.factors.values())
    assert analysis.overall_score == 50


@pytest.mark.parametrize(
    ("a", "b", "low", "high"),
    [
        ("Paris, France", "Nice, France", 50, 90),
        ("Brooklyn, New York", "Manhattan, New York", 50, 90),
        ("Paris, France", "Berlin, Germany", 0, 49),
        ("Paris, France", "Tokyo, Japan", 0, 49),
    ],
)
def test_location_tiers_stay_in_band(a, b, low, high):
    score = engine.analyze(_booking(location=a), _booking(location=b)).factors["location"].score

    assert low <= score <= high


def test_same_country_beats_other_continent():
    same_country = engine.analyze(_booking(), _booking(location="Lyon, France"))
    other_continent = engine.analyze(_booking(), _booking(location="Sydney, Australia"))

    assert same_country.factors["location"].score == 60
    assert other_continent.factors["location"].score == 5


def test_overlapping_stays_score_low():
    analysis = engine.analyze(
        _booking(),
        _booking(check_in=date(2026, 7, 5), check_out=date(2026, 7, 12)),
    )

    assert analysis.factors["date"].score == 10


def test_same_length_other_season():
    analysis = engine.analyze(
        _booking(),
        _booking(check_in=date(2026, 12, 1), check_out=date(2026, 12, 8)),
    )

    assert analysis.factors["date"].score == 100


def test_duration_difference_with_adjacent_season():
    analysis = engine.analyze(
        _booking(),
        _booking(check_in=date(2026, 9, 1), check_out=date(2026, 9, 11)),
    )

    # 3 nights difference, summer vs autumn
    assert analysis.factors["date"].score == 82


@pytest.mark.parametrize(
    ("other", "expected"),
    [
        (Decimal("1450"), 100),
        (Decimal("1600"), 85),
        (Decimal("1800"), 70),
        (Decimal("2200"), 50),
        (Decimal("5000"), 25),
        (Decimal("0"), 50),
        (None, 50),
    ],
)
def test_value_bands(other, expected):
    analysis = engine.analyze(_booking(), _booking(total_price=other))

    assert analysis.factors["value"].score == expected


def test_twenty_percent_value_gap_is_middling():
    analysis = engine.analyze(
        _booking(total_price=Decimal("500")), _booking(total_price=Decimal("600"))
    )

    assert 60 < analysis.factors["value"].score < 90


@pytest.mark.parametrize(
    "weights",
    [
        CompatibilityWeights(location=1, date=0, value=0, accommodation=0, guests=0),
        CompatibilityWeights(location=0.1, date=0.1, value=0.1, accommodation=0.1, guests=0.6),
        CompatibilityWeights(location=0.4, date=0.3, value=0.2, accommodation=0.05, guests=0.05),
    ],
)
@pytest.mark.parametrize(
    "other",
    [
        _booking(),
        _booking(location="Sydney, Australia", total_price=Decimal("0"), guests=30),
        BookingDescriptor(),
    ],
)
def test_weights_summing_to_one_stay_in_range(weights, other):
    analysis = engine.analyze(_booking(), other, weights)

    assert 0 <= analysis.overall_score <= 100
    identical = engine.analyze(_booking(), _booking(), weights)
    assert identical.factors["accommodation"].score == 100
    assert identical.factors["guests"].score == 100


def test_accommodation_aliases_and_clusters():
    alias = engine.analyze(_booking(), _booking(accommodation_type="Condo"))
    cluster = engine.analyze(
        _booking(accommodation_type="villa"), _booking(accommodation_type="house")
    )
    distant = engine.analyze(
        _booking(accommodation_type="resort"), _booking(accommodation_type="hostel")
    )
    unknown = engine.analyze(_booking(), _booking(accommodation_type="treehouse"))

    assert alias.factors["accommodation"].score == 100
    assert 60 <= cluster.factors["accommodation"].score <= 90
    assert distant.factors["accommodation"].score < 60
    assert unknown.factors["accommodation"].score == 50


@pytest.mark.parametrize(
    ("other", "expected"),
    [(4, 100), (5, 90), (6, 70), (2, 70), (10, 15), (0, 50)],
)
def test_guest_bands(other, expected):
    analysis = engine.analyze(_booking(), _booking(guests=other))

    assert analysis.factors["guests"].score == expected


def test_custom_weights_are_not_normalized():
    weights = CompatibilityWeights(location=1, date=1, value=1, accommodation=1, guests=1)

    analysis = engine.analyze(_booking(), _booking(), weights)

    assert analysis.overall_score == 500


def test_many_weak_factors_are_flagged():
    analysis = engine.analyze(
        _booking(),
        _booking(
            location="Tokyo, Japan",
            check_in=date(2026, 7, 3),
            check_out=date(2026, 7, 20),
            total_price=Decimal("9000"),
            accommodation_type="hostel",
            guests=12,
        ),
    )

    assert analysis.overall_score < 40
    assert analysis.recommendations[0] == "Low compatibility - consider other options"
    assert "Multiple compatibility concerns across factors" in analysis.potential_issues
