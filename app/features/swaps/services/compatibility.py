"""
Compatibility analysis for swap proposals.

Scores how well two bookings fit each other across five weighted factors
(location, dates, value, accommodation type, guest count). The engine is pure:
no I/O, no caching, and it never raises on malformed descriptors. A missing or
nonsensical field scores a neutral 50 for its factor.
"""

import math
import re
from datetime import date, datetime, time
from decimal import Decimal

from app.features.swaps.domain import (
    BookingDescriptor,
    CompatibilityAnalysis,
    CompatibilityFactor,
    CompatibilityWeights,
)
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

NEUTRAL_SCORE = 50

FACTOR_LABELS = {
    "location": "Location",
    "date": "Dates",
    "value": "Value",
    "accommodation": "Accommodation",
    "guests": "Guest capacity",
}

# ---------------------------------------------------------------------------
# Location reference data
# ---------------------------------------------------------------------------

REGION_KEYWORDS: dict[str, list[str]] = {
    "new york metro": [
        "new york", "nyc", "manhattan", "brooklyn", "queens", "jersey city", "hoboken"
    ],
    "southern california": [
        "los angeles", "santa monica", "malibu", "pasadena", "san diego", "anaheim"
    ],
    "bay area": ["san francisco", "oakland", "berkeley", "san jose", "palo alto"],
    "south florida": ["miami", "fort lauderdale", "key west", "palm beach"],
    "greater london": ["london", "westminster", "camden", "greenwich", "shoreditch"],
    "ile-de-france": ["paris", "versailles", "saint-denis", "montmartre"],
    "cote d'azur": ["nice", "cannes", "antibes", "monaco", "saint-tropez"],
    "kanto": ["tokyo", "yokohama", "kawasaki", "chiba"],
    "kansai": ["osaka", "kyoto", "kobe", "nara"],
    "new south wales": ["sydney", "bondi", "manly", "newcastle"],
    "catalonia": ["barcelona", "girona", "sitges"],
    "lazio": ["rome", "roma", "ostia"],
    "tuscany": ["florence", "firenze", "pisa", "siena"],
}

COUNTRY_KEYWORDS: dict[str, list[str]] = {
    "usa": [
        "usa", "united states", "america", "new york", "nyc", "manhattan", "brooklyn",
        "los angeles", "san francisco", "san diego", "miami", "chicago", "boston",
        "seattle", "california", "florida", "texas", "hawaii",
    ],
    "canada": ["canada", "toronto", "vancouver", "montreal", "ontario", "quebec"],
    "mexico": ["mexico", "cancun", "tulum", "guadalajara"],
    "uk": [
        "uk", "united kingdom", "england", "scotland", "wales", "london", "edinburgh", "manchester"
    ],
    "france": ["france", "paris", "nice", "lyon", "marseille", "cannes", "bordeaux"],
    "spain": ["spain", "madrid", "barcelona", "seville", "valencia", "ibiza", "mallorca"],
    "italy": ["italy", "rome", "roma", "milan", "venice", "florence", "firenze", "naples"],
    "germany": ["germany", "berlin", "munich", "hamburg", "frankfurt", "cologne"],
    "japan": ["japan", "tokyo", "osaka", "kyoto", "yokohama", "sapporo", "okinawa"],
    "thailand": ["thailand", "bangkok", "phuket", "chiang mai"],
    "australia": ["australia", "sydney", "melbourne", "brisbane", "perth", "gold coast"],
    "new zealand": ["new zealand", "auckland", "wellington", "queenstown"],
    "brazil": ["brazil", "rio de janeiro", "sao paulo", "salvador"],
}

CONTINENT_BY_COUNTRY: dict[str, str] = {
    "usa": "north america",
    "canada": "north america",
    "mexico": "north america",
    "uk": "europe",
    "france": "europe",
    "spain": "europe",
    "italy": "europe",
    "germany": "europe",
    "japan": "asia",
    "thailand": "asia",
    "australia": "oceania",
    "new zealand": "oceania",
    "brazil": "south america",
}

CITY_COORDINATES: dict[str, tuple[float, float]] = {
    "new york": (40.7128, -74.0060),
    "los angeles": (34.0522, -118.2437),
    "london": (51.5074, -0.1278),
    "paris": (48.8566, 2.3522),
    "tokyo": (35.6762, 139.6503),
    "sydney": (-33.8688, 151.2093),
}

LOCATION_TIERS = {
    "exact": 100,
    "region": 80,
    "country": 60,
    "continent": 40,
    "different": 20,
}

# ---------------------------------------------------------------------------
# Accommodation reference data
# ---------------------------------------------------------------------------

ACCOMMODATION_ALIASES = {
    "motel": "hotel",
    "inn": "hotel",
    "boutique hotel": "hotel",
    "flat": "apartment",
    "condo": "apartment",
    "condominium": "apartment",
    "studio": "apartment",
    "home": "house",
    "townhouse": "house",
    "cabin": "cottage",
    "chalet": "cottage",
    "b&b": "guesthouse",
    "bnb": "guesthouse",
    "bed and breakfast": "guesthouse",
    "guest house": "guesthouse",
}

ACCOMMODATION_CLUSTERS = [
    frozenset({"hotel", "resort"}),
    frozenset({"apartment", "loft"}),
    frozenset({"house", "villa", "cottage"}),
    frozenset({"hostel", "guesthouse"}),
]

COMPATIBLE_ACCOMMODATION_PAIRS = {
    frozenset({"hotel", "guesthouse"}),
    frozenset({"hotel", "apartment"}),
    frozenset({"apartment", "house"}),
    frozenset({"resort", "villa"}),
}

LUXURY_LEVELS = {
    "resort": 5,
    "villa": 4,
    "hotel": 3,
    "apartment": 2,
    "loft": 2,
    "house": 2,
    "cottage": 2,
    "guesthouse": 1,
    "hostel": 1,
}

SEASONS = {
    12: "winter", 1: "winter", 2: "winter",
    3: "spring", 4: "spring", 5: "spring",
    6: "summer", 7: "summer", 8: "summer",
    9: "autumn", 10: "autumn", 11: "autumn",
}
SEASON_ORDER = ["winter", "spring", "summer", "autumn"]


def _status_for(score: int) -> str:
    if score >= 90:
        return "excellent"
    if score >= 70:
        return "good"
    if score >= 50:
        return "fair"
    return "poor"


def _clamp(score: float, low: int = 0, high: int = 100) -> int:
    return int(max(low, min(high, round(score))))


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _normalize_location(location: str) -> str:
    text = location.lower().strip()
    text = re.sub(r"[^\w\s,'-]", "", text)
    return re.sub(r"\s+", " ", text)


def _match_keyword(text: str, table: dict[str, list[str]]) -> str | None:
    for name, keywords in table.items():
        for keyword in keywords:
            if re.search(rf"\b{re.escape(keyword)}\b", text):
                return name
    return None


def _city_coordinates(text: str) -> tuple[float, float] | None:
    for city, coords in CITY_COORDINATES.items():
        if re.search(rf"\b{re.escape(city)}\b", text):
            return coords
    return None


def _haversine_km(a: tuple[float, float], b: tuple[float, float]) -> float:
    lat1, lon1 = map(math.radians, a)
    lat2, lon2 = map(math.radians, b)
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 6371.0 * 2 * math.asin(math.sqrt(h))


def _distance_adjustment(distance_km: float) -> int:
    if distance_km < 50:
        return 5
    if distance_km < 200:
        return 0
    if distance_km < 500:
        return -5
    if distance_km < 1000:
        return -10
    return -15


def _as_datetime(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    return datetime.combine(value, time.min)


def _as_positive_number(value: Decimal | float | int | None) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or number <= 0:
        return None
    return number


def _normalize_accommodation(value: str | None) -> str | None:
    if not value or not isinstance(value, str):
        return None
    text = re.sub(r"\s+", " ", value.lower().strip().replace("_", " "))
    if not text:
        return None
    return ACCOMMODATION_ALIASES.get(text, text)


class CompatibilityEngine:
    """Weighted five-factor compatibility scoring."""

    def analyze(
        self,
        a: BookingDescriptor,
        b: BookingDescriptor,
        weights: CompatibilityWeights | None = None,
    ) -> CompatibilityAnalysis:
        """
        Score two bookings against each other.

        Caller-supplied weights are used as given. Weights that do not sum to
        1.0 produce an overall score outside the usual 0-100 band.
        """
        weights = weights or CompatibilityWeights()
        weight_map = weights.as_dict()

        scorers = {
            "location": self._score_location,
            "date": self._score_dates,
            "value": self._score_value,
            "accommodation": self._score_accommodation,
            "guests": self._score_guests,
        }

        factors: dict[str, CompatibilityFactor] = {}
        for name, scorer in scorers.items():
            try:
                score, details = scorer(a, b)
            except Exception as e:
                logger.warning(
                    "Compatibility factor failed, using neutral score",
                    factor=name,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                score, details = NEUTRAL_SCORE, "Not enough information to compare"

            score = _clamp(score)
            factors[name] = CompatibilityFactor(
                score=score,
                weight=weight_map[name],
                status=_status_for(score),
                details=details,
            )

        overall = _round_half_up(sum(f.score * f.weight for f in factors.values()))

        return CompatibilityAnalysis(
            overall_score=overall,
            factors=factors,
            recommendations=self._recommendations(overall, factors),
            potential_issues=self._potential_issues(factors),
        )

    # ------------------------------------------------------------------
    # Factors
    # ------------------------------------------------------------------

    def _score_location(self, a: BookingDescriptor, b: BookingDescriptor) -> tuple[int, str]:
        if not a.location or not b.location:
            return NEUTRAL_SCORE, "Location information incomplete"

        loc_a = _normalize_location(a.location)
        loc_b = _normalize_location(b.location)
        if not loc_a or not loc_b:
            return NEUTRAL_SCORE, "Location information incomplete"

        if loc_a == loc_b:
            return LOCATION_TIERS["exact"], "Same location"

        region_a = _match_keyword(loc_a, REGION_KEYWORDS)
        region_b = _match_keyword(loc_b, REGION_KEYWORDS)
        country_a = _match_keyword(loc_a, COUNTRY_KEYWORDS)
        country_b = _match_keyword(loc_b, COUNTRY_KEYWORDS)

        if region_a and region_a == region_b:
            tier, low, high, details = "region", 50, 90, f"Same region ({region_a})"
        elif country_a and country_a == country_b:
            tier, low, high, details = "country", 50, 90, f"Same country ({country_a})"
        elif (
            country_a
            and country_b
            and CONTINENT_BY_COUNTRY.get(country_a) == CONTINENT_BY_COUNTRY.get(country_b)
        ):
            continent = CONTINENT_BY_COUNTRY[country_a]
            tier, low, high, details = "continent", 0, 49, f"Different countries in {continent}"
        else:
            tier, low, high, details = "different", 0, 49, "Different countries"

        score = LOCATION_TIERS[tier]

        coords_a = _city_coordinates(loc_a)
        coords_b = _city_coordinates(loc_b)
        if coords_a and coords_b:
            distance = _haversine_km(coords_a, coords_b)
            score += _distance_adjustment(distance)
            details = f"{details}, about {round(distance)} km apart"

        return _clamp(score, low, high), details

    def _score_dates(self, a: BookingDescriptor, b: BookingDescriptor) -> tuple[int, str]:
        if not (a.check_in and a.check_out and b.check_in and b.check_out):
            return NEUTRAL_SCORE, "Stay dates incomplete"

        start_a, end_a = _as_datetime(a.check_in), _as_datetime(a.check_out)
        start_b, end_b = _as_datetime(b.check_in), _as_datetime(b.check_out)
        if end_a <= start_a or end_b <= start_b:
            return NEUTRAL_SCORE, "Stay dates invalid"

        if start_a == start_b and end_a == end_b:
            return 100, "Identical stay dates"

        if start_a < end_b and start_b < end_a:
            return 10, "Stay windows overlap"

        nights_a = math.ceil((end_a - start_a).total_seconds() / 86400)
        nights_b = math.ceil((end_b - start_b).total_seconds() / 86400)
        difference = abs(nights_a - nights_b)

        if difference == 0:
            score, details = 100, f"Same length of stay ({nights_a} nights)"
        elif difference <= 1:
            score, details = 95, "Stay lengths differ by one night"
        elif difference <= 3:
            score, details = 80, f"Stay lengths differ by {difference} nights"
        elif difference <= 7:
            score, details = 60, f"Stay lengths differ by {difference} nights"
        else:
            score, details = 30, f"Stay lengths differ by {difference} nights"

        season_a = SEASONS[start_a.month]
        season_b = SEASONS[start_b.month]
        if season_a == season_b:
            score += 5
            details = f"{details}, same season"
        else:
            gap = abs(SEASON_ORDER.index(season_a) - SEASON_ORDER.index(season_b))
            if gap in (1, 3):
                score += 2

        return min(score, 100), details

    def _score_value(self, a: BookingDescriptor, b: BookingDescriptor) -> tuple[int, str]:
        value_a = _as_positive_number(a.total_price)
        value_b = _as_positive_number(b.total_price)
        if value_a is None or value_b is None:
            return NEUTRAL_SCORE, "Price information missing"

        average = (value_a + value_b) / 2
        difference_pct = abs(value_a - value_b) / average * 100

        if difference_pct <= 5:
            score = 100
        elif difference_pct <= 15:
            score = 85
        elif difference_pct <= 30:
            score = 70
        elif difference_pct <= 50:
            score = 50
        else:
            score = 25

        return score, f"Values differ by {difference_pct:.1f}%"

    def _score_accommodation(self, a: BookingDescriptor, b: BookingDescriptor) -> tuple[int, str]:
        type_a = _normalize_accommodation(a.accommodation_type)
        type_b = _normalize_accommodation(b.accommodation_type)
        if type_a is None or type_b is None:
            return NEUTRAL_SCORE, "Accommodation type unknown"

        if type_a == type_b:
            return 100, f"Both are {type_a}s"

        if type_a not in LUXURY_LEVELS or type_b not in LUXURY_LEVELS:
            return NEUTRAL_SCORE, f"Cannot compare {type_a} with {type_b}"

        pair = frozenset({type_a, type_b})
        same_cluster = any(pair <= cluster for cluster in ACCOMMODATION_CLUSTERS)

        if same_cluster:
            score, low, high = 75, 60, 90
            details = f"Similar accommodation ({type_a} / {type_b})"
        elif pair in COMPATIBLE_ACCOMMODATION_PAIRS:
            score, low, high = 50, 0, 59
            details = f"Compatible accommodation ({type_a} / {type_b})"
        else:
            score, low, high = 25, 0, 59
            details = f"Different accommodation ({type_a} / {type_b})"

        level_gap = abs(LUXURY_LEVELS[type_a] - LUXURY_LEVELS[type_b])
        if level_gap == 0:
            score += 5
        elif level_gap == 2:
            score -= 5
        elif level_gap > 2:
            score -= 10

        return _clamp(score, low, high), details

    def _score_guests(self, a: BookingDescriptor, b: BookingDescriptor) -> tuple[int, str]:
        guests_a, guests_b = (
            g if isinstance(g, int) and not isinstance(g, bool) else None
            for g in (a.guests, b.guests)
        )
        if not guests_a or not guests_b or guests_a <= 0 or guests_b <= 0:
            return NEUTRAL_SCORE, "Guest count missing"

        difference = abs(guests_a - guests_b)
        if difference == 0:
            return 100, f"Both sleep {guests_a}"

        larger = max(guests_a, guests_b)
        smaller = min(guests_a, guests_b)

        if difference == 1:
            score = 85
        elif difference <= 2:
            score = 70
        elif difference <= max(2, larger * 0.25):
            score = 50
        else:
            score = 25

        utilization = smaller / larger
        if utilization >= 0.8:
            score += 5
        elif utilization < 0.5:
            score -= 10

        return score, f"Guest capacity {guests_a} vs {guests_b}"

    # ------------------------------------------------------------------
    # Narrative
    # ------------------------------------------------------------------

    def _recommendations(self, overall: int, factors: dict[str, CompatibilityFactor]) -> list[str]:
        recommendations: list[str] = []

        if overall >= 80:
            recommendations.append("Excellent swap match - highly recommended")
        elif overall >= 65:
            recommendations.append("Good swap match - recommended")
        elif overall >= 40:
            recommendations.append("Moderate match - review the details carefully")
        else:
            recommendations.append("Low compatibility - consider other options")

        for name, factor in factors.items():
            label = FACTOR_LABELS[name]
            if factor.score >= 80:
                recommendations.append(f"{label} is a strong fit")
            elif factor.score < 60:
                recommendations.append(f"{label} needs a closer look: {factor.details.lower()}")

        return recommendations

    def _potential_issues(self, factors: dict[str, CompatibilityFactor]) -> list[str]:
        issues: list[str] = []

        messages = {
            "location": "Locations are far apart",
            "date": "Stay dates are hard to reconcile",
            "value": "Booking values differ significantly",
            "accommodation": "Accommodation types are quite different",
            "guests": "Guest capacities do not match",
        }
        for name, factor in factors.items():
            if factor.status == "poor":
                issues.append(f"{messages[name]} ({factor.details})")

        weak_factors = sum(1 for factor in factors.values() if factor.score < 50)
        if weak_factors >= 3:
            issues.append("Multiple compatibility concerns across factors")

        return issues


compatibility_engine = CompatibilityEngine()


def analyze_compatibility(
    a: BookingDescriptor, b: BookingDescriptor, weights: CompatibilityWeights | None = None
) -> CompatibilityAnalysis:
    """Convenience wrapper around the shared engine."""
    return compatibility_engine.analyze(a, b, weights)
