"""
Client-side category safety net.

Primary filtering happens in the places search upstream; these rules only
double-check results before they are shown.
"""
from dataclasses import dataclass
from typing import FrozenSet, Iterable, List, Mapping, Optional
from types import MappingProxyType
import logging

from .config import settings
from .schemas import CandidateSpot

logger = logging.getLogger(__name__)

FALLBACK_INTENT = "surprise"


@dataclass(frozen=True)
class CategoryRule:
    """Keywords and categories an intent must not show"""
    excluded_keywords: FrozenSet[str]
    excluded_categories: FrozenSet[str]


def _rule(keywords: Iterable[str], categories: Iterable[str] = ()) -> CategoryRule:
    return CategoryRule(
        excluded_keywords=frozenset(keywords),
        excluded_categories=frozenset(categories),
    )


CATEGORY_RULES: Mapping[str, CategoryRule] = MappingProxyType({
    "food": _rule(
        [
            "staffing", "plumbing", "contractor", "industrial", "warehouse",
            "insurance", "attorney", "hvac", "recruiting", "audio visual",
        ],
        ["wellness", "shopping", "event"],
    ),
    "drinks": _rule(
        [
            "staffing", "plumbing", "contractor", "industrial", "warehouse",
            "insurance", "attorney", "hvac", "recruiting",
        ],
        ["wellness", "shopping"],
    ),
    "activity": _rule(
        [
            "staffing", "plumbing", "contractor", "industrial", "warehouse",
            "audio visual", "audiovisual", "event production", "equipment rental",
            "insurance", "attorney", "hvac",
        ],
        ["wellness", "shopping"],
    ),
    # "services" is the internal intent name for wellness
    "services": _rule(
        [
            "staffing", "event", "catering", "coordinator", "security", "rental",
            "audiovisual", "dj", "venue", "plumbing", "hvac", "commercial",
            "industrial", "contractor", "recruiting", "employment",
        ],
        ["shopping", "event"],
    ),
    "shopping": _rule(
        [
            "plumbing", "hvac", "contractor", "roofing", "electric", "landscaping",
            "pest control", "auto repair", "insurance", "attorney", "dental",
            "medical", "clinic", "pharmacy", "cvs", "walgreens",
        ],
        ["wellness"],
    ),
    "events": _rule(
        [
            "staffing", "plumbing", "contractor", "industrial", "equipment rental",
            "audio visual", "audiovisual", "production company",
        ],
    ),
    FALLBACK_INTENT: _rule(
        [
            "plumbing", "hvac", "contractor", "industrial", "warehouse",
            "staffing", "recruiting", "insurance", "attorney",
            "audio visual", "audiovisual", "production company",
        ],
    ),
})


class CategoryPolicy:
    """Validates candidate spots against the rule for an intent"""

    def __init__(
        self,
        rules: Mapping[str, CategoryRule] = CATEGORY_RULES,
        enforce_excluded_categories: bool = settings.ENFORCE_EXCLUDED_CATEGORIES,
    ):
        self.rules = rules
        self.enforce_excluded_categories = enforce_excluded_categories

    def resolve_intent(self, intent: Optional[str]) -> str:
        """Intent name whose rule applies; unknown or missing intents fall back"""
        if intent and intent in self.rules:
            return intent
        return FALLBACK_INTENT

    def rule_for(self, intent: Optional[str]) -> CategoryRule:
        return self.rules[self.resolve_intent(intent)]

    def is_valid(self, spot: CandidateSpot, intent: Optional[str] = None) -> bool:
        """Check a spot's name, description and category against the intent's rule"""
        rule = self.rule_for(intent)
        text = f"{spot.name} {spot.description or ''}".lower()

        for keyword in rule.excluded_keywords:
            if keyword in text:
                return False

        if self.enforce_excluded_categories and spot.category:
            if spot.category.lower() in rule.excluded_categories:
                return False

        return True

    def filter_valid(
        self,
        spots: Iterable[CandidateSpot],
        intent: Optional[str] = None
    ) -> List[CandidateSpot]:
        """Keep the spots that pass, preserving order"""
        spots = list(spots)
        kept = [spot for spot in spots if self.is_valid(spot, intent)]
        rejected = len(spots) - len(kept)
        if rejected:
            logger.info(
                f"Safety net rejected {rejected} of {len(spots)} spots "
                f"for intent '{self.resolve_intent(intent)}'"
            )
        return kept


# Global policy instance
category_policy = CategoryPolicy()


def get_category_policy() -> CategoryPolicy:
    """Dependency for getting the category policy"""
    return category_policy
