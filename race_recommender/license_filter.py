"""
License eligibility filtering.

Decides which opportunities a user may enter based on the licenses they
hold per category, and which ones are one promotion away.
"""

import logging
from typing import Dict, List, Optional

from race_recommender.models import (
    Category, LicenseLevel, LicenseProgression, RacingOpportunity, UserHistory
)


# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


SETUP_FIXED = "fixed"
SETUP_OPEN = "open"
SETUP_BOTH = "both"

PROMOTION_REQUIREMENTS = {
    LicenseLevel.ROOKIE: "Complete 4 races or time trials with 3.0+ Safety Rating",
    LicenseLevel.D: "Complete races with 3.0+ Safety Rating and meet minimum participation requirements",
    LicenseLevel.C: "Complete races with 3.0+ Safety Rating and meet minimum participation requirements",
    LicenseLevel.B: "Complete races with 3.0+ Safety Rating and meet minimum participation requirements",
    LicenseLevel.A: "Complete races with 4.0+ Safety Rating and meet Pro license requirements",
}
TOP_LEVEL_REQUIREMENT = "Already at the highest license level"
GENERIC_REQUIREMENT = "Meet Safety Rating and participation requirements"


class LicenseFilter:
    """
    Filters opportunities by license eligibility.

    A user is eligible when they hold a license in the opportunity's
    category whose rank is at least the required rank. Duplicate licenses
    in one category resolve to the highest rank; no license in the
    category means not eligible.
    """

    def get_highest_license_level(
        self,
        history: UserHistory,
        category: Category
    ) -> Optional[LicenseLevel]:
        """
        Get the highest license level a user holds in a category.

        Args:
            history: User history with license classes
            category: Category to look up

        Returns:
            Highest LicenseLevel, or None if no license is held in the category
        """
        levels = [lc.level for lc in history.licenses_in(category)]
        if not levels:
            return None
        return max(levels, key=lambda level: level.rank)

    def has_required_license(
        self,
        opportunity: RacingOpportunity,
        history: UserHistory
    ) -> bool:
        """Check whether the user meets an opportunity's license requirement."""
        level = self.get_highest_license_level(history, opportunity.category)
        if level is None:
            return False
        return level.meets(opportunity.license_required)

    def filter_by_license(
        self,
        opportunities: List[RacingOpportunity],
        history: UserHistory
    ) -> List[RacingOpportunity]:
        """
        Keep only the opportunities the user is licensed for.

        Args:
            opportunities: Candidate opportunities
            history: User history with license classes

        Returns:
            Eligible opportunities in their original order
        """
        if not history.license_classes:
            logger.warning(f"User {history.user_id} has no license classes, nothing is eligible")
            return []

        eligible = [o for o in opportunities if self.has_required_license(o, history)]
        logger.debug(f"License filter kept {len(eligible)} of {len(opportunities)} opportunities")
        return eligible

    def get_almost_eligible_opportunities(
        self,
        opportunities: List[RacingOpportunity],
        history: UserHistory
    ) -> List[RacingOpportunity]:
        """
        Find opportunities exactly one license level above the user.

        With no license in a category, only Rookie-required opportunities
        in that category count as almost eligible.

        Args:
            opportunities: Candidate opportunities
            history: User history with license classes

        Returns:
            Almost-eligible opportunities in their original order
        """
        almost = []
        for opportunity in opportunities:
            level = self.get_highest_license_level(history, opportunity.category)
            required_rank = opportunity.license_required.rank
            if level is None:
                if required_rank == LicenseLevel.ROOKIE.rank:
                    almost.append(opportunity)
            elif required_rank == level.rank + 1:
                almost.append(opportunity)
        return almost

    def get_license_progression_suggestions(
        self,
        history: UserHistory
    ) -> List[LicenseProgression]:
        """
        Describe the next promotion for every category the user holds.

        Args:
            history: User history with license classes

        Returns:
            One LicenseProgression per held category, in enum order
        """
        suggestions = []
        for category in self.get_available_categories(history):
            level = self.get_highest_license_level(history, category)
            next_level = level.next_level
            if next_level is None:
                requirements = TOP_LEVEL_REQUIREMENT
            else:
                requirements = PROMOTION_REQUIREMENTS.get(level, GENERIC_REQUIREMENT)
            suggestions.append(LicenseProgression(
                category=category,
                current_level=level,
                next_level=next_level,
                requirements=requirements
            ))
        return suggestions

    def get_available_categories(self, history: UserHistory) -> List[Category]:
        """Categories in which the user holds at least one license."""
        held = {lc.category for lc in history.license_classes}
        return [category for category in Category if category in held]

    def filter_by_setup_type(
        self,
        opportunities: List[RacingOpportunity],
        setup_type: str = SETUP_BOTH
    ) -> List[RacingOpportunity]:
        """
        Filter opportunities by setup type.

        Args:
            opportunities: Candidate opportunities
            setup_type: "fixed", "open" or "both"

        Returns:
            Matching opportunities

        Raises:
            ValueError: If setup_type is not recognized
        """
        if setup_type == SETUP_BOTH:
            return list(opportunities)
        if setup_type == SETUP_FIXED:
            return [o for o in opportunities if not o.has_open_setup]
        if setup_type == SETUP_OPEN:
            return [o for o in opportunities if o.has_open_setup]
        raise ValueError(f"Unknown setup type: {setup_type}")

    def filter_opportunities(
        self,
        opportunities: List[RacingOpportunity],
        history: UserHistory,
        setup_type: str = SETUP_BOTH
    ) -> List[RacingOpportunity]:
        """Apply license and setup filters together (both must pass)."""
        licensed = self.filter_by_license(opportunities, history)
        return self.filter_by_setup_type(licensed, setup_type)

    def group_by_license(
        self,
        opportunities: List[RacingOpportunity]
    ) -> Dict[LicenseLevel, List[RacingOpportunity]]:
        """Group opportunities by required license level, lowest first."""
        groups: Dict[LicenseLevel, List[RacingOpportunity]] = {}
        for level in LicenseLevel:
            matching = [o for o in opportunities if o.license_required == level]
            if matching:
                groups[level] = matching
        return groups
