"""Result formatter for the race recommender."""

from typing import List, Optional

from race_recommender.models import (
    LicenseProgression, NextRaceTime, OpportunityAnalysis, RecommendationError,
    RecommendationResponse, ScoredOpportunity, Score
)


FACTOR_NAMES = {
    'performance': 'Performance',
    'safety': 'Safety',
    'consistency': 'Consistency',
    'predictability': 'Predictability',
    'familiarity': 'Familiarity',
    'fatigue_risk': 'Fatigue',
    'attrition_risk': 'Attrition',
    'time_volatility': 'Time Slots',
}


class ResultFormatter:
    """Formats recommendation results for display."""

    def format_recommendations(self, response: RecommendationResponse, verbose: bool = False) -> str:
        """
        Format a recommendation response for console output.

        Args:
            response: The response to format
            verbose: Whether to show detailed factor breakdowns

        Returns:
            Formatted string ready for display
        """
        output = []
        profile = response.user_profile
        metadata = response.metadata

        output.append("Race Recommendations")
        output.append("═" * 65)
        output.append(f"Driver: {response.user_history.user_id}")
        output.append(f"Mode: {metadata.mode.value}")
        output.append(f"Primary category: {profile.primary_category.display_name}")
        licenses = ", ".join(
            f"{lc.category.display_name} {lc.level.display_name} ({lc.safety_rating:.2f} SR, {lc.irating} iR)"
            for lc in profile.licenses
        )
        output.append(f"Licenses: {licenses or 'none'}")
        output.append("")

        if not response.recommendations:
            output.append("No races match your licenses and filters this week.")
        else:
            output.append(f"TOP {len(response.recommendations)} RECOMMENDATIONS:")
            output.append("─" * 65)
            for i, scored in enumerate(response.recommendations, 1):
                output.append(self._format_single(i, scored, verbose))
                if i < len(response.recommendations):
                    output.append("")

        output.append("─" * 65)
        output.append(f"Generated: {response.generated_at.strftime('%Y-%m-%d %H:%M:%S UTC')}")
        output.append(
            f"Opportunities this week: {metadata.total_opportunities} | "
            f"confidence high/estimated/none: {metadata.high_confidence_count}/"
            f"{metadata.estimated_count}/{metadata.no_data_count} | cache: {metadata.cache_status}"
        )

        return "\n".join(output)

    def _format_single(self, rank: int, scored: ScoredOpportunity, verbose: bool) -> str:
        opportunity = scored.opportunity
        score = scored.score
        lines = []

        flag = " [almost eligible]" if scored.almost_eligible else ""
        lines.append(f"{rank}. {opportunity.series_name} @ {opportunity.track_name}{flag}")
        lines.append(
            f"   Score: {score.overall}/100 | iRating risk: {score.irating_risk.value} | "
            f"SR risk: {score.safety_rating_risk.value}"
        )
        lines.append(f"   Next race: {self.format_next_race(scored.next_race)}")

        if verbose:
            lines.append("   Detailed Factors:")
            lines.append(self.format_factors(score))
        for reason in score.reasoning:
            lines.append(f"   • {reason}")

        return "\n".join(lines)

    @staticmethod
    def format_next_race(next_race: Optional[NextRaceTime]) -> str:
        if next_race is None:
            return "no upcoming sessions"
        text = next_race.next_race_time.strftime('%a %Y-%m-%d %H:%M UTC')
        if next_race.is_repeating:
            text += f" (every {next_race.repeat_minutes} min)"
        return text

    def format_factors(self, score: Score) -> str:
        """
        Format individual factor scores for detailed display.

        Args:
            score: Score containing factor values and confidence

        Returns:
            Formatted string showing all factor scores
        """
        lines = []
        values = score.factors.as_dict()
        for key, display_name in FACTOR_NAMES.items():
            confidence = getattr(score.data_confidence, key).value
            lines.append(f"   • {display_name}: {values[key]}/100 ({confidence})")
        return "\n".join(lines)

    def format_analysis(self, analysis: OpportunityAnalysis) -> str:
        """Format a single opportunity analysis."""
        opportunity = analysis.opportunity
        lines = []
        lines.append(f"{opportunity.series_name} @ {opportunity.track_name}")
        lines.append("═" * 65)
        lines.append(
            f"Category: {opportunity.category.display_name} | "
            f"Requires: {opportunity.license_required.display_name}"
        )
        held = analysis.user_license.display_name if analysis.user_license else "none"
        lines.append(f"Your license: {held} | Eligible: {'yes' if analysis.is_eligible else 'no'}")
        lines.append(f"Next race: {self.format_next_race(analysis.next_race)}")
        lines.append(f"Overall score: {analysis.score.overall}/100")
        lines.append("─" * 65)
        lines.append(self.format_factors(analysis.score))
        lines.append("")
        lines.append("Why:")
        for reason in analysis.score.reasoning:
            lines.append(f"  • {reason}")
        return "\n".join(lines)

    def format_progression(self, progression: List[LicenseProgression]) -> str:
        """Format license progression suggestions."""
        if not progression:
            return "No licenses on record."
        lines = ["License Progression", "═" * 65]
        for item in progression:
            target = item.next_level.display_name if item.next_level else "-"
            lines.append(
                f"{item.category.display_name}: {item.current_level.display_name} -> {target}"
            )
            lines.append(f"  {item.requirements}")
        return "\n".join(lines)

    def format_error(self, error: RecommendationError) -> str:
        """
        Format a recommendation error for display.

        Args:
            error: RecommendationError to format

        Returns:
            Formatted error message string
        """
        lines = []
        lines.append("═" * 65)
        lines.append(f"ERROR: {error.error_type}")
        lines.append("═" * 65)
        lines.append(f"\n{error.message}\n")

        if error.suggestions:
            lines.append("Suggestions:")
            for suggestion in error.suggestions:
                lines.append(f"  • {suggestion}")

        lines.append("\n" + "═" * 65)

        return "\n".join(lines)
