"""
Daily habit summary for a session.

Counts how often each ingredient showed up in today's scans and turns the
most frequent one into a one-line observation plus a suggestion.
"""
from __future__ import annotations
from typing import List

from eatwise.models import DailyHabit, DailyInsight

HEAVY_INTAKE_COUNT = 3

NO_SCANS_SUMMARY = "No food scans today"
NO_SCANS_SUGGESTION = "Scan meals to get personalized insights"
BALANCED_SUGGESTION = "Your intake looks balanced today."


def generate_daily_insight(habits: List[DailyHabit]) -> DailyInsight:
    if not habits:
        return DailyInsight(summary=NO_SCANS_SUMMARY, suggestion=NO_SCANS_SUGGESTION)

    # max() keeps the first of equal counts
    top = max(habits, key=lambda h: h.count)
    if top.count > HEAVY_INTAKE_COUNT:
        suggestion = f"Consider reducing {top.ingredient} for better balance."
    else:
        suggestion = BALANCED_SUGGESTION
    return DailyInsight(
        summary=f"You consumed {top.ingredient} most often today.",
        suggestion=suggestion,
    )
