"""
Daily insight for a session, built from today's recorded ingredient habits.
"""
import logging

from app.database import get_daily_habits
from eatwise.insights import generate_daily_insight
from eatwise.models import DailyInsight

logger = logging.getLogger(__name__)


def daily_insight(session_id: str) -> DailyInsight:
    habits = get_daily_habits(session_id)
    insight = generate_daily_insight(habits)
    logger.info(f"[INSIGHTS] session={session_id} ingredients_today={len(habits)}")
    return insight
